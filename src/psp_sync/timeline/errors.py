"""Error taxonomy for the timeline sync engine."""

from typing import Optional


class TimelineError(Exception):
    """Base class for all timeline sync errors."""
    retryable = False


class PageSourceError(TimelineError):
    """Transport or authentication failure talking to a PSP list API.

    The timeline passed to the failing step is still valid; retrying the
    same step with it resumes exactly where the sync left off.
    """

    def __init__(
        self,
        message: str,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.retryable = retryable


class PageSourceContractError(TimelineError):
    """A page source broke its ordering or pagination contract.

    Retrying will not help; the caller should alert instead of looping.
    """

    def __init__(self, message: str, provider: Optional[str] = None):
        super().__init__(message)
        self.provider = provider


class TimelineStateError(TimelineError, ValueError):
    """The persisted timeline blob could not be decoded."""
