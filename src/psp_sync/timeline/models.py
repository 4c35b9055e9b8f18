"""Persisted timeline state for resumable incremental syncs."""

import enum
import json
from typing import Any, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import TimelineStateError


class Phase(str, enum.Enum):
    """Phase of a timeline, derived from its fields."""
    SCANNING = "scanning"
    REPLAYING = "replaying"
    TAILING = "tailing"


class Timeline(BaseModel):
    """Resumption state for one provider/account sync lineage.

    ``latest_id`` is the high-water mark: the newest record emitted so far.
    ``cursors`` is a stack (top is the last element) of cursors collected
    while walking backwards through history. ``page_size`` pins the page
    size used by the backlog scan so a cursor always addresses the same
    slice of history when it is replayed.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    latest_id: Optional[str] = Field(default=None, alias="latestID")
    cursors: Tuple[str, ...] = Field(default=(), alias="cursors")
    page_size: Optional[int] = Field(default=None, alias="pageSize", ge=1)

    @model_validator(mode="before")
    @classmethod
    def _upgrade_legacy_state(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        # Blobs written before the cursor stack existed only carried the
        # last created ID.
        if "lastIDCreated" in data and not data.get("latestID"):
            data = dict(data)
            data["latestID"] = data.pop("lastIDCreated") or None
        # An empty stack may be written as null
        if "cursors" in data and data["cursors"] is None:
            data = dict(data)
            data["cursors"] = ()
        return data

    @property
    def phase(self) -> Phase:
        if not self.latest_id:
            return Phase.SCANNING
        if self.cursors:
            return Phase.REPLAYING
        return Phase.TAILING

    @property
    def depth(self) -> int:
        """Number of pending cursors; grows while scanning deep history."""
        return len(self.cursors)

    @property
    def is_fresh(self) -> bool:
        return not self.latest_id and not self.cursors

    def push(self, cursor: str, page_size: int) -> "Timeline":
        return self.model_copy(update={"cursors": self.cursors + (cursor,), "page_size": page_size})

    def pop(self) -> "Timeline":
        remaining = self.cursors[:-1]
        update = {"cursors": remaining}
        if not remaining:
            update["page_size"] = None
        return self.model_copy(update=update)

    def advance(self, latest_id: str) -> "Timeline":
        return self.model_copy(update={"latest_id": latest_id})

    @classmethod
    def from_json(cls, blob: Optional[Union[str, bytes]]) -> "Timeline":
        """Decode a persisted timeline; empty input is a fresh timeline.

        Raises:
            TimelineStateError: If the blob is not a valid timeline.
        """
        if blob is None:
            return cls()
        if isinstance(blob, bytes):
            try:
                blob = blob.decode("utf-8")
            except UnicodeDecodeError as e:
                raise TimelineStateError("Timeline state is not valid UTF-8") from e
        if not blob.strip():
            return cls()
        try:
            data = json.loads(blob)
        except json.JSONDecodeError as e:
            raise TimelineStateError(f"Timeline state is not valid JSON: {e.msg}") from e
        if not isinstance(data, dict):
            raise TimelineStateError("Timeline state must be a JSON object")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise TimelineStateError(f"Invalid timeline state: {e.error_count()} error(s)") from e

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True, exclude_defaults=True)

    def describe(self) -> str:
        return f"phase={self.phase.value} depth={self.depth} latest_id={self.latest_id}"
