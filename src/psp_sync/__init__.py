# psp_sync package
__version__ = "0.1.0"

from .models import PSPPayment, PaymentStatus, PaymentType
from .timeline import (
    Phase,
    Timeline,
    Page,
    NewerPage,
    PageSource,
    SyncResult,
    sync_step,
    sync_step_json,
    TimelineError,
    PageSourceError,
    PageSourceContractError,
    TimelineStateError,
)
from .connectors import get_page_source
from .services import SyncService, SyncRunSummary
