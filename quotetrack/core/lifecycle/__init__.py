"""Quote lifecycle: status derivation, transition guard, event recording."""

from .display import DisplayStatus, summary_line, to_display
from .guard import (
    STATUS_RANK,
    TransitionDecision,
    advance_status,
    can_transition,
    check_editable,
    check_transition,
)
from .metadata import (
    CreatedMeta,
    DeclinedMeta,
    EventMetadata,
    OpenedMeta,
    SendFailedMeta,
    SentMeta,
    SignedMeta,
    build_metadata,
)
from .projection import StatusProjection
from .recorder import EventRecorder, ReconcileResult, RecordResult
from .status import LoggedEvent, StatusSummary, derive_status
from .stores import (
    EventLogStore,
    LifecycleUnitOfWork,
    QuoteSnapshot,
    QuoteStore,
    SqlEventLogStore,
    SqlQuoteStore,
    SqlUnitOfWork,
)

__all__ = [
    "STATUS_RANK",
    "CreatedMeta",
    "DeclinedMeta",
    "DisplayStatus",
    "EventLogStore",
    "EventMetadata",
    "EventRecorder",
    "LifecycleUnitOfWork",
    "LoggedEvent",
    "OpenedMeta",
    "QuoteSnapshot",
    "QuoteStore",
    "ReconcileResult",
    "RecordResult",
    "SendFailedMeta",
    "SentMeta",
    "SignedMeta",
    "SqlEventLogStore",
    "SqlQuoteStore",
    "SqlUnitOfWork",
    "StatusProjection",
    "StatusSummary",
    "TransitionDecision",
    "advance_status",
    "build_metadata",
    "can_transition",
    "check_editable",
    "check_transition",
    "derive_status",
    "summary_line",
    "to_display",
]
