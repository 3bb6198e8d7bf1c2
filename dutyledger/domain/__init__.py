"""Pure rule engines: transition validation, scoring and repeat-issue detection."""

from .repeat import REPEAT_WINDOW, detect_repeat_issue
from .scoring import compute_score
from .state import TicketStateMachine, TicketTransitionError, TransitionViolation, validate_transition
from .types import (
    AUTHORITY_ROLES,
    ClosedTicketSummary,
    NewTicketInfo,
    Period,
    RepeatIssueResult,
    Role,
    ScoreBreakdown,
    Severity,
    TicketEvent,
    TicketHistoryRecord,
    TicketSnapshot,
    TicketStatus,
    TransitionResult,
)

__all__ = [
    "AUTHORITY_ROLES",
    "REPEAT_WINDOW",
    "ClosedTicketSummary",
    "NewTicketInfo",
    "Period",
    "RepeatIssueResult",
    "Role",
    "ScoreBreakdown",
    "Severity",
    "TicketEvent",
    "TicketHistoryRecord",
    "TicketSnapshot",
    "TicketStateMachine",
    "TicketStatus",
    "TicketTransitionError",
    "TransitionResult",
    "TransitionViolation",
    "compute_score",
    "detect_repeat_issue",
    "validate_transition",
]
