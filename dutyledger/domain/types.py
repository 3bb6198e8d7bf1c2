"""Value objects shared by the rule engines.

Every type here is a transient, immutable view built by the caller for a single
decision and discarded afterwards. None of them carry persistent state.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class TicketStatus(str, Enum):
    """Lifecycle states of a ticket."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    NEEDS_REVIEW = "needs_review"
    CLOSED = "closed"
    SKIPPED = "skipped"


class Role(str, Enum):
    """Actor roles. ``mother`` and ``father`` hold authority, ``employee`` does the work."""

    MOTHER = "mother"
    FATHER = "father"
    EMPLOYEE = "employee"

    @property
    def is_authority(self) -> bool:
        return self in AUTHORITY_ROLES


AUTHORITY_ROLES: frozenset[Role] = frozenset({Role.MOTHER, Role.FATHER})


class Severity(str, Enum):
    """Urgency class of a ticket, lowest first."""

    MINOR = "minor"
    NEEDS_FIX_TODAY = "needs_fix_today"
    IMMEDIATE_INTERRUPT = "immediate_interrupt"

    @property
    def multiplier(self) -> int:
        return SEVERITY_MULTIPLIERS[self]


SEVERITY_MULTIPLIERS: dict[Severity, int] = {
    Severity.MINOR: 1,
    Severity.NEEDS_FIX_TODAY: 2,
    Severity.IMMEDIATE_INTERRUPT: 4,
}


class TicketEvent(str, Enum):
    """Lifecycle events observed for a ticket during a scoring period."""

    REJECTION = "rejection"
    FAILED_INSPECTION = "failed_inspection"
    COMPLETED = "completed"
    SKIPPED = "skipped"


@dataclass(frozen=True, slots=True)
class TicketSnapshot:
    """State of a ticket at the moment a transition is requested."""

    id: str
    status: TicketStatus
    is_recurring: bool
    severity: Severity


@dataclass(frozen=True, slots=True)
class TransitionResult:
    """Outcome of a legal transition.

    ``is_rejection`` tells the caller to apply the quality penalty for this event.
    """

    is_rejection: bool


@dataclass(frozen=True, slots=True)
class Period:
    """Inclusive time bounds of a scoring window."""

    start: datetime
    end: datetime


@dataclass(frozen=True, slots=True)
class TicketHistoryRecord:
    """One ticket's activity as seen by the scoring engine."""

    id: str
    severity: Severity
    is_recurring: bool
    is_inspection: bool
    opened_at: datetime
    submitted_at: datetime | None = None
    events: tuple[TicketEvent, ...] = field(default_factory=tuple)
    was_skipped: bool = False


@dataclass(frozen=True, slots=True)
class ScoreBreakdown:
    """Per-dimension scores plus their weighted total."""

    quality: float
    consistency: float
    speed: float
    volume: float
    total: float


@dataclass(frozen=True, slots=True)
class NewTicketInfo:
    area: str
    category: str
    created_at: datetime


@dataclass(frozen=True, slots=True)
class ClosedTicketSummary:
    id: str
    area: str
    category: str
    closed_at: datetime


@dataclass(frozen=True, slots=True)
class RepeatIssueResult:
    is_repeat: bool
    previous_ticket_id: str | None = None
