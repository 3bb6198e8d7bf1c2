from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping

from dutyledger.domain.types import ClosedTicketSummary, Severity, TicketSnapshot, TicketStatus


class PhotoType(str, Enum):
    """Tag describing what a photo proves."""

    BEFORE = "before"
    AFTER = "after"
    COMPLETION = "completion"


@dataclass(slots=True)
class Ticket:
    """Stored ticket record."""

    id: str
    title: str
    description: str
    area: str
    category: str
    severity: Severity
    status: TicketStatus
    is_inspection: bool
    is_repeat_issue: bool
    previous_ticket_id: str | None
    assigned_to: str | None
    created_by: str
    recurring_template_id: str | None
    due_at: datetime | None
    closed_at: datetime | None
    created_at: datetime
    updated_at: datetime

    @property
    def is_recurring(self) -> bool:
        return self.recurring_template_id is not None

    def snapshot(self) -> TicketSnapshot:
        return TicketSnapshot(
            id=self.id,
            status=self.status,
            is_recurring=self.is_recurring,
            severity=self.severity,
        )

    def closed_summary(self) -> ClosedTicketSummary:
        if self.closed_at is None:
            raise ValueError(f"Ticket {self.id} has not been closed")
        return ClosedTicketSummary(
            id=self.id,
            area=self.area,
            category=self.category,
            closed_at=self.closed_at,
        )


@dataclass(slots=True)
class TicketPhoto:
    """Photographic evidence attached to a ticket."""

    id: str
    ticket_id: str
    uploaded_by: str
    url: str
    storage_key: str
    photo_type: PhotoType
    created_at: datetime


@dataclass(slots=True)
class TicketAuditEntry:
    """Append-only history entry describing a status change."""

    id: str
    ticket_id: str
    actor: str
    from_status: TicketStatus | None
    to_status: TicketStatus
    note: str | None
    created_at: datetime
    metadata: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_rejection(self) -> bool:
        return self.from_status == TicketStatus.NEEDS_REVIEW and self.to_status == TicketStatus.IN_PROGRESS

    @property
    def is_failed_inspection(self) -> bool:
        return self.to_status == TicketStatus.CLOSED and bool(self.metadata.get("failed_inspection"))


@dataclass(slots=True)
class QualityPenalty:
    """Quality deduction charged to an assignee for a specific audited event."""

    id: str
    user_id: str
    ticket_id: str
    audit_id: str
    reason: str
    points: float
    created_at: datetime
