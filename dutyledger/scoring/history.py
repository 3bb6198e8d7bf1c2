"""Translate stored tickets and their audit trail into scoring input."""

from __future__ import annotations

from typing import Iterable

from dutyledger.domain.types import TicketEvent, TicketHistoryRecord, TicketStatus
from dutyledger.tickets.models import Ticket, TicketAuditEntry

_COMPLETED_STATUSES = frozenset({TicketStatus.NEEDS_REVIEW, TicketStatus.CLOSED})


def build_history(ticket: Ticket, audit_log: Iterable[TicketAuditEntry]) -> TicketHistoryRecord:
    entries = sorted(audit_log, key=lambda entry: entry.created_at)

    events: list[TicketEvent] = []
    submitted_at = None
    for entry in entries:
        if entry.is_rejection:
            events.append(TicketEvent.REJECTION)
        elif entry.is_failed_inspection:
            events.append(TicketEvent.FAILED_INSPECTION)
        if submitted_at is None and entry.to_status == TicketStatus.NEEDS_REVIEW:
            submitted_at = entry.created_at

    if ticket.status in _COMPLETED_STATUSES:
        events.append(TicketEvent.COMPLETED)
    was_skipped = ticket.status == TicketStatus.SKIPPED
    if was_skipped:
        events.append(TicketEvent.SKIPPED)

    return TicketHistoryRecord(
        id=ticket.id,
        severity=ticket.severity,
        is_recurring=ticket.is_recurring,
        is_inspection=ticket.is_inspection,
        opened_at=ticket.created_at,
        submitted_at=submitted_at,
        events=tuple(events),
        was_skipped=was_skipped,
    )
