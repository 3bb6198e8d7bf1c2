"""Ticket persistence, evidence gating and lifecycle orchestration."""

from .evidence import assert_evidence, missing_evidence
from .models import PhotoType, QualityPenalty, Ticket, TicketAuditEntry, TicketPhoto
from .repository import TicketRepository
from .service import TicketService

__all__ = [
    "PhotoType",
    "QualityPenalty",
    "Ticket",
    "TicketAuditEntry",
    "TicketPhoto",
    "TicketRepository",
    "TicketService",
    "assert_evidence",
    "missing_evidence",
]
