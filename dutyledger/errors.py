"""Error hierarchy shared by the rule engines and the services built on them."""

from __future__ import annotations


class TicketServiceError(RuntimeError):
    """Base error for ticket lifecycle issues."""


class TicketNotFoundError(TicketServiceError):
    """Raised when a ticket could not be located."""


class TicketPermissionError(TicketServiceError):
    """Raised when an actor's role does not allow the requested operation."""


class MissingEvidenceError(TicketServiceError):
    """Raised when a ticket lacks the photos required for review."""


class TicketConcurrencyError(TicketServiceError):
    """Raised when a ticket changed status between validation and write."""
