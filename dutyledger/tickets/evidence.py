"""Photo requirements for submitting work for review.

The gate runs next to the transition validator, which knows nothing about
attached evidence.
"""

from __future__ import annotations

from typing import Iterable

from dutyledger.domain.types import TicketStatus
from dutyledger.errors import MissingEvidenceError

from .models import PhotoType, Ticket, TicketPhoto

INSPECTION_PHOTO_TYPES: frozenset[PhotoType] = frozenset({PhotoType.BEFORE, PhotoType.AFTER})


def missing_evidence(ticket: Ticket, photos: Iterable[TicketPhoto]) -> str | None:
    """Describe what is missing before ``ticket`` may be submitted, or ``None``."""

    photo_types = {photo.photo_type for photo in photos}
    if not photo_types:
        return "at least one photo is required before submitting for review"
    if ticket.is_inspection and not INSPECTION_PHOTO_TYPES <= photo_types:
        return "inspection tickets require both a before photo and an after photo before submission"
    return None


def assert_evidence(ticket: Ticket, target: TicketStatus, photos: Iterable[TicketPhoto]) -> None:
    if target != TicketStatus.NEEDS_REVIEW:
        return
    problem = missing_evidence(ticket, photos)
    if problem is not None:
        raise MissingEvidenceError(f"Cannot submit ticket {ticket.id} for review: {problem}")
