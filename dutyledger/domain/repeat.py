from __future__ import annotations

from datetime import timedelta
from typing import Iterable

from .types import ClosedTicketSummary, NewTicketInfo, RepeatIssueResult

REPEAT_WINDOW = timedelta(days=7)


def _same_issue(new_ticket: NewTicketInfo, candidate: ClosedTicketSummary) -> bool:
    return (
        candidate.area.casefold() == new_ticket.area.casefold()
        and candidate.category.casefold() == new_ticket.category.casefold()
    )


def detect_repeat_issue(
    new_ticket: NewTicketInfo,
    recent_closed_tickets: Iterable[ClosedTicketSummary],
) -> RepeatIssueResult:
    """Flag ``new_ticket`` when the same area and category closed within the last 7 days.

    The window is inclusive at both ends and enforced here whatever the caller
    pre-filtered. Candidates are checked in the order given and the first match
    wins, so callers wanting the most recent match must sort beforehand.
    """

    window_start = new_ticket.created_at - REPEAT_WINDOW
    for candidate in recent_closed_tickets:
        if not window_start <= candidate.closed_at <= new_ticket.created_at:
            continue
        if _same_issue(new_ticket, candidate):
            return RepeatIssueResult(is_repeat=True, previous_ticket_id=candidate.id)
    return RepeatIssueResult(is_repeat=False)
