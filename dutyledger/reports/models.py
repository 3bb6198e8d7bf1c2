from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from dutyledger.domain.types import TicketStatus
from dutyledger.tickets.models import Ticket


@dataclass(frozen=True, slots=True)
class HotSpot:
    """An area and category that kept producing skipped or sent-back work."""

    area: str
    category: str
    created: int
    skipped: int
    rejected: int

    @property
    def issue_score(self) -> int:
        return self.skipped + self.rejected


@dataclass(slots=True)
class WeeklyReport:
    """Activity for tickets created in ``[start, end)``.

    ``overdue_count`` is measured at generation time and is not limited to
    the window.
    """

    start: datetime
    end: datetime
    status_counts: dict[TicketStatus, int]
    rejections: int
    repeat_issues: list[Ticket] = field(default_factory=list)
    hot_spots: list[HotSpot] = field(default_factory=list)
    overdue_count: int = 0
    generated_at: datetime | None = None
