from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Protocol

from opentelemetry import trace

from dutyledger.domain.types import AUTHORITY_ROLES, Role, TicketStatus
from dutyledger.errors import TicketPermissionError
from dutyledger.tickets.models import Ticket

from .models import HotSpot, WeeklyReport

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

HOT_SPOT_LIMIT = 3


class ReportSource(Protocol):
    async def count_by_status(self, start: datetime, end: datetime) -> dict[TicketStatus, int]: ...

    async def count_rejections(self, start: datetime, end: datetime) -> int: ...

    async def list_repeat_issues(self, start: datetime, end: datetime) -> list[Ticket]: ...

    async def area_activity(self, start: datetime, end: datetime) -> dict[tuple[str, str], tuple[int, int]]: ...

    async def rejections_by_area(self, start: datetime, end: datetime) -> dict[tuple[str, str], int]: ...

    async def count_overdue(self, now: datetime) -> int: ...


def week_window(now: datetime, week_offset: int = 0) -> tuple[datetime, datetime]:
    """Sunday-midnight week containing ``now``, shifted back ``week_offset`` weeks."""

    days_since_sunday = (now.weekday() + 1) % 7
    start = (now - timedelta(days=days_since_sunday + 7 * week_offset)).replace(
        hour=0, minute=0, second=0, microsecond=0
    )
    return start, start + timedelta(days=7)


def rank_hot_spots(
    activity: Mapping[tuple[str, str], tuple[int, int]],
    rejections: Mapping[tuple[str, str], int],
    limit: int = HOT_SPOT_LIMIT,
) -> list[HotSpot]:
    """Area/category pairs with skips or send-backs, worst first.

    Only pairs that had tickets created in the window are ranked. Ties keep
    the order of ``activity``.
    """

    spots = [
        HotSpot(
            area=area,
            category=category,
            created=created,
            skipped=skipped,
            rejected=rejections.get((area, category), 0),
        )
        for (area, category), (created, skipped) in activity.items()
    ]
    ranked = sorted(
        (spot for spot in spots if spot.issue_score > 0),
        key=lambda spot: spot.issue_score,
        reverse=True,
    )
    return ranked[:limit]


class ReportService:
    def __init__(self, source: ReportSource) -> None:
        self._source = source

    async def weekly_report(
        self,
        *,
        requestor_role: Role,
        week_offset: int = 0,
        now: datetime | None = None,
    ) -> WeeklyReport:
        if requestor_role not in AUTHORITY_ROLES:
            raise TicketPermissionError("Only mother or father may view weekly reports")
        if week_offset < 0:
            raise ValueError("week_offset cannot be negative")

        now = now or datetime.now(timezone.utc)
        start, end = week_window(now, week_offset)
        with tracer.start_as_current_span("reports.weekly") as span:
            span.set_attribute("report.week_offset", week_offset)
            report = WeeklyReport(
                start=start,
                end=end,
                status_counts=await self._source.count_by_status(start, end),
                rejections=await self._source.count_rejections(start, end),
                repeat_issues=await self._source.list_repeat_issues(start, end),
                hot_spots=rank_hot_spots(
                    await self._source.area_activity(start, end),
                    await self._source.rejections_by_area(start, end),
                ),
                overdue_count=await self._source.count_overdue(now),
                generated_at=now,
            )

        logger.info(
            "Weekly report %s..%s: %d repeat issue(s), %d hot spot(s), %d overdue",
            start.date().isoformat(),
            end.date().isoformat(),
            len(report.repeat_issues),
            len(report.hot_spots),
            report.overdue_count,
        )
        return report
