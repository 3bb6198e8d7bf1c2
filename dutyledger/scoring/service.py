from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol, Sequence

from opentelemetry import trace

from dutyledger.domain.scoring import compute_score
from dutyledger.domain.types import AUTHORITY_ROLES, Period, Role
from dutyledger.errors import TicketPermissionError
from dutyledger.tickets.models import Ticket, TicketAuditEntry

from .history import build_history
from .models import ScoreRecord

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class ScoringTicketSource(Protocol):
    async def list_assigned_in_period(self, user_id: str, start: datetime, end: datetime) -> list[Ticket]: ...

    async def count_closed_by_assignee(self, start: datetime, end: datetime) -> dict[str, int]: ...

    async def get_audit_logs(self, ticket_ids: Sequence[str]) -> dict[str, list[TicketAuditEntry]]: ...


class ScoreStore(Protocol):
    async def save(self, record: ScoreRecord) -> ScoreRecord: ...

    async def get_latest(self, user_id: str) -> ScoreRecord | None: ...

    async def list_history(self, user_id: str) -> list[ScoreRecord]: ...


@dataclass(slots=True)
class ScoringService:
    """Compute and persist period scores from stored ticket history."""

    tickets: ScoringTicketSource
    scores: ScoreStore
    period_length: timedelta = timedelta(days=7)

    def default_period(self, now: datetime | None = None) -> Period:
        end = now or datetime.now(timezone.utc)
        return Period(start=end - self.period_length, end=end)

    async def compute_and_save(self, user_id: str, period: Period, *, now: datetime | None = None) -> ScoreRecord:
        with tracer.start_as_current_span("scoring.compute") as span:
            span.set_attribute("score.user_id", user_id)
            assigned = await self.tickets.list_assigned_in_period(user_id, period.start, period.end)
            audit_logs = await self.tickets.get_audit_logs([ticket.id for ticket in assigned])
            history = [build_history(ticket, audit_logs.get(ticket.id, [])) for ticket in assigned]

            completed = await self.tickets.count_closed_by_assignee(period.start, period.end)
            breakdown = compute_score(
                history,
                period,
                completed.get(user_id, 0),
                max(completed.values(), default=0),
            )

            record = ScoreRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                period_start=period.start,
                period_end=period.end,
                quality=breakdown.quality,
                consistency=breakdown.consistency,
                speed=breakdown.speed,
                volume=breakdown.volume,
                total=breakdown.total,
                computed_at=now or datetime.now(timezone.utc),
            )
            saved = await self.scores.save(record)

        logger.info(
            "Scored %s for %s..%s over %d tickets: total=%.2f",
            user_id,
            period.start.isoformat(),
            period.end.isoformat(),
            len(history),
            saved.total,
        )
        return saved

    async def get_latest_score(self, user_id: str, *, requestor: str, requestor_role: Role) -> ScoreRecord | None:
        _check_score_access(user_id, requestor, requestor_role)
        return await self.scores.get_latest(user_id)

    async def get_score_history(self, user_id: str, *, requestor: str, requestor_role: Role) -> list[ScoreRecord]:
        _check_score_access(user_id, requestor, requestor_role)
        return await self.scores.list_history(user_id)

    async def latest_scores(
        self,
        user_ids: Sequence[str],
        *,
        requestor_role: Role,
    ) -> dict[str, ScoreRecord | None]:
        """Most recent record per user, for the authority overview. Users never scored map to ``None``."""

        if requestor_role not in AUTHORITY_ROLES:
            raise TicketPermissionError("Only mother or father may view the score overview")
        return {user_id: await self.scores.get_latest(user_id) for user_id in user_ids}


def _check_score_access(user_id: str, requestor: str, requestor_role: Role) -> None:
    if requestor_role not in AUTHORITY_ROLES and requestor != user_id:
        raise TicketPermissionError("You can only view your own scores")
