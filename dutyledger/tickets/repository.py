from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Sequence

import asyncpg

from dutyledger.domain.types import Severity, TicketStatus

from .models import PhotoType, QualityPenalty, Ticket, TicketAuditEntry, TicketPhoto

_TICKET_COLUMNS = """
    id, title, description, area, category, severity, status, is_inspection, is_repeat_issue,
    previous_ticket_id, assigned_to, created_by, recurring_template_id, due_at, closed_at,
    created_at, updated_at
"""

_SEVERITY_RANK_SQL = """
    CASE severity
        WHEN 'immediate_interrupt' THEN 3
        WHEN 'needs_fix_today' THEN 2
        ELSE 1
    END
"""


class TicketRepository:
    """Persistence for tickets, their photos, the audit trail and quality penalties.

    Audit rows and penalties are insert-only.
    """

    _CREATE_TICKETS_SQL = """
    CREATE TABLE IF NOT EXISTS tickets (
        id TEXT PRIMARY KEY,
        title TEXT NOT NULL,
        description TEXT NOT NULL,
        area TEXT NOT NULL,
        category TEXT NOT NULL,
        severity TEXT NOT NULL,
        status TEXT NOT NULL,
        is_inspection BOOLEAN NOT NULL DEFAULT FALSE,
        is_repeat_issue BOOLEAN NOT NULL DEFAULT FALSE,
        previous_ticket_id TEXT NULL,
        assigned_to TEXT NULL,
        created_by TEXT NOT NULL,
        recurring_template_id TEXT NULL,
        due_at TIMESTAMPTZ NULL,
        closed_at TIMESTAMPTZ NULL,
        created_at TIMESTAMPTZ NOT NULL,
        updated_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_PHOTOS_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_photos (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id) ON DELETE CASCADE,
        uploaded_by TEXT NOT NULL,
        url TEXT NOT NULL,
        storage_key TEXT NOT NULL,
        photo_type TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_AUDIT_SQL = """
    CREATE TABLE IF NOT EXISTS ticket_audit_logs (
        id TEXT PRIMARY KEY,
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        actor TEXT NOT NULL,
        from_status TEXT NULL,
        to_status TEXT NOT NULL,
        note TEXT NULL,
        metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _CREATE_PENALTIES_SQL = """
    CREATE TABLE IF NOT EXISTS quality_penalties (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        audit_id TEXT NOT NULL UNIQUE REFERENCES ticket_audit_logs(id),
        reason TEXT NOT NULL,
        points DOUBLE PRECISION NOT NULL,
        created_at TIMESTAMPTZ NOT NULL
    )
    """

    _INSERT_TICKET_SQL = """
    INSERT INTO tickets (
        id, title, description, area, category, severity, status, is_inspection, is_repeat_issue,
        previous_ticket_id, assigned_to, created_by, recurring_template_id, due_at, closed_at,
        created_at, updated_at
    )
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
    """

    _INSERT_RECURRING_INSTANCE_SQL = """
    INSERT INTO recurring_instances (id, template_id, ticket_id, scheduled_for, generated_at)
    VALUES ($1, $2, $3, $4, $5)
    """

    _SELECT_TICKET_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE id = $1
    """

    _SELECT_RECENTLY_CLOSED_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE status = 'closed'
      AND lower(area) = lower($1)
      AND lower(category) = lower($2)
      AND closed_at >= $3
    ORDER BY closed_at DESC
    """

    _SELECT_ASSIGNED_IN_PERIOD_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE assigned_to = $1
      AND created_at >= $2
      AND created_at <= $3
    ORDER BY created_at ASC
    """

    _COUNT_CLOSED_BY_ASSIGNEE_SQL = """
    SELECT assigned_to, COUNT(*) AS completed
    FROM tickets
    WHERE status = 'closed'
      AND assigned_to IS NOT NULL
      AND closed_at >= $1
      AND closed_at <= $2
    GROUP BY assigned_to
    """

    _COUNT_BY_STATUS_SQL = """
    SELECT status, COUNT(*) AS total
    FROM tickets
    WHERE created_at >= $1 AND created_at < $2
    GROUP BY status
    """

    _COUNT_REJECTIONS_SQL = """
    SELECT COUNT(*) AS total
    FROM ticket_audit_logs
    WHERE from_status = 'needs_review'
      AND to_status = 'in_progress'
      AND created_at >= $1
      AND created_at < $2
    """

    _SELECT_REPEAT_ISSUES_SQL = f"""
    SELECT {_TICKET_COLUMNS}
    FROM tickets
    WHERE is_repeat_issue
      AND created_at >= $1
      AND created_at < $2
    ORDER BY created_at ASC
    """

    _AREA_ACTIVITY_SQL = """
    SELECT area, category, COUNT(*) AS total,
           COUNT(*) FILTER (WHERE status = 'skipped') AS skipped
    FROM tickets
    WHERE created_at >= $1 AND created_at < $2
    GROUP BY area, category
    """

    _REJECTIONS_BY_AREA_SQL = """
    SELECT t.area, t.category, COUNT(*) AS rejected
    FROM ticket_audit_logs a
    JOIN tickets t ON t.id = a.ticket_id
    WHERE a.from_status = 'needs_review'
      AND a.to_status = 'in_progress'
      AND a.created_at >= $1
      AND a.created_at < $2
    GROUP BY t.area, t.category
    """

    _COUNT_OVERDUE_SQL = """
    SELECT COUNT(*) AS total
    FROM tickets
    WHERE due_at < $1
      AND status NOT IN ('closed', 'skipped')
    """

    _UPDATE_STATUS_SQL = f"""
    UPDATE tickets
    SET status = $3,
        closed_at = COALESCE($4, closed_at),
        updated_at = $5
    WHERE id = $1 AND status = $2
    RETURNING {_TICKET_COLUMNS}
    """

    _INSERT_PHOTO_SQL = """
    INSERT INTO ticket_photos (id, ticket_id, uploaded_by, url, storage_key, photo_type, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    """

    _SELECT_PHOTOS_SQL = """
    SELECT id, ticket_id, uploaded_by, url, storage_key, photo_type, created_at
    FROM ticket_photos
    WHERE ticket_id = $1
    ORDER BY created_at ASC
    """

    _INSERT_AUDIT_SQL = """
    INSERT INTO ticket_audit_logs (id, ticket_id, actor, from_status, to_status, note, metadata, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb, $8)
    """

    _SELECT_AUDIT_SQL = """
    SELECT id, ticket_id, actor, from_status, to_status, note, metadata, created_at
    FROM ticket_audit_logs
    WHERE ticket_id = $1
    ORDER BY created_at ASC
    """

    _SELECT_AUDIT_FOR_TICKETS_SQL = """
    SELECT id, ticket_id, actor, from_status, to_status, note, metadata, created_at
    FROM ticket_audit_logs
    WHERE ticket_id = ANY($1::text[])
    ORDER BY created_at ASC
    """

    _INSERT_PENALTY_SQL = """
    INSERT INTO quality_penalties (id, user_id, ticket_id, audit_id, reason, points, created_at)
    VALUES ($1, $2, $3, $4, $5, $6, $7)
    """

    _SELECT_PENALTIES_SQL = """
    SELECT id, user_id, ticket_id, audit_id, reason, points, created_at
    FROM quality_penalties
    WHERE user_id = $1
    ORDER BY created_at ASC
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TICKETS_SQL)
            await connection.execute(self._CREATE_PHOTOS_SQL)
            await connection.execute(self._CREATE_AUDIT_SQL)
            await connection.execute(self._CREATE_PENALTIES_SQL)

    async def create_ticket(
        self,
        ticket: Ticket,
        audit: TicketAuditEntry,
        *,
        scheduled_for: datetime | None = None,
    ) -> None:
        """Insert the ticket and its creation audit entry in one transaction.

        Tickets generated from a recurring template pass ``scheduled_for`` and
        their ``recurring_instances`` row is written in the same transaction.
        """

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                await connection.execute(
                    self._INSERT_TICKET_SQL,
                    ticket.id,
                    ticket.title,
                    ticket.description,
                    ticket.area,
                    ticket.category,
                    ticket.severity.value,
                    ticket.status.value,
                    ticket.is_inspection,
                    ticket.is_repeat_issue,
                    ticket.previous_ticket_id,
                    ticket.assigned_to,
                    ticket.created_by,
                    ticket.recurring_template_id,
                    ticket.due_at,
                    ticket.closed_at,
                    ticket.created_at,
                    ticket.updated_at,
                )
                await self._insert_audit(connection, audit)
                if scheduled_for is not None and ticket.recurring_template_id is not None:
                    await connection.execute(
                        self._INSERT_RECURRING_INSTANCE_SQL,
                        str(uuid.uuid4()),
                        ticket.recurring_template_id,
                        ticket.id,
                        scheduled_for,
                        ticket.created_at,
                    )

    async def get_ticket(self, ticket_id: str) -> Ticket | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_TICKET_SQL, ticket_id)
        if row is None:
            return None
        return self._row_to_ticket(row)

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        assigned_to: str | None = None,
        area: str | None = None,
    ) -> list[Ticket]:
        clauses: list[str] = []
        params: list[Any] = []
        for column, value in (
            ("status", None if status is None else status.value),
            ("assigned_to", assigned_to),
            ("area", area),
        ):
            if value is None:
                continue
            params.append(value)
            clauses.append(f"{column} = ${len(params)}")

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        query = (
            f"SELECT {_TICKET_COLUMNS} FROM tickets {where} "
            f"ORDER BY {_SEVERITY_RANK_SQL} DESC, created_at DESC"
        )
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query, *params)
        return [self._row_to_ticket(row) for row in rows]

    async def list_recently_closed(self, *, area: str, category: str, since: datetime) -> list[Ticket]:
        """Closed tickets for an area and category, most recently closed first."""

        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_RECENTLY_CLOSED_SQL, area, category, since)
        return [self._row_to_ticket(row) for row in rows]

    async def list_assigned_in_period(self, user_id: str, start: datetime, end: datetime) -> list[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_ASSIGNED_IN_PERIOD_SQL, user_id, start, end)
        return [self._row_to_ticket(row) for row in rows]

    async def count_closed_by_assignee(self, start: datetime, end: datetime) -> dict[str, int]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._COUNT_CLOSED_BY_ASSIGNEE_SQL, start, end)
        return {str(row["assigned_to"]): int(row["completed"]) for row in rows}

    async def count_by_status(self, start: datetime, end: datetime) -> dict[TicketStatus, int]:
        """Tickets created in ``[start, end)`` per current status; every status is present."""

        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._COUNT_BY_STATUS_SQL, start, end)
        counts = {status: 0 for status in TicketStatus}
        for row in rows:
            counts[TicketStatus(str(row["status"]))] = int(row["total"])
        return counts

    async def count_rejections(self, start: datetime, end: datetime) -> int:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._COUNT_REJECTIONS_SQL, start, end)
        return 0 if row is None else int(row["total"])

    async def list_repeat_issues(self, start: datetime, end: datetime) -> list[Ticket]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_REPEAT_ISSUES_SQL, start, end)
        return [self._row_to_ticket(row) for row in rows]

    async def area_activity(self, start: datetime, end: datetime) -> dict[tuple[str, str], tuple[int, int]]:
        """``(area, category) -> (created, skipped)`` for tickets created in ``[start, end)``."""

        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._AREA_ACTIVITY_SQL, start, end)
        return {(str(row["area"]), str(row["category"])): (int(row["total"]), int(row["skipped"])) for row in rows}

    async def rejections_by_area(self, start: datetime, end: datetime) -> dict[tuple[str, str], int]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._REJECTIONS_BY_AREA_SQL, start, end)
        return {(str(row["area"]), str(row["category"])): int(row["rejected"]) for row in rows}

    async def count_overdue(self, now: datetime) -> int:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._COUNT_OVERDUE_SQL, now)
        return 0 if row is None else int(row["total"])

    async def apply_transition(
        self,
        *,
        ticket_id: str,
        expected_status: TicketStatus,
        audit: TicketAuditEntry,
        closed_at: datetime | None = None,
        penalty: QualityPenalty | None = None,
    ) -> Ticket | None:
        """Write a validated status change together with its audit entry.

        The update only matches while the ticket still has ``expected_status``;
        ``None`` means another writer got there first and nothing was written.
        """

        async with self._pool.acquire() as connection:
            async with connection.transaction():
                row = await connection.fetchrow(
                    self._UPDATE_STATUS_SQL,
                    ticket_id,
                    expected_status.value,
                    audit.to_status.value,
                    closed_at,
                    audit.created_at,
                )
                if row is None:
                    return None
                await self._insert_audit(connection, audit)
                if penalty is not None:
                    await connection.execute(
                        self._INSERT_PENALTY_SQL,
                        penalty.id,
                        penalty.user_id,
                        penalty.ticket_id,
                        penalty.audit_id,
                        penalty.reason,
                        penalty.points,
                        penalty.created_at,
                    )
        return self._row_to_ticket(row)

    async def add_photo(self, photo: TicketPhoto) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                self._INSERT_PHOTO_SQL,
                photo.id,
                photo.ticket_id,
                photo.uploaded_by,
                photo.url,
                photo.storage_key,
                photo.photo_type.value,
                photo.created_at,
            )

    async def list_photos(self, ticket_id: str) -> list[TicketPhoto]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_PHOTOS_SQL, ticket_id)
        return [self._row_to_photo(row) for row in rows]

    async def get_audit_log(self, ticket_id: str) -> list[TicketAuditEntry]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_AUDIT_SQL, ticket_id)
        return [self._row_to_audit(row) for row in rows]

    async def get_audit_logs(self, ticket_ids: Sequence[str]) -> dict[str, list[TicketAuditEntry]]:
        """Audit entries for several tickets, grouped by ticket in chronological order."""

        grouped: dict[str, list[TicketAuditEntry]] = {ticket_id: [] for ticket_id in ticket_ids}
        if not ticket_ids:
            return grouped
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_AUDIT_FOR_TICKETS_SQL, list(ticket_ids))
        for row in rows:
            entry = self._row_to_audit(row)
            grouped.setdefault(entry.ticket_id, []).append(entry)
        return grouped

    async def list_penalties(self, user_id: str) -> list[QualityPenalty]:
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(self._SELECT_PENALTIES_SQL, user_id)
        return [self._row_to_penalty(row) for row in rows]

    async def _insert_audit(self, connection: Any, audit: TicketAuditEntry) -> None:
        await connection.execute(
            self._INSERT_AUDIT_SQL,
            audit.id,
            audit.ticket_id,
            audit.actor,
            None if audit.from_status is None else audit.from_status.value,
            audit.to_status.value,
            audit.note,
            json.dumps(dict(audit.metadata)),
            audit.created_at,
        )

    @staticmethod
    def _row_to_ticket(row: Mapping[str, Any]) -> Ticket:
        return Ticket(
            id=str(row["id"]),
            title=str(row["title"]),
            description=str(row["description"]),
            area=str(row["area"]),
            category=str(row["category"]),
            severity=Severity(str(row["severity"])),
            status=TicketStatus(str(row["status"])),
            is_inspection=bool(row["is_inspection"]),
            is_repeat_issue=bool(row["is_repeat_issue"]),
            previous_ticket_id=_optional_str(row["previous_ticket_id"]),
            assigned_to=_optional_str(row["assigned_to"]),
            created_by=str(row["created_by"]),
            recurring_template_id=_optional_str(row["recurring_template_id"]),
            due_at=_optional_datetime(row["due_at"]),
            closed_at=_optional_datetime(row["closed_at"]),
            created_at=ensure_datetime(row["created_at"]),
            updated_at=ensure_datetime(row["updated_at"]),
        )

    @staticmethod
    def _row_to_photo(row: Mapping[str, Any]) -> TicketPhoto:
        return TicketPhoto(
            id=str(row["id"]),
            ticket_id=str(row["ticket_id"]),
            uploaded_by=str(row["uploaded_by"]),
            url=str(row["url"]),
            storage_key=str(row["storage_key"]),
            photo_type=PhotoType(str(row["photo_type"])),
            created_at=ensure_datetime(row["created_at"]),
        )

    @staticmethod
    def _row_to_audit(row: Mapping[str, Any]) -> TicketAuditEntry:
        metadata = row["metadata"]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        from_status = row["from_status"]
        return TicketAuditEntry(
            id=str(row["id"]),
            ticket_id=str(row["ticket_id"]),
            actor=str(row["actor"]),
            from_status=TicketStatus(str(from_status)) if from_status else None,
            to_status=TicketStatus(str(row["to_status"])),
            note=_optional_str(row["note"]),
            metadata=dict(metadata or {}),
            created_at=ensure_datetime(row["created_at"]),
        )

    @staticmethod
    def _row_to_penalty(row: Mapping[str, Any]) -> QualityPenalty:
        return QualityPenalty(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            ticket_id=str(row["ticket_id"]),
            audit_id=str(row["audit_id"]),
            reason=str(row["reason"]),
            points=float(row["points"]),
            created_at=ensure_datetime(row["created_at"]),
        )


def ensure_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value
    return ensure_datetime(datetime.fromisoformat(str(value)))


def _optional_datetime(value: Any) -> datetime | None:
    return None if value is None else ensure_datetime(value)


def _optional_str(value: Any) -> str | None:
    return None if value is None else str(value)
