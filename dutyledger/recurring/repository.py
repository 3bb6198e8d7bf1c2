from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Mapping

import asyncpg

from dutyledger.domain.types import Role, Severity
from dutyledger.tickets.repository import ensure_datetime

from .models import Frequency, RecurringTemplate

_TEMPLATE_COLUMNS = """
    id, name, description, frequency, severity, area, category, created_by, creator_role,
    created_at, is_active, assigned_roles, assigned_to
"""


class RecurringRepository:
    """Persistence for recurring templates and the instances generated from them."""

    _CREATE_TEMPLATES_SQL = """
    CREATE TABLE IF NOT EXISTS recurring_templates (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        description TEXT NOT NULL,
        frequency TEXT NOT NULL,
        severity TEXT NOT NULL,
        area TEXT NOT NULL,
        category TEXT NOT NULL,
        created_by TEXT NOT NULL,
        creator_role TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        is_active BOOLEAN NOT NULL DEFAULT TRUE,
        assigned_roles TEXT[] NOT NULL DEFAULT ARRAY[]::TEXT[],
        assigned_to TEXT NULL
    )
    """

    _CREATE_INSTANCES_SQL = """
    CREATE TABLE IF NOT EXISTS recurring_instances (
        id TEXT PRIMARY KEY,
        template_id TEXT NOT NULL REFERENCES recurring_templates(id),
        ticket_id TEXT NOT NULL REFERENCES tickets(id),
        scheduled_for TIMESTAMPTZ NOT NULL,
        generated_at TIMESTAMPTZ NOT NULL
    )
    """

    _INSERT_TEMPLATE_SQL = f"""
    INSERT INTO recurring_templates ({_TEMPLATE_COLUMNS})
    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
    """

    _SELECT_TEMPLATES_SQL = f"""
    SELECT {_TEMPLATE_COLUMNS}
    FROM recurring_templates
    ORDER BY created_at DESC
    """

    _SELECT_ACTIVE_TEMPLATES_SQL = f"""
    SELECT {_TEMPLATE_COLUMNS}
    FROM recurring_templates
    WHERE is_active
    ORDER BY created_at DESC
    """

    _SELECT_TEMPLATE_SQL = f"""
    SELECT {_TEMPLATE_COLUMNS}
    FROM recurring_templates
    WHERE id = $1
    """

    _UPDATABLE_COLUMNS = frozenset(
        {
            "name",
            "description",
            "frequency",
            "severity",
            "area",
            "category",
            "assigned_roles",
            "assigned_to",
            "is_active",
        }
    )

    _SELECT_LAST_GENERATED_SQL = """
    SELECT max(generated_at) AS last_generated_at
    FROM recurring_instances
    WHERE template_id = $1
    """

    def __init__(self, pool: asyncpg.Pool) -> None:
        self._pool = pool

    async def ensure_schema(self) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(self._CREATE_TEMPLATES_SQL)
            await connection.execute(self._CREATE_INSTANCES_SQL)

    async def create_template(self, template: RecurringTemplate) -> None:
        async with self._pool.acquire() as connection:
            await connection.execute(
                self._INSERT_TEMPLATE_SQL,
                template.id,
                template.name,
                template.description,
                template.frequency.value,
                template.severity.value,
                template.area,
                template.category,
                template.created_by,
                template.creator_role.value,
                template.created_at,
                template.is_active,
                [role.value for role in template.assigned_roles],
                template.assigned_to,
            )

    async def list_templates(self, *, active_only: bool = False) -> list[RecurringTemplate]:
        query = self._SELECT_ACTIVE_TEMPLATES_SQL if active_only else self._SELECT_TEMPLATES_SQL
        async with self._pool.acquire() as connection:
            rows = await connection.fetch(query)
        return [self._row_to_template(row) for row in rows]

    async def update_template(self, template_id: str, changes: Mapping[str, Any]) -> RecurringTemplate | None:
        """Apply ``changes`` (column to value) and return the stored template.

        With no changes the current row is returned unchanged.
        """

        params: list[Any] = [template_id]
        assignments: list[str] = []
        for column, value in changes.items():
            if column not in self._UPDATABLE_COLUMNS:
                raise ValueError(f"Recurring template column {column!r} cannot be updated")
            params.append(_to_db_value(value))
            assignments.append(f"{column} = ${len(params)}")

        if assignments:
            query = (
                f"UPDATE recurring_templates SET {', '.join(assignments)} "
                f"WHERE id = $1 RETURNING {_TEMPLATE_COLUMNS}"
            )
        else:
            query = self._SELECT_TEMPLATE_SQL
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(query, *params)
        if row is None:
            return None
        return self._row_to_template(row)

    async def set_active(self, template_id: str, is_active: bool) -> RecurringTemplate | None:
        return await self.update_template(template_id, {"is_active": is_active})

    async def last_generated_at(self, template_id: str) -> datetime | None:
        async with self._pool.acquire() as connection:
            row = await connection.fetchrow(self._SELECT_LAST_GENERATED_SQL, template_id)
        if row is None or row["last_generated_at"] is None:
            return None
        return ensure_datetime(row["last_generated_at"])

    @staticmethod
    def _row_to_template(row: Mapping[str, Any]) -> RecurringTemplate:
        assigned_to = row["assigned_to"]
        return RecurringTemplate(
            id=str(row["id"]),
            name=str(row["name"]),
            description=str(row["description"]),
            frequency=Frequency(str(row["frequency"])),
            severity=Severity(str(row["severity"])),
            area=str(row["area"]),
            category=str(row["category"]),
            created_by=str(row["created_by"]),
            creator_role=Role(str(row["creator_role"])),
            created_at=ensure_datetime(row["created_at"]),
            is_active=bool(row["is_active"]),
            assigned_roles=tuple(Role(str(role)) for role in row["assigned_roles"] or ()),
            assigned_to=None if assigned_to is None else str(assigned_to),
        )


def _to_db_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (list, tuple)):
        return [_to_db_value(item) for item in value]
    return value
