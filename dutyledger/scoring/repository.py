from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlmodel import SQLModel, select

from dutyledger.tickets.repository import ensure_datetime

from .models import ScoreRecord
from .tables import ScoreRecordTable

logger = logging.getLogger(__name__)


class ScoreRepository:
    """Historical score records, one per user and period."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._engine: AsyncEngine | None = engine

    async def ensure_schema(self) -> None:
        if self._engine is None:
            raise RuntimeError("Session factory is not bound to an async engine")
        async with self._engine.begin() as connection:
            await connection.run_sync(SQLModel.metadata.create_all)

    async def save(self, record: ScoreRecord) -> ScoreRecord:
        """Store ``record``, replacing any earlier computation for the same user and period."""

        try:
            return await self._write(record)
        except IntegrityError:
            # Another writer inserted this period between our select and insert.
            logger.info("Score for %s %s already stored, updating it", record.user_id, record.period_start)
            return await self._write(record)

    async def _write(self, record: ScoreRecord) -> ScoreRecord:
        async with self._session_factory() as session:
            row = await self._find_period(session, record)
            if row is None:
                row = ScoreRecordTable(
                    id=record.id,
                    user_id=record.user_id,
                    period_start=record.period_start,
                    period_end=record.period_end,
                )
                session.add(row)

            row.quality = record.quality
            row.consistency = record.consistency
            row.speed = record.speed
            row.volume = record.volume
            row.total = record.total
            row.computed_at = record.computed_at

            await session.commit()
            await session.refresh(row)
            return self._table_to_record(row)

    async def _find_period(self, session: AsyncSession, record: ScoreRecord) -> ScoreRecordTable | None:
        result = await session.execute(
            select(ScoreRecordTable).where(
                ScoreRecordTable.user_id == record.user_id,
                ScoreRecordTable.period_start == record.period_start,
                ScoreRecordTable.period_end == record.period_end,
            )
        )
        return result.scalars().first()

    async def get_latest(self, user_id: str) -> ScoreRecord | None:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScoreRecordTable)
                .where(ScoreRecordTable.user_id == user_id)
                .order_by(ScoreRecordTable.computed_at.desc())
                .limit(1)
            )
            row = result.scalars().first()
        if row is None:
            return None
        return self._table_to_record(row)

    async def list_history(self, user_id: str) -> list[ScoreRecord]:
        async with self._session_factory() as session:
            result = await session.execute(
                select(ScoreRecordTable)
                .where(ScoreRecordTable.user_id == user_id)
                .order_by(ScoreRecordTable.period_start.desc())
            )
            rows = result.scalars().all()
        return [self._table_to_record(row) for row in rows]

    @staticmethod
    def _table_to_record(row: ScoreRecordTable) -> ScoreRecord:
        return ScoreRecord(
            id=row.id,
            user_id=row.user_id,
            period_start=ensure_datetime(row.period_start),
            period_end=ensure_datetime(row.period_end),
            quality=float(row.quality),
            consistency=float(row.consistency),
            speed=float(row.speed),
            volume=float(row.volume),
            total=float(row.total),
            computed_at=ensure_datetime(row.computed_at),
        )
