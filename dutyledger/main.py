from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from dutyledger.core.config import Settings, get_settings
from dutyledger.core.logging import configure_logging, init_tracer, shutdown_tracer
from dutyledger.recurring.repository import RecurringRepository
from dutyledger.recurring.service import RecurringService
from dutyledger.reports.service import ReportService
from dutyledger.scoring.repository import ScoreRepository
from dutyledger.scoring.service import ScoringService
from dutyledger.services.postgres import PostgresConnectionTester
from dutyledger.tickets.repository import TicketRepository
from dutyledger.tickets.service import TicketService


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


@dataclass(slots=True)
class ServiceContainer:
    """Wired services handed to whatever drives the application."""

    settings: Settings
    tickets: TicketService
    scoring: ScoringService
    recurring: RecurringService
    reports: ReportService


@asynccontextmanager
async def lifespan(settings: Settings | None = None) -> AsyncIterator[ServiceContainer]:
    settings = settings or get_settings()
    logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    postgres = PostgresConnectionTester(
        dsn=settings.postgres_dsn,
        min_size=settings.postgres_pool_min_size,
        max_size=settings.postgres_pool_max_size,
    )
    db_engine: AsyncEngine | None = None
    try:
        pool = await postgres.get_pool()
        ticket_repository = TicketRepository(pool)
        await ticket_repository.ensure_schema()

        db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
        session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
        score_repository = ScoreRepository(session_factory, engine=db_engine)
        await score_repository.ensure_schema()

        recurring_repository = RecurringRepository(pool)
        await recurring_repository.ensure_schema()

        tickets = TicketService(
            ticket_repository,
            repeat_lookback=timedelta(days=settings.repeat_lookback_days),
        )
        container = ServiceContainer(
            settings=settings,
            tickets=tickets,
            scoring=ScoringService(
                tickets=ticket_repository,
                scores=score_repository,
                period_length=timedelta(days=settings.score_period_days),
            ),
            recurring=RecurringService(recurring_repository, tickets),
            reports=ReportService(ticket_repository),
        )
        logger.info("%s started (%s)", settings.app_name, settings.environment)
        yield container
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        await postgres.close()
        shutdown_tracer(tracer_provider)
