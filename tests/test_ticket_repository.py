from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from dutyledger.domain.types import Severity, TicketStatus
from dutyledger.tickets.models import QualityPenalty, Ticket, TicketAuditEntry
from dutyledger.tickets.repository import TicketRepository, ensure_datetime

NOW = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


def _ticket_row(**overrides):
    row = {
        "id": "ticket-1",
        "title": "Wipe counters",
        "description": "Kitchen counters",
        "area": "kitchen",
        "category": "cleaning",
        "severity": "minor",
        "status": "open",
        "is_inspection": False,
        "is_repeat_issue": False,
        "previous_ticket_id": None,
        "assigned_to": "worker",
        "created_by": "mother",
        "recurring_template_id": None,
        "due_at": None,
        "closed_at": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    row.update(overrides)
    return row


def _audit_row(**overrides):
    row = {
        "id": "audit-1",
        "ticket_id": "ticket-1",
        "actor": "mother",
        "from_status": None,
        "to_status": "open",
        "note": "Ticket created",
        "metadata": {},
        "created_at": NOW,
    }
    row.update(overrides)
    return row


def _audit(**overrides) -> TicketAuditEntry:
    values = {
        "id": "audit-2",
        "ticket_id": "ticket-1",
        "actor": "worker",
        "from_status": TicketStatus.OPEN,
        "to_status": TicketStatus.IN_PROGRESS,
        "note": None,
        "created_at": NOW,
    }
    values.update(overrides)
    return TicketAuditEntry(**values)


@pytest.mark.asyncio
async def test_ensure_schema_creates_tables(pool, connection):
    repository = TicketRepository(pool)

    await repository.ensure_schema()

    assert connection.execute.await_count == 4
    executed = [call.args[0] for call in connection.execute.await_args_list]
    assert any("CREATE TABLE IF NOT EXISTS tickets" in stmt for stmt in executed)
    assert any("ticket_photos" in stmt for stmt in executed)
    assert any("ticket_audit_logs" in stmt for stmt in executed)
    assert any("quality_penalties" in stmt for stmt in executed)


@pytest.mark.asyncio
async def test_create_ticket_writes_ticket_and_audit_in_transaction(pool, connection):
    repository = TicketRepository(pool)
    ticket = TicketRepository._row_to_ticket(_ticket_row())
    audit = _audit(id="audit-1", from_status=None, to_status=TicketStatus.OPEN, metadata={"source": "manual"})

    await repository.create_ticket(ticket, audit)

    connection.transaction.assert_called_once()
    assert connection.execute.await_count == 2
    ticket_call, audit_call = connection.execute.await_args_list
    assert "INSERT INTO tickets" in ticket_call.args[0]
    assert ticket_call.args[6] == "minor"
    assert "INSERT INTO ticket_audit_logs" in audit_call.args[0]
    assert audit_call.args[4] is None
    assert json.loads(audit_call.args[7]) == {"source": "manual"}


@pytest.mark.asyncio
async def test_create_recurring_ticket_records_instance_in_same_transaction(pool, connection):
    repository = TicketRepository(pool)
    ticket = TicketRepository._row_to_ticket(_ticket_row(recurring_template_id="tpl-1"))
    audit = _audit(id="audit-1", from_status=None, to_status=TicketStatus.OPEN)

    await repository.create_ticket(ticket, audit, scheduled_for=NOW)

    connection.transaction.assert_called_once()
    statements = connection.execute.await_args_list
    assert len(statements) == 3
    instance_call = statements[2]
    assert "INSERT INTO recurring_instances" in instance_call.args[0]
    assert instance_call.args[2:] == ("tpl-1", "ticket-1", NOW, NOW)


@pytest.mark.asyncio
async def test_get_ticket_maps_row(pool, connection):
    connection.fetchrow = AsyncMock(
        return_value=_ticket_row(
            status="closed",
            severity="needs_fix_today",
            closed_at=datetime(2024, 1, 14, 9, 0),
            recurring_template_id="tpl-1",
        )
    )
    repository = TicketRepository(pool)

    ticket = await repository.get_ticket("ticket-1")

    assert isinstance(ticket, Ticket)
    assert ticket.status == TicketStatus.CLOSED
    assert ticket.severity == Severity.NEEDS_FIX_TODAY
    assert ticket.closed_at == datetime(2024, 1, 14, 9, 0, tzinfo=timezone.utc)
    assert ticket.is_recurring


@pytest.mark.asyncio
async def test_get_ticket_returns_none_when_missing(pool, connection):
    connection.fetchrow = AsyncMock(return_value=None)
    repository = TicketRepository(pool)

    assert await repository.get_ticket("missing") is None


@pytest.mark.asyncio
async def test_list_tickets_builds_filters(pool, connection):
    connection.fetch = AsyncMock(return_value=[_ticket_row()])
    repository = TicketRepository(pool)

    tickets = await repository.list_tickets(status=TicketStatus.OPEN, area="kitchen")

    assert [ticket.id for ticket in tickets] == ["ticket-1"]
    query, *params = connection.fetch.await_args.args
    assert "WHERE status = $1 AND area = $2" in query
    assert params == ["open", "kitchen"]
    order_by = query.split("ORDER BY", 1)[1]
    assert order_by.index("immediate_interrupt") < order_by.index("needs_fix_today")
    assert order_by.rstrip().endswith("DESC, created_at DESC")

    await repository.list_tickets()
    query, *params = connection.fetch.await_args.args
    assert "WHERE" not in query
    assert params == []


@pytest.mark.asyncio
async def test_apply_transition_writes_audit_and_penalty(pool, connection):
    connection.fetchrow = AsyncMock(return_value=_ticket_row(status="in_progress"))
    repository = TicketRepository(pool)
    audit = _audit(
        from_status=TicketStatus.NEEDS_REVIEW,
        to_status=TicketStatus.IN_PROGRESS,
        metadata={"rejection": "true"},
    )
    penalty = QualityPenalty(
        id="penalty-1",
        user_id="worker",
        ticket_id="ticket-1",
        audit_id=audit.id,
        reason="rejection",
        points=15,
        created_at=NOW,
    )

    updated = await repository.apply_transition(
        ticket_id="ticket-1",
        expected_status=TicketStatus.NEEDS_REVIEW,
        audit=audit,
        penalty=penalty,
    )

    assert updated is not None
    assert updated.status == TicketStatus.IN_PROGRESS
    assert connection.fetchrow.await_args.args[1:] == ("ticket-1", "needs_review", "in_progress", None, NOW)
    statements = [call.args[0] for call in connection.execute.await_args_list]
    assert len(statements) == 2
    assert "ticket_audit_logs" in statements[0]
    assert "quality_penalties" in statements[1]


@pytest.mark.asyncio
async def test_apply_transition_skips_writes_when_status_changed(pool, connection):
    connection.fetchrow = AsyncMock(return_value=None)
    repository = TicketRepository(pool)

    result = await repository.apply_transition(
        ticket_id="ticket-1",
        expected_status=TicketStatus.OPEN,
        audit=_audit(),
    )

    assert result is None
    connection.execute.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_audit_logs_groups_by_ticket(pool, connection):
    connection.fetch = AsyncMock(
        return_value=[
            _audit_row(),
            _audit_row(
                id="audit-2",
                from_status="needs_review",
                to_status="in_progress",
                note=None,
                metadata=json.dumps({"rejection": "true"}),
                created_at=NOW + timedelta(hours=1),
            ),
        ]
    )
    repository = TicketRepository(pool)

    grouped = await repository.get_audit_logs(["ticket-1", "ticket-2"])

    assert grouped["ticket-2"] == []
    first, second = grouped["ticket-1"]
    assert first.from_status is None
    assert second.from_status == TicketStatus.NEEDS_REVIEW
    assert second.metadata == {"rejection": "true"}
    assert second.is_rejection
    assert connection.fetch.await_args.args[1] == ["ticket-1", "ticket-2"]


@pytest.mark.asyncio
async def test_get_audit_logs_without_ids_skips_query(pool, connection):
    repository = TicketRepository(pool)

    assert await repository.get_audit_logs([]) == {}
    connection.fetch.assert_not_awaited()


@pytest.mark.asyncio
async def test_count_closed_by_assignee(pool, connection):
    connection.fetch = AsyncMock(
        return_value=[{"assigned_to": "worker", "completed": 4}, {"assigned_to": "helper", "completed": 2}]
    )
    repository = TicketRepository(pool)

    counts = await repository.count_closed_by_assignee(NOW - timedelta(days=7), NOW)

    assert counts == {"worker": 4, "helper": 2}


def test_ensure_datetime_parses_strings_as_utc():
    assert ensure_datetime("2024-01-15T12:00:00") == NOW
    assert ensure_datetime("2024-01-15T14:00:00+02:00") == NOW


@pytest.mark.asyncio
async def test_list_penalties_maps_rows(pool, connection):
    connection.fetch = AsyncMock(
        return_value=[
            {
                "id": "penalty-1",
                "user_id": "worker",
                "ticket_id": "ticket-1",
                "audit_id": "audit-2",
                "reason": "rejection",
                "points": 30,
                "created_at": NOW,
            }
        ]
    )
    repository = TicketRepository(pool)

    penalties = await repository.list_penalties("worker")

    assert penalties[0].points == 30.0
    assert penalties[0].audit_id == "audit-2"
    assert connection.fetch.await_args.args[1] == "worker"


@pytest.mark.asyncio
async def test_report_queries_map_rows(pool, connection):
    start, end = NOW - timedelta(days=7), NOW
    repository = TicketRepository(pool)

    connection.fetch = AsyncMock(return_value=[{"status": "closed", "total": 4}, {"status": "skipped", "total": 1}])
    counts = await repository.count_by_status(start, end)
    assert counts[TicketStatus.CLOSED] == 4
    assert counts[TicketStatus.OPEN] == 0
    assert set(counts) == set(TicketStatus)

    connection.fetch = AsyncMock(return_value=[{"area": "kitchen", "category": "cleaning", "total": 5, "skipped": 2}])
    assert await repository.area_activity(start, end) == {("kitchen", "cleaning"): (5, 2)}
    assert "FILTER (WHERE status = 'skipped')" in connection.fetch.await_args.args[0]

    connection.fetch = AsyncMock(return_value=[{"area": "kitchen", "category": "cleaning", "rejected": 3}])
    assert await repository.rejections_by_area(start, end) == {("kitchen", "cleaning"): 3}
    assert connection.fetch.await_args.args[1:] == (start, end)

    connection.fetch = AsyncMock(return_value=[_ticket_row(is_repeat_issue=True, previous_ticket_id="ticket-0")])
    repeats = await repository.list_repeat_issues(start, end)
    assert repeats[0].previous_ticket_id == "ticket-0"

    connection.fetchrow = AsyncMock(return_value={"total": 2})
    assert await repository.count_rejections(start, end) == 2
    assert "from_status = 'needs_review'" in connection.fetchrow.await_args.args[0]
    assert await repository.count_overdue(NOW) == 2
    query, *params = connection.fetchrow.await_args.args
    assert "status NOT IN ('closed', 'skipped')" in query
    assert params == [NOW]
