from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Protocol, Sequence

from opentelemetry import trace

from dutyledger.domain.repeat import REPEAT_WINDOW, detect_repeat_issue
from dutyledger.domain.scoring import quality_penalty
from dutyledger.domain.state import TicketStateMachine
from dutyledger.domain.types import (
    AUTHORITY_ROLES,
    NewTicketInfo,
    Role,
    Severity,
    TicketEvent,
    TicketStatus,
)
from dutyledger.errors import (
    MissingEvidenceError,
    TicketConcurrencyError,
    TicketNotFoundError,
    TicketPermissionError,
)

from .evidence import assert_evidence
from .models import PhotoType, QualityPenalty, Ticket, TicketAuditEntry, TicketPhoto

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TicketStore(Protocol):
    async def create_ticket(
        self,
        ticket: Ticket,
        audit: TicketAuditEntry,
        *,
        scheduled_for: datetime | None = None,
    ) -> None: ...

    async def get_ticket(self, ticket_id: str) -> Ticket | None: ...

    async def list_tickets(
        self,
        *,
        status: TicketStatus | None = None,
        assigned_to: str | None = None,
        area: str | None = None,
    ) -> list[Ticket]: ...

    async def list_recently_closed(self, *, area: str, category: str, since: datetime) -> list[Ticket]: ...

    async def apply_transition(
        self,
        *,
        ticket_id: str,
        expected_status: TicketStatus,
        audit: TicketAuditEntry,
        closed_at: datetime | None = None,
        penalty: QualityPenalty | None = None,
    ) -> Ticket | None: ...

    async def add_photo(self, photo: TicketPhoto) -> None: ...

    async def list_photos(self, ticket_id: str) -> list[TicketPhoto]: ...

    async def get_audit_log(self, ticket_id: str) -> list[TicketAuditEntry]: ...


class TicketService:
    """Ticket lifecycle orchestration around the rule engines.

    The service fetches state, asks the engines for a decision and applies the
    result: status writes, audit entries and rejection penalties.
    """

    def __init__(
        self,
        repository: TicketStore,
        *,
        state_machine: type[TicketStateMachine] = TicketStateMachine,
        repeat_lookback: timedelta = REPEAT_WINDOW,
    ) -> None:
        self._repository = repository
        self._state_machine = state_machine
        self._repeat_lookback = repeat_lookback

    async def create_ticket(
        self,
        *,
        title: str,
        description: str,
        area: str,
        category: str,
        severity: Severity,
        creator: str,
        creator_role: Role,
        is_inspection: bool = False,
        assigned_to: str | None = None,
        due_at: datetime | None = None,
        recurring_template_id: str | None = None,
        note: str = "Ticket created",
        scheduled_for: datetime | None = None,
        now: datetime | None = None,
    ) -> Ticket:
        if severity == Severity.IMMEDIATE_INTERRUPT and creator_role not in AUTHORITY_ROLES:
            raise TicketPermissionError(
                f"Only mother or father may create {Severity.IMMEDIATE_INTERRUPT.value} tickets"
            )

        now = now or datetime.now(timezone.utc)
        with tracer.start_as_current_span("tickets.create"):
            candidates = await self._repository.list_recently_closed(
                area=area,
                category=category,
                since=now - self._repeat_lookback,
            )
            repeat = detect_repeat_issue(
                NewTicketInfo(area=area, category=category, created_at=now),
                [candidate.closed_summary() for candidate in candidates if candidate.closed_at is not None],
            )

            ticket = Ticket(
                id=str(uuid.uuid4()),
                title=title,
                description=description,
                area=area,
                category=category,
                severity=severity,
                status=self._state_machine.initial_state(),
                is_inspection=is_inspection,
                is_repeat_issue=repeat.is_repeat,
                previous_ticket_id=repeat.previous_ticket_id,
                assigned_to=assigned_to,
                created_by=creator,
                recurring_template_id=recurring_template_id,
                due_at=due_at,
                closed_at=None,
                created_at=now,
                updated_at=now,
            )
            audit = TicketAuditEntry(
                id=str(uuid.uuid4()),
                ticket_id=ticket.id,
                actor=creator,
                from_status=None,
                to_status=ticket.status,
                note=note,
                created_at=now,
            )
            await self._repository.create_ticket(ticket, audit, scheduled_for=scheduled_for)

        logger.info(
            "Created ticket %s in %s/%s (repeat=%s, previous=%s)",
            ticket.id,
            area,
            category,
            ticket.is_repeat_issue,
            ticket.previous_ticket_id,
        )
        return ticket

    async def get_ticket(self, ticket_id: str) -> Ticket:
        ticket = await self._repository.get_ticket(ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def get_visible_ticket(self, ticket_id: str, *, requestor: str, requestor_role: Role) -> Ticket:
        """Like :meth:`get_ticket`, hiding other people's tickets from employees."""

        ticket = await self.get_ticket(ticket_id)
        if requestor_role not in AUTHORITY_ROLES and ticket.assigned_to != requestor:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self,
        *,
        requestor: str,
        requestor_role: Role,
        status: TicketStatus | None = None,
        assigned_to: str | None = None,
        area: str | None = None,
    ) -> list[Ticket]:
        if requestor_role not in AUTHORITY_ROLES:
            assigned_to = requestor
        return await self._repository.list_tickets(status=status, assigned_to=assigned_to, area=area)

    async def attach_photo(
        self,
        ticket_id: str,
        *,
        uploaded_by: str,
        url: str,
        storage_key: str,
        photo_type: PhotoType,
        now: datetime | None = None,
    ) -> TicketPhoto:
        await self.get_ticket(ticket_id)
        photo = TicketPhoto(
            id=str(uuid.uuid4()),
            ticket_id=ticket_id,
            uploaded_by=uploaded_by,
            url=url,
            storage_key=storage_key,
            photo_type=photo_type,
            created_at=now or datetime.now(timezone.utc),
        )
        await self._repository.add_photo(photo)
        return photo

    async def change_status(
        self,
        ticket_id: str,
        *,
        new_status: TicketStatus,
        actor: str,
        actor_role: Role,
        note: str | None = None,
        failed_inspection: bool = False,
        now: datetime | None = None,
    ) -> Ticket:
        with tracer.start_as_current_span("tickets.change_status") as span:
            ticket = await self.get_ticket(ticket_id)
            current = ticket.status
            span.set_attribute("ticket.id", ticket_id)
            span.set_attribute("ticket.transition", f"{current.value}->{new_status.value}")

            result = self._state_machine.validate(current, new_status, actor_role, ticket.snapshot())

            if new_status == TicketStatus.NEEDS_REVIEW:
                photos = await self._repository.list_photos(ticket_id)
                try:
                    assert_evidence(ticket, new_status, photos)
                except MissingEvidenceError:
                    logger.info("Refused submission of ticket %s without required photos", ticket_id)
                    raise

            now = now or datetime.now(timezone.utc)
            metadata: dict[str, str] = {}
            if result.is_rejection:
                metadata["rejection"] = "true"
            if failed_inspection and ticket.is_inspection and new_status == TicketStatus.CLOSED:
                metadata["failed_inspection"] = "true"

            audit = TicketAuditEntry(
                id=str(uuid.uuid4()),
                ticket_id=ticket_id,
                actor=actor,
                from_status=current,
                to_status=new_status,
                note=note or ("rejected" if result.is_rejection else None),
                created_at=now,
                metadata=metadata,
            )
            penalty = self._rejection_penalty(ticket, audit) if result.is_rejection else None

            updated = await self._repository.apply_transition(
                ticket_id=ticket_id,
                expected_status=current,
                audit=audit,
                closed_at=now if new_status == TicketStatus.CLOSED else None,
                penalty=penalty,
            )
            if updated is None:
                raise TicketConcurrencyError(
                    f"Ticket {ticket_id} changed status while {current.value} -> {new_status.value} was being applied"
                )

        logger.info("Ticket %s moved %s -> %s by %s", ticket_id, current.value, new_status.value, actor)
        if penalty is not None:
            logger.info(
                "Recorded %.1f point quality penalty for %s on ticket %s",
                penalty.points,
                penalty.user_id,
                ticket_id,
            )
        return updated

    async def get_audit_log(self, ticket_id: str) -> Sequence[TicketAuditEntry]:
        return await self._repository.get_audit_log(ticket_id)

    @staticmethod
    def _rejection_penalty(ticket: Ticket, audit: TicketAuditEntry) -> QualityPenalty | None:
        if ticket.assigned_to is None:
            return None
        return QualityPenalty(
            id=str(uuid.uuid4()),
            user_id=ticket.assigned_to,
            ticket_id=ticket.id,
            audit_id=audit.id,
            reason=TicketEvent.REJECTION.value,
            points=quality_penalty(TicketEvent.REJECTION, ticket.severity),
            created_at=audit.created_at,
        )
