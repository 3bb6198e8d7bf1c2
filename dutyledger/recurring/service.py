from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Mapping, Protocol, Sequence

from opentelemetry import trace

from dutyledger.domain.types import AUTHORITY_ROLES, Role, Severity
from dutyledger.errors import TicketNotFoundError, TicketPermissionError
from dutyledger.tickets.service import TicketService

from .models import Frequency, RecurringTemplate, TemplateUpdate
from .schedule import is_template_due

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class TemplateStore(Protocol):
    async def create_template(self, template: RecurringTemplate) -> None: ...

    async def list_templates(self, *, active_only: bool = False) -> list[RecurringTemplate]: ...

    async def update_template(self, template_id: str, changes: Mapping[str, Any]) -> RecurringTemplate | None: ...

    async def set_active(self, template_id: str, is_active: bool) -> RecurringTemplate | None: ...

    async def last_generated_at(self, template_id: str) -> datetime | None: ...


class RecurringService:
    """Manage recurring templates and turn due ones into tickets."""

    def __init__(self, repository: TemplateStore, tickets: TicketService) -> None:
        self._repository = repository
        self._tickets = tickets

    async def create_template(
        self,
        *,
        name: str,
        description: str,
        frequency: Frequency,
        area: str,
        category: str,
        creator: str,
        creator_role: Role,
        severity: Severity = Severity.MINOR,
        assigned_roles: Sequence[Role] = (),
        assigned_to: str | None = None,
        now: datetime | None = None,
    ) -> RecurringTemplate:
        _require_authority(creator_role)

        template = RecurringTemplate(
            id=str(uuid.uuid4()),
            name=name,
            description=description,
            frequency=frequency,
            severity=severity,
            area=area,
            category=category,
            created_by=creator,
            creator_role=creator_role,
            created_at=now or datetime.now(timezone.utc),
            assigned_roles=tuple(assigned_roles),
            assigned_to=assigned_to,
        )
        await self._repository.create_template(template)
        return template

    async def list_templates(self, *, active_only: bool = False) -> list[RecurringTemplate]:
        return await self._repository.list_templates(active_only=active_only)

    async def update_template(
        self,
        template_id: str,
        update: TemplateUpdate,
        *,
        actor_role: Role,
    ) -> RecurringTemplate:
        _require_authority(actor_role)
        changes = update.changes()
        template = await self._repository.update_template(template_id, changes)
        if template is None:
            raise TicketNotFoundError(f"Recurring template {template_id} not found")
        logger.info("Updated recurring template %s: %s", template_id, ", ".join(sorted(changes)) or "no changes")
        return template

    async def set_active(self, template_id: str, is_active: bool) -> RecurringTemplate:
        template = await self._repository.set_active(template_id, is_active)
        if template is None:
            raise TicketNotFoundError(f"Recurring template {template_id} not found")
        return template

    async def generate_due_instances(self, now: datetime | None = None) -> int:
        """Create today's tickets for every due template and return how many were made."""

        now = now or datetime.now(timezone.utc)
        generated = 0
        with tracer.start_as_current_span("recurring.generate"):
            for template in await self._repository.list_templates(active_only=True):
                last = await self._repository.last_generated_at(template.id)
                if not is_template_due(template, now, last):
                    continue

                ticket = await self._tickets.create_ticket(
                    title=template.name,
                    description=template.description,
                    area=template.area,
                    category=template.category,
                    severity=template.severity,
                    creator=template.created_by,
                    creator_role=template.creator_role,
                    assigned_to=template.assigned_to,
                    recurring_template_id=template.id,
                    note=f"Auto-generated from recurring template: {template.name}",
                    scheduled_for=now,
                    now=now,
                )
                logger.debug("Template %s produced ticket %s", template.id, ticket.id)
                generated += 1

        logger.info("Generated %d recurring ticket instance(s)", generated)
        return generated


def _require_authority(role: Role) -> None:
    if role not in AUTHORITY_ROLES:
        raise TicketPermissionError(f"Role {getattr(role, 'value', role)} may not manage recurring templates")
