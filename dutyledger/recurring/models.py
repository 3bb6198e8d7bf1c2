from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from dutyledger.domain.types import Role, Severity


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


@dataclass(slots=True)
class RecurringTemplate:
    """Blueprint for tickets generated on a cadence."""

    id: str
    name: str
    description: str
    frequency: Frequency
    severity: Severity
    area: str
    category: str
    created_by: str
    creator_role: Role
    created_at: datetime
    is_active: bool = True
    assigned_roles: tuple[Role, ...] = field(default_factory=tuple)
    assigned_to: str | None = None



class TemplateUpdate(BaseModel):
    """Partial change to a template. Only fields that were set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, min_length=1)
    frequency: Frequency | None = None
    severity: Severity | None = None
    area: str | None = Field(default=None, min_length=1)
    category: str | None = Field(default=None, min_length=1)
    assigned_roles: list[Role] | None = None
    assigned_to: str | None = None
    is_active: bool | None = None

    def changes(self) -> dict[str, Any]:
        """Set fields, keeping an explicit ``assigned_to=None`` to clear the assignee."""

        return {
            key: value
            for key, value in self.model_dump(exclude_unset=True).items()
            if value is not None or key == "assigned_to"
        }
