"""Recurring ticket templates and instance generation."""

from .models import Frequency, RecurringTemplate, TemplateUpdate
from .repository import RecurringRepository
from .schedule import is_template_due
from .service import RecurringService

__all__ = [
    "Frequency",
    "RecurringRepository",
    "RecurringService",
    "RecurringTemplate",
    "TemplateUpdate",
    "is_template_due",
]
