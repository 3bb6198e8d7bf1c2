from __future__ import annotations

from datetime import datetime

from .models import Frequency, RecurringTemplate

MONDAY = 0


def is_template_due(template: RecurringTemplate, now: datetime, last_generated_at: datetime | None) -> bool:
    """Decide whether ``template`` should produce a ticket on ``now``'s calendar day.

    A template produces at most one instance per day. Weekly templates fire on
    Mondays and monthly ones on the first of the month; custom templates leave
    the cadence to whoever triggers generation.
    """

    if not template.is_active:
        return False
    if last_generated_at is not None and last_generated_at.astimezone(now.tzinfo).date() == now.date():
        return False

    if template.frequency in (Frequency.DAILY, Frequency.CUSTOM):
        return True
    if template.frequency == Frequency.WEEKLY:
        return now.weekday() == MONDAY
    if template.frequency == Frequency.MONTHLY:
        return now.day == 1
    return False
