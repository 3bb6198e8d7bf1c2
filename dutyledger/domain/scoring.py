"""Severity-weighted performance scoring.

A period's ticket history is reduced to four independent dimensions:

* quality: starts at 100 and only loses points, for rejections and failed
  inspections scaled by severity;
* consistency: starts at 100 and loses a share of 50 points per skipped
  recurring ticket, or gains a flat streak bonus when nothing was skipped;
* speed: mean per-ticket timeliness against a severity deadline;
* volume: completions relative to the busiest person in the same period.

The weighted total has no floor or ceiling. Arithmetic stays real-valued;
rounding belongs to whoever presents the numbers.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Iterable, Sequence

from .types import Period, ScoreBreakdown, Severity, TicketEvent, TicketHistoryRecord

BASE_SCORE = 100.0

REJECTION_PENALTY = 15.0
FAILED_INSPECTION_PENALTY = 10.0

SKIP_PENALTY_POOL = 50.0
STREAK_BONUS = 10.0

SPEED_PENALTY_PER_HOUR = 5.0
SPEED_FLOOR = -100.0

DEADLINES: dict[Severity, timedelta] = {
    Severity.IMMEDIATE_INTERRUPT: timedelta(hours=2),
    Severity.NEEDS_FIX_TODAY: timedelta(hours=8),
    Severity.MINOR: timedelta(hours=48),
}

WEIGHTS: dict[str, float] = {
    "quality": 0.40,
    "consistency": 0.30,
    "speed": 0.20,
    "volume": 0.10,
}

_EVENT_PENALTIES: dict[TicketEvent, float] = {
    TicketEvent.REJECTION: REJECTION_PENALTY,
    TicketEvent.FAILED_INSPECTION: FAILED_INSPECTION_PENALTY,
}

_SECONDS_PER_HOUR = 3600.0


def quality_penalty(event: TicketEvent, severity: Severity) -> float:
    """Points deducted from quality for a single event."""

    return _EVENT_PENALTIES.get(event, 0.0) * severity.multiplier


def quality_score(tickets: Iterable[TicketHistoryRecord]) -> float:
    score = BASE_SCORE
    for ticket in tickets:
        for event in ticket.events:
            score -= quality_penalty(event, ticket.severity)
    return score


def consistency_score(tickets: Iterable[TicketHistoryRecord]) -> float:
    recurring = [ticket for ticket in tickets if ticket.is_recurring]
    if not recurring:
        return BASE_SCORE

    skipped = sum(1 for ticket in recurring if ticket.was_skipped)
    if skipped == 0:
        return BASE_SCORE + STREAK_BONUS
    return BASE_SCORE - skipped * (SKIP_PENALTY_POOL / len(recurring))


def ticket_speed(ticket: TicketHistoryRecord) -> float:
    """Timeliness of one ticket; unsubmitted work is not yet assessable."""

    if ticket.submitted_at is None:
        return BASE_SCORE

    elapsed = ticket.submitted_at - ticket.opened_at
    overrun = elapsed - DEADLINES[ticket.severity]
    if overrun <= timedelta(0):
        return BASE_SCORE

    hours_over = overrun.total_seconds() / _SECONDS_PER_HOUR
    return max(SPEED_FLOOR, BASE_SCORE - SPEED_PENALTY_PER_HOUR * hours_over)


def speed_score(tickets: Iterable[TicketHistoryRecord]) -> float:
    scores = [ticket_speed(ticket) for ticket in tickets if ticket.submitted_at is not None]
    if not scores:
        return BASE_SCORE
    return sum(scores) / len(scores)


def volume_score(completed_count: int, max_completed_by_any_user: int) -> float:
    if max_completed_by_any_user <= 0:
        return 0.0
    return completed_count / max_completed_by_any_user * 100.0


def weighted_total(quality: float, consistency: float, speed: float, volume: float) -> float:
    return (
        quality * WEIGHTS["quality"]
        + consistency * WEIGHTS["consistency"]
        + speed * WEIGHTS["speed"]
        + volume * WEIGHTS["volume"]
    )


def compute_score(
    tickets: Sequence[TicketHistoryRecord],
    period: Period,
    completed_count: int,
    max_completed_by_any_user: int,
) -> ScoreBreakdown:
    """Score one person's period of work.

    ``period`` is accepted for symmetry with the reporting layer; the caller has
    already selected the tickets that fall inside it.
    """

    quality = quality_score(tickets)
    consistency = consistency_score(tickets)
    speed = speed_score(tickets)
    volume = volume_score(completed_count, max_completed_by_any_user)
    return ScoreBreakdown(
        quality=quality,
        consistency=consistency,
        speed=speed,
        volume=volume,
        total=weighted_total(quality, consistency, speed, volume),
    )
