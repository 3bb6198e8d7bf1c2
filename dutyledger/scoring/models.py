from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from dutyledger.domain.types import Period, ScoreBreakdown


@dataclass(slots=True)
class ScoreRecord:
    """Persisted score for one user over one period."""

    id: str
    user_id: str
    period_start: datetime
    period_end: datetime
    quality: float
    consistency: float
    speed: float
    volume: float
    total: float
    computed_at: datetime

    @property
    def period(self) -> Period:
        return Period(start=self.period_start, end=self.period_end)

    @property
    def breakdown(self) -> ScoreBreakdown:
        return ScoreBreakdown(
            quality=self.quality,
            consistency=self.consistency,
            speed=self.speed,
            volume=self.volume,
            total=self.total,
        )
