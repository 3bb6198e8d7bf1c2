"""Weekly activity reports for the household authorities."""

from .models import HotSpot, WeeklyReport
from .service import ReportService, rank_hot_spots, week_window

__all__ = ["HotSpot", "ReportService", "WeeklyReport", "rank_hot_spots", "week_window"]
