"""Score reporting built on the scoring engine."""

from .history import build_history
from .models import ScoreRecord
from .repository import ScoreRepository
from .service import ScoringService

__all__ = ["ScoreRecord", "ScoreRepository", "ScoringService", "build_history"]
