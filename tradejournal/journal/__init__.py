"""
Trade Journal Core
==================

  models.py    — dataclass records + enums
  store.py     — SQLite storage, every query scoped by user_id
  metrics.py   — pure aggregations (win rate, profit factor, equity curve, levels)
  analytics.py — per-user analytics views over the store
  importer.py  — CSV import / export
"""

from tradejournal.journal.models import (
    Trade,
    Strategy,
    Goal,
    Habit,
    HabitLog,
    WeeklyReview,
    AISummary,
    Tag,
    Account,
    User,
)

from tradejournal.journal.store import JournalStore
from tradejournal.journal.analytics import JournalAnalytics

__all__ = [
    # Models
    "Trade", "Strategy", "Goal", "Habit", "HabitLog", "WeeklyReview",
    "AISummary", "Tag", "Account", "User",
    # Engines
    "JournalStore", "JournalAnalytics",
]
