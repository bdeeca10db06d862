"""
Journal Data Models
===================

Plain records stored by JournalStore, one dataclass per table:

  Trade        — a logged position (instrument, direction, prices, P&L)
  Strategy     — a playbook entry with grouped checklist rules
  Goal / Habit / HabitLog — the vision board
  WeeklyReview — end-of-week reflection, optionally AI-summarised
  AISummary    — persisted output of an AI commentary request
  Tag, Account, User

All models are dataclasses with to_dict()/from_dict().
Timestamps are ISO-8601 strings; ids are UUID4 strings.
"""

from __future__ import annotations
import uuid
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List


def _new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string; returns None for empty or malformed input."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Enums ────────────────────────────────────────────────────

class TradeDirection(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class TradeSource(str, Enum):
    MANUAL = "MANUAL"
    IMPORT = "IMPORT"


class GoalCategory(str, Enum):
    TRADING = "TRADING"
    HEALTH = "HEALTH"
    PERSONAL = "PERSONAL"
    OTHER = "OTHER"


class GoalStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class TagType(str, Enum):
    EMOTION = "EMOTION"
    CONDITION = "CONDITION"
    OTHER = "OTHER"


class AISummaryType(str, Enum):
    WEEKLY = "WEEKLY"
    TRADE = "TRADE"


class ImportSource(str, Enum):
    MT4 = "MT4"
    MT5 = "MT5"
    CTRADER = "CTRADER"
    TRADINGVIEW = "TRADINGVIEW"
    GENERIC = "GENERIC"


class Period(str, Enum):
    ALL = "all"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


DEFAULT_RULE_GROUPS = ("Entry Criteria", "Exit Criteria", "Risk", "Notes")


def empty_rule_groups() -> Dict[str, List[str]]:
    return {name: [] for name in DEFAULT_RULE_GROUPS}


class _Record:
    """to_dict/from_dict shared by every record."""

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict):
        return cls(**{k: v for k, v in d.items() if k in cls.__dataclass_fields__})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Trade(_Record):
    """A single logged position. Closed iff closed_at is set."""
    # ── Identity ──
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    account_id: Optional[str] = None
    strategy_id: Optional[str] = None

    # ── Setup ──
    instrument: str = ""
    direction: str = TradeDirection.LONG.value
    entry_price: float = 0.0
    exit_price: Optional[float] = None
    stop_loss: Optional[float] = None
    take_profit: Optional[float] = None
    position_size: Optional[float] = None
    risk_amount: Optional[float] = None
    reward_amount: Optional[float] = None

    # ── Outcome ──
    profit_loss_currency: Optional[float] = None
    profit_loss_r: Optional[float] = None
    holding_minutes: Optional[int] = None

    # ── Timing ──
    opened_at: str = field(default_factory=utc_now)
    closed_at: Optional[str] = None

    # ── Context ──
    session: Optional[str] = None          # e.g. "London", "New York"
    market_condition: Optional[str] = None
    setup_type: Optional[str] = None
    confluence: Optional[str] = None
    execution_rating: Optional[int] = None  # 1-5
    follow_plan: Optional[bool] = None
    notes: Optional[str] = None
    custom_fields: Dict[str, Any] = field(default_factory=dict)

    source: str = TradeSource.MANUAL.value
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    @property
    def is_closed(self) -> bool:
        return bool(self.closed_at)

    @property
    def pnl(self) -> float:
        return self.profit_loss_currency or 0.0

    def compute_outcome(self):
        """Derive P&L, R multiple and holding time from the raw fields."""
        self.instrument = (self.instrument or "").upper().strip()
        self.profit_loss_r = None
        self.holding_minutes = None
        if self.exit_price and self.entry_price and self.position_size:
            if self.direction == TradeDirection.SHORT.value:
                price_diff = self.entry_price - self.exit_price
            else:
                price_diff = self.exit_price - self.entry_price
            self.profit_loss_currency = price_diff * self.position_size

        if self.risk_amount and self.risk_amount > 0 and self.profit_loss_currency:
            self.profit_loss_r = self.profit_loss_currency / self.risk_amount

        opened = parse_timestamp(self.opened_at)
        closed = parse_timestamp(self.closed_at)
        if opened and closed and closed >= opened:
            self.holding_minutes = int((closed - opened).total_seconds() // 60)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PLAYBOOK
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Strategy(_Record):
    """Playbook entry. checklist maps rule-group name -> rules."""
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    description: Optional[str] = None
    image_url: Optional[str] = None
    checklist: Dict[str, List[str]] = field(default_factory=empty_rule_groups)
    markets: List[str] = field(default_factory=list)
    timeframes: List[str] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    def rule_count(self) -> int:
        return sum(len(rules) for rules in (self.checklist or {}).values())


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# GOALS & HABITS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Goal(_Record):
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    title: str = ""
    description: Optional[str] = None
    category: str = GoalCategory.TRADING.value
    status: str = GoalStatus.NOT_STARTED.value
    target_metric: Optional[str] = None
    due_date: Optional[str] = None
    image_url: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""


@dataclass
class Habit(_Record):
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    description: Optional[str] = None
    date: str = ""                     # start date, YYYY-MM-DD
    schedule: Dict[str, Any] = field(default_factory=dict)
    image_url: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""


@dataclass
class HabitLog(_Record):
    id: str = field(default_factory=_new_id)
    habit_id: str = ""
    date: str = ""
    completed: bool = False
    created_at: str = field(default_factory=utc_now)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# REVIEWS & AI
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class WeeklyReview(_Record):
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    week_start_date: str = ""
    week_end_date: str = ""
    went_well: Optional[str] = None
    didnt_go_well: Optional[str] = None
    lessons: Optional[str] = None
    focus_next_week: Optional[str] = None
    ai_summary: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""


@dataclass
class AISummary(_Record):
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    type: str = AISummaryType.TRADE.value
    target_id: str = ""
    content: str = ""
    created_at: str = field(default_factory=utc_now)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# ACCOUNTS & USERS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

@dataclass
class Tag(_Record):
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    type: str = TagType.OTHER.value
    created_at: str = field(default_factory=utc_now)


@dataclass
class Account(_Record):
    id: str = field(default_factory=_new_id)
    user_id: str = ""
    name: str = ""
    broker_name: Optional[str] = None
    currency: str = "USD"
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""


@dataclass
class User(_Record):
    id: str = field(default_factory=_new_id)
    email: str = ""
    name: Optional[str] = None
    timezone: str = "UTC"
    base_currency: str = "USD"
    password_hash: str = ""
    created_at: str = field(default_factory=utc_now)
    updated_at: str = ""

    def public_dict(self) -> dict:
        d = self.to_dict()
        d.pop("password_hash", None)
        return d
