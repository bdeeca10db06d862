"""
Journal Metrics — pure aggregations over trade lists
====================================================

Nothing here touches storage. Every function takes a list of Trade records
(a missing profit_loss_currency counts as 0) and returns plain dicts/floats
ready for the API layer.

  compute_metrics       — win rate, profit factor, averages, expectancy
  equity_curve          — running balance from a starting capital
  current_streak        — leading run of wins (newest first)
  pnl_by_category       — strategy / instrument / weekday breakdowns
  strategy_performance  — per-playbook win rate, profit factor, net P&L
  returns_histogram     — equal-width bins of trade P&L
  trader_level          — progression ladder (Beginner → Elite)
"""

from __future__ import annotations
import math
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any, Optional, Iterable

import numpy as np

from tradejournal.journal.models import Trade, Period, parse_timestamp

NO_STRATEGY = "No Strategy"
WEEKDAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


@dataclass
class Metrics:
    total_trades: int = 0
    profitable_trades: int = 0
    losing_trades: int = 0
    break_even_trades: int = 0
    non_profitable_trades: int = 0
    win_rate: float = 0.0
    profit_factor: float = 0.0
    gross_profit: float = 0.0
    gross_loss: float = 0.0
    net_pnl: float = 0.0
    avg_win: float = 0.0
    avg_loss: float = 0.0
    expected_value: float = 0.0
    net_daily_pnl: float = 0.0
    avg_trade_time: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["profit_factor"] = json_number(self.profit_factor)
        d["profit_factor_label"] = format_profit_factor(self.profit_factor)
        return d


def json_number(value: Optional[float]) -> Optional[float]:
    """inf/nan cannot be encoded as JSON; they become None."""
    if value is None or math.isinf(value) or math.isnan(value):
        return None
    return round(value, 4)


def format_profit_factor(value: float) -> str:
    if math.isinf(value):
        return "∞"
    return f"{value:.2f}"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CORE METRICS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def profit_factor(gross_profit: float, gross_loss: float) -> float:
    """Gross profit / gross loss. No losses: inf with profit, 0 without."""
    if gross_loss > 0:
        return gross_profit / gross_loss
    return float("inf") if gross_profit > 0 else 0.0


def _holding_minutes(trade: Trade) -> Optional[float]:
    if trade.holding_minutes is not None:
        return float(trade.holding_minutes)
    opened = parse_timestamp(trade.opened_at)
    closed = parse_timestamp(trade.closed_at)
    if opened and closed and closed >= opened:
        return (closed - opened).total_seconds() / 60
    return None


def compute_metrics(trades: List[Trade]) -> Metrics:
    m = Metrics(total_trades=len(trades))
    if not trades:
        return m

    pnls = [t.pnl for t in trades]
    wins = [p for p in pnls if p > 0]
    losses = [p for p in pnls if p < 0]

    m.profitable_trades = len(wins)
    m.losing_trades = len(losses)
    m.break_even_trades = m.total_trades - m.profitable_trades - m.losing_trades
    m.non_profitable_trades = m.total_trades - m.profitable_trades

    decisive = m.profitable_trades + m.losing_trades
    m.win_rate = m.profitable_trades / decisive * 100 if decisive else 0.0

    m.gross_profit = sum(wins)
    m.gross_loss = abs(sum(losses))
    m.net_pnl = sum(pnls)
    m.profit_factor = profit_factor(m.gross_profit, m.gross_loss)
    m.avg_win = m.gross_profit / len(wins) if wins else 0.0
    m.avg_loss = m.gross_loss / len(losses) if losses else 0.0
    m.expected_value = m.net_pnl / m.total_trades

    trading_days = {t.opened_at[:10] for t in trades if t.opened_at}
    m.net_daily_pnl = m.net_pnl / len(trading_days) if trading_days else 0.0

    durations = [d for d in (_holding_minutes(t) for t in trades if t.is_closed) if d is not None]
    m.avg_trade_time = sum(durations) / len(durations) if durations else 0.0
    return m


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PERIODS & CURVES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Start of the calendar period containing now. None for 'all'."""
    now = now or datetime.now(timezone.utc)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    period = Period(period)
    if period == Period.WEEK:
        return midnight - timedelta(days=midnight.weekday())
    if period == Period.MONTH:
        return midnight.replace(day=1)
    if period == Period.QUARTER:
        first_month = 3 * ((now.month - 1) // 3) + 1
        return midnight.replace(month=first_month, day=1)
    if period == Period.YEAR:
        return midnight.replace(month=1, day=1)
    return None


def filter_by_period(trades: List[Trade], period: str, now: Optional[datetime] = None) -> List[Trade]:
    start = period_start(period, now)
    if start is None:
        return list(trades)
    result = []
    for t in trades:
        opened = parse_timestamp(t.opened_at)
        if opened and opened >= start:
            result.append(t)
    return result


def _chronological(trades: Iterable[Trade]) -> List[Trade]:
    return sorted(trades, key=lambda t: t.closed_at or t.opened_at or "")


def equity_curve(trades: List[Trade], starting_balance: float = 10000.0) -> List[Dict[str, Any]]:
    if not trades:
        return [{"date": datetime.now(timezone.utc).date().isoformat(),
                 "balance": starting_balance, "pnl": 0.0}]
    balance = starting_balance
    points = []
    for t in _chronological(trades):
        balance += t.pnl
        points.append({
            "date": (t.closed_at or t.opened_at)[:10],
            "balance": round(balance, 2),
            "pnl": round(t.pnl, 2),
        })
    return points


def cumulative_pnl(trades: List[Trade]) -> List[Dict[str, Any]]:
    running = 0.0
    points = []
    for t in _chronological(trades):
        running += t.pnl
        points.append({"date": (t.closed_at or t.opened_at)[:10], "cumulative": round(running, 2),
                       "pnl": round(t.pnl, 2), "instrument": t.instrument})
    return points


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# STREAKS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def current_streak(trades_newest_first: List[Trade]) -> int:
    """Leading run of wins. A leading loss (or break-even) gives 0."""
    streak = 0
    for t in trades_newest_first:
        if t.pnl > 0:
            streak += 1
        else:
            break
    return streak


def max_streaks(trades: List[Trade]) -> Dict[str, int]:
    max_win = max_loss = 0
    win_run = loss_run = 0
    for t in _chronological(trades):
        if t.pnl > 0:
            win_run += 1
            loss_run = 0
        elif t.pnl < 0:
            loss_run += 1
            win_run = 0
        else:
            win_run = loss_run = 0
        max_win = max(max_win, win_run)
        max_loss = max(max_loss, loss_run)
    return {"max_win_streak": max_win, "max_loss_streak": max_loss}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# BREAKDOWNS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def _bucket_rows(buckets: Dict[str, Dict[str, float]]) -> List[Dict[str, Any]]:
    rows = [{"label": label, "pnl": round(v["pnl"], 2), "trades": int(v["trades"])}
            for label, v in buckets.items()]
    return sorted(rows, key=lambda r: r["pnl"], reverse=True)


def pnl_by_category(trades: List[Trade], strategy_names: Optional[Dict[str, str]] = None,
                    top: int = 8) -> Dict[str, List[Dict[str, Any]]]:
    names = strategy_names or {}
    by_strategy: Dict[str, Dict[str, float]] = defaultdict(lambda: {"pnl": 0.0, "trades": 0})
    by_instrument: Dict[str, Dict[str, float]] = defaultdict(lambda: {"pnl": 0.0, "trades": 0})
    by_weekday: Dict[str, Dict[str, float]] = defaultdict(lambda: {"pnl": 0.0, "trades": 0})

    for t in trades:
        strategy = names.get(t.strategy_id, NO_STRATEGY) if t.strategy_id else NO_STRATEGY
        for bucket, key in ((by_strategy, strategy), (by_instrument, t.instrument or "Unknown")):
            bucket[key]["pnl"] += t.pnl
            bucket[key]["trades"] += 1
        opened = parse_timestamp(t.opened_at)
        if opened:
            day = WEEKDAYS[opened.weekday()]
            by_weekday[day]["pnl"] += t.pnl
            by_weekday[day]["trades"] += 1

    return {
        "by_strategy": _bucket_rows(by_strategy)[:top],
        "by_instrument": _bucket_rows(by_instrument)[:top],
        "by_weekday": [
            {"label": d, "pnl": round(by_weekday[d]["pnl"], 2), "trades": int(by_weekday[d]["trades"])}
            for d in WEEKDAYS if by_weekday.get(d, {}).get("trades")
        ],
    }


def strategy_performance(trades: List[Trade],
                         strategy_names: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
    names = strategy_names or {}
    groups: Dict[str, List[Trade]] = defaultdict(list)
    for t in trades:
        name = names.get(t.strategy_id, NO_STRATEGY) if t.strategy_id else NO_STRATEGY
        groups[name].append(t)

    rows = []
    for name, group in groups.items():
        wins = [t.pnl for t in group if t.pnl > 0]
        losses = [t.pnl for t in group if t.pnl < 0]
        pf = profit_factor(sum(wins), abs(sum(losses)))
        rows.append({
            "strategy": name,
            "total_trades": len(group),
            "wins": len(wins),
            "losses": len(losses),
            "win_rate": round(len(wins) / len(group) * 100, 2),
            "profit_factor": json_number(pf),
            "profit_factor_label": format_profit_factor(pf),
            "net_pnl": round(sum(t.pnl for t in group), 2),
        })
    return sorted(rows, key=lambda r: r["net_pnl"], reverse=True)


def grouped_outcomes(trades: List[Trade], key: str) -> Dict[str, Dict[str, float]]:
    """Wins / losses / pnl per value of a trade attribute (session, direction)."""
    out: Dict[str, Dict[str, float]] = {}
    for t in trades:
        label = getattr(t, key, None) or "Unknown"
        row = out.setdefault(label, {"wins": 0, "losses": 0, "pnl": 0.0})
        if t.pnl > 0:
            row["wins"] += 1
        elif t.pnl < 0:
            row["losses"] += 1
        row["pnl"] = round(row["pnl"] + t.pnl, 2)
    return out


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# DISTRIBUTIONS
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def returns_histogram(values: List[float], bins: int = 15) -> List[Dict[str, float]]:
    """Equal-width bins; only non-empty bins are returned."""
    if not values:
        return []
    arr = np.asarray(values, dtype=float)
    lo, hi = float(arr.min()), float(arr.max())
    if lo == hi:
        return [{"mid": lo, "count": int(arr.size)}]
    counts, edges = np.histogram(arr, bins=bins, range=(lo, hi))
    return [
        {"mid": round(float((edges[i] + edges[i + 1]) / 2), 4), "count": int(c)}
        for i, c in enumerate(counts) if c > 0
    ]


def r_multiples(trades: List[Trade], avg_loss: float) -> List[float]:
    basis = abs(avg_loss) or 1.0
    return [round(t.pnl / basis, 4) for t in trades]


def risk_reward(entry: Optional[float], stop: Optional[float], target: Optional[float]) -> Optional[float]:
    if entry is None or stop is None or target is None:
        return None
    risk = abs(entry - stop)
    if risk == 0:
        return None
    return abs(target - entry) / risk


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# TRADER LEVEL
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

TRADER_LEVELS: List[Dict[str, Any]] = [
    {"level": 1, "name": "Beginner",     "min_trades": 0,    "min_win_rate": 0,  "min_profit_factor": 0.0, "requires_profit": False},
    {"level": 2, "name": "Novice",       "min_trades": 10,   "min_win_rate": 40, "min_profit_factor": 0.0, "requires_profit": False},
    {"level": 3, "name": "Apprentice",   "min_trades": 25,   "min_win_rate": 45, "min_profit_factor": 0.8, "requires_profit": False},
    {"level": 4, "name": "Intermediate", "min_trades": 50,   "min_win_rate": 50, "min_profit_factor": 1.0, "requires_profit": False},
    {"level": 5, "name": "Advanced",     "min_trades": 100,  "min_win_rate": 52, "min_profit_factor": 1.2, "requires_profit": True},
    {"level": 6, "name": "Expert",       "min_trades": 200,  "min_win_rate": 55, "min_profit_factor": 1.5, "requires_profit": True},
    {"level": 7, "name": "Master",       "min_trades": 500,  "min_win_rate": 58, "min_profit_factor": 1.8, "requires_profit": True},
    {"level": 8, "name": "Elite",        "min_trades": 1000, "min_win_rate": 60, "min_profit_factor": 2.0, "requires_profit": True},
]


def _meets(level: Dict[str, Any], total: int, win_rate: float, pf: float, net_pnl: float) -> bool:
    return (total >= level["min_trades"]
            and win_rate >= level["min_win_rate"]
            and pf >= level["min_profit_factor"]
            and (not level["requires_profit"] or net_pnl > 0))


def _capped(value: float, minimum: float) -> float:
    if minimum <= 0:
        return 100.0
    return min(100.0, value / minimum * 100)


def trader_level(total_trades: int, win_rate: float, pf: float, net_pnl: float) -> Dict[str, Any]:
    """Highest level whose every requirement is met, plus progress to the next."""
    current = 0
    for i in range(len(TRADER_LEVELS) - 1, -1, -1):
        if _meets(TRADER_LEVELS[i], total_trades, win_rate, pf, net_pnl):
            current = i
            break
    nxt = TRADER_LEVELS[current + 1] if current < len(TRADER_LEVELS) - 1 else None

    progress = 100.0
    if nxt:
        progress = (
            _capped(total_trades, nxt["min_trades"])
            + _capped(win_rate, nxt["min_win_rate"])
            + _capped(pf, nxt["min_profit_factor"])
            + (100.0 if not nxt["requires_profit"] or net_pnl > 0 else 0.0)
        ) / 4
    return {"current": TRADER_LEVELS[current], "next": nxt, "progress": round(progress, 2)}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# PAGE SUMMARIES
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

def dashboard_stats(trades: List[Trade], now: Optional[datetime] = None) -> Dict[str, Any]:
    """Dashboard cards. Expects trades newest first."""
    now = now or datetime.now(timezone.utc)
    m = compute_metrics(trades)
    month_prefix = now.strftime("%Y-%m")
    month_trades = [t for t in trades if (t.opened_at or "").startswith(month_prefix)]
    best = max(trades, key=lambda t: t.pnl, default=None)
    worst = min(trades, key=lambda t: t.pnl, default=None)

    return {
        "metrics": m.to_dict(),
        "best_trade": best.to_dict() if best else None,
        "worst_trade": worst.to_dict() if worst else None,
        "avg_risk_reward": round(m.avg_win / m.avg_loss, 2) if m.avg_loss else 0.0,
        "avg_duration_minutes": round(m.avg_trade_time, 1),
        "month_pnl": round(sum(t.pnl for t in month_trades), 2),
        "month_trades": len(month_trades),
        "current_streak": current_streak(trades),
        "trader_level": trader_level(m.total_trades, m.win_rate, m.profit_factor, m.net_pnl),
    }


def journal_stats(trades: List[Trade]) -> Dict[str, Any]:
    closed = [t for t in trades if t.is_closed]
    wins = [t for t in closed if t.pnl > 0]
    return {
        "total_trades": len(trades),
        "net_pnl": round(sum(t.pnl for t in trades), 2),
        "win_rate": round(len(wins) / len(closed) * 100, 2) if closed else 0.0,
        "open_positions": len(trades) - len(closed),
    }


def playbook_stats(strategies: List[Any]) -> Dict[str, Any]:
    count = len(strategies)
    total_groups = sum(len(s.checklist or {}) for s in strategies)
    return {
        "count": count,
        "total_groups": total_groups,
        "avg_groups": round(total_groups / count, 2) if count else 0.0,
        "total_rules": sum(s.rule_count() for s in strategies),
        "with_image": sum(1 for s in strategies if s.image_url),
    }


def goal_stats(goals: List[Any], habits: List[Any], logs: List[Any]) -> Dict[str, Any]:
    total = len(goals)
    completed = sum(1 for g in goals if g.status == "COMPLETED")
    in_progress = sum(1 for g in goals if g.status == "IN_PROGRESS")
    completed_logs = sum(1 for log in logs if log.completed)
    return {
        "total_goals": total,
        "completed": completed,
        "in_progress": in_progress,
        "completion_rate": round(completed / total * 100, 2) if total else 0.0,
        "total_habits": len(habits),
        "habit_rate": round(completed_logs / len(habits) * 100, 2) if habits else 0.0,
    }
