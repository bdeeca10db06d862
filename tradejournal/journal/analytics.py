"""
Journal Analytics — per-user views over the store
=================================================

Fetches a user's trades, applies the period filter, and hands the list to
the pure helpers in journal.metrics. Every public method returns a
JSON-ready dict.
"""

from __future__ import annotations
from datetime import datetime, timedelta, timezone
from typing import Dict, Any, List, Optional

import pandas as pd

from tradejournal.journal import metrics
from tradejournal.journal.models import Trade, Period, parse_timestamp
from tradejournal.journal.store import JournalStore
from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import ValidationError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)

_ALL = 100000


class JournalAnalytics:

    def __init__(self, store: JournalStore, starting_balance: Optional[float] = None):
        self._store = store
        self._starting_balance = (starting_balance if starting_balance is not None
                                  else get_settings().starting_balance)

    def _trades(self, user_id: str, status: str = "") -> List[Trade]:
        return self._store.query_trades(user_id, status=status, limit=_ALL)

    @staticmethod
    def _check_period(period: str) -> str:
        try:
            return Period(period).value
        except ValueError:
            raise ValidationError(f"Unknown period '{period}'")

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # ANALYTICS PAGE
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def overview(self, user_id: str, period: str = "all", now: Optional[datetime] = None) -> Dict[str, Any]:
        """Everything the analytics page renders for one period."""
        period = self._check_period(period)
        trades = metrics.filter_by_period(self._trades(user_id), period, now)
        names = self._store.get_strategy_names(user_id)
        m = metrics.compute_metrics(trades)

        logger.debug("analytics_overview", user_id=user_id, period=period, trades=len(trades))
        return {
            "period": period,
            "metrics": m.to_dict(),
            "equity_curve": metrics.equity_curve(trades, self._starting_balance),
            "cumulative_pnl": metrics.cumulative_pnl(trades),
            "categories": metrics.pnl_by_category(trades, names),
            "strategy_performance": metrics.strategy_performance(trades, names),
            "histogram": metrics.returns_histogram([t.pnl for t in trades]),
            "r_multiples": metrics.r_multiples(trades, m.avg_loss),
            "streaks": metrics.max_streaks(trades),
            "trader_level": metrics.trader_level(m.total_trades, m.win_rate, m.profit_factor, m.net_pnl),
        }

    def period_metrics(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Dict[str, Any]]:
        trades = self._trades(user_id)
        return {
            p.value: metrics.compute_metrics(metrics.filter_by_period(trades, p.value, now)).to_dict()
            for p in Period
        }

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # DASHBOARD & JOURNAL
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def dashboard(self, user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        trades = self._trades(user_id)
        stats = metrics.dashboard_stats(trades, now)
        stats["recent_trades"] = [t.to_dict() for t in trades[:5]]
        stats["equity_curve"] = metrics.equity_curve(trades, self._starting_balance)
        return stats

    def journal_summary(self, user_id: str) -> Dict[str, Any]:
        return metrics.journal_stats(self._trades(user_id))

    def daily_pnl(self, user_id: str, days: int = 30, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Closed-trade P&L summed per close date, zero-filled over the window."""
        if days <= 0:
            raise ValidationError("days must be positive")
        now = now or datetime.now(timezone.utc)
        since = (now - timedelta(days=days)).date()
        closed = [(parse_timestamp(t.closed_at), t.pnl) for t in self._trades(user_id, status="closed")]
        closed = [(ts, pnl) for ts, pnl in closed if ts is not None]

        index = pd.date_range(since, now.date(), freq="D")
        if not closed:
            series = pd.Series(0.0, index=index)
        else:
            df = pd.DataFrame({
                "date": pd.to_datetime([ts for ts, _ in closed], utc=True),
                "pnl": [pnl for _, pnl in closed],
            })
            df["date"] = df["date"].dt.tz_localize(None).dt.normalize()
            series = df.set_index("date")["pnl"].resample("D").sum()
            series = series.reindex(index, fill_value=0.0)

        return [{"date": ts.date().isoformat(), "pnl": round(float(v), 2)} for ts, v in series.items()]
