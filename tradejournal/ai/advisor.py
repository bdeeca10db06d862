"""
Trade Advisor — AI commentary over the user's own journal
=========================================================

Each call follows the same path: query the user's rows, reduce them to a
few statistics, build a prompt, relay it to the gateway once, and persist
the returned text as an AISummary.
"""

from __future__ import annotations
from datetime import datetime, time, timezone
from typing import Any, Dict, Optional

from tradejournal.ai import prompts
from tradejournal.ai.gateway import AIGatewayClient
from tradejournal.journal import metrics
from tradejournal.journal.models import AISummary, AISummaryType, Period, parse_timestamp
from tradejournal.journal.store import JournalStore
from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import NotFoundError, ValidationError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)


def _to_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class TradeAdvisor:

    def __init__(self, store: JournalStore, gateway: Optional[AIGatewayClient] = None) -> None:
        self._store = store
        self._gateway = gateway or AIGatewayClient()
        self._history_limit = get_settings().ai_history_limit

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # TRADE PREDICTION
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def instrument_stats(self, user_id: str, trade_data: Dict[str, Any]) -> Dict[str, Any]:
        """History stats for the instrument of a proposed trade."""
        history = self._store.query_trades(
            user_id, instrument=trade_data["instrument"], limit=self._history_limit,
            order_by="opened_at DESC",
        )
        total = len(history)
        wins = [t.pnl for t in history if t.pnl > 0]
        losses = [t.pnl for t in history if t.pnl < 0]

        rr = metrics.risk_reward(
            _to_float(trade_data.get("entry_price")),
            _to_float(trade_data.get("stop_loss")),
            _to_float(trade_data.get("take_profit")),
        )
        return {
            "instrumentWinRate": f"{len(wins) / total * 100:.1f}" if total else "N/A",
            "totalInstrumentTrades": total,
            "avgWin": sum(wins) / len(wins) if wins else 0.0,
            "avgLoss": abs(sum(losses) / len(losses)) if losses else 0.0,
            "riskRewardRatio": f"{rr:.2f}" if rr is not None else "N/A",
            "sessionStats": metrics.grouped_outcomes(history, "session"),
            "directionStats": metrics.grouped_outcomes(history, "direction"),
        }

    async def predict_trade(self, user_id: str, trade_data: Dict[str, Any]) -> Dict[str, Any]:
        instrument = str(trade_data.get("instrument") or "").strip()
        if not instrument:
            raise ValidationError("Instrument required")
        trade_data = {**trade_data, "instrument": instrument}

        stats = self.instrument_stats(user_id, trade_data)
        prompt = prompts.trade_prediction_prompt(trade_data, stats)
        prediction = await self._gateway.complete(prompt)

        self._store.record_ai_summary(AISummary(
            user_id=user_id, type=AISummaryType.TRADE.value,
            target_id=str(trade_data.get("id") or instrument.upper()), content=prediction,
        ))
        logger.info("trade_prediction_generated", user_id=user_id, instrument=instrument,
                    history=stats["totalInstrumentTrades"])
        return {"prediction": prediction, "stats": stats}

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # PERFORMANCE ANALYSIS
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def analyze_performance(self, user_id: str, period: str = "month",
                                  now: Optional[datetime] = None) -> Dict[str, Any]:
        try:
            period = Period(period).value
        except ValueError:
            raise ValidationError(f"Unknown period '{period}'")

        trades = metrics.filter_by_period(
            self._store.query_trades(user_id, limit=100000), period, now)
        if not trades:
            raise ValidationError("No trades in the selected period")

        names = self._store.get_strategy_names(user_id)
        m = metrics.compute_metrics(trades).to_dict()
        prompt = prompts.performance_prompt(
            period, m,
            metrics.strategy_performance(trades, names),
            metrics.pnl_by_category(trades, names),
        )
        analysis = await self._gateway.complete(prompt)

        self._store.record_ai_summary(AISummary(
            user_id=user_id, type=AISummaryType.WEEKLY.value, target_id=period, content=analysis,
        ))
        logger.info("performance_analysis_generated", user_id=user_id, period=period, trades=len(trades))
        return {"analysis": analysis, "metrics": m}

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # WEEKLY REVIEW
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def summarize_weekly_review(self, user_id: str, review_id: str) -> Dict[str, Any]:
        review = self._store.get_review(user_id, review_id)
        if review is None:
            raise NotFoundError(f"Review {review_id} not found")

        start = parse_timestamp(review.week_start_date)
        end = parse_timestamp(review.week_end_date)
        if start is None or end is None:
            raise ValidationError(f"Review {review_id} has invalid week dates")
        end_of_week = datetime.combine(end.date(), time.max, tzinfo=timezone.utc)
        week_trades = self._store.query_trades(
            user_id, from_date=start.date().isoformat(), to_date=end_of_week.isoformat(), limit=100000)
        week_metrics = metrics.compute_metrics(week_trades).to_dict() if week_trades else None

        summary = await self._gateway.complete(prompts.weekly_review_prompt(review.to_dict(), week_metrics))
        updated = self._store.update_review(user_id, review_id, {"ai_summary": summary})
        self._store.record_ai_summary(AISummary(
            user_id=user_id, type=AISummaryType.WEEKLY.value, target_id=review_id, content=summary,
        ))
        logger.info("weekly_review_summarized", user_id=user_id, review_id=review_id)
        return {"review": updated.to_dict(), "summary": summary}
