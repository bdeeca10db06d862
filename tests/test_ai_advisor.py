"""Tests for TradeAdvisor with a mocked gateway."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

from tradejournal.ai.advisor import TradeAdvisor
from tradejournal.journal.models import WeeklyReview
from tradejournal.utils.exceptions import NotFoundError, RateLimitError, ValidationError
from tests.factories import make_trade


@pytest.fixture
def gateway():
    gw = AsyncMock()
    gw.complete.return_value = "Solid setup, mind the news."
    return gw


@pytest.fixture
def advisor(store, gateway):
    return TradeAdvisor(store, gateway)


@pytest.fixture
def eurusd_history(store, user):
    for pnl, session in [(40, "London"), (25, "London"), (-20, "New York"), (10, None)]:
        store.create_trade(make_trade(pnl, user_id=user.id, instrument="EURUSD", session=session))
    store.create_trade(make_trade(-100, user_id=user.id, instrument="BTCUSD"))
    return user


class TestInstrumentStats:

    def test_history_for_instrument_only(self, advisor, eurusd_history):
        stats = advisor.instrument_stats(eurusd_history.id, {
            "instrument": "EURUSD", "entry_price": "1.1000", "stop_loss": 1.095, "take_profit": 1.11,
        })
        assert stats["totalInstrumentTrades"] == 4
        assert stats["instrumentWinRate"] == "75.0"
        assert stats["avgWin"] == pytest.approx(25.0)
        assert stats["avgLoss"] == pytest.approx(20.0)
        assert stats["riskRewardRatio"] == "2.00"
        assert stats["sessionStats"]["London"]["wins"] == 2
        assert stats["directionStats"]["LONG"]["losses"] == 1

    def test_no_history(self, advisor, user):
        stats = advisor.instrument_stats(user.id, {"instrument": "NAS100"})
        assert stats["instrumentWinRate"] == "N/A"
        assert stats["riskRewardRatio"] == "N/A"
        assert stats["avgWin"] == 0.0


class TestPredictTrade:

    @pytest.mark.asyncio
    async def test_missing_instrument_never_calls_gateway(self, advisor, gateway, user):
        with pytest.raises(ValidationError):
            await advisor.predict_trade(user.id, {"instrument": "  ", "entry_price": 1.1})
        gateway.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_prediction_recorded(self, advisor, gateway, store, eurusd_history):
        out = await advisor.predict_trade(eurusd_history.id, {
            "instrument": "eurusd", "direction": "LONG", "entry_price": 1.1,
            "stop_loss": 1.095, "take_profit": 1.11,
        })
        assert out["prediction"] == "Solid setup, mind the news."
        assert out["stats"]["totalInstrumentTrades"] == 4

        prompt = gateway.complete.call_args[0][0]
        assert "eurusd (LONG)" in prompt
        assert "WinRate: 75.0%" in prompt

        summaries = store.list_ai_summaries(eurusd_history.id, "TRADE")
        assert len(summaries) == 1
        assert summaries[0].target_id == "EURUSD"

    @pytest.mark.asyncio
    async def test_gateway_errors_propagate_without_summary(self, advisor, gateway, store, user):
        gateway.complete.side_effect = RateLimitError("slow down")
        with pytest.raises(RateLimitError):
            await advisor.predict_trade(user.id, {"instrument": "EURUSD"})
        assert store.list_ai_summaries(user.id) == []


class TestAnalyzePerformance:

    @pytest.mark.asyncio
    async def test_no_trades(self, advisor, gateway, user):
        with pytest.raises(ValidationError):
            await advisor.analyze_performance(user.id, "all")
        gateway.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_period(self, advisor, user):
        with pytest.raises(ValidationError):
            await advisor.analyze_performance(user.id, "fortnight")

    @pytest.mark.asyncio
    async def test_analysis(self, advisor, gateway, store, eurusd_history):
        out = await advisor.analyze_performance(eurusd_history.id, "all")
        assert out["metrics"]["total_trades"] == 5
        assert "Trades: 5" in gateway.complete.call_args[0][0]
        assert store.list_ai_summaries(eurusd_history.id, "WEEKLY", "all")[0].content == out["analysis"]


class TestWeeklyReviewSummary:

    @pytest.mark.asyncio
    async def test_summary_saved_on_review(self, advisor, gateway, store, user):
        store.create_trade(make_trade(30, user_id=user.id, opened_at="2024-03-06T09:00:00+00:00"))
        store.create_trade(make_trade(99, user_id=user.id, opened_at="2024-03-20T09:00:00+00:00"))
        review = store.create_review(WeeklyReview(
            user_id=user.id, week_start_date="2024-03-04", week_end_date="2024-03-10",
            lessons="Wait for the retest",
        ))
        out = await advisor.summarize_weekly_review(user.id, review.id)

        assert out["summary"] == "Solid setup, mind the news."
        assert store.get_review(user.id, review.id).ai_summary == out["summary"]
        prompt = gateway.complete.call_args[0][0]
        assert "Wait for the retest" in prompt
        assert "Trades: 1" in prompt

    @pytest.mark.asyncio
    async def test_foreign_review(self, advisor, store, user, other_user):
        review = store.create_review(WeeklyReview(
            user_id=user.id, week_start_date="2024-03-04", week_end_date="2024-03-10"))
        with pytest.raises(NotFoundError):
            await advisor.summarize_weekly_review(other_user.id, review.id)

    @pytest.mark.asyncio
    async def test_unparseable_week_dates(self, advisor, gateway, store, user):
        # Rows written before review dates were validated
        review = WeeklyReview(user_id=user.id, week_start_date="2024-01-01", week_end_date="2024/01/07")
        store._write_review(review)
        with pytest.raises(ValidationError):
            await advisor.summarize_weekly_review(user.id, review.id)
        gateway.complete.assert_not_called()
