"""Tests for JournalAnalytics views over a populated store."""

from datetime import datetime, timezone

import pytest

from tradejournal.journal.analytics import JournalAnalytics
from tradejournal.journal.models import Strategy
from tradejournal.utils.exceptions import ValidationError
from tests.factories import generate_trades, make_trade


@pytest.fixture
def analytics(store):
    return JournalAnalytics(store, starting_balance=5000)


@pytest.fixture
def populated(store, user):
    store.create_trades(generate_trades(30, user_id=user.id))
    return user


class TestOverview:

    def test_all_sections_present(self, analytics, populated):
        out = analytics.overview(populated.id)
        assert out["period"] == "all"
        assert out["metrics"]["total_trades"] == 30
        assert len(out["equity_curve"]) == 30
        assert out["equity_curve"][-1]["balance"] == pytest.approx(
            5000 + out["metrics"]["net_pnl"], abs=0.05)
        assert set(out["categories"]) == {"by_strategy", "by_instrument", "by_weekday"}
        assert "max_win_streak" in out["streaks"]
        assert out["trader_level"]["current"]["name"]

    def test_strategy_names_resolved(self, analytics, store, user):
        s = store.create_strategy(Strategy(user_id=user.id, name="Breakout"))
        store.create_trade(make_trade(25, user_id=user.id, strategy_id=s.id))
        out = analytics.overview(user.id)
        assert out["strategy_performance"][0]["strategy"] == "Breakout"

    def test_period_filter(self, analytics, store, user):
        now = datetime(2024, 3, 20, tzinfo=timezone.utc)
        store.create_trade(make_trade(10, user_id=user.id, opened_at="2024-03-19T09:00:00+00:00"))
        store.create_trade(make_trade(10, user_id=user.id, opened_at="2024-01-02T09:00:00+00:00"))
        assert analytics.overview(user.id, "week", now)["metrics"]["total_trades"] == 1
        assert analytics.overview(user.id, "year", now)["metrics"]["total_trades"] == 2

    def test_unknown_period(self, analytics, user):
        with pytest.raises(ValidationError):
            analytics.overview(user.id, "decade")

    def test_empty_user(self, analytics, user):
        out = analytics.overview(user.id)
        assert out["metrics"]["total_trades"] == 0
        assert len(out["equity_curve"]) == 1
        assert out["equity_curve"][0]["balance"] == 5000
        assert out["histogram"] == []

    def test_isolated_per_user(self, analytics, populated, other_user):
        assert analytics.overview(other_user.id)["metrics"]["total_trades"] == 0

    def test_period_metrics_cover_every_period(self, analytics, populated):
        out = analytics.period_metrics(populated.id)
        assert set(out) == {"all", "week", "month", "quarter", "year"}
        assert out["all"]["total_trades"] == 30


class TestDashboard:

    def test_recent_trades_capped(self, analytics, populated):
        out = analytics.dashboard(populated.id)
        assert len(out["recent_trades"]) == 5
        assert "metrics" in out and "trader_level" in out

    def test_journal_summary(self, analytics, store, user):
        store.create_trade(make_trade(10, user_id=user.id))
        store.create_trade(make_trade(None, user_id=user.id, closed=False))
        out = analytics.journal_summary(user.id)
        assert out["total_trades"] == 2
        assert out["open_positions"] == 1


class TestDailyPnl:

    NOW = datetime(2024, 3, 10, 12, 0, tzinfo=timezone.utc)

    def test_zero_filled_window(self, analytics, store, user):
        store.create_trade(make_trade(15, user_id=user.id, opened_at="2024-03-04T09:30:00+00:00"))
        store.create_trade(make_trade(-5, user_id=user.id, opened_at="2024-03-04T12:00:00+00:00"))
        store.create_trade(make_trade(99, user_id=user.id, opened_at="2024-03-05T09:00:00+00:00",
                                      closed=False))
        rows = analytics.daily_pnl(user.id, days=7, now=self.NOW)
        assert rows[0]["date"] == "2024-03-03"
        assert rows[-1]["date"] == "2024-03-10"
        by_date = {r["date"]: r["pnl"] for r in rows}
        assert by_date["2024-03-04"] == 10.0
        assert by_date["2024-03-05"] == 0.0

    def test_no_trades(self, analytics, user):
        rows = analytics.daily_pnl(user.id, days=3, now=self.NOW)
        assert [r["pnl"] for r in rows] == [0.0] * 4

    def test_trades_outside_window_ignored(self, analytics, store, user):
        store.create_trade(make_trade(50, user_id=user.id, opened_at="2024-01-04T09:30:00+00:00"))
        rows = analytics.daily_pnl(user.id, days=5, now=self.NOW)
        assert sum(r["pnl"] for r in rows) == 0.0

    def test_non_positive_days_rejected(self, analytics, user):
        with pytest.raises(ValidationError):
            analytics.daily_pnl(user.id, days=0)

    def test_unparseable_close_time_skipped(self, analytics, store, user):
        store.create_trade(make_trade(10, user_id=user.id, opened_at="2024-03-04T09:30:00+00:00"))
        # Rows written before close times were validated
        store._write_trade(make_trade(40, user_id=user.id, closed_at="yesterday"))
        rows = analytics.daily_pnl(user.id, days=7, now=self.NOW)
        assert sum(r["pnl"] for r in rows) == 10.0
