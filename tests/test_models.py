"""Tests for journal record models and derived trade outcome."""

import pytest

from tradejournal.journal.models import (
    Strategy, Trade, User, parse_timestamp, DEFAULT_RULE_GROUPS,
)


class TestTradeOutcome:

    def test_long_pnl_from_prices(self):
        t = Trade(instrument=" eurusd ", direction="LONG", entry_price=1.1000,
                  exit_price=1.1050, position_size=10000)
        t.compute_outcome()
        assert t.instrument == "EURUSD"
        assert t.profit_loss_currency == pytest.approx(50.0)

    def test_short_pnl_from_prices(self):
        t = Trade(instrument="NAS100", direction="SHORT", entry_price=100.0,
                  exit_price=95.0, position_size=2)
        t.compute_outcome()
        assert t.profit_loss_currency == pytest.approx(10.0)

    def test_manual_pnl_kept_without_exit(self):
        t = Trade(instrument="BTCUSD", entry_price=100.0, profit_loss_currency=-42.0)
        t.compute_outcome()
        assert t.profit_loss_currency == -42.0

    def test_r_multiple(self):
        t = Trade(instrument="X", entry_price=10, exit_price=12, position_size=5, risk_amount=5)
        t.compute_outcome()
        assert t.profit_loss_r == pytest.approx(2.0)

    def test_no_r_multiple_without_risk(self):
        t = Trade(instrument="X", entry_price=10, exit_price=12, position_size=5)
        t.compute_outcome()
        assert t.profit_loss_r is None

    def test_r_multiple_cleared_when_risk_removed(self):
        t = Trade(instrument="X", entry_price=10, exit_price=12, position_size=5, risk_amount=5)
        t.compute_outcome()
        t.risk_amount = None
        t.compute_outcome()
        assert t.profit_loss_r is None

    def test_r_multiple_cleared_at_break_even(self):
        t = Trade(instrument="X", entry_price=10, exit_price=12, position_size=5, risk_amount=5)
        t.compute_outcome()
        t.exit_price = 10
        t.profit_loss_currency = None
        t.compute_outcome()
        assert t.profit_loss_r is None

    def test_holding_minutes_cleared_when_reopened(self):
        t = Trade(instrument="X", opened_at="2024-03-04T09:00:00Z", closed_at="2024-03-04T10:00:00Z")
        t.compute_outcome()
        t.closed_at = None
        t.compute_outcome()
        assert t.holding_minutes is None

    def test_holding_minutes(self):
        t = Trade(instrument="X", opened_at="2024-03-04T09:00:00Z", closed_at="2024-03-04T10:30:59Z")
        t.compute_outcome()
        assert t.holding_minutes == 90

    def test_holding_minutes_ignores_inverted_times(self):
        t = Trade(instrument="X", opened_at="2024-03-04T10:00:00Z", closed_at="2024-03-04T09:00:00Z")
        t.compute_outcome()
        assert t.holding_minutes is None

    def test_closed_iff_closed_at(self):
        assert not Trade(instrument="X").is_closed
        assert Trade(instrument="X", closed_at="2024-01-01T00:00:00Z").is_closed

    def test_missing_pnl_counts_as_zero(self):
        assert Trade(instrument="X").pnl == 0.0


class TestRecords:

    def test_round_trip_ignores_unknown_keys(self):
        t = Trade(instrument="EURUSD", notes="hello")
        d = t.to_dict()
        d["not_a_field"] = 1
        restored = Trade.from_dict(d)
        assert restored == t

    def test_strategy_default_rule_groups(self):
        s = Strategy(name="Breakout")
        assert list(s.checklist) == list(DEFAULT_RULE_GROUPS)
        assert s.rule_count() == 0
        s.checklist["Entry Criteria"] = ["Break of structure", "Retest"]
        assert s.rule_count() == 2

    def test_user_public_dict_hides_password(self):
        u = User(email="a@b.c", password_hash="secret")
        assert "password_hash" not in u.public_dict()


class TestParseTimestamp:

    def test_zulu_suffix(self):
        assert parse_timestamp("2024-03-04T09:00:00Z").tzinfo is not None

    def test_naive_becomes_utc(self):
        assert parse_timestamp("2024-03-04T09:00:00").utcoffset().total_seconds() == 0

    @pytest.mark.parametrize("value", ["", None, "not a date"])
    def test_invalid(self, value):
        assert parse_timestamp(value) is None
