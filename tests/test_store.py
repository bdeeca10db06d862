"""Tests for JournalStore: CRUD, filters, cascades and per-user isolation."""

import pytest

from tradejournal.journal.models import (
    AISummary, Account, Goal, Habit, Strategy, Tag, Trade, User, WeeklyReview,
)
from tradejournal.utils.exceptions import NotFoundError, ValidationError
from tests.factories import make_trade


class TestUsers:

    def test_email_is_normalised_and_unique(self, store):
        store.create_user(User(email="  Me@Example.com "))
        assert store.get_user_by_email("me@example.com") is not None
        with pytest.raises(ValidationError):
            store.create_user(User(email="me@example.com"))

    def test_sessions(self, store, user):
        store.create_session("tok", user.id, "2099-01-01T00:00:00+00:00")
        assert store.get_session("tok")["user_id"] == user.id
        store.delete_session("tok")
        assert store.get_session("tok") is None

    def test_purge_expired_sessions(self, store, user):
        store.create_session("old", user.id, "2000-01-01T00:00:00+00:00")
        store.create_session("new", user.id, "2099-01-01T00:00:00+00:00")
        assert store.purge_expired_sessions() == 1
        assert store.get_session("new") is not None


class TestTrades:

    def test_create_derives_outcome(self, store, user):
        t = store.create_trade(Trade(user_id=user.id, instrument="eurusd", direction="SHORT",
                                     entry_price=1.2, exit_price=1.1, position_size=1000))
        saved = store.get_trade(user.id, t.id)
        assert saved.instrument == "EURUSD"
        assert saved.profit_loss_currency == pytest.approx(100.0)

    def test_create_requires_instrument(self, store, user):
        with pytest.raises(ValidationError):
            store.create_trade(Trade(user_id=user.id, instrument="  "))

    def test_create_rejects_foreign_strategy(self, store, user, other_user):
        s = store.create_strategy(Strategy(user_id=other_user.id, name="Theirs"))
        with pytest.raises(ValidationError):
            store.create_trade(Trade(user_id=user.id, instrument="X", strategy_id=s.id))

    def test_update_recomputes_pnl_when_prices_change(self, store, user):
        t = store.create_trade(Trade(user_id=user.id, instrument="X", entry_price=10,
                                     exit_price=11, position_size=10))
        updated = store.update_trade(user.id, t.id, {"exit_price": 8, "id": "hijack"})
        assert updated.id == t.id
        assert updated.profit_loss_currency == pytest.approx(-20.0)

    @pytest.mark.parametrize("fields", [
        {"opened_at": "yesterday", "closed": False},
        {"closed_at": "yesterday"},
    ])
    def test_create_rejects_non_iso_times(self, store, user, fields):
        with pytest.raises(ValidationError):
            store.create_trade(make_trade(5, user_id=user.id, **fields))
        assert store.count_trades(user.id) == 0

    def test_update_rejects_non_iso_close_time(self, store, user):
        t = store.create_trade(make_trade(5, user_id=user.id))
        with pytest.raises(ValidationError):
            store.update_trade(user.id, t.id, {"closed_at": "03/04/2024"})
        assert store.get_trade(user.id, t.id).closed_at == t.closed_at

    def test_update_clears_stale_r_multiple(self, store, user):
        t = store.create_trade(Trade(user_id=user.id, instrument="X", entry_price=10,
                                     exit_price=12, position_size=5, risk_amount=5))
        assert t.profit_loss_r == pytest.approx(2.0)
        updated = store.update_trade(user.id, t.id, {"risk_amount": None})
        assert updated.profit_loss_r is None

    def test_update_missing_raises(self, store, user):
        with pytest.raises(NotFoundError):
            store.update_trade(user.id, "nope", {"notes": "x"})

    def test_query_filters(self, store, user):
        store.create_trade(make_trade(10, user_id=user.id, instrument="EURUSD",
                                      opened_at="2024-03-01T09:00:00+00:00", setup_type="Breakout"))
        store.create_trade(make_trade(-5, user_id=user.id, instrument="GBPUSD", direction="SHORT",
                                      opened_at="2024-03-02T09:00:00+00:00"))
        store.create_trade(make_trade(None, user_id=user.id, instrument="EURJPY", closed=False,
                                      opened_at="2024-03-03T09:00:00+00:00"))

        assert len(store.query_trades(user.id)) == 3
        assert len(store.query_trades(user.id, status="open")) == 1
        assert len(store.query_trades(user.id, status="closed")) == 2
        assert {t.instrument for t in store.query_trades(user.id, instrument="eur")} == {"EURUSD", "EURJPY"}
        assert len(store.query_trades(user.id, direction="short")) == 1
        assert len(store.query_trades(user.id, from_date="2024-03-02")) == 2
        assert len(store.query_trades(user.id, search="break")) == 1
        assert store.count_trades(user.id, status="closed") == 2

    def test_query_order_and_pagination(self, store, user):
        for day in range(1, 6):
            store.create_trade(make_trade(day, user_id=user.id, opened_at=f"2024-03-0{day}T09:00:00+00:00"))
        newest = store.query_trades(user.id, limit=2)
        assert [t.pnl for t in newest] == [5, 4]
        page2 = store.query_trades(user.id, limit=2, offset=2)
        assert [t.pnl for t in page2] == [3, 2]
        oldest = store.query_trades(user.id, order_by="opened_at ASC", limit=1)
        assert oldest[0].pnl == 1

    def test_order_whitelist(self, store, user):
        store.create_trade(make_trade(1, user_id=user.id))
        assert len(store.query_trades(user.id, order_by="1; DROP TABLE trades")) == 1

    def test_bulk_insert(self, store, user):
        n = store.create_trades([make_trade(i, user_id=user.id) for i in range(5)])
        assert n == 5
        assert store.count_trades(user.id) == 5


class TestCascades:

    def test_delete_strategy_unlinks_trades(self, store, user):
        s = store.create_strategy(Strategy(user_id=user.id, name="Breakout"))
        t = store.create_trade(make_trade(5, user_id=user.id, strategy_id=s.id))
        assert store.delete_strategy(user.id, s.id)
        assert store.get_trade(user.id, t.id).strategy_id is None

    def test_delete_trade_removes_tag_links(self, store, user):
        tag = store.create_tag(Tag(user_id=user.id, name="FOMO", type="EMOTION"))
        t = store.create_trade(make_trade(5, user_id=user.id))
        store.attach_tag(user.id, t.id, tag.id)
        assert [x.name for x in store.get_trade_tags(user.id, t.id)] == ["FOMO"]
        store.delete_trade(user.id, t.id)
        rows = store._query("SELECT * FROM trade_tags WHERE trade_id = ?", (t.id,))
        assert rows == []

    def test_delete_habit_removes_logs(self, store, user):
        h = store.create_habit(Habit(user_id=user.id, name="Journal daily"))
        store.set_habit_log(user.id, h.id, "2024-03-01", True)
        store.delete_habit(user.id, h.id)
        assert store.list_habit_logs(user.id) == []


class TestHabitLogs:

    def test_toggle_upserts(self, store, user):
        h = store.create_habit(Habit(user_id=user.id, name="Review"))
        first = store.set_habit_log(user.id, h.id, "2024-03-01", True)
        second = store.set_habit_log(user.id, h.id, "2024-03-01", False)
        assert first.id == second.id
        logs = store.list_habit_logs(user.id)
        assert len(logs) == 1 and logs[0].completed is False

    def test_date_range(self, store, user):
        h = store.create_habit(Habit(user_id=user.id, name="Review"))
        for d in ("2024-03-01", "2024-03-05", "2024-03-09"):
            store.set_habit_log(user.id, h.id, d, True)
        assert len(store.list_habit_logs(user.id, "2024-03-02", "2024-03-09")) == 2


class TestReviewsAndSummaries:

    def test_review_dates_validated(self, store, user):
        with pytest.raises(ValidationError):
            store.create_review(WeeklyReview(user_id=user.id, week_start_date="2024-03-10",
                                             week_end_date="2024-03-04"))

    @pytest.mark.parametrize("start,end", [
        ("2024-01-01", "2024/01/07"),
        ("last monday", "2024-01-07"),
    ])
    def test_review_dates_must_be_iso(self, store, user, start, end):
        with pytest.raises(ValidationError):
            store.create_review(WeeklyReview(user_id=user.id, week_start_date=start, week_end_date=end))

    def test_review_update_validates_dates(self, store, user):
        r = store.create_review(WeeklyReview(user_id=user.id, week_start_date="2024-03-04",
                                             week_end_date="2024-03-10"))
        with pytest.raises(ValidationError):
            store.update_review(user.id, r.id, {"week_end_date": "2024/03/10"})
        with pytest.raises(ValidationError):
            store.update_review(user.id, r.id, {"week_end_date": "2024-03-01"})
        assert store.get_review(user.id, r.id).week_end_date == "2024-03-10"

    def test_review_update(self, store, user):
        r = store.create_review(WeeklyReview(user_id=user.id, week_start_date="2024-03-04",
                                             week_end_date="2024-03-10"))
        store.update_review(user.id, r.id, {"lessons": "Cut losers early"})
        assert store.get_review(user.id, r.id).lessons == "Cut losers early"

    def test_ai_summaries_filter(self, store, user):
        store.record_ai_summary(AISummary(user_id=user.id, type="TRADE", target_id="EURUSD", content="a"))
        store.record_ai_summary(AISummary(user_id=user.id, type="WEEKLY", target_id="month", content="b"))
        assert [s.content for s in store.list_ai_summaries(user.id, "TRADE")] == ["a"]
        assert len(store.list_ai_summaries(user.id)) == 2


class TestRowLevelAccess:
    """A row owned by another user behaves exactly like a missing row."""

    def test_trades_are_invisible_to_others(self, store, user, other_user):
        t = store.create_trade(make_trade(10, user_id=user.id))
        assert store.get_trade(other_user.id, t.id) is None
        assert store.query_trades(other_user.id) == []
        with pytest.raises(NotFoundError):
            store.update_trade(other_user.id, t.id, {"notes": "mine now"})
        assert store.delete_trade(other_user.id, t.id) is False
        assert store.get_trade(user.id, t.id) is not None

    def test_strategies_goals_reviews(self, store, user, other_user):
        s = store.create_strategy(Strategy(user_id=user.id, name="Mine"))
        g = store.create_goal(Goal(user_id=user.id, title="Mine"))
        r = store.create_review(WeeklyReview(user_id=user.id, week_start_date="2024-03-04",
                                             week_end_date="2024-03-10"))
        assert store.get_strategy(other_user.id, s.id) is None
        assert store.delete_strategy(other_user.id, s.id) is False
        assert store.list_goals(other_user.id) == []
        with pytest.raises(NotFoundError):
            store.update_goal(other_user.id, g.id, {"status": "COMPLETED"})
        assert store.get_review(other_user.id, r.id) is None

    def test_cannot_tag_foreign_trade(self, store, user, other_user):
        t = store.create_trade(make_trade(10, user_id=user.id))
        tag = store.create_tag(Tag(user_id=other_user.id, name="Mine"))
        with pytest.raises(NotFoundError):
            store.attach_tag(other_user.id, t.id, tag.id)

    def test_cannot_log_foreign_habit(self, store, user, other_user):
        h = store.create_habit(Habit(user_id=user.id, name="Mine"))
        with pytest.raises(NotFoundError):
            store.set_habit_log(other_user.id, h.id, "2024-03-01", True)


class TestAccountsAndStats:

    def test_accounts_are_per_user(self, store, user, other_user):
        store.create_account(Account(user_id=user.id, name="Prop firm", broker_name="FTMO"))
        assert [a.name for a in store.list_accounts(user.id)] == ["Prop firm"]
        assert store.list_accounts(other_user.id) == []

    def test_db_stats(self, store, user):
        store.create_trade(make_trade(1, user_id=user.id))
        store.create_goal(Goal(user_id=user.id, title="Consistency"))
        stats = store.get_db_stats(user.id)
        assert stats["trades"] == 1
        assert stats["goals"] == 1
        assert stats["strategies"] == 0
