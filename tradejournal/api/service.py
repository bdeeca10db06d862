from __future__ import annotations

from typing import Any, Optional

from tradejournal.ai.advisor import TradeAdvisor
from tradejournal.ai.gateway import AIGatewayClient
from tradejournal.auth.session_auth import SessionAuth
from tradejournal.journal import importer, metrics
from tradejournal.journal.analytics import JournalAnalytics
from tradejournal.journal.models import (
    Account, Goal, Habit, Strategy, Tag, Trade, WeeklyReview, User,
)
from tradejournal.journal.store import JournalStore
from tradejournal.market.ticker import MarketTicker
from tradejournal.utils.config import get_settings
from tradejournal.utils.exceptions import NotFoundError, ValidationError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)

_REQUIRED_TRADE_FIELDS = {"instrument", "direction", "entry_price", "opened_at", "custom_fields"}


def _present(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


class JournalService:
    """Everything one signed-in user can do. Every call is scoped to user_id."""

    def __init__(self, user_id: str, store: JournalStore, analytics: JournalAnalytics,
                 advisor: TradeAdvisor) -> None:
        self._user_id = user_id
        self._store = store
        self._analytics = analytics
        self._advisor = advisor

    @property
    def user_id(self) -> str:
        return self._user_id

    def get_profile(self) -> dict[str, Any]:
        user = self._store.get_user(self._user_id)
        if not user:
            raise NotFoundError("User not found")
        profile = user.public_dict()
        profile["counts"] = self._store.get_db_stats(self._user_id)
        return profile

    def update_profile(self, updates: dict[str, Any]) -> dict[str, Any]:
        return self._store.update_user(self._user_id, updates).public_dict()

    def list_accounts(self) -> list[dict[str, Any]]:
        return [a.to_dict() for a in self._store.list_accounts(self._user_id)]

    def create_account(self, data: dict[str, Any]) -> dict[str, Any]:
        account = Account.from_dict({**_present(data), "user_id": self._user_id})
        if not account.name.strip():
            raise ValidationError("Account name required")
        return self._store.create_account(account).to_dict()

    # ── Trades ───────────────────────────────────────────────────

    def _trade_dict(self, trade: Trade) -> dict[str, Any]:
        d = trade.to_dict()
        d["tags"] = [t.to_dict() for t in self._store.get_trade_tags(self._user_id, trade.id)]
        return d

    def list_trades(self, limit: int = 100, offset: int = 0, order_by: str = "opened_at DESC",
                    **filters: str) -> dict[str, Any]:
        trades = self._store.query_trades(self._user_id, limit=limit, offset=offset,
                                          order_by=order_by, **filters)
        return {
            "trades": [t.to_dict() for t in trades],
            "total": self._store.count_trades(self._user_id, **filters),
            "limit": limit,
            "offset": offset,
        }

    def get_trade(self, trade_id: str) -> dict[str, Any]:
        trade = self._store.get_trade(self._user_id, trade_id)
        if not trade:
            raise NotFoundError(f"Trade {trade_id} not found")
        return self._trade_dict(trade)

    def create_trade(self, data: dict[str, Any]) -> dict[str, Any]:
        trade = Trade.from_dict({**_present(data), "user_id": self._user_id})
        self._store.create_trade(trade)
        logger.info("trade_created", user_id=self._user_id, trade_id=trade.id, instrument=trade.instrument)
        return trade.to_dict()

    def update_trade(self, trade_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        # These fields can be changed but never cleared
        updates = {k: v for k, v in updates.items() if v is not None or k not in _REQUIRED_TRADE_FIELDS}
        trade = self._store.update_trade(self._user_id, trade_id, updates)
        logger.info("trade_updated", user_id=self._user_id, trade_id=trade_id)
        return self._trade_dict(trade)

    def delete_trade(self, trade_id: str) -> dict[str, Any]:
        if not self._store.delete_trade(self._user_id, trade_id):
            raise NotFoundError(f"Trade {trade_id} not found")
        logger.info("trade_deleted", user_id=self._user_id, trade_id=trade_id)
        return {"deleted": trade_id}

    def import_trades(self, content: str, source: str = "GENERIC") -> dict[str, Any]:
        trades, errors = importer.parse_trades_csv(content, self._user_id, source)
        imported = self._store.create_trades(trades) if trades else 0
        return {"imported": imported, "errors": errors}

    def export_trades(self) -> str:
        return importer.trades_to_csv(self._store.query_trades(self._user_id, limit=100000))

    def get_instruments(self) -> list[str]:
        return self._store.get_instruments(self._user_id)

    # ── Tags ─────────────────────────────────────────────────────

    def list_tags(self, tag_type: str = "") -> list[dict[str, Any]]:
        return [t.to_dict() for t in self._store.list_tags(self._user_id, tag_type)]

    def create_tag(self, name: str, tag_type: str) -> dict[str, Any]:
        return self._store.create_tag(Tag(user_id=self._user_id, name=name.strip(), type=tag_type)).to_dict()

    def delete_tag(self, tag_id: str) -> dict[str, Any]:
        if not self._store.delete_tag(self._user_id, tag_id):
            raise NotFoundError(f"Tag {tag_id} not found")
        return {"deleted": tag_id}

    def attach_tag(self, trade_id: str, tag_id: str) -> dict[str, Any]:
        self._store.attach_tag(self._user_id, trade_id, tag_id)
        return self.get_trade(trade_id)

    def detach_tag(self, trade_id: str, tag_id: str) -> dict[str, Any]:
        self._store.detach_tag(self._user_id, trade_id, tag_id)
        return self.get_trade(trade_id)

    # ── Playbook ─────────────────────────────────────────────────

    def list_strategies(self) -> list[dict[str, Any]]:
        return [s.to_dict() for s in self._store.list_strategies(self._user_id)]

    def get_strategy(self, strategy_id: str) -> dict[str, Any]:
        strategy = self._store.get_strategy(self._user_id, strategy_id)
        if not strategy:
            raise NotFoundError(f"Strategy {strategy_id} not found")
        d = strategy.to_dict()
        trades = self._store.query_trades(self._user_id, strategy_id=strategy_id, limit=100000)
        d["performance"] = metrics.compute_metrics(trades).to_dict()
        return d

    def create_strategy(self, data: dict[str, Any]) -> dict[str, Any]:
        strategy = Strategy.from_dict({**_present(data), "user_id": self._user_id})
        if not strategy.checklist:
            strategy.checklist = Strategy().checklist
        self._store.create_strategy(strategy)
        logger.info("strategy_created", user_id=self._user_id, strategy_id=strategy.id)
        return strategy.to_dict()

    def update_strategy(self, strategy_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return self._store.update_strategy(self._user_id, strategy_id, updates).to_dict()

    def delete_strategy(self, strategy_id: str) -> dict[str, Any]:
        if not self._store.delete_strategy(self._user_id, strategy_id):
            raise NotFoundError(f"Strategy {strategy_id} not found")
        return {"deleted": strategy_id}

    def get_playbook_stats(self) -> dict[str, Any]:
        return metrics.playbook_stats(self._store.list_strategies(self._user_id))

    # ── Goals & habits ───────────────────────────────────────────

    def list_goals(self, status: str = "") -> list[dict[str, Any]]:
        return [g.to_dict() for g in self._store.list_goals(self._user_id, status)]

    def create_goal(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._store.create_goal(Goal.from_dict({**_present(data), "user_id": self._user_id})).to_dict()

    def update_goal(self, goal_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return self._store.update_goal(self._user_id, goal_id, updates).to_dict()

    def delete_goal(self, goal_id: str) -> dict[str, Any]:
        if not self._store.delete_goal(self._user_id, goal_id):
            raise NotFoundError(f"Goal {goal_id} not found")
        return {"deleted": goal_id}

    def list_habits(self, from_date: str = "", to_date: str = "") -> dict[str, Any]:
        return {
            "habits": [h.to_dict() for h in self._store.list_habits(self._user_id)],
            "logs": [log.to_dict() for log in self._store.list_habit_logs(self._user_id, from_date, to_date)],
        }

    def create_habit(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._store.create_habit(Habit.from_dict({**_present(data), "user_id": self._user_id})).to_dict()

    def delete_habit(self, habit_id: str) -> dict[str, Any]:
        if not self._store.delete_habit(self._user_id, habit_id):
            raise NotFoundError(f"Habit {habit_id} not found")
        return {"deleted": habit_id}

    def log_habit(self, habit_id: str, date: str, completed: bool) -> dict[str, Any]:
        return self._store.set_habit_log(self._user_id, habit_id, date, completed).to_dict()

    def get_goal_stats(self) -> dict[str, Any]:
        return metrics.goal_stats(
            self._store.list_goals(self._user_id),
            self._store.list_habits(self._user_id),
            self._store.list_habit_logs(self._user_id),
        )

    # ── Weekly reviews ───────────────────────────────────────────

    def list_reviews(self) -> list[dict[str, Any]]:
        return [r.to_dict() for r in self._store.list_reviews(self._user_id)]

    def create_review(self, data: dict[str, Any]) -> dict[str, Any]:
        return self._store.create_review(WeeklyReview.from_dict({**_present(data), "user_id": self._user_id})).to_dict()

    def update_review(self, review_id: str, updates: dict[str, Any]) -> dict[str, Any]:
        return self._store.update_review(self._user_id, review_id, updates).to_dict()

    async def summarize_review(self, review_id: str) -> dict[str, Any]:
        return await self._advisor.summarize_weekly_review(self._user_id, review_id)

    # ── Analytics ────────────────────────────────────────────────

    def get_analytics(self, period: str = "all") -> dict[str, Any]:
        return self._analytics.overview(self._user_id, period)

    def get_period_metrics(self) -> dict[str, Any]:
        return self._analytics.period_metrics(self._user_id)

    def get_dashboard(self) -> dict[str, Any]:
        return self._analytics.dashboard(self._user_id)

    def get_journal_summary(self) -> dict[str, Any]:
        return self._analytics.journal_summary(self._user_id)

    def get_daily_pnl(self, days: int = 30) -> list[dict[str, Any]]:
        return self._analytics.daily_pnl(self._user_id, days)

    # ── AI ───────────────────────────────────────────────────────

    async def predict_trade(self, trade_data: dict[str, Any]) -> dict[str, Any]:
        return await self._advisor.predict_trade(self._user_id, trade_data)

    async def analyze_trades(self, period: str = "month") -> dict[str, Any]:
        return await self._advisor.analyze_performance(self._user_id, period)

    def list_ai_summaries(self, summary_type: str = "", target_id: str = "") -> list[dict[str, Any]]:
        return [s.to_dict() for s in self._store.list_ai_summaries(self._user_id, summary_type, target_id)]


class JournalServiceManager:
    """Process-wide owner of the shared store, auth, AI gateway and ticker."""

    _instance: Optional[JournalServiceManager] = None

    def __init__(self, store: Optional[JournalStore] = None, gateway: Optional[AIGatewayClient] = None,
                 ticker: Optional[MarketTicker] = None) -> None:
        settings = get_settings()
        self.store = store or JournalStore(settings.database_path)
        self.gateway = gateway or AIGatewayClient()
        self.ticker = ticker or MarketTicker()
        self.auth = SessionAuth(self.store)
        self.analytics = JournalAnalytics(self.store)
        self.advisor = TradeAdvisor(self.store, self.gateway)
        self._services: dict[str, JournalService] = {}

    @classmethod
    def get_instance(cls) -> JournalServiceManager:
        if cls._instance is None:
            cls._instance = JournalServiceManager()
        return cls._instance

    @classmethod
    def configure(cls, **components: Any) -> JournalServiceManager:
        """Replace the shared instance (store path changes, tests)."""
        cls._instance = JournalServiceManager(**components)
        return cls._instance

    def get_service(self, user: User) -> JournalService:
        if user.id not in self._services:
            self._services[user.id] = JournalService(user.id, self.store, self.analytics, self.advisor)
            logger.info("service_created", user_id=user.id)
        return self._services[user.id]

    def remove_service(self, user_id: str) -> None:
        self._services.pop(user_id, None)

    async def shutdown(self) -> None:
        await self.ticker.stop()
        await self.gateway.close()
