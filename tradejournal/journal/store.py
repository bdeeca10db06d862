"""
Journal Storage Engine — SQLite-backed, per-user row storage
============================================================

Every record is stored as a JSON document in a 'data' column plus the
handful of columns needed for filtering and ordering.

Row-level access: every read, update and delete takes the caller's user_id
and filters on it. A row owned by another user behaves exactly like a
missing row.

Tables:
  users, sessions, accounts
  trades, tags, trade_tags
  strategies
  goals, habits, habit_logs
  weekly_reviews, ai_summaries
"""

from __future__ import annotations
import json
import os
import sqlite3
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Type, TypeVar

from tradejournal.journal.models import (
    Trade, Strategy, Goal, Habit, HabitLog, WeeklyReview, AISummary,
    Tag, Account, User, parse_timestamp, utc_now,
)
from tradejournal.utils.exceptions import DatabaseError, NotFoundError, ValidationError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)

R = TypeVar("R")

# Fields callers may never overwrite through an update payload
_PROTECTED_FIELDS = {"id", "user_id", "created_at", "updated_at", "password_hash"}


def _check_trade_times(trade: Trade) -> None:
    for name in ("opened_at", "closed_at"):
        value = getattr(trade, name)
        if value and parse_timestamp(value) is None:
            raise ValidationError(f"{name} is not an ISO-8601 timestamp: {value!r}")


def _check_review_dates(review: WeeklyReview) -> None:
    if not review.week_start_date or not review.week_end_date:
        raise ValidationError("week_start_date and week_end_date are required")
    start = parse_timestamp(review.week_start_date)
    end = parse_timestamp(review.week_end_date)
    if start is None or end is None:
        raise ValidationError("Review dates must be ISO-8601 dates")
    if end.date() < start.date():
        raise ValidationError("week_end_date precedes week_start_date")


class JournalStore:
    """
    SQLite journal store.
    One connection per thread, WAL mode, user-scoped queries.
    """

    def __init__(self, db_path: str = "data/journal.db"):
        self._db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._local = threading.local()
        self._init_db()
        logger.info("journal_store_initialized", db_path=db_path)

    def _get_conn(self) -> sqlite3.Connection:
        if not hasattr(self._local, "conn") or self._local.conn is None:
            self._local.conn = sqlite3.connect(self._db_path, timeout=10)
            self._local.conn.row_factory = sqlite3.Row
            self._local.conn.execute("PRAGMA journal_mode=WAL")
            self._local.conn.execute("PRAGMA synchronous=NORMAL")
        return self._local.conn

    def close(self) -> None:
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
            self._local.conn = None

    def _init_db(self):
        conn = self._get_conn()
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS users (
                id          TEXT PRIMARY KEY,
                email       TEXT UNIQUE NOT NULL,
                created_at  TEXT DEFAULT '',
                data        TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS sessions (
                token       TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                created_at  TEXT DEFAULT '',
                expires_at  TEXT DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS accounts (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                created_at  TEXT DEFAULT '',
                data        TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS trades (
                id              TEXT PRIMARY KEY,
                user_id         TEXT NOT NULL,
                account_id      TEXT,
                strategy_id     TEXT,
                instrument      TEXT DEFAULT '',
                direction       TEXT DEFAULT '',
                setup_type      TEXT DEFAULT '',
                session         TEXT DEFAULT '',
                source          TEXT DEFAULT 'MANUAL',
                is_closed       INTEGER DEFAULT 0,
                opened_at       TEXT DEFAULT '',
                closed_at       TEXT DEFAULT '',
                profit_loss     REAL DEFAULT 0,
                created_at      TEXT DEFAULT '',
                updated_at      TEXT DEFAULT '',
                data            TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS strategies (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                name        TEXT DEFAULT '',
                created_at  TEXT DEFAULT '',
                data        TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS tags (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                name        TEXT DEFAULT '',
                type        TEXT DEFAULT 'OTHER',
                created_at  TEXT DEFAULT '',
                data        TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS trade_tags (
                trade_id    TEXT NOT NULL,
                tag_id      TEXT NOT NULL,
                created_at  TEXT DEFAULT '',
                PRIMARY KEY (trade_id, tag_id)
            );

            CREATE TABLE IF NOT EXISTS goals (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                status      TEXT DEFAULT '',
                created_at  TEXT DEFAULT '',
                data        TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS habits (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                created_at  TEXT DEFAULT '',
                data        TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS habit_logs (
                id          TEXT PRIMARY KEY,
                habit_id    TEXT NOT NULL,
                date        TEXT NOT NULL,
                completed   INTEGER DEFAULT 0,
                created_at  TEXT DEFAULT '',
                UNIQUE (habit_id, date)
            );

            CREATE TABLE IF NOT EXISTS weekly_reviews (
                id              TEXT PRIMARY KEY,
                user_id         TEXT NOT NULL,
                week_start_date TEXT DEFAULT '',
                created_at      TEXT DEFAULT '',
                data            TEXT DEFAULT '{}'
            );

            CREATE TABLE IF NOT EXISTS ai_summaries (
                id          TEXT PRIMARY KEY,
                user_id     TEXT NOT NULL,
                type        TEXT DEFAULT '',
                target_id   TEXT DEFAULT '',
                created_at  TEXT DEFAULT '',
                data        TEXT DEFAULT '{}'
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_user ON sessions(user_id);
            CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id);
            CREATE INDEX IF NOT EXISTS idx_trades_user ON trades(user_id);
            CREATE INDEX IF NOT EXISTS idx_trades_opened ON trades(user_id, opened_at);
            CREATE INDEX IF NOT EXISTS idx_trades_closed ON trades(user_id, is_closed);
            CREATE INDEX IF NOT EXISTS idx_trades_instrument ON trades(instrument);
            CREATE INDEX IF NOT EXISTS idx_trades_strategy ON trades(strategy_id);
            CREATE INDEX IF NOT EXISTS idx_strategies_user ON strategies(user_id);
            CREATE INDEX IF NOT EXISTS idx_tags_user ON tags(user_id);
            CREATE INDEX IF NOT EXISTS idx_goals_user ON goals(user_id);
            CREATE INDEX IF NOT EXISTS idx_habits_user ON habits(user_id);
            CREATE INDEX IF NOT EXISTS idx_habit_logs_date ON habit_logs(date);
            CREATE INDEX IF NOT EXISTS idx_reviews_user ON weekly_reviews(user_id, week_start_date);
            CREATE INDEX IF NOT EXISTS idx_ai_user ON ai_summaries(user_id, type);
        """)
        conn.commit()

    # ─── GENERIC HELPERS ────────────────────────────────────────

    def _execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        conn = self._get_conn()
        try:
            cursor = conn.execute(sql, params)
            conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise ValidationError(f"Constraint violated: {e}") from e
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("store_execute_failed", error=str(e))
            raise DatabaseError(str(e)) from e

    def _query(self, sql: str, params: tuple | list = ()) -> List[sqlite3.Row]:
        try:
            return self._get_conn().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            logger.error("store_query_failed", error=str(e))
            raise DatabaseError(str(e)) from e

    @staticmethod
    def _decode(cls: Type[R], rows: List[sqlite3.Row]) -> List[R]:
        records = []
        for row in rows:
            try:
                records.append(cls.from_dict(json.loads(row["data"])))
            except (TypeError, ValueError) as e:
                logger.error("record_parse_failed", table=cls.__name__, error=str(e))
        return records

    def _get_owned(self, table: str, cls: Type[R], record_id: str, user_id: str) -> Optional[R]:
        rows = self._query(f"SELECT data FROM {table} WHERE id = ? AND user_id = ?",
                           (record_id, user_id))
        decoded = self._decode(cls, rows)
        return decoded[0] if decoded else None

    def _require_owned(self, table: str, cls: Type[R], record_id: str, user_id: str) -> R:
        record = self._get_owned(table, cls, record_id, user_id)
        if record is None:
            raise NotFoundError(f"{cls.__name__} {record_id} not found")
        return record

    def _delete_owned(self, table: str, record_id: str, user_id: str) -> bool:
        cursor = self._execute(f"DELETE FROM {table} WHERE id = ? AND user_id = ?",
                               (record_id, user_id))
        return cursor.rowcount > 0

    @staticmethod
    def _apply_updates(record: Any, updates: Dict[str, Any]) -> None:
        for key, value in updates.items():
            if key in _PROTECTED_FIELDS or key not in record.__dataclass_fields__:
                continue
            setattr(record, key, value)
        record.updated_at = utc_now()

    # ─── USERS & SESSIONS ───────────────────────────────────────

    def create_user(self, user: User) -> User:
        user.email = user.email.strip().lower()
        if self.get_user_by_email(user.email):
            raise ValidationError("Email already registered")
        self._execute(
            "INSERT INTO users (id, email, created_at, data) VALUES (?, ?, ?, ?)",
            (user.id, user.email, user.created_at, json.dumps(user.to_dict(), default=str)))
        logger.info("user_created", user_id=user.id)
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        decoded = self._decode(User, self._query("SELECT data FROM users WHERE id = ?", (user_id,)))
        return decoded[0] if decoded else None

    def get_user_by_email(self, email: str) -> Optional[User]:
        rows = self._query("SELECT data FROM users WHERE email = ?", (email.strip().lower(),))
        decoded = self._decode(User, rows)
        return decoded[0] if decoded else None

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        updates = {k: v for k, v in updates.items() if k != "email"}
        self._apply_updates(user, updates)
        self._execute("UPDATE users SET data = ? WHERE id = ?",
                      (json.dumps(user.to_dict(), default=str), user_id))
        return user

    def create_session(self, token: str, user_id: str, expires_at: str) -> None:
        self._execute(
            "INSERT INTO sessions (token, user_id, created_at, expires_at) VALUES (?, ?, ?, ?)",
            (token, user_id, utc_now(), expires_at))

    def get_session(self, token: str) -> Optional[Dict[str, str]]:
        rows = self._query("SELECT token, user_id, created_at, expires_at FROM sessions WHERE token = ?",
                           (token,))
        return dict(rows[0]) if rows else None

    def delete_session(self, token: str) -> None:
        self._execute("DELETE FROM sessions WHERE token = ?", (token,))

    def purge_expired_sessions(self, now: Optional[str] = None) -> int:
        cursor = self._execute("DELETE FROM sessions WHERE expires_at < ?", (now or utc_now(),))
        return cursor.rowcount

    # ─── ACCOUNTS ───────────────────────────────────────────────

    def create_account(self, account: Account) -> Account:
        self._execute(
            "INSERT INTO accounts (id, user_id, created_at, data) VALUES (?, ?, ?, ?)",
            (account.id, account.user_id, account.created_at, json.dumps(account.to_dict(), default=str)))
        return account

    def list_accounts(self, user_id: str) -> List[Account]:
        rows = self._query("SELECT data FROM accounts WHERE user_id = ? ORDER BY created_at", (user_id,))
        return self._decode(Account, rows)

    # ─── TRADES ─────────────────────────────────────────────────

    def _write_trade(self, trade: Trade) -> None:
        d = trade.to_dict()
        self._execute("""
            INSERT OR REPLACE INTO trades
            (id, user_id, account_id, strategy_id, instrument, direction, setup_type,
             session, source, is_closed, opened_at, closed_at, profit_loss,
             created_at, updated_at, data)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            d["id"], d["user_id"], d["account_id"], d["strategy_id"], d["instrument"],
            d["direction"], d["setup_type"] or "", d["session"] or "", d["source"],
            1 if trade.is_closed else 0, d["opened_at"], d["closed_at"] or "",
            trade.pnl, d["created_at"], d["updated_at"], json.dumps(d, default=str),
        ))

    def create_trade(self, trade: Trade) -> Trade:
        if not trade.user_id:
            raise ValidationError("Trade must belong to a user")
        if trade.strategy_id and not self.get_strategy(trade.user_id, trade.strategy_id):
            raise ValidationError(f"Unknown strategy {trade.strategy_id}")
        trade.compute_outcome()
        if not trade.instrument:
            raise ValidationError("Instrument required")
        _check_trade_times(trade)
        self._write_trade(trade)
        return trade

    def create_trades(self, trades: List[Trade]) -> int:
        """Bulk insert in a single transaction (CSV import)."""
        conn = self._get_conn()
        try:
            for trade in trades:
                trade.compute_outcome()
                d = trade.to_dict()
                conn.execute("""
                    INSERT OR REPLACE INTO trades
                    (id, user_id, account_id, strategy_id, instrument, direction, setup_type,
                     session, source, is_closed, opened_at, closed_at, profit_loss,
                     created_at, updated_at, data)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    d["id"], d["user_id"], d["account_id"], d["strategy_id"], d["instrument"],
                    d["direction"], d["setup_type"] or "", d["session"] or "", d["source"],
                    1 if trade.is_closed else 0, d["opened_at"], d["closed_at"] or "",
                    trade.pnl, d["created_at"], d["updated_at"], json.dumps(d, default=str),
                ))
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            logger.error("bulk_trade_insert_failed", count=len(trades), error=str(e))
            raise DatabaseError(str(e)) from e
        return len(trades)

    def get_trade(self, user_id: str, trade_id: str) -> Optional[Trade]:
        return self._get_owned("trades", Trade, trade_id, user_id)

    def update_trade(self, user_id: str, trade_id: str, updates: Dict[str, Any]) -> Trade:
        trade = self._require_owned("trades", Trade, trade_id, user_id)
        strategy_id = updates.get("strategy_id")
        if strategy_id and not self.get_strategy(user_id, strategy_id):
            raise ValidationError(f"Unknown strategy {strategy_id}")
        # A recalculation only happens when prices change; keep a manual P&L otherwise
        if any(k in updates for k in ("entry_price", "exit_price", "position_size", "direction")):
            trade.profit_loss_currency = None
        self._apply_updates(trade, updates)
        trade.compute_outcome()
        _check_trade_times(trade)
        self._write_trade(trade)
        return trade

    def delete_trade(self, user_id: str, trade_id: str) -> bool:
        deleted = self._delete_owned("trades", trade_id, user_id)
        if deleted:
            self._execute("DELETE FROM trade_tags WHERE trade_id = ?", (trade_id,))
        return deleted

    def _trade_conditions(
        self,
        user_id: str,
        status: str = "",
        instrument: str = "",
        strategy_id: str = "",
        direction: str = "",
        session: str = "",
        from_date: str = "",
        to_date: str = "",
        search: str = "",
    ) -> tuple[str, list]:
        conditions = ["user_id = ?"]
        params: list = [user_id]
        if status == "open":
            conditions.append("is_closed = 0")
        elif status == "closed":
            conditions.append("is_closed = 1")
        if instrument:
            conditions.append("instrument LIKE ?")
            params.append(f"%{instrument.strip().upper()}%")
        if strategy_id:
            conditions.append("strategy_id = ?")
            params.append(strategy_id)
        if direction:
            conditions.append("direction = ?")
            params.append(direction.upper())
        if session:
            conditions.append("session = ?")
            params.append(session)
        if from_date:
            conditions.append("opened_at >= ?")
            params.append(from_date)
        if to_date:
            conditions.append("opened_at <= ?")
            params.append(to_date)
        if search:
            conditions.append("(instrument LIKE ? OR setup_type LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        return " AND ".join(conditions), params

    def query_trades(
        self,
        user_id: str,
        status: str = "",
        instrument: str = "",
        strategy_id: str = "",
        direction: str = "",
        session: str = "",
        from_date: str = "",
        to_date: str = "",
        search: str = "",
        limit: int = 1000,
        offset: int = 0,
        order_by: str = "opened_at DESC",
    ) -> List[Trade]:
        """Filtered, sorted, paginated trades for one user."""
        where, params = self._trade_conditions(
            user_id, status=status, instrument=instrument, strategy_id=strategy_id,
            direction=direction, session=session, from_date=from_date, to_date=to_date,
            search=search,
        )
        allowed_order = {"opened_at DESC", "opened_at ASC", "closed_at DESC", "closed_at ASC",
                         "profit_loss DESC", "profit_loss ASC", "created_at DESC"}
        if order_by not in allowed_order:
            order_by = "opened_at DESC"

        sql = f"SELECT data FROM trades WHERE {where} ORDER BY {order_by} LIMIT ? OFFSET ?"
        params.extend([limit, offset])
        return self._decode(Trade, self._query(sql, params))

    def count_trades(self, user_id: str, **filters: str) -> int:
        where, params = self._trade_conditions(user_id, **filters)
        rows = self._query(f"SELECT COUNT(*) AS cnt FROM trades WHERE {where}", params)
        return rows[0]["cnt"] if rows else 0

    def get_instruments(self, user_id: str) -> List[str]:
        rows = self._query("SELECT DISTINCT instrument FROM trades WHERE user_id = ? ORDER BY instrument",
                           (user_id,))
        return [r["instrument"] for r in rows if r["instrument"]]

    # ─── TAGS ───────────────────────────────────────────────────

    def create_tag(self, tag: Tag) -> Tag:
        self._execute(
            "INSERT INTO tags (id, user_id, name, type, created_at, data) VALUES (?, ?, ?, ?, ?, ?)",
            (tag.id, tag.user_id, tag.name, tag.type, tag.created_at,
             json.dumps(tag.to_dict(), default=str)))
        return tag

    def list_tags(self, user_id: str, tag_type: str = "") -> List[Tag]:
        if tag_type:
            rows = self._query("SELECT data FROM tags WHERE user_id = ? AND type = ? ORDER BY name",
                               (user_id, tag_type))
        else:
            rows = self._query("SELECT data FROM tags WHERE user_id = ? ORDER BY name", (user_id,))
        return self._decode(Tag, rows)

    def delete_tag(self, user_id: str, tag_id: str) -> bool:
        deleted = self._delete_owned("tags", tag_id, user_id)
        if deleted:
            self._execute("DELETE FROM trade_tags WHERE tag_id = ?", (tag_id,))
        return deleted

    def attach_tag(self, user_id: str, trade_id: str, tag_id: str) -> None:
        self._require_owned("trades", Trade, trade_id, user_id)
        self._require_owned("tags", Tag, tag_id, user_id)
        self._execute(
            "INSERT OR IGNORE INTO trade_tags (trade_id, tag_id, created_at) VALUES (?, ?, ?)",
            (trade_id, tag_id, utc_now()))

    def detach_tag(self, user_id: str, trade_id: str, tag_id: str) -> bool:
        self._require_owned("trades", Trade, trade_id, user_id)
        cursor = self._execute("DELETE FROM trade_tags WHERE trade_id = ? AND tag_id = ?",
                               (trade_id, tag_id))
        return cursor.rowcount > 0

    def get_trade_tags(self, user_id: str, trade_id: str) -> List[Tag]:
        rows = self._query("""
            SELECT t.data FROM tags t
            JOIN trade_tags tt ON tt.tag_id = t.id
            WHERE tt.trade_id = ? AND t.user_id = ?
            ORDER BY t.name
        """, (trade_id, user_id))
        return self._decode(Tag, rows)

    # ─── STRATEGIES (PLAYBOOK) ──────────────────────────────────

    def _write_strategy(self, strategy: Strategy) -> None:
        self._execute(
            "INSERT OR REPLACE INTO strategies (id, user_id, name, created_at, data) VALUES (?, ?, ?, ?, ?)",
            (strategy.id, strategy.user_id, strategy.name, strategy.created_at,
             json.dumps(strategy.to_dict(), default=str)))

    def create_strategy(self, strategy: Strategy) -> Strategy:
        if not strategy.name.strip():
            raise ValidationError("Strategy name required")
        self._write_strategy(strategy)
        return strategy

    def get_strategy(self, user_id: str, strategy_id: str) -> Optional[Strategy]:
        return self._get_owned("strategies", Strategy, strategy_id, user_id)

    def list_strategies(self, user_id: str) -> List[Strategy]:
        rows = self._query("SELECT data FROM strategies WHERE user_id = ? ORDER BY created_at DESC",
                           (user_id,))
        return self._decode(Strategy, rows)

    def get_strategy_names(self, user_id: str) -> Dict[str, str]:
        rows = self._query("SELECT id, name FROM strategies WHERE user_id = ?", (user_id,))
        return {r["id"]: r["name"] for r in rows}

    def update_strategy(self, user_id: str, strategy_id: str, updates: Dict[str, Any]) -> Strategy:
        strategy = self._require_owned("strategies", Strategy, strategy_id, user_id)
        self._apply_updates(strategy, updates)
        if not strategy.name.strip():
            raise ValidationError("Strategy name required")
        self._write_strategy(strategy)
        return strategy

    def delete_strategy(self, user_id: str, strategy_id: str) -> bool:
        if not self._delete_owned("strategies", strategy_id, user_id):
            return False
        for trade in self.query_trades(user_id, strategy_id=strategy_id, limit=100000):
            trade.strategy_id = None
            trade.updated_at = utc_now()
            self._write_trade(trade)
        return True

    # ─── GOALS & HABITS ─────────────────────────────────────────

    def _write_goal(self, goal: Goal) -> None:
        self._execute(
            "INSERT OR REPLACE INTO goals (id, user_id, status, created_at, data) VALUES (?, ?, ?, ?, ?)",
            (goal.id, goal.user_id, goal.status, goal.created_at,
             json.dumps(goal.to_dict(), default=str)))

    def create_goal(self, goal: Goal) -> Goal:
        if not goal.title.strip():
            raise ValidationError("Goal title required")
        self._write_goal(goal)
        return goal

    def list_goals(self, user_id: str, status: str = "") -> List[Goal]:
        if status:
            rows = self._query("SELECT data FROM goals WHERE user_id = ? AND status = ? ORDER BY created_at DESC",
                               (user_id, status))
        else:
            rows = self._query("SELECT data FROM goals WHERE user_id = ? ORDER BY created_at DESC", (user_id,))
        return self._decode(Goal, rows)

    def update_goal(self, user_id: str, goal_id: str, updates: Dict[str, Any]) -> Goal:
        goal = self._require_owned("goals", Goal, goal_id, user_id)
        self._apply_updates(goal, updates)
        self._write_goal(goal)
        return goal

    def delete_goal(self, user_id: str, goal_id: str) -> bool:
        return self._delete_owned("goals", goal_id, user_id)

    def create_habit(self, habit: Habit) -> Habit:
        if not habit.name.strip():
            raise ValidationError("Habit name required")
        self._execute(
            "INSERT INTO habits (id, user_id, created_at, data) VALUES (?, ?, ?, ?)",
            (habit.id, habit.user_id, habit.created_at, json.dumps(habit.to_dict(), default=str)))
        return habit

    def list_habits(self, user_id: str) -> List[Habit]:
        rows = self._query("SELECT data FROM habits WHERE user_id = ? ORDER BY created_at", (user_id,))
        return self._decode(Habit, rows)

    def delete_habit(self, user_id: str, habit_id: str) -> bool:
        deleted = self._delete_owned("habits", habit_id, user_id)
        if deleted:
            self._execute("DELETE FROM habit_logs WHERE habit_id = ?", (habit_id,))
        return deleted

    def set_habit_log(self, user_id: str, habit_id: str, date: str, completed: bool) -> HabitLog:
        """Upsert the completion flag for one habit on one date."""
        self._require_owned("habits", Habit, habit_id, user_id)
        rows = self._query("SELECT id, created_at FROM habit_logs WHERE habit_id = ? AND date = ?",
                           (habit_id, date))
        if rows:
            log = HabitLog(id=rows[0]["id"], habit_id=habit_id, date=date, completed=completed,
                           created_at=rows[0]["created_at"])
            self._execute("UPDATE habit_logs SET completed = ? WHERE id = ?",
                          (1 if completed else 0, log.id))
        else:
            log = HabitLog(habit_id=habit_id, date=date, completed=completed)
            self._execute(
                "INSERT INTO habit_logs (id, habit_id, date, completed, created_at) VALUES (?, ?, ?, ?, ?)",
                (log.id, habit_id, date, 1 if completed else 0, log.created_at))
        return log

    def list_habit_logs(self, user_id: str, from_date: str = "", to_date: str = "") -> List[HabitLog]:
        conditions = ["h.user_id = ?"]
        params: list = [user_id]
        if from_date:
            conditions.append("l.date >= ?"); params.append(from_date)
        if to_date:
            conditions.append("l.date <= ?"); params.append(to_date)
        where = " AND ".join(conditions)
        rows = self._query(f"""
            SELECT l.id, l.habit_id, l.date, l.completed, l.created_at
            FROM habit_logs l JOIN habits h ON h.id = l.habit_id
            WHERE {where} ORDER BY l.date
        """, params)
        return [HabitLog(id=r["id"], habit_id=r["habit_id"], date=r["date"],
                         completed=bool(r["completed"]), created_at=r["created_at"]) for r in rows]

    # ─── WEEKLY REVIEWS ─────────────────────────────────────────

    def _write_review(self, review: WeeklyReview) -> None:
        self._execute(
            "INSERT OR REPLACE INTO weekly_reviews (id, user_id, week_start_date, created_at, data) "
            "VALUES (?, ?, ?, ?, ?)",
            (review.id, review.user_id, review.week_start_date, review.created_at,
             json.dumps(review.to_dict(), default=str)))

    def create_review(self, review: WeeklyReview) -> WeeklyReview:
        _check_review_dates(review)
        self._write_review(review)
        return review

    def get_review(self, user_id: str, review_id: str) -> Optional[WeeklyReview]:
        return self._get_owned("weekly_reviews", WeeklyReview, review_id, user_id)

    def list_reviews(self, user_id: str, limit: int = 52) -> List[WeeklyReview]:
        rows = self._query(
            "SELECT data FROM weekly_reviews WHERE user_id = ? ORDER BY week_start_date DESC LIMIT ?",
            (user_id, limit))
        return self._decode(WeeklyReview, rows)

    def update_review(self, user_id: str, review_id: str, updates: Dict[str, Any]) -> WeeklyReview:
        review = self._require_owned("weekly_reviews", WeeklyReview, review_id, user_id)
        self._apply_updates(review, updates)
        _check_review_dates(review)
        self._write_review(review)
        return review

    # ─── AI SUMMARIES ───────────────────────────────────────────

    def record_ai_summary(self, summary: AISummary) -> AISummary:
        self._execute(
            "INSERT INTO ai_summaries (id, user_id, type, target_id, created_at, data) VALUES (?, ?, ?, ?, ?, ?)",
            (summary.id, summary.user_id, summary.type, summary.target_id, summary.created_at,
             json.dumps(summary.to_dict(), default=str)))
        return summary

    def list_ai_summaries(self, user_id: str, summary_type: str = "", target_id: str = "",
                          limit: int = 50) -> List[AISummary]:
        conditions = ["user_id = ?"]
        params: list = [user_id]
        if summary_type:
            conditions.append("type = ?"); params.append(summary_type)
        if target_id:
            conditions.append("target_id = ?"); params.append(target_id)
        where = " AND ".join(conditions)
        rows = self._query(
            f"SELECT data FROM ai_summaries WHERE {where} ORDER BY created_at DESC LIMIT ?",
            params + [limit])
        return self._decode(AISummary, rows)

    # ─── STATS ──────────────────────────────────────────────────

    def get_db_stats(self, user_id: str) -> Dict[str, Any]:
        stats: Dict[str, Any] = {}
        for table in ("trades", "strategies", "goals", "habits", "weekly_reviews", "ai_summaries"):
            rows = self._query(f"SELECT COUNT(*) AS cnt FROM {table} WHERE user_id = ?", (user_id,))
            stats[table] = rows[0]["cnt"] if rows else 0
        return stats


def session_expiry(days: int, now: Optional[datetime] = None) -> str:
    return ((now or datetime.now(timezone.utc)) + timedelta(days=days)).isoformat()
