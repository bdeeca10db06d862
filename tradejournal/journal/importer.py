"""
CSV import / export of trades.

Broker exports name their columns differently; headers are normalised to
snake_case and mapped onto Trade fields through COLUMN_ALIASES. Rows that
cannot be parsed are reported back with their line number instead of
aborting the whole import.
"""

from __future__ import annotations
import io
from typing import List, Dict, Any, Tuple

import pandas as pd

from tradejournal.journal.models import Trade, TradeDirection, TradeSource, ImportSource
from tradejournal.utils.exceptions import ValidationError
from tradejournal.utils.logger import get_logger

logger = get_logger(__name__)

COLUMN_ALIASES: Dict[str, str] = {
    "symbol": "instrument",
    "ticker": "instrument",
    "pair": "instrument",
    "side": "direction",
    "type": "direction",
    "open_price": "entry_price",
    "entry": "entry_price",
    "close_price": "exit_price",
    "exit": "exit_price",
    "s_l": "stop_loss",
    "sl": "stop_loss",
    "t_p": "take_profit",
    "tp": "take_profit",
    "volume": "position_size",
    "size": "position_size",
    "lots": "position_size",
    "quantity": "position_size",
    "open_time": "opened_at",
    "entry_time": "opened_at",
    "close_time": "closed_at",
    "exit_time": "closed_at",
    "profit": "profit_loss_currency",
    "pnl": "profit_loss_currency",
    "net_profit": "profit_loss_currency",
    "comment": "notes",
}

_DIRECTION_WORDS = {"buy": "LONG", "long": "LONG", "sell": "SHORT", "short": "SHORT"}

_FLOAT_FIELDS = ("entry_price", "exit_price", "stop_loss", "take_profit", "position_size",
                 "risk_amount", "reward_amount", "profit_loss_currency")
_TEXT_FIELDS = ("session", "market_condition", "setup_type", "confluence", "notes")

EXPORT_COLUMNS = [
    "id", "instrument", "direction", "entry_price", "exit_price", "stop_loss", "take_profit",
    "position_size", "risk_amount", "profit_loss_currency", "profit_loss_r", "opened_at",
    "closed_at", "holding_minutes", "session", "setup_type", "strategy_id", "notes",
]


def _normalise_header(name: str) -> str:
    key = str(name).strip().lower().replace(" ", "_").replace("/", "_").replace("-", "_")
    return COLUMN_ALIASES.get(key, key)


def _timestamp(value: Any) -> str:
    ts = pd.to_datetime(value, utc=True)
    return ts.isoformat()


def _row_to_trade(row: Dict[str, Any], user_id: str, source: str) -> Trade:
    def present(key: str) -> bool:
        return key in row and not pd.isna(row[key]) and str(row[key]).strip() != ""

    if not present("instrument"):
        raise ValueError("missing instrument")
    if not present("opened_at"):
        raise ValueError("missing open time")

    direction = str(row.get("direction", "LONG")).strip().lower() if present("direction") else "long"
    if direction not in _DIRECTION_WORDS:
        raise ValueError(f"unknown direction '{row['direction']}'")

    trade = Trade(
        user_id=user_id,
        instrument=str(row["instrument"]),
        direction=_DIRECTION_WORDS[direction],
        opened_at=_timestamp(row["opened_at"]),
        closed_at=_timestamp(row["closed_at"]) if present("closed_at") else None,
        source=TradeSource.IMPORT.value,
        custom_fields={"import_source": source},
    )
    for key in _FLOAT_FIELDS:
        if present(key):
            setattr(trade, key, float(row[key]))
    for key in _TEXT_FIELDS:
        if present(key):
            setattr(trade, key, str(row[key]))
    trade.compute_outcome()
    return trade


def parse_trades_csv(content: str, user_id: str,
                     source: str = ImportSource.GENERIC.value) -> Tuple[List[Trade], List[Dict[str, Any]]]:
    """Returns (trades, errors); errors carry the 1-based CSV line number."""
    try:
        source = ImportSource(source.upper()).value
    except ValueError:
        raise ValidationError(f"Unknown import source '{source}'")
    if not content or not content.strip():
        raise ValidationError("Empty CSV")

    try:
        df = pd.read_csv(io.StringIO(content))
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        raise ValidationError(f"Unreadable CSV: {e}") from e
    df.columns = [_normalise_header(c) for c in df.columns]

    trades: List[Trade] = []
    errors: List[Dict[str, Any]] = []
    for idx, row in enumerate(df.to_dict(orient="records")):
        try:
            trades.append(_row_to_trade(row, user_id, source))
        except (ValueError, TypeError) as e:
            errors.append({"line": idx + 2, "error": str(e)})

    logger.info("trades_csv_parsed", user_id=user_id, source=source,
                parsed=len(trades), failed=len(errors))
    return trades, errors


def trades_to_csv(trades: List[Trade]) -> str:
    df = pd.DataFrame([t.to_dict() for t in trades], columns=EXPORT_COLUMNS)
    return df.to_csv(index=False)
