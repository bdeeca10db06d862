from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

import uvicorn

from tradejournal.journal.store import JournalStore
from tradejournal.utils.config import get_settings
from tradejournal.utils.logger import get_logger, setup_logging


def _purge_expired_sessions() -> None:
    """Pre-startup housekeeping: drop sessions that expired while the server was down."""
    store = JournalStore(get_settings().database_path)
    removed = store.purge_expired_sessions()
    store.close()
    if removed:
        get_logger(__name__).info("expired_sessions_purged", count=removed)


def main() -> None:
    setup_logging()
    _purge_expired_sessions()

    port = int(os.environ.get("PORT", 5000))
    host = "0.0.0.0"

    uvicorn.run(
        "tradejournal.api.webapp:app",
        host=host,
        port=port,
        reload=False,
        log_level=get_settings().log_level.lower(),
    )


if __name__ == "__main__":
    main()
