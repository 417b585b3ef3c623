import logging
import os
import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

logger = logging.getLogger(__name__)

# Session.info flag: a timed-out worker thread still uses this session and closes it itself
WORKER_OWNED = "worker_owned"

# Pool sizing for Postgres; the dashboard is read-heavy with short transactions
PG_POOL_OPTIONS = {
    "pool_pre_ping": True,
    "pool_size": int(os.getenv("DB_POOL_SIZE", "10")),
    "max_overflow": int(os.getenv("DB_MAX_OVERFLOW", "20")),
    "pool_timeout": int(os.getenv("DB_POOL_TIMEOUT", "30")),
    "pool_recycle": int(os.getenv("DB_POOL_RECYCLE", "300")),
}
LOG_SLOW_STATEMENTS = os.getenv("DB_LOG_SLOW_QUERIES", "true").lower() == "true"
SLOW_STATEMENT_SECONDS = float(os.getenv("DB_SLOW_QUERY_THRESHOLD", "1.0"))


def _engine_options(url: str) -> dict:
    """create_engine() keyword arguments for the configured backend"""
    if url.startswith("sqlite"):
        # Store calls run in worker threads
        return {"connect_args": {"check_same_thread": False}}
    return dict(PG_POOL_OPTIONS)


try:
    engine = create_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))
    logger.info(f"✅ Payment store engine ready ({engine.dialect.name})")
except Exception as e:
    logger.error(f"❌ Could not create the payment store engine: {e}")
    raise


def register_slow_query_logging(target_engine, threshold: float = SLOW_STATEMENT_SECONDS) -> None:
    """Warn about statements that take longer than `threshold` seconds"""

    @event.listens_for(target_engine, "before_cursor_execute")
    def _start_timer(conn, _cursor, _statement, _parameters, _context, _executemany):
        conn.info.setdefault("statement_started", []).append(time.perf_counter())

    @event.listens_for(target_engine, "after_cursor_execute")
    def _report_slow(conn, _cursor, statement, _parameters, _context, _executemany):
        elapsed = time.perf_counter() - conn.info["statement_started"].pop()
        if elapsed > threshold:
            logger.warning(f"🐌 Slow statement ({elapsed:.2f}s): {statement[:200]}...")


if LOG_SLOW_STATEMENTS:
    register_slow_query_logging(engine)
    logger.info(f"📊 Logging statements slower than {SLOW_STATEMENT_SECONDS}s")

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        if not db.info.get(WORKER_OWNED):
            db.close()
