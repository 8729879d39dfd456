"""ADPILOT - Database Engine & Session Factory.

Drafts, keys and usage rows live in one SQLModel database: PostgreSQL in
production, a SQLite file locally, in-memory SQLite under test.
"""

from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.engine import URL, make_url
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, Session, create_engine

from adpilot.config import settings
from adpilot.core.logging import get_logger

logger = get_logger("database")

db_url: URL = make_url(settings.effective_database_url)


def masked_url(url: URL) -> str:
    """Render the URL with its password hidden, for logs and /debug/db."""
    return url.render_as_string(hide_password=True)


def engine_options(url: URL) -> Dict[str, Any]:
    """Engine kwargs per backend.

    SQLite needs cross-thread access for background usage writes; an
    in-memory database must also share one connection or each session
    would see an empty schema.
    """
    if url.get_backend_name() == "sqlite":
        options: Dict[str, Any] = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return options
    return {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }


def describe_database() -> Dict[str, str]:
    return {"backend": db_url.get_backend_name(), "url": masked_url(db_url)}


engine = create_engine(db_url, echo=False, **engine_options(db_url))
logger.info(f"Database engine created ({describe_database()['backend']}: {masked_url(db_url)})")


def test_connection() -> bool:
    """SELECT 1 against the engine; False (and logged) when unreachable."""
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error(f"Database connection test failed: {e}")
        return False
    return True


def init_db() -> None:
    """Create the api_keys, api_usage and api_campaigns tables if missing."""
    # Table classes register themselves on SQLModel.metadata at import
    import adpilot.models.keys  # noqa: F401
    import adpilot.models.campaigns  # noqa: F401

    SQLModel.metadata.create_all(engine)
    logger.info("Database tables ready")


def get_session():
    """Dependency - yields a DB session."""
    with Session(engine) as session:
        yield session
