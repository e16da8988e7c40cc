from sqlalchemy import Engine, create_engine, inspect
from sqlalchemy.orm import DeclarativeBase

from zkpaste.config import settings

REQUIRED_TABLES = {"pastes"}


def build_engine(database_url: str, timeout_seconds: float = 5.0, **kwargs) -> Engine:
    """Create an engine whose connection waits are bounded by ``timeout_seconds``."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # SQLite specific: allow use across threadpool workers, bound lock waits
        connect_args = {"check_same_thread": False, "timeout": timeout_seconds}
    else:
        kwargs.setdefault("pool_timeout", timeout_seconds)
    return create_engine(database_url, connect_args=connect_args, **kwargs)


engine = build_engine(settings.database_url, settings.store_timeout_seconds)


class Base(DeclarativeBase):
    pass


def missing_tables(bind: Engine) -> set[str]:
    """Return the required tables that do not exist in the bound database."""
    return REQUIRED_TABLES - set(inspect(bind).get_table_names())
