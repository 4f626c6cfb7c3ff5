"""SQLAlchemy engine helpers for the SQL-backed stores."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import URL, make_url
from sqlmodel import Session, SQLModel, create_engine

from scout.config import settings

logger = logging.getLogger(__name__)


def create_sync_engine(database_url: str, *, auto_create_schema: bool = False) -> Engine:
    """Build a pooled sync engine, coercing async driver names."""
    if not database_url:
        raise ValueError("DATABASE_URL is required to create a database engine.")
    parsed_url = make_url(database_url)
    sync_url, connect_args, drivername = _coerce_sync_database_url(parsed_url)
    is_sqlite = drivername.startswith("sqlite")
    engine_kwargs: dict[str, Any] = {
        "echo": False,
        "connect_args": connect_args,
        "pool_pre_ping": not is_sqlite,
    }
    if not is_sqlite:
        pool_min = max(settings.db_pool_min_size, 1)
        pool_max = max(settings.db_pool_max_size, pool_min)
        engine_kwargs["pool_size"] = pool_min
        engine_kwargs["max_overflow"] = max(pool_max - pool_min, 0)
    engine = create_engine(sync_url, **engine_kwargs)
    if auto_create_schema:
        # Registers the table metadata before create_all.
        import scout.models.records  # noqa: F401

        SQLModel.metadata.create_all(engine)
    logger.info("database.engine_created", extra={"driver": drivername})
    return engine


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    with Session(engine) as session:
        yield session


def _coerce_sync_database_url(url: URL) -> tuple[str, dict[str, Any], str]:
    """Convert async connection strings into sync SQLAlchemy URLs."""
    drivername = url.drivername
    connect_args: dict[str, Any] = {}
    if drivername.endswith("+asyncpg"):
        drivername = drivername.replace("+asyncpg", "+psycopg2")
    elif drivername.endswith("+aiosqlite"):
        drivername = drivername.replace("+aiosqlite", "")
    sync_url = url.set(drivername=drivername)
    query = dict(sync_url.query) if sync_url.query else {}
    requires_ssl = query.pop("ssl", None) is not None
    if requires_ssl:
        sync_url = sync_url.set(query=query)
    if drivername.startswith("postgresql") and requires_ssl and "sslmode" not in query:
        connect_args["sslmode"] = "require"
    if drivername.startswith("sqlite"):
        connect_args.setdefault("check_same_thread", False)
    return sync_url.render_as_string(hide_password=False), connect_args, drivername
