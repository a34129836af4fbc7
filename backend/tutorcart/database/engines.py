"""Engine construction shared by the application and the test suite."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine

logger = logging.getLogger(__name__)

_POSTGRES_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 5,
    "pool_timeout": 5,
    "pool_pre_ping": True,
    # Hold acquisition reads conflicts and writes in one transaction
    "isolation_level": "SERIALIZABLE",
}


def _install_sqlite_transaction_hooks(engine: Engine) -> None:
    """
    Take over transaction control from pysqlite.

    pysqlite defers BEGIN until the first DML statement, which breaks SAVEPOINT
    handling and lets a SELECT run outside the transaction. Emitting
    ``BEGIN IMMEDIATE`` ourselves takes the write lock up front, so concurrent
    writers are serialized for the whole transaction.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(db_url: str, *, echo: bool = False) -> Engine:
    """Create an engine with dialect-appropriate pooling and isolation."""

    if db_url.startswith("sqlite"):
        engine = create_engine(
            db_url,
            echo=echo,
            future=True,
            connect_args={"check_same_thread": False, "timeout": 15},
        )
        _install_sqlite_transaction_hooks(engine)
    else:
        engine = create_engine(db_url, echo=echo, future=True, **_POSTGRES_POOL_KWARGS)

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
        logger.debug("Database connection established")

    return engine
