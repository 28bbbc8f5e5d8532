"""Database engine lifecycle and session helpers.

One engine (and therefore one connection pool) per process. `init_engine`
runs at startup, `shutdown` disposes the pool, and `get_db` scopes a session
to a request and always closes it.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from config import Config

Base = declarative_base()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False)

engine: Optional[Engine] = None


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_engine(url: Optional[str] = None, **engine_kwargs) -> Engine:
    """Create the process-wide engine and bind the session factory to it."""
    global engine
    if engine is not None:
        engine.dispose()

    url = url or Config.get_database_url()
    if url.startswith("sqlite"):
        engine_kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        # Use pre_ping to avoid stale connections on cloud providers
        engine_kwargs.setdefault("pool_pre_ping", True)
        engine_kwargs.setdefault("pool_size", Config.DB_POOL_SIZE)
        engine_kwargs.setdefault("max_overflow", 0)
        engine_kwargs.setdefault("pool_timeout", 10)

    engine = create_engine(url, **engine_kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    SessionLocal.configure(bind=engine)
    logging.info("db.init dialect=%s", engine.dialect.name)
    return engine


def load_models() -> None:
    """Import every model module so mappers and tables are all registered."""
    import models.User, models.RevokedToken, models.Trip, models.City  # noqa: F401
    import models.Activity, models.TripCity, models.ItineraryItem, models.ClientRequest  # noqa: F401


def create_schema() -> None:
    load_models()
    Base.metadata.create_all(bind=get_engine())


def drop_schema() -> None:
    load_models()
    Base.metadata.drop_all(bind=get_engine())


def get_engine() -> Engine:
    if engine is None:
        raise RuntimeError("database engine is not initialised; call init_engine() first")
    return engine


def shutdown() -> None:
    global engine
    if engine is not None:
        engine.dispose()
        logging.info("db.shutdown pool disposed")
        engine = None


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def query(db: Session, sql: str, params: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
    """Run a parameterized statement and return rows as dicts."""
    result = db.execute(text(sql), dict(params or {}))
    return [dict(row._mapping) for row in result]


def query_one(db: Session, sql: str, params: Optional[Mapping[str, Any]] = None) -> Optional[Dict[str, Any]]:
    rows = query(db, sql, params)
    return rows[0] if rows else None


def ping(db: Session) -> bool:
    try:
        return query_one(db, "SELECT 1 AS ok") is not None
    except SQLAlchemyError:
        logging.exception("db.ping failed")
        db.rollback()
        return False
