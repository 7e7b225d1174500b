"""
Database connection and session management
"""
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, sessionmaker


class Base(DeclarativeBase):
    """Base class for all models"""
    pass


def _is_sqlite(database_url) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def create_db_engine(database_url: str, echo: bool = False) -> Engine:
    """
    Create a synchronous engine.

    SQLite connections must be usable from the threadpool FastAPI runs sync
    endpoints in.
    """
    if _is_sqlite(database_url):
        return create_engine(database_url, echo=echo, connect_args={"check_same_thread": False})
    return create_engine(database_url, echo=echo, pool_pre_ping=True, pool_size=10, max_overflow=20)


def create_session_factory(engine: Engine) -> sessionmaker:
    """Session maker used by the session store and the catalog"""
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_models(engine: Engine) -> None:
    """Create all tables (idempotent)"""
    # Registers the tables on Base.metadata
    from .. import models  # noqa: F401

    if _is_sqlite(engine.url) and engine.url.database not in (None, "", ":memory:"):
        Path(engine.url.database).parent.mkdir(parents=True, exist_ok=True)

    Base.metadata.create_all(bind=engine)
