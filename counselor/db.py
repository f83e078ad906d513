# counselor/db.py
from functools import lru_cache

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from sqlalchemy.pool import StaticPool

from counselor.config import get_settings


class Base(DeclarativeBase):
    """
    Base class for ORM models.
    """
    pass


def make_engine(url: str) -> Engine:
    kwargs = {"echo": False, "future": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url == "sqlite://":
            # One shared connection, otherwise every session sees an empty db
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


def make_sessionmaker(engine: Engine) -> sessionmaker:
    return sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        future=True,
    )


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    return make_engine(get_settings().storage_url)


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker:
    return make_sessionmaker(get_engine())


def init_db(engine: Engine | None = None) -> None:
    """
    Create all tables. Called once at startup.
    """
    # models must be imported so their tables are registered on Base.metadata
    from counselor import models  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())
