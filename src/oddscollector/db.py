from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import DATABASE_URL

# Declarative Base, models.py registers the tables on it
Base = declarative_base()

_engine = None


def make_engine(url: str = DATABASE_URL):
    kwargs = {"pool_pre_ping": True}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
    return create_engine(url, **kwargs)


def get_engine():
    global _engine
    if _engine is None:
        _engine = make_engine(DATABASE_URL)
    return _engine


def make_session_factory(engine=None):
    # detached rows stay readable after the session closes
    return sessionmaker(bind=engine or get_engine(), autoflush=False, expire_on_commit=False)


def init_db(engine=None) -> None:
    from . import models  # noqa: F401  registers the tables

    Base.metadata.create_all(bind=engine or get_engine())
