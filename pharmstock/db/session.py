# pharmstock/db/session.py
from contextlib import contextmanager
from typing import Callable, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from pharmstock.core.config import settings

SessionFactory = Callable[[], Session]

_engines: Dict[str, Engine] = {}


def get_or_create_engine(db_uri: str) -> Engine:
    eng = _engines.get(db_uri)
    if eng is None:
        kwargs = dict(pool_pre_ping=True, echo=settings.DB_ECHO, future=True)
        # SQLite uses a SingletonThreadPool/StaticPool, which rejects sizing args
        if not db_uri.startswith("sqlite"):
            kwargs.update(
                pool_recycle=settings.DB_POOL_RECYCLE,
                pool_size=settings.DB_POOL_SIZE,
                max_overflow=settings.DB_MAX_OVERFLOW,
            )
        eng = create_engine(db_uri, **kwargs)
        _engines[db_uri] = eng
    return eng


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
        future=True,
    )


def create_session(db_uri: str | None = None) -> Session:
    """
    Return a new Session bound to db_uri (defaults to settings).
    """
    eng = get_or_create_engine(db_uri or settings.SQLALCHEMY_DATABASE_URI)
    return make_session_factory(eng)()


@contextmanager
def session_scope(factory: SessionFactory) -> Iterator[Session]:
    """
    One unit of work: commit on success, roll back on ANY exception, always close.
    """
    db = factory()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
