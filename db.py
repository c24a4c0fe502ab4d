# db.py
from __future__ import annotations

from contextlib import contextmanager
from typing import Generator, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session

from settings import get_settings

Base = declarative_base()


def make_engine(database_url: str) -> Engine:
    return create_engine(
        database_url,
        future=True,
        pool_pre_ping=True,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
        class_=Session,
    )


# SQLAlchemy engine & session factory
engine = make_engine(get_settings().database_url)
SessionLocal = make_session_factory(engine)


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a DB session and closes it after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def serializable_transaction(db: Session) -> Iterator[Session]:
    """
    Run the block in its own SERIALIZABLE transaction on `db`.

    Isolation can only be chosen when a transaction procures its connection,
    so any transaction already open on the session is committed first.
    Commits on success, rolls back and re-raises on error.
    """
    if db.in_transaction():
        db.commit()

    db.connection(execution_options={"isolation_level": "SERIALIZABLE"})
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
