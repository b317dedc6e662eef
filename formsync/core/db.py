from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from formsync.core.config import settings


def make_engine(db_url: str) -> Engine:
    if db_url.startswith("sqlite"):
        if ":memory:" in db_url:
            # For in-memory SQLite (tests) we need a single shared connection across threads.
            # StaticPool makes the same connection reused for the whole process.
            eng = create_engine(
                db_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                pool_pre_ping=True,
            )
        else:
            # File database shared by the API process and the worker.
            eng = create_engine(db_url, connect_args={"check_same_thread": False, "timeout": 15}, pool_pre_ping=True)

            @event.listens_for(eng, "connect")
            def _wal(dbapi_conn, _record) -> None:
                cur = dbapi_conn.cursor()
                cur.execute("PRAGMA journal_mode=WAL")
                cur.close()

        return eng
    return create_engine(db_url, pool_pre_ping=True)


def make_session_factory(eng: Engine) -> sessionmaker:
    return sessionmaker(bind=eng, autoflush=False, autocommit=False, expire_on_commit=False)


engine = make_engine(settings.DATABASE_URL)

SessionLocal = make_session_factory(engine)
