from __future__ import annotations

import os

# Settings() is read at import time; keep tests off the on-disk default database.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("INIT_STORE_ON_STARTUP", "0")
os.environ.setdefault("REMOTE_API_BASE", "http://remote.invalid")

import pytest

from formsync.core.db import make_engine, make_session_factory
from formsync.forms.lock import FormLockRegistry
from formsync.forms.registry import default_catalog
from formsync.outbox.audit import MemoryAuditSink
from formsync.outbox.service import OutboxService
from formsync.outbox.store import InMemoryMutationStore, SqlMutationStore
from tests.fakes import ScriptedAdapter


@pytest.fixture()
def engine():
    eng = make_engine("sqlite+pysqlite:///:memory:")
    yield eng
    eng.dispose()


@pytest.fixture()
def sql_store(engine) -> SqlMutationStore:
    store = SqlMutationStore(engine=engine, session_factory=make_session_factory(engine), page_size=2)
    store.initialize()
    return store


@pytest.fixture(params=["sql", "memory"])
def store(request, engine):
    if request.param == "memory":
        s = InMemoryMutationStore()
    else:
        s = SqlMutationStore(engine=engine, session_factory=make_session_factory(engine), page_size=2)
    s.initialize()
    return s


@pytest.fixture()
def adapter() -> ScriptedAdapter:
    return ScriptedAdapter()


@pytest.fixture()
def audit() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture()
def outbox(store, adapter, audit) -> OutboxService:
    return OutboxService(
        store=store, adapter=adapter, locks=FormLockRegistry(), catalog=default_catalog(), audit=audit
    )
