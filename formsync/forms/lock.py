from __future__ import annotations

import logging
import threading
from enum import Enum

from formsync.forms.registry import MeaningfulPredicate

log = logging.getLogger("form_lock")


class LockState(str, Enum):
    UNLOCKED = "unlocked"
    LOCKED = "locked"


class FormLock:
    """Lock state of one form.

    `locked` means the server durably holds meaningful data for the form.
    Only a confirmed save (direct or replayed) locks; only an explicit user
    unlock reverts. A save that was merely queued leaves the state alone.
    """

    def __init__(self, state: LockState = LockState.UNLOCKED):
        self.state = state

    @property
    def is_locked(self) -> bool:
        return self.state is LockState.LOCKED

    def load(self, record: dict | None, is_meaningful: MeaningfulPredicate) -> LockState:
        self.state = LockState.LOCKED if record and is_meaningful(record) else LockState.UNLOCKED
        return self.state

    def confirm_saved(self) -> LockState:
        self.state = LockState.LOCKED
        return self.state

    def unlock(self) -> LockState:
        self.state = LockState.UNLOCKED
        return self.state


class FormLockRegistry:
    """One FormLock per (owner, form). Shared by the writer and the replayer."""

    def __init__(self) -> None:
        self._locks: dict[tuple[str, str], FormLock] = {}
        self._mu = threading.Lock()

    def get(self, owner_id: str, form_key: str) -> FormLock:
        with self._mu:
            lock = self._locks.get((owner_id, form_key))
            if lock is None:
                lock = FormLock()
                self._locks[(owner_id, form_key)] = lock
            return lock

    def state(self, owner_id: str, form_key: str) -> LockState:
        return self.get(owner_id, form_key).state

    def load(self, owner_id: str, form_key: str, record: dict | None, is_meaningful: MeaningfulPredicate) -> LockState:
        return self.get(owner_id, form_key).load(record, is_meaningful)

    def confirm_saved(self, owner_id: str, form_key: str) -> LockState:
        log.info("Form %s locked for owner %s after confirmed save", form_key, owner_id)
        return self.get(owner_id, form_key).confirm_saved()

    def unlock(self, owner_id: str, form_key: str) -> LockState:
        log.info("Form %s unlocked by owner %s", form_key, owner_id)
        return self.get(owner_id, form_key).unlock()
