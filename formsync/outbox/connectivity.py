from __future__ import annotations

import logging
import threading
from typing import Callable

log = logging.getLogger("connectivity")


class ConnectivityWatcher:
    """Edge detector for the remote API's reachability.

    `observe()` runs one probe and fires `on_regained` only on an
    offline -> online transition. The first observation counts as a
    transition when online, so queued work left over from a previous run is
    replayed at startup.
    """

    def __init__(self, *, probe: Callable[[], bool], on_regained: Callable[[], object]):
        self._probe = probe
        self._on_regained = on_regained
        self._online: bool | None = None
        self._mu = threading.Lock()

    @property
    def online(self) -> bool | None:
        return self._online

    def observe(self) -> bool:
        now_online = bool(self._probe())
        with self._mu:
            was_online = self._online
            self._online = now_online
        if now_online and was_online is not True:
            log.info("Remote API reachable again; triggering outbox sync")
            self._on_regained()
            return True
        if not now_online and was_online is not False:
            log.info("Remote API unreachable; saves will be queued")
        return False
