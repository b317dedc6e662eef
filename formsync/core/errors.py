from __future__ import annotations


class OutboxError(Exception):
    pass


class StorageFailure(OutboxError):
    """Local outbox storage could not complete an operation.

    Fatal for the attempted queue operation: callers must not report the
    write as saved.
    """


class StorageUnavailable(StorageFailure):
    pass


class StorageWriteError(StorageFailure):
    pass


class TransportFailure(OutboxError):
    """No response was obtained from the remote API (offline, timeout, DNS)."""


class ApplicationFailure(OutboxError):
    """The remote API answered but rejected the request."""

    def __init__(self, status_code: int, detail: str = ""):
        super().__init__(f"http_{status_code}:{detail}")
        self.status_code = status_code
        self.detail = detail


class UnknownForm(OutboxError):
    pass


class MutationInFlight(OutboxError):
    """A replay pass is delivering this mutation right now."""


class FormLocked(OutboxError):
    pass
