from __future__ import annotations

from typing import Protocol

from meraki.schemas.sync_v1 import ChangeEntryV1, PullResponseV1, PushResultV1


class RemoteTransport(Protocol):
    """Backend channel used by the coordinator.

    Both calls must be safe to retry with the same arguments. Failures are raised as
    `TransportFailure`; `retryable=False` stops the retry loop at once.
    """

    def push(self, entries: list[ChangeEntryV1]) -> list[PushResultV1]: ...

    def pull(self, since: int, limit: int) -> PullResponseV1: ...
