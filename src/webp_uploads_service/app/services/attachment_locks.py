import asyncio
from collections import defaultdict


class AttachmentLocks:
    """One asyncio lock per attachment; reconciliation and edits of the same attachment never overlap."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def get(self, attachment_id: str) -> asyncio.Lock:
        return self._locks[str(attachment_id)]

    def discard(self, attachment_id: str) -> None:
        lock = self._locks.get(str(attachment_id))
        if lock is not None and not lock.locked():
            del self._locks[str(attachment_id)]
