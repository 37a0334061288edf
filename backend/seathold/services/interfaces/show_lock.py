"""
Per-show mutual exclusion interface.
Allows swapping between in-process and cross-process locking.
"""

import uuid
from abc import ABC, abstractmethod
from typing import AsyncContextManager


class ShowLock(ABC):
    """
    Serialises seat-ledger mutations of one show.

    Two claims against the same show must never interleave their
    read-check-write sequence; claims against different shows must not
    wait on each other, so implementations lock per show id and never
    globally.

    Implementations:
    - LocalShowLock: keyed asyncio.Lock, one process
    - RedisShowLock: Redis lock per show, many processes/hosts
    """

    @abstractmethod
    def hold(self, show_id: uuid.UUID) -> AsyncContextManager[None]:
        """
        Async context manager holding the show's lock for the block.

        Raises:
            ShowLockTimeoutError: the lock could not be acquired in time
        """
        pass
