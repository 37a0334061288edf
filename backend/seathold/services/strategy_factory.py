"""
Show lock strategy factory.
Configures which per-show locking strategy the seat ledger uses.
"""

from typing import Optional

from seathold.core.config import get_settings
from seathold.services.interfaces.show_lock import ShowLock
from seathold.services.interfaces.local_show_lock import LocalShowLock
from seathold.services.show_lock_service import RedisShowLock

settings = get_settings()


def get_show_lock_strategy() -> ShowLock:
    """
    Build the configured show lock.

    Strategy selection:
    - local: LocalShowLock (single API process, tests)
    - redis: RedisShowLock (several workers/hosts)

    Selected via the SHOW_LOCK_BACKEND env var.
    """
    backend = settings.SHOW_LOCK_BACKEND.lower()

    if backend == 'redis':
        return RedisShowLock(timeout=settings.SHOW_LOCK_TIMEOUT_SECONDS)
    if backend == 'local':
        return LocalShowLock(timeout=settings.SHOW_LOCK_TIMEOUT_SECONDS)
    raise ValueError(f"Unknown SHOW_LOCK_BACKEND: {settings.SHOW_LOCK_BACKEND!r}")


# Singleton instance
_show_lock: Optional[ShowLock] = None

def get_show_lock() -> ShowLock:
    """Get show lock singleton."""
    global _show_lock
    if _show_lock is None:
        _show_lock = get_show_lock_strategy()
    return _show_lock
