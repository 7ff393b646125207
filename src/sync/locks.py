"""Per-user locks so two syncs never run for the same user at once."""
import logging
import threading
from contextlib import contextmanager

from src.exceptions import SyncInProgressError

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """Non-blocking per-user mutex.

    A second ``hold()`` for a user whose sync is running raises
    SyncInProgressError instead of waiting.
    """

    def __init__(self):
        self._active: set[str] = set()
        self._guard = threading.Lock()

    def acquire(self, user_id: str) -> bool:
        with self._guard:
            if user_id in self._active:
                return False
            self._active.add(user_id)
            return True

    def release(self, user_id: str) -> None:
        with self._guard:
            self._active.discard(user_id)

    def is_locked(self, user_id: str) -> bool:
        with self._guard:
            return user_id in self._active

    @contextmanager
    def hold(self, user_id: str):
        if not self.acquire(user_id):
            logger.info("Sync already running for %s", user_id)
            raise SyncInProgressError(user_id)
        try:
            yield
        finally:
            self.release(user_id)


default_registry = UserLockRegistry()
