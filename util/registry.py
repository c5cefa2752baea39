# util/registry.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Generic, List, Optional, Tuple, TypeVar

from util.config import SESSION_IDLE_MINUTES

logger = logging.getLogger(__name__)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SessionRegistry(Generic[T]):
    """
    user_id -> live session object.
    每次存取都會刷新 last_seen；sweep() 移除閒置超過 idle 的 session。
    """

    def __init__(self, idle: timedelta = timedelta(minutes=SESSION_IDLE_MINUTES),
                 now: Callable[[], datetime] = utc_now):
        self.idle = idle
        self._now = now
        self._items: Dict[Any, Tuple[T, datetime]] = {}

    def __len__(self):
        return len(self._items)

    def put(self, user_id, item: T) -> T:
        # 同一身分重新登入時直接覆蓋舊的 session
        self._items[user_id] = (item, self._now())
        return item

    def get(self, user_id) -> Optional[T]:
        found = self._items.get(user_id)
        if not found:
            return None
        item, _ = found
        self._items[user_id] = (item, self._now())
        return item

    def peek(self, user_id) -> Optional[T]:
        found = self._items.get(user_id)
        return found[0] if found else None

    def remove(self, user_id) -> Optional[T]:
        found = self._items.pop(user_id, None)
        return found[0] if found else None

    def sweep(self) -> List[Tuple[Any, T]]:
        cutoff = self._now() - self.idle
        stale = [(uid, item) for uid, (item, seen) in self._items.items() if seen < cutoff]
        for uid, _ in stale:
            del self._items[uid]
        if stale:
            logger.info("evicted %s idle sessions", len(stale))
        return stale
