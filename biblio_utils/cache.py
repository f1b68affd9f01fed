import logging
import threading
import time
from typing import Any, Callable, Dict, Hashable, Optional, Tuple

logger = logging.getLogger(__name__)


class TTLCache:
    """
    带过期时间的读穿透缓存

    由应用显式创建并持有（见 api.create_app），同一个键同一时间只有一个写入者。
    """

    def __init__(self, ttl: float = 300, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self._clock = clock
        self._entries: Dict[Hashable, Tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._key_locks: Dict[Hashable, threading.Lock] = {}

    def _key_lock(self, key: Hashable) -> threading.Lock:
        with self._lock:
            return self._key_locks.setdefault(key, threading.Lock())

    def is_stale(self, key: Hashable, ttl: Optional[float] = None) -> bool:
        ttl = self.ttl if ttl is None else ttl
        with self._lock:
            entry = self._entries.get(key)
        if entry is None:
            return True
        return self._clock() - entry[1] > ttl

    def get(self, key: Hashable, default: Any = None) -> Any:
        """返回未过期的缓存值"""
        if self.is_stale(key):
            return default
        with self._lock:
            entry = self._entries.get(key)
        return entry[0] if entry else default

    def put(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries[key] = (value, self._clock())

    def invalidate(self, key: Optional[Hashable] = None) -> None:
        """删除单个键；不传键时清空整个缓存"""
        with self._lock:
            if key is None:
                self._entries.clear()
                self._key_locks.clear()
            else:
                self._entries.pop(key, None)
                self._key_locks.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def get_or_load(self, key: Hashable, loader: Callable[[], Any]) -> Any:
        """缓存未命中或过期时调用 loader 加载并写入缓存"""
        if not self.is_stale(key):
            return self.get(key)

        with self._key_lock(key):
            # 等待期间可能已被其他请求加载
            if not self.is_stale(key):
                return self.get(key)
            logger.debug(f"缓存未命中，重新加载: {key}")
            value = loader()
            self.put(key, value)
            return value
