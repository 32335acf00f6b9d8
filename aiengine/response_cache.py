"""
Short-lived memo of agent replies keyed by agent and normalized message.

Process-local and best-effort: a miss only costs one more generation.
"""
import logging
import re
import threading
import time
from collections import OrderedDict
from typing import Callable, Optional, Tuple

from django.conf import settings

logger = logging.getLogger("aiengine.response_cache")

MIN_MESSAGE_LENGTH = 5
MAX_RESPONSE_LENGTH = 1000
KEY_LENGTH = 100
_PUNCTUATION = re.compile(r'[^\w\s]')


class ResponseCache:

    def __init__(self, ttl: Optional[float] = None, max_size: Optional[int] = None, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl
        self._max_size = max_size
        self._clock = clock
        self._entries: "OrderedDict[Tuple[int, str], Tuple[str, float]]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def ttl(self) -> float:
        return self._ttl if self._ttl is not None else settings.WHATSAPP_RESPONSE_CACHE_TTL

    @property
    def max_size(self) -> int:
        return self._max_size if self._max_size is not None else settings.WHATSAPP_RESPONSE_CACHE_SIZE

    @staticmethod
    def normalize(message: str) -> str:
        return _PUNCTUATION.sub('', (message or '').lower()).strip()[:KEY_LENGTH]

    def _key(self, agent_id: int, message: str) -> Tuple[int, str]:
        return int(agent_id), self.normalize(message)

    def get(self, agent_id: int, message: str) -> Optional[str]:
        key = self._key(agent_id, message)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            response, stored_at = entry
            if self._clock() - stored_at > self.ttl:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return response

    def put(self, agent_id: int, message: str, response: str) -> bool:
        """Store a reply. Returns False when the pair is not worth caching."""
        if len((message or '').strip()) < MIN_MESSAGE_LENGTH or not response or len(response) > MAX_RESPONSE_LENGTH:
            return False
        key = self._key(agent_id, message)
        with self._lock:
            # Assigning to an existing key keeps its first-insertion position
            self._entries[key] = (response, self._clock())
            while len(self._entries) > self.max_size:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cached reply for agent {evicted[0]}")
        return True

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self.hits = 0
            self.misses = 0

    def get_stats(self) -> dict:
        with self._lock:
            return {
                'size': len(self._entries),
                'max_size': self.max_size,
                'hits': self.hits,
                'misses': self.misses,
            }

    def __len__(self):
        with self._lock:
            return len(self._entries)


response_cache = ResponseCache()
