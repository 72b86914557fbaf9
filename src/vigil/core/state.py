"""Thread-safe in-memory structures backing the security monitor.

All timestamps are epoch milliseconds supplied by the caller, so the
structures stay free of any clock of their own.
"""

from __future__ import annotations

import threading
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List, Optional, Tuple

from vigil.core.models import EventType, RecentEvent


class RecentEventRing:
    """Fixed-capacity FIFO history of recent events."""

    def __init__(self, capacity: int = 1000) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self._events: Deque[RecentEvent] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def append(self, event: RecentEvent) -> None:
        # deque(maxlen=...) drops the leftmost entry when full
        with self._lock:
            self._events.append(event)

    def aggregate_by_type(self) -> Dict[EventType, int]:
        counts: Dict[EventType, int] = {}
        with self._lock:
            for event in self._events:
                counts[event.type] = counts.get(event.type, 0) + 1
        return counts

    def snapshot(self) -> List[RecentEvent]:
        with self._lock:
            return list(self._events)

    def clear(self) -> None:
        with self._lock:
            self._events.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)


@dataclass
class IpCounterEntry:
    count: int
    window_reset_at: int


class IpVelocityTracker:
    """Per-IP event counters over a rolling window.

    A window starts at the first event seen after the previous one elapsed,
    it is not aligned to calendar hours.
    """

    def __init__(self, window_ms: int = 60 * 60 * 1000) -> None:
        self.window_ms = window_ms
        # Insertion order doubles as age order: a reset moves the entry to the end.
        self._entries: "OrderedDict[str, IpCounterEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def increment(self, ip: str, now_ms: int) -> int:
        """Count one event for ``ip`` and return the post-increment count."""
        with self._lock:
            entry = self._entries.get(ip)
            if entry is None or now_ms >= entry.window_reset_at:
                self._entries[ip] = IpCounterEntry(count=1, window_reset_at=now_ms + self.window_ms)
                self._entries.move_to_end(ip)
                return 1
            entry.count += 1
            return entry.count

    def get(self, ip: str) -> Optional[IpCounterEntry]:
        with self._lock:
            entry = self._entries.get(ip)
            if entry is None:
                return None
            return IpCounterEntry(count=entry.count, window_reset_at=entry.window_reset_at)

    def top(self, limit: int = 10) -> List[Tuple[str, int]]:
        with self._lock:
            counts = [(ip, entry.count) for ip, entry in self._entries.items()]
        counts.sort(key=lambda item: item[1], reverse=True)
        return counts[:limit]

    def sweep(self, now_ms: int, max_entries: Optional[int] = None) -> int:
        """Drop elapsed windows, then trim oldest-first down to ``max_entries``."""
        removed = 0
        with self._lock:
            for ip in [ip for ip, entry in self._entries.items() if now_ms >= entry.window_reset_at]:
                del self._entries[ip]
                removed += 1
            if max_entries is not None:
                while len(self._entries) > max_entries:
                    self._entries.popitem(last=False)
                    removed += 1
        return removed

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class BlacklistStore:
    """IP to expiry map with expire-on-read membership checks."""

    def __init__(self) -> None:
        self._expiries: Dict[str, int] = {}
        self._lock = threading.Lock()

    def add(self, ip: str, expires_at_ms: int) -> None:
        with self._lock:
            self._expiries[ip] = expires_at_ms

    def contains(self, ip: str, now_ms: int) -> bool:
        with self._lock:
            expires_at = self._expiries.get(ip)
            if expires_at is None:
                return False
            if now_ms >= expires_at:
                del self._expiries[ip]
                return False
            return True

    def expires_at(self, ip: str) -> Optional[int]:
        with self._lock:
            return self._expiries.get(ip)

    def sweep(self, now_ms: int, max_entries: Optional[int] = None) -> int:
        """Drop expired entries, then the soonest-expiring ones above ``max_entries``."""
        removed = 0
        with self._lock:
            for ip in [ip for ip, expires_at in self._expiries.items() if now_ms >= expires_at]:
                del self._expiries[ip]
                removed += 1
            if max_entries is not None and len(self._expiries) > max_entries:
                excess = len(self._expiries) - max_entries
                for ip, _ in sorted(self._expiries.items(), key=lambda item: item[1])[:excess]:
                    del self._expiries[ip]
                    removed += 1
        return removed

    def clear(self) -> None:
        with self._lock:
            self._expiries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._expiries)
