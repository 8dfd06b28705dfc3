"""Bounded activity log shown on the status dashboard"""
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

LOG_LEVELS = ('info', 'success', 'warning', 'error', 'chat')

_LOGGING_LEVELS = {
    'info': logging.INFO,
    'success': logging.INFO,
    'chat': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}

@dataclass(frozen=True)
class LogEntry:
    """Single timestamped dashboard log line"""
    timestamp: float
    level: str
    message: str

class LogBuffer:
    """Ring buffer of recent log entries; oldest entries are evicted first"""

    def __init__(self, maxlen: int = 150, clock: Callable[[], float] = time.time):
        """
        Initialize log buffer

        Args:
            maxlen: Maximum number of entries kept
            clock: Time source for entry timestamps
        """
        if maxlen < 1:
            raise ValueError("maxlen must be at least 1")
        self.maxlen = maxlen
        self.clock = clock
        self._entries: Deque[LogEntry] = deque(maxlen=maxlen)

    def append(self, message: str, level: str = 'info') -> LogEntry:
        if level not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {level}")
        entry = LogEntry(timestamp=self.clock(), level=level, message=message)
        self._entries.append(entry)
        return entry

    def record(self, log: logging.Logger, message: str, level: str = 'info') -> LogEntry:
        """Send ``message`` to ``log`` and keep it for the dashboard"""
        log.log(_LOGGING_LEVELS.get(level, logging.INFO), message)
        return self.append(message, level)

    def recent(self, count: Optional[int] = None) -> List[LogEntry]:
        """Newest ``count`` entries in chronological order"""
        entries = list(self._entries)
        if count is None:
            return entries
        if count <= 0:
            return []
        return entries[-count:]

    def seconds_since_last(self) -> Optional[float]:
        """Seconds since the newest entry, or None when empty"""
        if not self._entries:
            return None
        return max(0.0, self.clock() - self._entries[-1].timestamp)

    def to_dicts(self, count: int = 20) -> List[dict]:
        now = self.clock()
        return [
            {
                'message': entry.message,
                'type': entry.level,
                'age': int(max(0.0, now - entry.timestamp)),
            }
            for entry in self.recent(count)
        ]

    def __len__(self) -> int:
        return len(self._entries)
