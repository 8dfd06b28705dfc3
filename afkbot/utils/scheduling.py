"""Named timer handles on top of the event loop's call_later"""
import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger(__name__)


class TimerGroup:
    """
    Keeps at most one pending callback per name

    ``loop`` is anything exposing ``call_later(delay, callback, *args)`` and
    ``time()`` - the running asyncio loop in production.
    """

    def __init__(self, loop: Any):
        self.loop = loop
        self._handles: Dict[str, Any] = {}

    def schedule(self, name: str, delay: float, callback: Callable[..., None], *args: Any) -> None:
        """Schedule ``callback`` under ``name``, replacing a pending one"""
        self.cancel(name)

        def fire() -> None:
            self._handles.pop(name, None)
            callback(*args)

        self._handles[name] = self.loop.call_later(max(0.0, delay), fire)

    def cancel(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        for name in list(self._handles):
            self.cancel(name)

    def pending(self, name: str) -> bool:
        return name in self._handles

    def remaining(self, name: str) -> Optional[float]:
        """Seconds until ``name`` fires, None when nothing is pending"""
        handle = self._handles.get(name)
        if handle is None:
            return None
        return max(0.0, handle.when() - self.loop.time())

    def __len__(self) -> int:
        return len(self._handles)
