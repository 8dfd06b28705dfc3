"""
Resilience utilities for AFK Bot
Implements the reconnect backoff policy used by the session supervisor
"""

import logging
from dataclasses import dataclass
from enum import Enum

logger = logging.getLogger(__name__)


class DisconnectReason(str, Enum):
    """Why a session went away"""
    END = "end"
    KICKED = "kicked"
    ERROR = "error"
    FORCED = "forced"


@dataclass
class ReconnectPolicy:
    """
    Linear reconnect backoff with a cap and an extended cooldown

    Delays never decrease within a continuous-failure streak. A kick raises the
    delay to at least ``kick_delay``. Once more than ``max_continuous``
    failures happen in a row the next attempt waits ``extended_cooldown`` and
    the streak starts over. ``reset()`` is called when a session becomes stable.
    """

    base_delay: float = 15.0
    step: float = 15.0
    max_delay: float = 120.0
    kick_delay: float = 60.0
    max_continuous: int = 10
    extended_cooldown: float = 1800.0

    attempts: int = 0
    continuous_failures: int = 0
    last_delay: float = 0.0
    cooldowns: int = 0
    in_cooldown: bool = False

    def next_delay(self, reason: DisconnectReason = DisconnectReason.END) -> float:
        """
        Register a failure and compute the delay before the next attempt

        Args:
            reason: What ended the previous session

        Returns:
            Seconds to wait before creating a new session
        """
        self.attempts += 1
        self.continuous_failures += 1

        if self.continuous_failures > self.max_continuous:
            logger.warning(
                f"{self.continuous_failures - 1} continuous reconnects without a stable session, "
                f"cooling down for {self.extended_cooldown / 60:.0f} minutes"
            )
            self.continuous_failures = 0
            self.last_delay = 0.0
            self.cooldowns += 1
            self.in_cooldown = True
            return self.extended_cooldown

        self.in_cooldown = False
        delay = min(self.base_delay + self.step * (self.continuous_failures - 1), self.max_delay)
        if reason == DisconnectReason.KICKED:
            delay = max(delay, self.kick_delay)
        delay = max(delay, self.last_delay)

        self.last_delay = delay
        return delay

    def reset(self) -> None:
        """Session reached a stable state"""
        if self.continuous_failures:
            logger.debug(f"Reconnect policy reset after {self.continuous_failures} failures")
        self.continuous_failures = 0
        self.last_delay = 0.0
        self.in_cooldown = False

    @property
    def min_delay(self) -> float:
        return min(self.base_delay, self.max_delay)
