"""
Idle-motion driver
Simulates movement key holds on a timer so the server does not drop the
session for inactivity.

Each cycle is a list of steps replayed by a small state machine
(press -> release -> pause -> next press) with exactly one pending callback.
Every press gets its release scheduled before anything else can happen, and
stop_movement() releases whatever is held.
"""
import logging
import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, List, Optional

from afkbot.config import Config
from afkbot.utils.exceptions import MovementException

logger = logging.getLogger(__name__)

RANDOM_DIRECTIONS = ('forward', 'back', 'left', 'right')


class MovementPattern(str, Enum):
    """Named idle-motion patterns"""
    GENTLE = "gentle"
    CIRCLE = "circle"
    SQUARE = "square"
    RANDOM = "random"

    @classmethod
    def names(cls) -> List[str]:
        return [pattern.value for pattern in cls]

    @classmethod
    def is_valid(cls, name: Any) -> bool:
        return isinstance(name, str) and name in cls.names()


@dataclass(frozen=True)
class Step:
    """Hold ``control`` for ``hold`` seconds, then wait ``pause`` seconds"""
    control: str
    hold: float
    pause: float = 0.0


# (direction, seconds held)
PATTERN_HOLDS = {
    MovementPattern.GENTLE: (('forward', 0.4), ('right', 0.4), ('back', 0.4), ('left', 0.4)),
    MovementPattern.CIRCLE: (('forward', 0.8), ('right', 0.8), ('back', 0.8), ('left', 0.8)),
    MovementPattern.SQUARE: (('forward', 1.2), ('right', 0.4), ('back', 1.2), ('left', 0.4)),
}


@dataclass(frozen=True)
class RandomRule:
    """Randomized pattern: one direction, random duration, optional jump"""
    min_duration: float = 0.8
    max_duration: float = 1.5
    jump_chance: float = 0.3
    jump_duration: float = 0.4
    jump_pause: float = 0.3

    @classmethod
    def from_config(cls) -> 'RandomRule':
        return cls(
            min_duration=Config.RANDOM_MIN_DURATION,
            max_duration=Config.RANDOM_MAX_DURATION,
            jump_chance=Config.JUMP_CHANCE,
        )


def build_cycle(
    pattern: MovementPattern,
    step_pause: float = 0.6,
    rule: Optional[RandomRule] = None,
    rng: Optional[random.Random] = None
) -> List[Step]:
    """
    Expand a pattern into the steps of one movement cycle

    Args:
        pattern: Pattern to expand
        step_pause: Pause between holds of fixed patterns
        rule: Rule used by the random pattern
        rng: Random source for the random pattern

    Returns:
        Ordered list of steps; the last step has no trailing pause
    """
    pattern = MovementPattern(pattern)

    if pattern == MovementPattern.RANDOM:
        rule = rule or RandomRule()
        rng = rng or random.Random()
        direction = rng.choice(RANDOM_DIRECTIONS)
        duration = rng.uniform(rule.min_duration, rule.max_duration)
        if rng.random() < rule.jump_chance:
            return [Step(direction, duration, rule.jump_pause), Step('jump', rule.jump_duration)]
        return [Step(direction, duration)]

    holds = PATTERN_HOLDS[pattern]
    last = len(holds) - 1
    return [
        Step(direction, seconds, 0.0 if i == last else step_pause)
        for i, (direction, seconds) in enumerate(holds)
    ]


class IdleMotionDriver:
    """Drives scripted movement for one session at a time"""

    def __init__(
        self,
        loop: Any,
        interval: float = Config.MOVEMENT_INTERVAL,
        start_delay: float = Config.MOVEMENT_START_DELAY,
        step_pause: float = Config.MOVEMENT_STEP_PAUSE,
        error_retry: float = Config.MOVEMENT_ERROR_RETRY,
        rule: Optional[RandomRule] = None,
        rng: Optional[random.Random] = None,
        pattern: str = MovementPattern.GENTLE
    ):
        """
        Initialize the driver

        Args:
            loop: Event loop (anything with call_later/time)
            interval: Seconds between the starts of two cycles
            start_delay: Delay before the first cycle
            step_pause: Pause between holds of fixed patterns
            error_retry: Delay before restarting after a movement error
            rule: Random pattern rule
            rng: Random source
            pattern: Initial pattern
        """
        self.loop = loop
        self.interval = interval
        self.start_delay = start_delay
        self.step_pause = step_pause
        self.error_retry = error_retry
        self.rule = rule or RandomRule.from_config()
        self.rng = rng or random.Random()
        self.pattern = MovementPattern(pattern)

        self.moving = False
        self.cycles_completed = 0
        self.error_count = 0

        self._session = None
        self._run_id = 0
        self._handle = None
        self._held: Optional[str] = None
        self._steps: List[Step] = []
        self._index = 0
        self._cycle_started = 0.0

    @property
    def held(self) -> Optional[str]:
        return self._held

    @property
    def has_pending_timer(self) -> bool:
        return self._handle is not None

    def start_movement(self, session: Any, pattern: Optional[str] = None, delay: Optional[float] = None) -> bool:
        """
        Begin the repeating movement cycle on ``session``

        Returns:
            False if movement was already running
        """
        if pattern is not None:
            self.pattern = MovementPattern(pattern)
        if self.moving:
            return False

        self.moving = True
        self._session = session
        self._run_id += 1
        self._held = None
        logger.info(f"🚶 Starting movement: {self.pattern.value}")
        self._schedule(self.start_delay if delay is None else delay, self._begin_cycle)
        return True

    def stop_movement(self) -> bool:
        """
        Cancel the cycle and release held input; repeated calls are no-ops

        Returns:
            True if anything was stopped
        """
        if not self.moving and self._handle is None and self._session is None:
            return False

        self.moving = False
        self._run_id += 1
        self._cancel()

        session, self._session = self._session, None
        self._held = None
        if session is not None and not getattr(session, 'ended', False):
            try:
                session.clear_control_states()
            except Exception as e:
                logger.warning(f"Failed to clear control states: {e}")

        logger.info("⏹️ Movement stopped")
        return True

    def change_pattern(self, pattern: str, restart_delay: float = Config.PATTERN_CHANGE_DELAY) -> None:
        """Switch pattern, abandoning the rest of the current cycle"""
        pattern = MovementPattern(pattern)
        if not self.moving:
            self.pattern = pattern
            return

        session = self._session
        self.stop_movement()
        self.start_movement(session, pattern, delay=restart_delay)

    def _schedule(self, delay: float, step: Callable[[], None]) -> None:
        self._cancel()
        self._handle = self.loop.call_later(max(0.0, delay), self._fire, self._run_id, step)

    def _cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, run_id: int, step: Callable[[], None]) -> None:
        if run_id != self._run_id or not self.moving:
            return
        self._handle = None

        session = self._session
        if session is None or getattr(session, 'ended', False):
            logger.debug("Movement tick skipped - session no longer active")
            self.moving = False
            self._session = None
            self._held = None
            return

        try:
            step()
        except Exception as e:
            self._on_error(e)

    def _begin_cycle(self) -> None:
        self._steps = build_cycle(self.pattern, self.step_pause, self.rule, self.rng)
        self._index = 0
        self._cycle_started = self.loop.time()
        self._press()

    def _press(self) -> None:
        step = self._steps[self._index]
        try:
            self._session.set_control_state(step.control, True)
        except Exception as e:
            raise MovementException(f"Failed to press {step.control}: {e}", step.control) from e
        self._held = step.control
        logger.debug(f"➡️ {self.pattern.value}: {step.control} for {step.hold:.2f}s")
        self._schedule(step.hold, self._release)

    def _release(self) -> None:
        step = self._steps[self._index]
        try:
            self._session.set_control_state(step.control, False)
        except Exception as e:
            raise MovementException(f"Failed to release {step.control}: {e}", step.control) from e
        self._held = None
        self._index += 1

        if self._index < len(self._steps):
            self._schedule(step.pause, self._press)
            return

        self.cycles_completed += 1
        elapsed = self.loop.time() - self._cycle_started
        self._schedule(max(self.interval - elapsed, self.step_pause), self._begin_cycle)

    def _on_error(self, error: Exception) -> None:
        self.error_count += 1
        logger.error(f"Movement error: {error}")

        if self._held is not None:
            self._held = None
            try:
                self._session.clear_control_states()
            except Exception as e:
                logger.warning(f"Failed to clear control states after movement error: {e}")

        logger.info(f"Restarting movement in {self.error_retry:.0f}s")
        self._schedule(self.error_retry, self._begin_cycle)

    def status(self) -> dict:
        return {
            'moving': self.moving,
            'pattern': self.pattern.value,
            'held': self._held,
            'cycles_completed': self.cycles_completed,
            'errors': self.error_count,
        }
