"""
Session Supervisor
Owns the game-session handle, reacts to its lifecycle events and decides when
to recreate it.

State machine:
- DISCONNECTED -> CONNECTING on start()
- CONNECTING -> CONNECTED on login
- CONNECTED -> STABLE after the grace period with no error (resets backoff)
- CONNECTING/CONNECTED/STABLE -> DISCONNECTED on end, kick or error
- any -> DISCONNECTED on force_restart()

All callbacks run on the event loop thread. Deferred callbacks carry the
session they were scheduled for and do nothing once it has been replaced.
"""
import asyncio
import logging
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Optional

import psutil

from afkbot.config import Config
from afkbot.keepalive import KeepAliveMonitor
from afkbot.movement import IdleMotionDriver, MovementPattern
from afkbot.session import GameSession, GameStats, SessionEvent, SessionFactory, SessionOptions
from afkbot.utils.exceptions import (
    ErrorCategory,
    SessionCreationException,
    classify_session_error,
)
from afkbot.utils.log_buffer import LogBuffer
from afkbot.utils.resilience import DisconnectReason, ReconnectPolicy
from afkbot.utils.scheduling import TimerGroup

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    STABLE = "stable"


# Timers that belong to a single session and die with it
SESSION_TIMERS = ('stable', 'greeting', 'spawn_movement', 'respawn', 'chat_reply')


class SessionSupervisor:
    """Keeps one game session alive and drives idle movement on it"""

    def __init__(
        self,
        session_factory: SessionFactory,
        options: SessionOptions,
        loop: Optional[Any] = None,
        policy: Optional[ReconnectPolicy] = None,
        driver: Optional[IdleMotionDriver] = None,
        logs: Optional[LogBuffer] = None,
        keepalive: Optional[KeepAliveMonitor] = None,
        stable_grace: float = Config.STABLE_GRACE_PERIOD,
        create_retry_delay: float = Config.CREATE_RETRY_DELAY,
        cold_start_delay: float = Config.COLD_START_TIMEOUT,
        forced_restart_delay: float = Config.FORCED_RESTART_DELAY,
        spawn_movement_delay: float = Config.SPAWN_MOVEMENT_DELAY,
        respawn_delay: float = Config.RESPAWN_DELAY,
        max_respawn_attempts: int = Config.MAX_RESPAWN_ATTEMPTS,
        pattern_change_delay: float = Config.PATTERN_CHANGE_DELAY,
        greeting_message: str = Config.GREETING_MESSAGE,
        greeting_delay: float = Config.GREETING_DELAY,
        mention_reply: str = Config.MENTION_REPLY,
        watchdog_interval: float = Config.WATCHDOG_INTERVAL,
        watchdog_idle: float = Config.WATCHDOG_IDLE,
        status_interval: float = Config.STATUS_LOG_INTERVAL,
        auto_adopt_version: bool = Config.AUTO_ADOPT_SERVER_VERSION
    ):
        """
        Initialize the supervisor

        Args:
            session_factory: Builds a GameSession from SessionOptions
            options: Connection settings (version may be updated at runtime)
            loop: Event loop; defaults to the running asyncio loop
            policy: Reconnect backoff policy
            driver: Idle-motion driver
            logs: Dashboard log buffer
            keepalive: Optional sleep monitor consulted before reconnecting
        """
        self.loop = loop if loop is not None else asyncio.get_running_loop()
        self.session_factory = session_factory
        self.options = options
        self.policy = policy if policy is not None else ReconnectPolicy(
            base_delay=Config.RECONNECT_BASE_DELAY,
            step=Config.RECONNECT_STEP,
            max_delay=Config.RECONNECT_MAX_DELAY,
            kick_delay=Config.KICK_RECONNECT_DELAY,
            max_continuous=Config.MAX_CONTINUOUS_RECONNECTS,
            extended_cooldown=Config.EXTENDED_COOLDOWN,
        )
        self.driver = driver if driver is not None else IdleMotionDriver(self.loop, pattern=Config.DEFAULT_PATTERN)
        self.logs = logs if logs is not None else LogBuffer(maxlen=Config.LOG_BUFFER_SIZE)
        self.keepalive = keepalive
        self.timers = TimerGroup(self.loop)

        self.stable_grace = stable_grace
        self.create_retry_delay = create_retry_delay
        self.cold_start_delay = cold_start_delay
        self.forced_restart_delay = forced_restart_delay
        self.spawn_movement_delay = spawn_movement_delay
        self.respawn_delay = respawn_delay
        self.max_respawn_attempts = max_respawn_attempts
        self.pattern_change_delay = pattern_change_delay
        self.greeting_message = greeting_message
        self.greeting_delay = greeting_delay
        self.mention_reply = mention_reply
        self.watchdog_interval = watchdog_interval
        self.watchdog_idle = watchdog_idle
        self.status_interval = status_interval
        self.auto_adopt_version = auto_adopt_version

        self.state = SessionState.DISCONNECTED
        self.session: Optional[GameSession] = None
        self.running = False
        self.started_at = self.loop.time()
        self.connection_time: Optional[float] = None
        self.last_activity = self.started_at
        self.last_disconnect_reason: Optional[DisconnectReason] = None
        self.last_error: Optional[Dict[str, Any]] = None
        self.total_logins = 0
        self.kick_count = 0
        self.error_count = 0
        self.respawn_attempts = 0

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Create a session; construction errors turn into a scheduled retry"""
        if not self.running:
            self.running = True
            self.timers.schedule('watchdog', self.watchdog_interval, self._watchdog)
            self.timers.schedule('status', self.status_interval, self._log_status)
        self.timers.cancel('reconnect')
        self._connect()

    def force_restart(self) -> bool:
        """Drop the current session and build a fresh one shortly"""
        self.record(f'🔁 Forced restart requested (state: {self.state.value})', 'warning')
        self._teardown(DisconnectReason.FORCED)
        self.policy.reset()
        self.timers.schedule('reconnect', self.forced_restart_delay, self._connect)
        return True

    def change_pattern(self, name: str) -> bool:
        if not MovementPattern.is_valid(name):
            return False
        self.record(f'🔄 Changed pattern to: {name}')
        self.driver.change_pattern(name, self.pattern_change_delay)
        return True

    def handle_wake(self) -> None:
        """Host woke up after sleeping; reconnect if we lost the session"""
        if self.state != SessionState.DISCONNECTED:
            self.record('🤖 Bot still connected after wake')
            return
        grace = self.keepalive.wake_grace if self.keepalive else self.forced_restart_delay
        remaining = self.timers.remaining('reconnect')
        if remaining is not None and remaining <= grace:
            return
        self.record(f'🔄 Initiating post-sleep reconnection in {grace:.0f}s')
        self.timers.schedule('reconnect', grace, self._connect)

    def shutdown(self) -> None:
        """Stop movement, cancel every timer and close the session"""
        self.running = False
        self.timers.cancel_all()
        self.driver.stop_movement()
        self._release_session()
        self.state = SessionState.DISCONNECTED
        self.connection_time = None
        self.record('🛑 Supervisor shut down', 'warning')

    def record(self, message: str, level: str = 'info') -> None:
        self.logs.record(logger, message, level)

    @property
    def connected(self) -> bool:
        return self.state in (SessionState.CONNECTED, SessionState.STABLE)

    @property
    def stable(self) -> bool:
        return self.state == SessionState.STABLE

    def snapshot(self) -> Dict[str, Any]:
        """Point-in-time, JSON-serialisable view of the supervisor"""
        now = self.loop.time()
        stats = self._stats()

        try:
            memory_mb = round(psutil.Process().memory_info().rss / 1024 / 1024, 1)
        except psutil.Error:
            memory_mb = None

        next_reconnect = self.timers.remaining('reconnect')
        snapshot = {
            'service': Config.BOT_NAME,
            'version': Config.VERSION,
            'state': self.state.value,
            'connected': self.connected,
            'stable': self.stable,
            'session_uptime': int(now - self.connection_time) if self.connection_time is not None else 0,
            'username': self.session.username if self.session is not None else self.options.username,
            'server': f"{self.options.host}:{self.options.port}",
            'game_version': self.options.version,
            'moving': self.driver.moving,
            'pattern': self.driver.pattern.value,
            'movement': self.driver.status(),
            'patterns': MovementPattern.names(),
            'service_uptime': int(now - self.started_at),
            'total_reconnects': self.total_logins,
            'reconnect_attempts': self.policy.attempts,
            'continuous_failures': self.policy.continuous_failures,
            'in_cooldown': self.policy.in_cooldown,
            'next_reconnect_in': round(next_reconnect) if next_reconnect is not None else None,
            'kicks': self.kick_count,
            'errors': self.error_count,
            'last_disconnect_reason': self.last_disconnect_reason.value if self.last_disconnect_reason else None,
            'last_error': self.last_error,
            'last_activity': int(now - self.last_activity),
            'health': stats.health,
            'food': stats.food,
            'position': stats.position,
            'memory_mb': memory_mb,
            'keep_alive': self.keepalive.snapshot() if self.keepalive else None,
            'recent_logs': self.logs.to_dicts(20),
        }
        return snapshot

    # ------------------------------------------------------------------
    # Connection management
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        self._release_session()
        self.state = SessionState.CONNECTING
        self.record(f'🚀 Creating bot connection to {self.options.host}:{self.options.port}')

        try:
            session = self.session_factory(self.options)
        except Exception as e:
            error = e if isinstance(e, SessionCreationException) else SessionCreationException(str(e))
            self.state = SessionState.DISCONNECTED
            self.last_error = error.to_dict()
            self.error_count += 1

            delay = self.create_retry_delay
            if self.keepalive is not None and self.keepalive.recently_woke():
                delay = self.cold_start_delay
            self.record(f'❌ Bot creation failed: {error.message}', 'error')
            self.record(f'🔄 Retrying bot creation in {delay:.0f}s', 'warning')
            self.timers.schedule('reconnect', delay, self._connect)
            return

        self.session = session
        handlers: Dict[SessionEvent, Callable[..., None]] = {
            SessionEvent.LOGIN: self._on_login,
            SessionEvent.SPAWN: self._on_spawn,
            SessionEvent.DEATH: self._on_death,
            SessionEvent.KICKED: self._on_kicked,
            SessionEvent.ERROR: self._on_error,
            SessionEvent.END: self._on_end,
            SessionEvent.CHAT: self._on_chat,
            SessionEvent.PHYSICS_TICK: self._on_physics_tick,
        }
        for event, handler in handlers.items():
            session.on(event, partial(self._dispatch, session, handler))

    def _dispatch(self, session: GameSession, handler: Callable[..., None], *args: Any) -> None:
        # Events from a replaced session are stale
        if session is not self.session:
            return
        handler(session, *args)

    def _alive(self, session: GameSession) -> bool:
        return session is self.session and not getattr(session, 'ended', False)

    def _release_session(self) -> None:
        session, self.session = self.session, None
        if session is None or getattr(session, 'ended', False):
            return
        try:
            session.end('disconnect.quitting')
        except Exception as e:
            logger.warning(f"Error closing session: {e}")

    def _teardown(self, reason: DisconnectReason) -> None:
        for name in SESSION_TIMERS:
            self.timers.cancel(name)
        self.timers.cancel('reconnect')
        self.driver.stop_movement()
        self._release_session()
        self.state = SessionState.DISCONNECTED
        self.connection_time = None
        self.last_disconnect_reason = reason

    def _schedule_reconnect(self, reason: DisconnectReason) -> None:
        delay = self.policy.next_delay(reason)
        if self.policy.in_cooldown:
            self.record(
                f'🧊 Too many reconnects in a row - pausing for {delay / 60:.0f} minutes before the next attempt',
                'error'
            )
        else:
            self.record(
                f'🔄 Reconnecting in {delay:.0f}s (attempt {self.policy.attempts}, '
                f'{self.policy.continuous_failures} in a row)',
                'warning'
            )
        self.timers.schedule('reconnect', delay, self._connect)

    # ------------------------------------------------------------------
    # Lifecycle events
    # ------------------------------------------------------------------

    def _on_login(self, session: GameSession) -> None:
        now = self.loop.time()
        self.state = SessionState.CONNECTED
        self.connection_time = now
        self.last_activity = now
        self.total_logins += 1
        self.respawn_attempts = 0
        self.last_error = None
        self.record(f'✅ Bot logged in successfully as {session.username}', 'success')

        self.timers.schedule('stable', self.stable_grace, self._mark_stable, session)
        if self.greeting_message:
            self.timers.schedule('greeting', self.greeting_delay, self._send_greeting, session)

    def _mark_stable(self, session: GameSession) -> None:
        if not self._alive(session) or self.state != SessionState.CONNECTED:
            return
        self.state = SessionState.STABLE
        self.policy.reset()
        self.record('🛡️ Connection marked as stable', 'success')

    def _send_greeting(self, session: GameSession) -> None:
        if not self._alive(session) or not self.connected:
            return
        try:
            session.chat(self.greeting_message)
        except Exception as e:
            logger.warning(f"Greeting failed: {e}")

    def _on_spawn(self, session: GameSession) -> None:
        self.last_activity = self.loop.time()
        self.respawn_attempts = 0
        self.record('🎯 Bot spawned in game world', 'success')
        self.timers.schedule('spawn_movement', self.spawn_movement_delay, self._start_movement, session)

    def _start_movement(self, session: GameSession) -> None:
        if not self._alive(session) or not self.connected:
            return
        self.driver.start_movement(session)

    def _on_death(self, session: GameSession) -> None:
        self.last_activity = self.loop.time()
        self.record('💀 Bot died, attempting respawn', 'warning')
        self.driver.stop_movement()
        self.timers.schedule('respawn', self.respawn_delay, self._respawn, session)

    def _respawn(self, session: GameSession) -> None:
        if not self._alive(session):
            return

        self.respawn_attempts += 1
        if self.respawn_attempts > self.max_respawn_attempts:
            self.record(f'❌ Max respawn attempts ({self.max_respawn_attempts}) reached, reconnecting', 'error')
            self._teardown(DisconnectReason.ERROR)
            self._schedule_reconnect(DisconnectReason.ERROR)
            return

        self.record(f'⚰️ Respawn attempt {self.respawn_attempts}/{self.max_respawn_attempts}')
        try:
            session.respawn()
        except Exception as e:
            self.record(f'Respawn failed: {e}', 'error')
            self.timers.schedule('respawn', self.respawn_delay, self._respawn, session)

    def _on_kicked(self, session: GameSession, reason: str = '') -> None:
        self.kick_count += 1
        self.record(f'⚠️ Bot kicked: {reason or "no reason given"}', 'error')
        self._teardown(DisconnectReason.KICKED)
        self._schedule_reconnect(DisconnectReason.KICKED)

    def _on_error(self, session: GameSession, error: Optional[BaseException] = None) -> None:
        self.error_count += 1
        failure = classify_session_error(error if error is not None else Exception('unknown error'))
        self.last_error = failure.to_dict()
        self.record(f'❌ Bot error: {failure.message}', 'error')
        self.record(f'💡 {failure.hint}', 'warning')

        if failure.category == ErrorCategory.VERSION_MISMATCH and failure.server_version:
            if self.auto_adopt_version:
                self.options.version = failure.server_version
                self.record(f'🔄 Updated to server version: {failure.server_version}')
            else:
                self.record(
                    f'Server reports version {failure.server_version} - set MC_VERSION={failure.server_version} '
                    f'or enable AUTO_ADOPT_SERVER_VERSION',
                    'warning'
                )

        self._teardown(DisconnectReason.ERROR)
        self._schedule_reconnect(DisconnectReason.ERROR)

    def _on_end(self, session: GameSession, reason: str = '') -> None:
        self.record(f'🔌 Bot disconnected: {reason or "Unknown"}', 'warning')
        self._teardown(DisconnectReason.END)

        if self.keepalive is not None and self.keepalive.host_probably_asleep():
            self.record('💤 Disconnection may be due to service sleep - waiting for wake', 'warning')
            return

        self._schedule_reconnect(DisconnectReason.END)

    def _on_chat(self, session: GameSession, username: str = '', message: str = '') -> None:
        if username == session.username:
            return
        self.last_activity = self.loop.time()
        self.record(f'💬 {username}: {message}', 'chat')

        if self.mention_reply and session.username and session.username.lower() in message.lower():
            self.timers.schedule('chat_reply', 1.0, self._reply_to_mention, session)

    def _reply_to_mention(self, session: GameSession) -> None:
        if not self._alive(session):
            return
        try:
            session.chat(self.mention_reply)
        except Exception as e:
            logger.warning(f"Chat reply failed: {e}")

    def _on_physics_tick(self, session: GameSession) -> None:
        self.last_activity = self.loop.time()

    # ------------------------------------------------------------------
    # Periodic checks
    # ------------------------------------------------------------------

    def _watchdog(self) -> None:
        if not self.running:
            return
        self.timers.schedule('watchdog', self.watchdog_interval, self._watchdog)

        session = self.session
        if session is not None and getattr(session, 'ended', False) and self.connected:
            self.record('⚠️ Session ended without notice - reconnecting', 'warning')
            self._teardown(DisconnectReason.END)
            self._schedule_reconnect(DisconnectReason.END)
            return

        if self.state != SessionState.DISCONNECTED or self.timers.pending('reconnect'):
            return

        idle = self.logs.seconds_since_last()
        if idle is None or idle >= self.watchdog_idle:
            self.record(
                f'⚠️ No activity for {(idle or 0) / 60:.0f}m while disconnected - reconnecting',
                'warning'
            )
            self._schedule_reconnect(DisconnectReason.END)

    def _log_status(self) -> None:
        if not self.running:
            return
        self.timers.schedule('status', self.status_interval, self._log_status)
        if not self.connected:
            return
        stats = self._stats()
        position = stats.position or {}
        logger.info(
            f"📍 Bot status - Health: {stats.health}, Food: {stats.food}, "
            f"Position: {position.get('x')}, {position.get('y')}, {position.get('z')}"
        )

    def _stats(self) -> GameStats:
        if self.session is None or not self.connected:
            return GameStats()
        try:
            return self.session.stats()
        except Exception as e:
            logger.debug(f"Could not read game stats: {e}")
            return GameStats()
