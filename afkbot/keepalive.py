"""
Sleep prevention for free-tier hosting
Tracks pings from an external uptime monitor, detects when the host put the
process to sleep and woke it again, and sends a backup internal keep-alive
when external pings stop arriving.
"""

import asyncio
import logging
import time
from typing import Callable, Optional

import aiohttp

from afkbot.config import Config
from afkbot.utils.log_buffer import LogBuffer

logger = logging.getLogger(__name__)

INTERNAL_USER_AGENT = f"AFKBot-Internal-KeepAlive/{Config.VERSION}"
KNOWN_MONITORS = ('UptimeRobot', 'Pingdom', 'Freshping', 'StatusCake', 'cron-job.org', 'BetterUptime')


class KeepAliveMonitor:
    """Sleep/wake detection driven by /keep-alive traffic"""

    def __init__(
        self,
        logs: Optional[LogBuffer] = None,
        port: int = Config.HTTP_PORT,
        clock: Callable[[], float] = time.monotonic,
        external_timeout: float = Config.EXTERNAL_PING_TIMEOUT,
        internal_interval: float = Config.INTERNAL_PING_INTERVAL,
        check_interval: float = Config.SLEEP_CHECK_INTERVAL,
        wake_window: float = Config.WAKE_DETECTION_WINDOW,
        wake_grace: float = Config.WAKEUP_GRACE_PERIOD,
        on_wake: Optional[Callable[[], None]] = None
    ):
        self.logs = logs if logs is not None else LogBuffer()
        self.port = port
        self.clock = clock
        self.external_timeout = external_timeout
        self.internal_interval = internal_interval
        self.check_interval = check_interval
        self.wake_window = wake_window
        self.wake_grace = wake_grace
        self.on_wake = on_wake

        now = clock()
        self.started_at = now
        self.last_external_ping = now
        self.last_internal_ping: Optional[float] = None
        self.last_wake_time = now
        self.external_ping_count = 0
        self.internal_ping_count = 0
        self.sleep_cycles = 0
        self.sleep_detected = False
        self.running = False
        self._tasks = []

    @staticmethod
    def is_internal(user_agent: str) -> bool:
        return (user_agent or '').startswith(INTERNAL_USER_AGENT)

    def record_external_ping(self, user_agent: str = '') -> bool:
        """
        Register a /keep-alive hit

        Returns:
            True if the ping counted as external
        """
        if self.is_internal(user_agent):
            return False

        now = self.clock()
        self.external_ping_count += 1
        self.last_external_ping = now
        source = next((m for m in KNOWN_MONITORS if m in (user_agent or '')), None)
        logger.debug(f"🔄 External keep-alive #{self.external_ping_count} from {source or (user_agent or 'unknown').split(' ')[0]}")

        if self.sleep_detected:
            self.sleep_detected = False
            self.last_wake_time = now
            self.logs.record(logger, '☀️ External ping received - service awake', 'success')
            self._notify_wake()
        return True

    def seconds_since_external_ping(self) -> float:
        return max(0.0, self.clock() - self.last_external_ping)

    def host_probably_asleep(self) -> bool:
        return self.seconds_since_external_ping() > self.external_timeout

    def recently_woke(self) -> bool:
        return self.clock() - self.last_wake_time < self.wake_grace

    def needs_internal_ping(self) -> bool:
        """Internal pings are a backup used only while external ones are missing"""
        return self.host_probably_asleep()

    def check_sleep_cycle(self) -> Optional[str]:
        """
        Look for sleep and wake transitions

        Returns:
            'sleep', 'wake' or None
        """
        now = self.clock()
        since_external = now - self.last_external_ping

        if since_external > self.external_timeout and not self.sleep_detected:
            self.sleep_detected = True
            self.sleep_cycles += 1
            self.logs.record(logger, f'💤 SLEEP CYCLE DETECTED - No external pings for {since_external / 60:.0f}+ minutes', 'error')
            self.logs.record(logger, f'📊 Total sleep cycles: {self.sleep_cycles}', 'warning')
            return 'sleep'

        if self.sleep_detected and since_external < self.wake_window:
            self.sleep_detected = False
            self.last_wake_time = now
            self.logs.record(logger, '☀️ SERVICE WAKE DETECTED - External pings resumed', 'success')
            self._notify_wake()
            return 'wake'

        return None

    def _notify_wake(self) -> None:
        if self.on_wake is not None:
            self.on_wake()

    def sleep_risk(self) -> str:
        since_external = self.seconds_since_external_ping()
        if since_external > 600:
            return 'HIGH'
        if since_external > 300:
            return 'MEDIUM'
        return 'LOW'

    async def send_internal_ping(self, session: aiohttp.ClientSession) -> bool:
        """GET our own /keep-alive endpoint"""
        self.internal_ping_count += 1
        self.last_internal_ping = self.clock()
        minutes = self.seconds_since_external_ping() / 60
        self.logs.record(
            logger,
            f'🔄 Internal keep-alive ping #{self.internal_ping_count} (no external pings for {minutes:.0f}m)',
            'warning'
        )

        url = f"http://127.0.0.1:{self.port}/keep-alive"
        try:
            async with session.get(url, headers={'User-Agent': INTERNAL_USER_AGENT}) as response:
                return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.debug(f"Internal keep-alive failed: {e}")
            return False

    async def _internal_keepalive_loop(self):
        timeout = aiohttp.ClientTimeout(total=10)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            while self.running:
                await asyncio.sleep(self.internal_interval)
                if self.needs_internal_ping():
                    await self.send_internal_ping(session)

    async def _sleep_monitor_loop(self):
        while self.running:
            await asyncio.sleep(self.check_interval)
            self.check_sleep_cycle()

    def start(self) -> None:
        """Start background loops on the running event loop"""
        if self.running:
            return
        self.running = True
        self.logs.record(logger, '🛡️ Starting sleep prevention system')
        self.logs.record(logger, '👁️ Starting sleep cycle monitoring')
        self._tasks = [
            asyncio.create_task(self._internal_keepalive_loop()),
            asyncio.create_task(self._sleep_monitor_loop()),
        ]

    async def stop(self) -> None:
        self.running = False
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

    def snapshot(self) -> dict:
        since_external = self.seconds_since_external_ping()
        since_internal = None
        if self.last_internal_ping is not None:
            since_internal = self.clock() - self.last_internal_ping

        return {
            'external_ping_count': self.external_ping_count,
            'internal_ping_count': self.internal_ping_count,
            'last_external_ping': f"{since_external:.0f}s ago" if since_external < 300 else 'Over 5 minutes ago',
            'last_internal_ping': f"{since_internal:.0f}s ago" if since_internal is not None else 'Never',
            'sleep_cycles': self.sleep_cycles,
            'sleep_detected': self.sleep_detected,
            'sleep_risk': self.sleep_risk(),
            'prevention_status': 'External pings active' if since_external < 600 else 'Relying on internal pings',
        }
