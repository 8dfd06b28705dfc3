#!/usr/bin/env python3
"""
Sleep-Aware AFK Bot - Main Entry Point
Keeps a game account online, moving and reconnecting, with a status dashboard
"""

import asyncio
import logging
import sys
import os
from pathlib import Path
from datetime import datetime
import signal
import threading
import psutil
import time
from typing import Optional

from aiohttp import web

from afkbot.config import Config
from afkbot.keepalive import KeepAliveMonitor
from afkbot.movement import IdleMotionDriver, RandomRule
from afkbot.session import SessionOptions, create_mineflayer_session
from afkbot.status_server import create_app, start_status_server
from afkbot.supervisor import SessionSupervisor
from afkbot.utils.exceptions import ConfigurationException, handle_exception
from afkbot.utils.log_buffer import LogBuffer

# Setup logging
log_dir = Path(__file__).parent / "logs"
log_dir.mkdir(exist_ok=True)

logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(log_dir / f"afkbot_{datetime.now().strftime('%Y%m%d')}.log"),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


class AFKRunner:
    def __init__(self):
        self.running = True
        self.supervisor: Optional[SessionSupervisor] = None
        self.keepalive: Optional[KeepAliveMonitor] = None
        self.web_runner: Optional[web.AppRunner] = None
        self.loop: Optional[asyncio.AbstractEventLoop] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._force_exit_timer: Optional[threading.Timer] = None

    def check_already_running(self):
        """Check if another instance is already running"""
        current_pid = os.getpid()
        for proc in psutil.process_iter(['pid', 'name', 'cmdline']):
            try:
                if proc.info['pid'] != current_pid:
                    cmdline = ' '.join(proc.info.get('cmdline') or [])
                    if 'main.py' in cmdline and 'afkbot' in cmdline.lower():
                        logger.warning(f"AFK Bot already running (PID: {proc.info['pid']})")
                        return True
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass
        return False

    def signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        signal_name = signal.Signals(signum).name
        logger.warning(f"⚠️ Received {signal_name}, initiating graceful shutdown...")

        try:
            process = psutil.Process()
            memory_mb = process.memory_info().rss / 1024 / 1024
            uptime = int(time.time() - self.start_time) if hasattr(self, 'start_time') else 0
            logger.info(f"Shutdown stats - Memory: {memory_mb:.1f}MB, Uptime: {uptime}s")
        except psutil.Error as e:
            logger.debug(f"Could not collect shutdown stats: {e}")

        if not self.running:
            return
        self.running = False

        # Cleanup hangs must not keep the process alive forever
        self._force_exit_timer = threading.Timer(Config.SHUTDOWN_TIMEOUT, self._force_exit)
        self._force_exit_timer.daemon = True
        self._force_exit_timer.start()

        if self.loop is not None and self._stop_event is not None:
            self.loop.call_soon_threadsafe(self._stop_event.set)

    @staticmethod
    def _force_exit():
        logger.critical(f"Graceful shutdown exceeded {Config.SHUTDOWN_TIMEOUT:.0f}s, forcing exit")
        os._exit(1)

    def exception_handler(self, loop, context):
        """Last-resort handler: log and rebuild the session"""
        exception = context.get('exception')
        if exception is not None:
            handle_exception(exception, logger)
        else:
            logger.error(f"Unhandled event loop error: {context.get('message')}")

        if self.running and self.supervisor is not None:
            self.supervisor.record('💥 Unhandled error - forcing session restart', 'error')
            self.supervisor.force_restart()

    async def run_bot(self):
        """Run the supervisor, sleep prevention and dashboard until a shutdown signal"""
        heartbeat_task = None

        try:
            logger.info("Starting AFK Bot...")
            logs = LogBuffer(maxlen=Config.LOG_BUFFER_SIZE)

            options = SessionOptions(
                host=Config.SERVER_HOST,
                port=Config.SERVER_PORT,
                username=Config.BOT_USERNAME,
                password=Config.BOT_PASSWORD,
                version=Config.MC_VERSION,
                auth=Config.AUTH_TYPE
            )

            self.keepalive = KeepAliveMonitor(logs=logs, port=Config.HTTP_PORT)
            driver = IdleMotionDriver(self.loop, rule=RandomRule.from_config(), pattern=Config.DEFAULT_PATTERN)
            self.supervisor = SessionSupervisor(
                create_mineflayer_session,
                options,
                loop=self.loop,
                driver=driver,
                logs=logs,
                keepalive=self.keepalive
            )
            self.keepalive.on_wake = self.supervisor.handle_wake

            app = create_app(self.supervisor, self.keepalive)
            self.web_runner = await start_status_server(app, Config.HTTP_PORT)

            self.keepalive.start()
            self.supervisor.start()

            heartbeat_task = asyncio.create_task(self._heartbeat_loop())
            logger.info("Started heartbeat monitor")

            logger.info("=" * 50)
            logger.info("✅ AFK BOT RUNNING")
            logger.info(f"   Dashboard: http://localhost:{Config.HTTP_PORT}")
            logger.info("=" * 50)

            await self._stop_event.wait()

        except Exception as e:
            logger.error(f"Critical bot error: {e}", exc_info=True)

        finally:
            logger.info("Initiating graceful shutdown...")

            if heartbeat_task and not heartbeat_task.done():
                heartbeat_task.cancel()
                try:
                    await heartbeat_task
                except asyncio.CancelledError:
                    logger.debug("Heartbeat task cancelled")

            if self.supervisor:
                self.supervisor.shutdown()
                logger.info("✓ Session closed")

            if self.keepalive:
                await self.keepalive.stop()
                logger.info("✓ Sleep prevention stopped")

            if self.web_runner:
                try:
                    await asyncio.wait_for(self.web_runner.cleanup(), timeout=10)
                    logger.info("✓ Status server stopped")
                except asyncio.TimeoutError:
                    logger.warning("Status server shutdown timeout")

            if self._force_exit_timer:
                self._force_exit_timer.cancel()

    def print_startup_banner(self):
        """Display startup banner"""
        banner = """
╔════════════════════════════════════════════════════╗
║     SLEEP-AWARE AFK BOT v3.0 🛡️                    ║
║     Idle Movement + Auto-Reconnect + Dashboard     ║
╚════════════════════════════════════════════════════╝
        """
        print(banner)
        logger.info("=" * 60)
        logger.info("AFK Bot Starting...")
        logger.info("=" * 60)
        logger.info(f"System: {sys.platform}")
        logger.info(f"Python: {sys.version.split()[0]}")
        logger.info(f"Working Directory: {os.getcwd()}")
        logger.info(f"Process ID: {os.getpid()}")
        log_filename = f"afkbot_{datetime.now().strftime('%Y%m%d')}.log"
        logger.info(f"Log File: {log_dir / log_filename}")
        logger.info("=" * 60)

    async def _heartbeat_loop(self):
        """Periodic process health line so hosting platforms see activity"""
        heartbeat_count = 0
        process = psutil.Process()

        while self.running:
            await asyncio.sleep(Config.HEARTBEAT_INTERVAL)
            heartbeat_count += 1
            try:
                uptime_mins = int((time.time() - self.start_time) / 60)
                memory_mb = process.memory_info().rss / 1024 / 1024
                state = self.supervisor.state.value if self.supervisor else 'unknown'
                logger.info(
                    f"💓 Heartbeat #{heartbeat_count} | Uptime: {uptime_mins}m | "
                    f"Memory: {memory_mb:.1f}MB | Session: {state}"
                )
                if memory_mb > 500:
                    logger.warning(f"⚠️ High memory usage: {memory_mb:.1f}MB")
            except psutil.Error as e:
                logger.error(f"Heartbeat error: {e}")

    async def main(self):
        """Main execution"""
        self.print_startup_banner()
        self.start_time = time.time()

        if self.check_already_running():
            logger.error("Another instance is already running. Exiting.")
            sys.exit(1)

        try:
            Config.validate()
        except ConfigurationException as e:
            handle_exception(e, logger)
            logger.error(f"Please check your .env file (invalid: {e.config_key})")
            sys.exit(1)

        logger.info(f"Effective configuration: {Config.get_config_dict()}")

        self.loop = asyncio.get_running_loop()
        self._stop_event = asyncio.Event()
        self.loop.set_exception_handler(self.exception_handler)

        signal.signal(signal.SIGINT, self.signal_handler)
        signal.signal(signal.SIGTERM, self.signal_handler)

        await self.run_bot()

        logger.info("AFK Bot stopped")


if __name__ == "__main__":
    runner = AFKRunner()

    try:
        asyncio.run(runner.main())
    except Exception as e:
        logger.critical(f"Fatal error: {e}")
        sys.exit(1)
