"""
AFK Bot Configuration Module
Handles environment variables and configuration validation
"""

import os
from pathlib import Path
from dotenv import load_dotenv
import logging

from afkbot.utils.exceptions import ConfigurationException

logger = logging.getLogger(__name__)

# Load environment variables
env_path = Path(__file__).parent.parent / '.env'
if not env_path.exists():
    # Try the env.example file if .env doesn't exist
    env_path = Path(__file__).parent.parent / 'env.example'

load_dotenv(env_path)


def _env_bool(name: str, default: str = 'false') -> bool:
    return os.getenv(name, default).strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """Central configuration for AFK Bot with validation"""

    # Bot Info
    BOT_NAME = os.getenv('BOT_NAME', 'Sleep-Aware AFK Bot')
    VERSION = '3.0'

    # Game session
    SERVER_HOST = os.getenv('SERVER_HOST', 'localhost')
    SERVER_PORT = int(os.getenv('SERVER_PORT', '25565'))
    BOT_USERNAME = os.getenv('BOT_USERNAME', 'AFKBot')
    BOT_PASSWORD = os.getenv('BOT_PASSWORD', '')  # Leave empty for offline-mode servers
    MC_VERSION = os.getenv('MC_VERSION', '1.21.8')
    AUTH_TYPE = os.getenv('AUTH_TYPE', 'offline')  # 'microsoft' for premium accounts
    AUTO_ADOPT_SERVER_VERSION = _env_bool('AUTO_ADOPT_SERVER_VERSION')

    # HTTP status server
    HTTP_PORT = int(os.getenv('PORT', '10000'))

    # Chat
    GREETING_MESSAGE = os.getenv('GREETING_MESSAGE', 'AFK Bot online!')
    GREETING_DELAY = float(os.getenv('GREETING_DELAY', '15'))
    MENTION_REPLY = os.getenv('MENTION_REPLY', 'I am an AFK bot. Currently active and moving!')

    # Reconnect policy (seconds)
    RECONNECT_BASE_DELAY = float(os.getenv('RECONNECT_BASE_DELAY', '15'))
    RECONNECT_STEP = float(os.getenv('RECONNECT_STEP', '15'))
    RECONNECT_MAX_DELAY = float(os.getenv('RECONNECT_MAX_DELAY', '120'))
    KICK_RECONNECT_DELAY = float(os.getenv('KICK_RECONNECT_DELAY', '60'))
    MAX_CONTINUOUS_RECONNECTS = int(os.getenv('MAX_CONTINUOUS_RECONNECTS', '10'))
    EXTENDED_COOLDOWN = float(os.getenv('EXTENDED_COOLDOWN', '1800'))  # 30 minutes
    CREATE_RETRY_DELAY = float(os.getenv('CREATE_RETRY_DELAY', '15'))
    FORCED_RESTART_DELAY = float(os.getenv('FORCED_RESTART_DELAY', '5'))

    # Session supervision
    STABLE_GRACE_PERIOD = float(os.getenv('STABLE_GRACE_PERIOD', '10'))
    SPAWN_MOVEMENT_DELAY = float(os.getenv('SPAWN_MOVEMENT_DELAY', '8'))
    RESPAWN_DELAY = float(os.getenv('RESPAWN_DELAY', '3'))
    MAX_RESPAWN_ATTEMPTS = int(os.getenv('MAX_RESPAWN_ATTEMPTS', '5'))
    WATCHDOG_INTERVAL = float(os.getenv('WATCHDOG_INTERVAL', '30'))
    WATCHDOG_IDLE = float(os.getenv('WATCHDOG_IDLE', '300'))  # 5 minutes of silence while disconnected
    STATUS_LOG_INTERVAL = float(os.getenv('STATUS_LOG_INTERVAL', '60'))

    # Idle movement
    DEFAULT_PATTERN = os.getenv('DEFAULT_PATTERN', 'gentle')
    MOVEMENT_INTERVAL = float(os.getenv('MOVEMENT_INTERVAL', '22'))
    MOVEMENT_START_DELAY = float(os.getenv('MOVEMENT_START_DELAY', '2'))
    MOVEMENT_STEP_PAUSE = float(os.getenv('MOVEMENT_STEP_PAUSE', '0.6'))
    MOVEMENT_ERROR_RETRY = float(os.getenv('MOVEMENT_ERROR_RETRY', '5'))
    PATTERN_CHANGE_DELAY = float(os.getenv('PATTERN_CHANGE_DELAY', '2'))
    RANDOM_MIN_DURATION = float(os.getenv('RANDOM_MIN_DURATION', '0.8'))
    RANDOM_MAX_DURATION = float(os.getenv('RANDOM_MAX_DURATION', '1.5'))
    JUMP_CHANCE = float(os.getenv('JUMP_CHANCE', '0.3'))

    # Sleep prevention (seconds)
    EXTERNAL_PING_TIMEOUT = float(os.getenv('EXTERNAL_PING_TIMEOUT', '900'))  # 15 minutes
    INTERNAL_PING_INTERVAL = float(os.getenv('INTERNAL_PING_INTERVAL', '600'))  # 10 minutes
    SLEEP_CHECK_INTERVAL = float(os.getenv('SLEEP_CHECK_INTERVAL', '30'))
    WAKE_DETECTION_WINDOW = float(os.getenv('WAKE_DETECTION_WINDOW', '300'))
    WAKEUP_GRACE_PERIOD = float(os.getenv('WAKEUP_GRACE_PERIOD', '45'))
    COLD_START_TIMEOUT = float(os.getenv('COLD_START_TIMEOUT', '60'))

    # Logging
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO').upper()
    LOG_BUFFER_SIZE = int(os.getenv('LOG_BUFFER_SIZE', '150'))
    HEARTBEAT_INTERVAL = float(os.getenv('HEARTBEAT_INTERVAL', '300'))
    SHUTDOWN_TIMEOUT = float(os.getenv('SHUTDOWN_TIMEOUT', '15'))

    VALID_AUTH_TYPES = ('offline', 'microsoft', 'mojang')

    @classmethod
    def validate(cls):
        """Validate required configuration with comprehensive checks"""
        errors = []
        warnings = []

        # Session validation
        if not cls.SERVER_HOST:
            errors.append("SERVER_HOST is not set")
        elif cls.SERVER_HOST == 'localhost':
            warnings.append("SERVER_HOST is localhost - set it to your game server address")

        if not 1 <= cls.SERVER_PORT <= 65535:
            errors.append("SERVER_PORT must be between 1 and 65535")

        if not 1 <= cls.HTTP_PORT <= 65535:
            errors.append("PORT must be between 1 and 65535")

        if not cls.BOT_USERNAME:
            errors.append("BOT_USERNAME is not set")

        if cls.AUTH_TYPE not in cls.VALID_AUTH_TYPES:
            errors.append(f"AUTH_TYPE must be one of {list(cls.VALID_AUTH_TYPES)}")
        elif cls.AUTH_TYPE == 'microsoft' and not cls.BOT_PASSWORD:
            warnings.append("AUTH_TYPE is microsoft but BOT_PASSWORD is empty (device-code login will be used)")

        # Pattern validation
        from afkbot.movement import MovementPattern
        if not MovementPattern.is_valid(cls.DEFAULT_PATTERN):
            errors.append(f"DEFAULT_PATTERN must be one of {MovementPattern.names()}")

        # Delay validation
        for attr_name in dir(cls):
            if attr_name.startswith('_'):
                continue
            if attr_name.endswith(('_DELAY', '_INTERVAL', '_PERIOD', '_TIMEOUT', '_COOLDOWN', '_IDLE')):
                value = getattr(cls, attr_name)
                if isinstance(value, (int, float)) and value <= 0:
                    errors.append(f"{attr_name} must be positive")

        if cls.RECONNECT_MAX_DELAY < cls.RECONNECT_BASE_DELAY:
            errors.append("RECONNECT_MAX_DELAY must not be smaller than RECONNECT_BASE_DELAY")

        if cls.MAX_CONTINUOUS_RECONNECTS < 1:
            errors.append("MAX_CONTINUOUS_RECONNECTS must be at least 1")

        if cls.RANDOM_MIN_DURATION > cls.RANDOM_MAX_DURATION:
            errors.append("RANDOM_MIN_DURATION must not exceed RANDOM_MAX_DURATION")

        if not 0 <= cls.JUMP_CHANCE <= 1:
            errors.append("JUMP_CHANCE must be between 0 and 1")

        if cls.LOG_BUFFER_SIZE < 1:
            errors.append("LOG_BUFFER_SIZE must be at least 1")

        # Log level validation
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if cls.LOG_LEVEL not in valid_log_levels:
            errors.append(f"LOG_LEVEL must be one of {valid_log_levels}")

        # Print warnings
        for warning in warnings:
            logger.warning(f"Configuration warning: {warning}")

        # Raise error if any critical issues
        if errors:
            raise ConfigurationException(
                "Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors),
                config_key=", ".join(e.split()[0] for e in errors)
            )

        # Log successful validation
        logger.info("=" * 60)
        logger.info("Configuration validated successfully")
        logger.info("=" * 60)
        logger.info(f"Server: {cls.SERVER_HOST}:{cls.SERVER_PORT}")
        logger.info(f"Username: {cls.BOT_USERNAME} (auth: {cls.AUTH_TYPE}, password: {'***' if cls.BOT_PASSWORD else 'none'})")
        logger.info(f"Version: {cls.MC_VERSION} (auto-adopt: {cls.AUTO_ADOPT_SERVER_VERSION})")
        logger.info(f"Dashboard Port: {cls.HTTP_PORT}")
        logger.info(f"Movement: {cls.DEFAULT_PATTERN} every {cls.MOVEMENT_INTERVAL:.0f}s")
        logger.info("-" * 60)
        logger.info("Reconnect Policy:")
        logger.info(f"  Backoff: {cls.RECONNECT_BASE_DELAY:.0f}s + {cls.RECONNECT_STEP:.0f}s/attempt (max {cls.RECONNECT_MAX_DELAY:.0f}s)")
        logger.info(f"  Kick Delay: {cls.KICK_RECONNECT_DELAY:.0f}s")
        logger.info(f"  Cooldown: {cls.EXTENDED_COOLDOWN / 60:.0f}m after {cls.MAX_CONTINUOUS_RECONNECTS} continuous failures")
        logger.info("=" * 60)

        return True

    @classmethod
    def get_config_dict(cls):
        """Get configuration as dictionary (password masked)"""
        return {
            'bot_name': cls.BOT_NAME,
            'server': f"{cls.SERVER_HOST}:{cls.SERVER_PORT}",
            'username': cls.BOT_USERNAME,
            'password': '***' if cls.BOT_PASSWORD else '',
            'version': cls.MC_VERSION,
            'auth': cls.AUTH_TYPE,
            'http_port': cls.HTTP_PORT,
            'default_pattern': cls.DEFAULT_PATTERN,
            'log_level': cls.LOG_LEVEL
        }


# Set logging level based on config
logging.getLogger().setLevel(getattr(logging, Config.LOG_LEVEL, logging.INFO))
