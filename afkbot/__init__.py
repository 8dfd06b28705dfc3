"""Sleep-Aware AFK Bot - Core Package"""

__version__ = "3.0.0"
__author__ = "AFK Bot Team"

from .config import Config
from .movement import IdleMotionDriver, MovementPattern
from .supervisor import SessionSupervisor, SessionState
from .keepalive import KeepAliveMonitor
from .status_server import create_app, start_status_server

__all__ = [
    "Config",
    "IdleMotionDriver",
    "MovementPattern",
    "SessionSupervisor",
    "SessionState",
    "KeepAliveMonitor",
    "create_app",
    "start_status_server"
]
