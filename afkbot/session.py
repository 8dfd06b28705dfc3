"""
Game session interface
The supervisor only depends on GameSession; the mineflayer adapter below is the
production implementation, reached through the JSPyBridge ``javascript`` package
"""
import asyncio
import logging
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from afkbot.utils.exceptions import SessionCreationException, SessionException

logger = logging.getLogger(__name__)


class SessionEvent(str, Enum):
    """Lifecycle events a session can emit"""
    LOGIN = "login"
    SPAWN = "spawn"
    DEATH = "death"
    KICKED = "kicked"    # handler(reason: str)
    ERROR = "error"      # handler(error: Exception)
    END = "end"          # handler(reason: str)
    CHAT = "chat"        # handler(username: str, message: str)
    PHYSICS_TICK = "physics_tick"


@dataclass
class SessionOptions:
    """Connection settings handed to the session factory"""
    host: str
    port: int
    username: str
    password: str = ''
    version: str = '1.21.8'
    auth: str = 'offline'

    def masked(self) -> Dict[str, Any]:
        data = asdict(self)
        data['password'] = '***' if self.password else ''
        return data


@dataclass
class GameStats:
    health: float = 0
    food: float = 0
    position: Optional[Dict[str, int]] = None


class GameSession(Protocol):
    """Narrow capability set the supervisor relies on"""

    username: str
    ended: bool

    def on(self, event: SessionEvent, handler: Callable[..., None]) -> None: ...

    def set_control_state(self, control: str, state: bool) -> None: ...

    def clear_control_states(self) -> None: ...

    def chat(self, message: str) -> None: ...

    def respawn(self) -> None: ...

    def end(self, reason: str = '') -> None: ...

    def stats(self) -> GameStats: ...


SessionFactory = Callable[[SessionOptions], GameSession]


class MineflayerSession:
    """GameSession backed by a mineflayer bot running in the Node bridge"""

    # mineflayer event name -> SessionEvent
    EVENT_NAMES = {
        SessionEvent.LOGIN: 'login',
        SessionEvent.SPAWN: 'spawn',
        SessionEvent.DEATH: 'death',
        SessionEvent.KICKED: 'kicked',
        SessionEvent.ERROR: 'error',
        SessionEvent.END: 'end',
        SessionEvent.CHAT: 'chat',
        SessionEvent.PHYSICS_TICK: 'physicsTick',
    }

    def __init__(self, options: SessionOptions, loop: asyncio.AbstractEventLoop):
        from javascript import require, On

        self._on = On
        self._loop = loop
        self._handlers: Dict[SessionEvent, List[Callable[..., None]]] = {}
        self.ended = False

        mineflayer = require('mineflayer')
        self._bot = mineflayer.createBot({
            'host': options.host,
            'port': options.port,
            'username': options.username,
            'password': options.password or None,
            'version': options.version,
            'auth': options.auth,
            'keepAlive': True,
            'checkTimeoutInterval': 30000,
            'hideErrors': False,
        })
        self.username = options.username
        self._bind(SessionEvent.END, lambda *_: setattr(self, 'ended', True))

    def _bind(self, event: SessionEvent, callback: Callable[..., None]) -> None:
        # Bridge callbacks run on the bridge thread; hop onto the asyncio loop
        def listener(this, *args):
            self._loop.call_soon_threadsafe(callback, *args)

        self._on(self._bot, self.EVENT_NAMES[event])(listener)

    def on(self, event: SessionEvent, handler: Callable[..., None]) -> None:
        first = event not in self._handlers
        self._handlers.setdefault(event, []).append(handler)
        if first:
            self._bind(event, lambda *args, _event=event: self._dispatch(_event, *args))

    def _dispatch(self, event: SessionEvent, *args: Any) -> None:
        if event == SessionEvent.LOGIN:
            self.username = str(self._bot.username)
        elif event == SessionEvent.ERROR:
            args = (SessionException(str(getattr(args[0], 'message', args[0]))),) if args else ()
        elif event in (SessionEvent.KICKED, SessionEvent.END):
            args = (str(args[0]) if args else '',)
        elif event == SessionEvent.CHAT:
            args = (str(args[0]), str(args[1]))
        for handler in list(self._handlers.get(event, ())):
            handler(*args)

    def set_control_state(self, control: str, state: bool) -> None:
        self._bot.setControlState(control, state)

    def clear_control_states(self) -> None:
        self._bot.clearControlStates()

    def chat(self, message: str) -> None:
        self._bot.chat(message)

    def respawn(self) -> None:
        self._bot.respawn()

    def end(self, reason: str = '') -> None:
        if self.ended:
            return
        self.ended = True
        self._bot.end(reason or 'disconnect.quitting')

    def stats(self) -> GameStats:
        entity = self._bot.entity
        position = None
        if entity and entity.position:
            position = {
                'x': round(entity.position.x),
                'y': round(entity.position.y),
                'z': round(entity.position.z),
            }
        return GameStats(
            health=self._bot.health or 0,
            food=self._bot.food or 0,
            position=position,
        )


def create_mineflayer_session(options: SessionOptions) -> GameSession:
    """Default SessionFactory; must be called from the event loop thread"""
    logger.debug(f"Creating mineflayer session: {options.masked()}")
    try:
        return MineflayerSession(options, asyncio.get_running_loop())
    except Exception as e:
        raise SessionCreationException(f"Failed to create session: {e}", {'host': options.host}) from e
