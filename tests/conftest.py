import heapq
import itertools

import pytest

from afkbot.session import GameStats


class ManualHandle:
    def __init__(self, when, callback, args):
        self._when = when
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self):
        self._cancelled = True

    def cancelled(self):
        return self._cancelled

    def when(self):
        return self._when


class ManualLoop:
    """Deterministic stand-in for the event loop's timer API"""

    def __init__(self, start=1000.0):
        self.now = start
        self._queue = []
        self._seq = itertools.count()

    def time(self):
        return self.now

    def call_later(self, delay, callback, *args):
        handle = ManualHandle(self.now + delay, callback, args)
        heapq.heappush(self._queue, (handle.when(), next(self._seq), handle))
        return handle

    def pending(self):
        return [entry[2] for entry in self._queue if not entry[2].cancelled()]

    def advance(self, seconds):
        target = self.now + seconds
        while self._queue and self._queue[0][0] <= target:
            when, _, handle = heapq.heappop(self._queue)
            if handle.cancelled():
                continue
            self.now = when
            handle.callback(*handle.args)
        self.now = target


class FakeSession:
    """Records everything the bot does to the game client"""

    def __init__(self, username='AFKBot'):
        self.username = username
        self.ended = False
        self.handlers = {}
        self.calls = []
        self.chat_messages = []
        self.respawns = 0
        self.end_reasons = []
        self.fail_on_press = False

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def emit(self, event, *args):
        for handler in list(self.handlers.get(event, ())):
            handler(*args)

    def set_control_state(self, control, state):
        if state and self.fail_on_press:
            raise RuntimeError('bridge closed')
        self.calls.append((control, state))

    def clear_control_states(self):
        self.calls.append(('clear', None))

    def chat(self, message):
        self.chat_messages.append(message)

    def respawn(self):
        self.respawns += 1

    def end(self, reason=''):
        self.ended = True
        self.end_reasons.append(reason)

    def stats(self):
        return GameStats(health=20, food=18, position={'x': 1, 'y': 64, 'z': -3})


class SessionFactoryStub:
    def __init__(self):
        self.sessions = []
        self.failures = []
        self.options_seen = []

    def __call__(self, options):
        self.options_seen.append(options.version)
        if self.failures:
            raise self.failures.pop(0)
        session = FakeSession(options.username)
        self.sessions.append(session)
        return session

    @property
    def last(self):
        return self.sessions[-1]


@pytest.fixture
def loop():
    return ManualLoop()


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def factory():
    return SessionFactoryStub()
