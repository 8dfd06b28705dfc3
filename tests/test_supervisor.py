import json
import random

from afkbot.keepalive import KeepAliveMonitor
from afkbot.movement import IdleMotionDriver, MovementPattern, RandomRule
from afkbot.session import SessionEvent, SessionOptions
from afkbot.supervisor import SessionState, SessionSupervisor
from afkbot.utils.log_buffer import LogBuffer
from afkbot.utils.resilience import ReconnectPolicy


class Clock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def make_supervisor(loop, factory, **kwargs):
    logs = LogBuffer(clock=loop.time)
    driver = IdleMotionDriver(loop, interval=22, start_delay=2, step_pause=0.6, error_retry=5,
                              rule=RandomRule(), rng=random.Random(3))
    params = dict(
        loop=loop,
        policy=ReconnectPolicy(),
        driver=driver,
        logs=logs,
        stable_grace=10,
        create_retry_delay=15,
        forced_restart_delay=5,
        spawn_movement_delay=8,
        respawn_delay=3,
        max_respawn_attempts=5,
        pattern_change_delay=2,
        greeting_message='',
        mention_reply='I am an AFK bot',
        watchdog_interval=30,
        watchdog_idle=300,
        status_interval=60,
        auto_adopt_version=False,
    )
    params.update(kwargs)
    options = SessionOptions(host='mc.example.net', port=25565, username='AFKBot', version='1.21.8')
    return SessionSupervisor(factory, options, **params)


def sleeping_keepalive(logs):
    clock = Clock()
    monitor = KeepAliveMonitor(logs=logs, clock=clock, external_timeout=900, wake_grace=45)
    clock.now = 1000.0
    return monitor


def test_login_then_stable(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    assert supervisor.state == SessionState.CONNECTING

    factory.last.emit(SessionEvent.LOGIN)
    assert supervisor.state == SessionState.CONNECTED
    assert supervisor.connected and not supervisor.stable

    loop.advance(10)
    assert supervisor.state == SessionState.STABLE
    assert supervisor.total_logins == 1


def test_greeting_sent_after_delay(loop, factory):
    supervisor = make_supervisor(loop, factory, greeting_message='hello all', greeting_delay=15)
    supervisor.start()
    factory.last.emit(SessionEvent.LOGIN)

    loop.advance(14)
    assert factory.last.chat_messages == []
    loop.advance(1)
    assert factory.last.chat_messages == ['hello all']


def test_end_schedules_reconnect(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    first = factory.last
    first.emit(SessionEvent.LOGIN)
    first.emit(SessionEvent.END, 'socketClosed')

    assert supervisor.state == SessionState.DISCONNECTED
    assert supervisor.session is None
    assert supervisor.timers.remaining('reconnect') == 15

    loop.advance(15)
    assert len(factory.sessions) == 2
    assert supervisor.state == SessionState.CONNECTING


def test_unstable_sessions_back_off(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()

    delays = []
    for _ in range(3):
        factory.last.emit(SessionEvent.LOGIN)
        loop.advance(5)
        factory.last.emit(SessionEvent.END, 'socketClosed')
        delay = supervisor.timers.remaining('reconnect')
        delays.append(delay)
        loop.advance(delay)

    assert delays == [15, 30, 45]
    assert supervisor.policy.continuous_failures == 3


def test_stable_session_resets_backoff(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    for _ in range(2):
        factory.last.emit(SessionEvent.END, 'socketClosed')
        loop.advance(supervisor.timers.remaining('reconnect'))

    factory.last.emit(SessionEvent.LOGIN)
    loop.advance(10)
    factory.last.emit(SessionEvent.END, 'socketClosed')

    assert supervisor.timers.remaining('reconnect') == 15


def test_kick_ignores_stale_end(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    first = factory.last
    first.emit(SessionEvent.LOGIN)

    first.emit(SessionEvent.KICKED, 'Flying is not enabled')
    assert supervisor.kick_count == 1
    assert first.ended
    assert supervisor.timers.remaining('reconnect') == 60

    first.emit(SessionEvent.END, 'socketClosed')
    assert supervisor.policy.attempts == 1
    assert supervisor.timers.remaining('reconnect') == 60


def test_version_mismatch_adopted_when_enabled(loop, factory):
    supervisor = make_supervisor(loop, factory, auto_adopt_version=True)
    supervisor.start()

    factory.last.emit(SessionEvent.ERROR, Exception('This server is version 1.20.4'))
    assert supervisor.options.version == '1.20.4'
    assert supervisor.last_error['details']['category'] == 'version_mismatch'

    loop.advance(15)
    assert factory.options_seen[-1] == '1.20.4'


def test_version_mismatch_only_reported_by_default(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()

    factory.last.emit(SessionEvent.ERROR, Exception('This server is version 1.20.4'))

    assert supervisor.options.version == '1.21.8'
    assert any('MC_VERSION=1.20.4' in entry.message for entry in supervisor.logs.recent())


def test_creation_failure_retries(loop, factory):
    factory.failures.append(RuntimeError('bridge not ready'))
    supervisor = make_supervisor(loop, factory)
    supervisor.start()

    assert supervisor.state == SessionState.DISCONNECTED
    assert supervisor.last_error['message'] == 'bridge not ready'
    assert supervisor.timers.remaining('reconnect') == 15

    loop.advance(15)
    assert len(factory.sessions) == 1
    assert supervisor.state == SessionState.CONNECTING


def test_force_restart_replaces_session(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    first = factory.last
    first.emit(SessionEvent.LOGIN)

    assert supervisor.force_restart() is True
    assert first.ended
    assert first.end_reasons == ['disconnect.quitting']
    assert supervisor.state == SessionState.DISCONNECTED

    loop.advance(5)
    assert len(factory.sessions) == 2
    assert factory.last is not first


def test_spawn_starts_movement_and_end_stops_it(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    session = factory.last
    session.emit(SessionEvent.LOGIN)
    session.emit(SessionEvent.SPAWN)

    loop.advance(8)
    assert supervisor.driver.moving
    loop.advance(2)
    assert session.calls[-1] == ('forward', True)

    session.emit(SessionEvent.END, 'socketClosed')
    assert not supervisor.driver.moving
    assert supervisor.driver.held is None

    calls = len(session.calls)
    loop.advance(14)
    assert len(session.calls) == calls


def test_change_pattern(loop, factory):
    supervisor = make_supervisor(loop, factory)

    assert supervisor.change_pattern('circle') is True
    assert supervisor.driver.pattern == MovementPattern.CIRCLE

    assert supervisor.change_pattern('zigzag') is False
    assert supervisor.driver.pattern == MovementPattern.CIRCLE


def test_respawn_then_reconnect_after_max_attempts(loop, factory):
    supervisor = make_supervisor(loop, factory, max_respawn_attempts=2)
    supervisor.start()
    session = factory.last
    session.emit(SessionEvent.LOGIN)

    for _ in range(2):
        session.emit(SessionEvent.DEATH)
        loop.advance(3)
    assert session.respawns == 2
    assert supervisor.connected

    session.emit(SessionEvent.DEATH)
    loop.advance(3)
    assert session.respawns == 2
    assert session.ended
    assert supervisor.state == SessionState.DISCONNECTED
    assert supervisor.timers.pending('reconnect')


def test_mentions_get_a_reply(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    session = factory.last
    session.emit(SessionEvent.LOGIN)

    session.emit(SessionEvent.CHAT, 'AFKBot', 'AFKBot talking to itself')
    session.emit(SessionEvent.CHAT, 'Steve', 'hey afkbot, you there?')
    loop.advance(1)

    assert session.chat_messages == ['I am an AFK bot']
    assert supervisor.logs.recent()[-1].level == 'chat'


def test_end_while_host_asleep_waits_for_wake(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.keepalive = sleeping_keepalive(supervisor.logs)
    supervisor.start()
    factory.last.emit(SessionEvent.LOGIN)
    factory.last.emit(SessionEvent.END, 'socketClosed')

    assert not supervisor.timers.pending('reconnect')

    supervisor.handle_wake()
    assert supervisor.timers.remaining('reconnect') == 45


def test_watchdog_reconnects_when_idle(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.keepalive = sleeping_keepalive(supervisor.logs)
    supervisor.start()
    factory.last.emit(SessionEvent.END, 'socketClosed')

    loop.advance(290)
    assert len(factory.sessions) == 1
    assert not supervisor.timers.pending('reconnect')

    loop.advance(10)
    assert supervisor.timers.remaining('reconnect') == 15
    assert supervisor.policy.continuous_failures == 1

    loop.advance(15)
    assert len(factory.sessions) == 2


def test_watchdog_recoveries_count_toward_cooldown(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.keepalive = sleeping_keepalive(supervisor.logs)
    supervisor.start()

    handled = 0
    for _ in range(400):
        while handled < len(factory.sessions):
            session = factory.sessions[handled]
            handled += 1
            session.emit(SessionEvent.LOGIN)
            session.emit(SessionEvent.END, 'socketClosed')
        loop.advance(30)

    assert supervisor.policy.cooldowns >= 1


def test_supervisor_and_keepalive_share_dashboard_log(loop, factory):
    logs = LogBuffer(clock=loop.time)
    keepalive = KeepAliveMonitor(logs=logs, clock=loop.time)
    options = SessionOptions(host='mc.example.net', port=25565, username='AFKBot')
    supervisor = SessionSupervisor(factory, options, loop=loop, logs=logs, keepalive=keepalive, greeting_message='')
    keepalive.on_wake = supervisor.handle_wake

    assert supervisor.logs is logs
    assert keepalive.logs is logs

    loop.advance(1000)
    assert keepalive.check_sleep_cycle() == 'sleep'

    messages = [entry['message'] for entry in supervisor.snapshot()['recent_logs']]
    assert any('SLEEP CYCLE DETECTED' in message for message in messages)


def test_shutdown_cancels_everything(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    session = factory.last
    session.emit(SessionEvent.LOGIN)
    session.emit(SessionEvent.SPAWN)

    supervisor.shutdown()

    assert session.ended
    assert len(supervisor.timers) == 0
    assert loop.pending() == []


def test_snapshot_is_json_serialisable(loop, factory):
    supervisor = make_supervisor(loop, factory)
    supervisor.start()
    factory.last.emit(SessionEvent.LOGIN)
    loop.advance(12)

    status = supervisor.snapshot()

    assert status['state'] == 'stable'
    assert status['connected'] is True
    assert status['session_uptime'] == 12
    assert status['server'] == 'mc.example.net:25565'
    assert status['health'] == 20
    assert status['position'] == {'x': 1, 'y': 64, 'z': -3}
    assert status['patterns'] == ['gentle', 'circle', 'square', 'random']
    assert status['keep_alive'] is None
    json.dumps(status)
