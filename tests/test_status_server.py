import asyncio

from aiohttp.test_utils import TestClient, TestServer

from afkbot.keepalive import INTERNAL_USER_AGENT, KeepAliveMonitor
from afkbot.movement import MovementPattern
from afkbot.session import SessionEvent, SessionOptions
from afkbot.status_server import CORS_HEADERS, create_app
from afkbot.supervisor import SessionSupervisor
from afkbot.utils.log_buffer import LogBuffer
from afkbot.utils.resilience import ReconnectPolicy


def build(loop, factory, username='AFKBot'):
    logs = LogBuffer(clock=loop.time)
    keepalive = KeepAliveMonitor(logs=logs, clock=loop.time)
    options = SessionOptions(host='mc.example.net', port=25565, username=username)
    supervisor = SessionSupervisor(factory, options, loop=loop, logs=logs, keepalive=keepalive, greeting_message='')
    return supervisor, keepalive, create_app(supervisor, keepalive)


def call(app, method, path, **kwargs):
    async def go():
        async with TestClient(TestServer(app)) as client:
            response = await client.request(method, path, **kwargs)
            body = await response.text()
            return response.status, response.headers, body
    return asyncio.run(go())


def call_all(app, *requests):
    async def go():
        results = []
        async with TestClient(TestServer(app)) as client:
            for method, path in requests:
                response = await client.request(method, path)
                results.append((response.status, response.headers, await response.text()))
        return results
    return asyncio.run(go())


def assert_cors(headers):
    for name, value in CORS_HEADERS.items():
        assert headers[name] == value


def test_keep_alive_counts_external_pings(loop, factory):
    _, keepalive, app = build(loop, factory)

    status, headers, body = call(app, 'GET', '/keep-alive', headers={'User-Agent': 'UptimeRobot/2.0'})

    assert status == 200
    assert body == 'OK'
    assert_cors(headers)
    assert keepalive.external_ping_count == 1


def test_keep_alive_ignores_internal_pings(loop, factory):
    _, keepalive, app = build(loop, factory)

    status, _, body = call(app, 'GET', '/keep-alive', headers={'User-Agent': INTERNAL_USER_AGENT})

    assert (status, body) == (200, 'OK')
    assert keepalive.external_ping_count == 0


def test_status_json(loop, factory):
    supervisor, _, app = build(loop, factory)

    async def go():
        async with TestClient(TestServer(app)) as client:
            response = await client.get('/api/status')
            return response.status, await response.json()
    status, data = asyncio.run(go())

    assert status == 200
    assert data['state'] == 'disconnected'
    assert data['pattern'] == supervisor.driver.pattern.value
    assert data['keep_alive']['external_ping_count'] == 0


def test_dashboard_escapes_text(loop, factory):
    _, _, app = build(loop, factory, username='<b>bot</b>')

    status, headers, body = call(app, 'GET', '/')

    assert status == 200
    assert headers['Content-Type'].startswith('text/html')
    assert '<meta http-equiv="refresh" content="15">' in body
    assert '&lt;b&gt;bot&lt;/b&gt;' in body
    assert '<b>bot</b>' not in body
    assert 'Setup External Monitoring' in body


def test_change_pattern(loop, factory):
    supervisor, _, app = build(loop, factory)

    async def go():
        async with TestClient(TestServer(app)) as client:
            ok = await client.post('/api/pattern/square')
            bad = await client.post('/api/pattern/zigzag')
            return ok.status, await ok.json(), bad.status, await bad.json()
    ok_status, ok_body, bad_status, bad_body = asyncio.run(go())

    assert ok_status == 200
    assert ok_body == {'success': True, 'pattern': 'square'}
    assert bad_status == 400
    assert bad_body == {'success': False, 'pattern': 'zigzag'}
    assert supervisor.driver.pattern == MovementPattern.SQUARE


def test_restart(loop, factory):
    supervisor, _, app = build(loop, factory)

    status, headers, body = call(app, 'POST', '/api/restart')

    assert status == 200
    assert '"success": true' in body
    assert_cors(headers)
    assert supervisor.timers.pending('reconnect')

    loop.advance(5)
    assert len(factory.sessions) == 1


def test_options_preflight(loop, factory):
    _, _, app = build(loop, factory)

    known, unknown = call_all(app, ('OPTIONS', '/api/restart'), ('OPTIONS', '/does/not/exist'))

    for status, headers, body in (known, unknown):
        assert status == 200
        assert body == ''
        assert_cors(headers)


def test_unknown_routes_are_404(loop, factory):
    _, _, app = build(loop, factory)

    missing, wrong_method = call_all(app, ('GET', '/metrics'), ('GET', '/api/restart'))

    status, headers, body = missing
    assert status == 404
    assert_cors(headers)
    assert 'Back to Dashboard' in body

    status, headers, _ = wrong_method
    assert status == 404
    assert_cors(headers)


def test_keep_alive_ok_in_every_session_state(loop, factory):
    supervisor, _, app = build(loop, factory)
    supervisor.policy = ReconnectPolicy(max_continuous=0, extended_cooldown=1800)
    seen = []

    async def go():
        async with TestClient(TestServer(app)) as client:
            async def keep_alive():
                response = await client.get('/keep-alive')
                seen.append((supervisor.state.value, response.status, await response.text()))

            await keep_alive()

            supervisor.start()
            await keep_alive()

            factory.last.emit(SessionEvent.LOGIN)
            await keep_alive()

            loop.advance(10)
            await keep_alive()

            factory.last.emit(SessionEvent.END, 'socketClosed')
            assert supervisor.policy.in_cooldown
            assert supervisor.timers.remaining('reconnect') == 1800
            await keep_alive()

    asyncio.run(go())

    assert seen == [
        ('disconnected', 200, 'OK'),
        ('connecting', 200, 'OK'),
        ('connected', 200, 'OK'),
        ('stable', 200, 'OK'),
        ('disconnected', 200, 'OK'),
    ]
