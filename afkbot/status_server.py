"""
Status server
Dashboard, JSON status, control actions and the keep-alive endpoint used by
external uptime monitors to keep the host from idling the process.
"""

import logging
from typing import Optional

from aiohttp import web

from afkbot.config import Config
from afkbot.dashboard import render_dashboard
from afkbot.keepalive import KeepAliveMonitor
from afkbot.supervisor import SessionSupervisor

logger = logging.getLogger(__name__)

SUPERVISOR = web.AppKey('supervisor', SessionSupervisor)
KEEPALIVE = web.AppKey('keepalive', KeepAliveMonitor)

CORS_HEADERS = {
    'Access-Control-Allow-Origin': '*',
    'Access-Control-Allow-Methods': 'GET, POST, OPTIONS',
    'Access-Control-Allow-Headers': 'Content-Type',
}

NOT_FOUND_PAGE = '<h1>404 - Not Found</h1><p><a href="/">← Back to Dashboard</a></p>'


@web.middleware
async def cors_middleware(request: web.Request, handler):
    """Permissive CORS on every response; OPTIONS and unknown routes short-circuit"""
    if request.method == 'OPTIONS':
        response = web.Response(status=200)
    else:
        try:
            response = await handler(request)
        except (web.HTTPNotFound, web.HTTPMethodNotAllowed):
            response = web.Response(status=404, text=NOT_FOUND_PAGE, content_type='text/html')
    response.headers.update(CORS_HEADERS)
    return response


async def dashboard(request: web.Request) -> web.Response:
    status = request.app[SUPERVISOR].snapshot()
    return web.Response(text=render_dashboard(status), content_type='text/html')


async def api_status(request: web.Request) -> web.Response:
    return web.json_response(request.app[SUPERVISOR].snapshot())


async def keep_alive(request: web.Request) -> web.Response:
    """Liveness check; always 200 OK whatever the session is doing"""
    monitor = request.app.get(KEEPALIVE)
    if monitor is not None:
        monitor.record_external_ping(request.headers.get('User-Agent', ''))
    return web.Response(text='OK')


async def change_pattern(request: web.Request) -> web.Response:
    name = request.match_info['name']
    success = request.app[SUPERVISOR].change_pattern(name)
    return web.json_response({'success': success, 'pattern': name}, status=200 if success else 400)


async def restart(request: web.Request) -> web.Response:
    success = request.app[SUPERVISOR].force_restart()
    return web.json_response({'success': success})


def create_app(supervisor: SessionSupervisor, keepalive: Optional[KeepAliveMonitor] = None) -> web.Application:
    app = web.Application(middlewares=[cors_middleware])
    app[SUPERVISOR] = supervisor
    if keepalive is not None:
        app[KEEPALIVE] = keepalive

    app.router.add_get('/', dashboard)
    app.router.add_get('/api/status', api_status)
    app.router.add_get('/keep-alive', keep_alive)
    app.router.add_post('/api/pattern/{name}', change_pattern)
    app.router.add_post('/api/restart', restart)
    return app


async def start_status_server(app: web.Application, port: int = Config.HTTP_PORT) -> web.AppRunner:
    """Start serving ``app``; returns the runner so the caller can clean up"""
    runner = web.AppRunner(app)
    await runner.setup()
    site = web.TCPSite(runner, '0.0.0.0', port)
    await site.start()

    logger.info(f"🌐 Status dashboard running on port {port}")
    logger.info(f"🔗 Keep-alive URL: http://<your-app>:{port}/keep-alive")
    return runner
