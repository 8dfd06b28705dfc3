"""HTML status dashboard rendered from a supervisor snapshot"""
from html import escape
from typing import Any, Dict

PATTERN_BUTTONS = (
    ('gentle', '🕊️ Gentle'),
    ('circle', '🔵 Circle'),
    ('square', '🟦 Square'),
    ('random', '🎲 Random'),
)

STYLE = """
    body { font-family: system-ui, -apple-system, sans-serif; margin: 0; padding: 15px;
           background: linear-gradient(135deg, #667eea 0%, #764ba2 100%); min-height: 100vh; color: #333; }
    .container { max-width: 1200px; margin: 0 auto; background: rgba(255,255,255,0.95);
                 padding: 25px; border-radius: 15px; box-shadow: 0 10px 30px rgba(0,0,0,0.3); }
    .header { text-align: center; margin-bottom: 25px; }
    .header h1 { color: #2c3e50; margin: 0; font-size: 2.2em; }
    .subtitle { color: #7f8c8d; font-size: 1.1em; margin: 10px 0; }
    .status-bar { display: grid; grid-template-columns: repeat(auto-fit, minmax(200px, 1fr)); gap: 15px; margin: 20px 0; }
    .status-card { padding: 15px; border-radius: 10px; text-align: center; color: white; font-weight: bold; font-size: 0.9em; }
    .connected { background: linear-gradient(45deg, #27ae60, #2ecc71); }
    .connecting { background: linear-gradient(45deg, #f39c12, #e67e22); }
    .disconnected { background: linear-gradient(45deg, #e74c3c, #c0392b); }
    .sleep-low { background: linear-gradient(45deg, #3498db, #2980b9); }
    .sleep-medium { background: linear-gradient(45deg, #f39c12, #e67e22); }
    .sleep-high { background: linear-gradient(45deg, #e74c3c, #c0392b); }
    .alert { padding: 15px; border-radius: 8px; margin: 15px 0; text-align: center; font-weight: bold; }
    .alert-info { background: #d1ecf1; border: 2px solid #17a2b8; color: #0c5460; }
    .alert-warning { background: #fff3cd; border: 2px solid #ffc107; color: #856404; }
    .alert-danger { background: #f8d7da; border: 2px solid #dc3545; color: #721c24; }
    .metrics { display: grid; grid-template-columns: repeat(auto-fit, minmax(150px, 1fr)); gap: 15px; margin: 20px 0; }
    .metric { background: #f8f9fa; padding: 15px; border-radius: 8px; text-align: center; border-left: 4px solid #3498db; }
    .metric-value { font-size: 1.4em; font-weight: bold; color: #2c3e50; }
    .metric-label { font-size: 0.8em; color: #7f8c8d; text-transform: uppercase; }
    .logs { background: #1a1a1a; color: #00ff41; padding: 15px; border-radius: 8px;
            font-family: 'Courier New', monospace; height: 300px; overflow-y: auto; border: 2px solid #333; font-size: 0.85em; }
    .log-success { color: #2ecc71; }
    .log-error { color: #e74c3c; }
    .log-warning { color: #f39c12; }
    .log-info { color: #3498db; }
    .log-chat { color: #9b59b6; }
    .controls { display: flex; flex-wrap: wrap; gap: 10px; justify-content: center; margin: 20px 0; }
    .btn { background: linear-gradient(45deg, #3498db, #2980b9); color: white; border: none; padding: 10px 20px;
           border-radius: 6px; cursor: pointer; font-weight: bold; font-size: 0.9em; }
    .btn-danger { background: linear-gradient(45deg, #e74c3c, #c0392b); }
    .footer { text-align: center; margin-top: 20px; color: #7f8c8d; font-size: 0.85em; }
    .setup-guide { background: linear-gradient(135deg, #e3f2fd, #bbdefb); border: 2px solid #2196f3;
                   padding: 20px; border-radius: 10px; margin: 20px 0; }
"""


def _duration(seconds: int) -> str:
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m"


def _metric(value: Any, label: str) -> str:
    return (
        f'<div class="metric"><div class="metric-value">{escape(str(value))}</div>'
        f'<div class="metric-label">{escape(label)}</div></div>'
    )


def _connection_card(status: Dict[str, Any]) -> str:
    state = status['state']
    if status['connected']:
        label = '🟢 BOT CONNECTED' + (' (STABLE)' if status['stable'] else '')
        css = 'connected'
    elif state == 'connecting':
        label, css = '🟡 CONNECTING', 'connecting'
    else:
        label, css = '🔴 BOT DISCONNECTED', 'disconnected'
    return f'<div class="status-card {css}">{label}</div>'


def _keep_alive_sections(keep_alive: Dict[str, Any]) -> str:
    risk = keep_alive['sleep_risk']
    parts = []

    if risk == 'HIGH':
        parts.append(
            '<div class="alert alert-danger">🚨 HIGH SLEEP RISK: No external pings detected! '
            'Set up uptime monitoring immediately.<br><small>The host will sleep without external pings every 5 minutes</small></div>'
        )
    elif risk == 'MEDIUM':
        parts.append('<div class="alert alert-warning">⚠️ External ping monitoring may not be working optimally.</div>')

    if keep_alive['external_ping_count'] == 0:
        parts.append(
            '<div class="setup-guide"><h3 style="margin-top: 0; color: #1976d2;">📋 Setup External Monitoring (Required)</h3>'
            '<p><strong>Your service WILL sleep without external pings!</strong></p>'
            '<ol style="text-align: left; max-width: 600px; margin: 0 auto;">'
            '<li>Create a free uptime monitor (UptimeRobot, cron-job.org, ...)</li>'
            '<li>Add an HTTP(s) monitor</li>'
            '<li>URL: <code>https://&lt;your-app&gt;/keep-alive</code></li>'
            '<li>Interval: 5 minutes</li></ol></div>'
        )
    else:
        parts.append(
            f'<div class="alert alert-info">✅ External monitoring active! {keep_alive["external_ping_count"]} pings received. '
            f'Last: {escape(keep_alive["last_external_ping"])}</div>'
        )

    if keep_alive['sleep_cycles'] > 0:
        parts.append(
            f'<div class="alert alert-warning">💤 {keep_alive["sleep_cycles"]} sleep cycles detected. '
            'Service has been sleeping and waking.</div>'
        )
    return '\n'.join(parts)


def render_dashboard(status: Dict[str, Any]) -> str:
    """
    Render the dashboard page

    Args:
        status: Snapshot produced by SessionSupervisor.snapshot()

    Returns:
        Complete HTML document; every interpolated value is escaped
    """
    keep_alive = status.get('keep_alive')
    title = escape(status['service'])

    cards = [_connection_card(status)]
    if keep_alive:
        risk = keep_alive['sleep_risk']
        label = {'LOW': '🛡️ SLEEP PROTECTED', 'MEDIUM': '⚠️ SLEEP RISK'}.get(risk, '🚨 SLEEP DANGER')
        cards.append(f'<div class="status-card sleep-{risk.lower()}">{label}</div>')

    metrics = [
        _metric(status['username'], 'Bot Name'),
        _metric(status['server'], 'Server'),
        _metric(_duration(status['service_uptime']), 'Service Uptime'),
        _metric(f"{status['session_uptime'] // 60}m", 'Bot Session'),
        _metric(status['total_reconnects'], 'Logins'),
        _metric(status['reconnect_attempts'], 'Reconnects'),
        _metric(status['pattern'] if status['moving'] else 'Stopped', 'Movement'),
        _metric(f"{status['health']:.0f} / {status['food']:.0f}", 'Health / Food'),
    ]
    if keep_alive:
        metrics += [
            _metric(keep_alive['external_ping_count'], 'External Pings'),
            _metric(keep_alive['internal_ping_count'], 'Internal Pings'),
            _metric(keep_alive['sleep_cycles'], 'Sleep Cycles'),
        ]

    alerts = []
    if status.get('in_cooldown') and status.get('next_reconnect_in') is not None:
        alerts.append(
            f'<div class="alert alert-danger">🧊 Too many failed reconnects - next attempt in '
            f'{status["next_reconnect_in"] // 60}m</div>'
        )
    if status.get('last_error') and not status['connected']:
        alerts.append(f'<div class="alert alert-warning">Last error: {escape(status["last_error"].get("message", ""))}</div>')

    logs = '\n'.join(
        f'<div class="log-{escape(entry["type"])}">[{entry["age"]}s ago] {escape(entry["message"])}</div>'
        for entry in status['recent_logs']
    )

    buttons = ''.join(
        f'<button class="btn" onclick="post(\'/api/pattern/{name}\')">{label}</button>'
        for name, label in PATTERN_BUTTONS
    )

    footer = [f'<div><strong>{title} v{escape(status["version"])}</strong></div>']
    if keep_alive:
        footer.append(f'<div>Prevention Status: {escape(keep_alive["prevention_status"])}</div>')
        footer.append(f'<div>Last External Ping: {escape(keep_alive["last_external_ping"])}</div>')
        if keep_alive['sleep_detected']:
            footer.append('<div style="color: #e74c3c;"><strong>⚠️ SLEEP MODE DETECTED</strong></div>')

    return f"""<!DOCTYPE html>
<html>
<head>
    <title>🛡️ {title}</title>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <meta http-equiv="refresh" content="15">
    <style>{STYLE}</style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1>🛡️ {title}</h1>
            <div class="subtitle">Session state: {escape(status['state'])}</div>
        </div>
        <div class="status-bar">{''.join(cards)}</div>
        {_keep_alive_sections(keep_alive) if keep_alive else ''}
        {''.join(alerts)}
        <div class="metrics">{''.join(metrics)}</div>
        <h3 style="color: #2c3e50; margin: 20px 0 10px 0;">📋 Activity Logs</h3>
        <div class="logs">
{logs}
        </div>
        <div class="controls">
            <button class="btn" onclick="location.reload()">🔄 Refresh</button>
            {buttons}
            <button class="btn btn-danger" onclick="post('/api/restart')">🔁 Restart Bot</button>
        </div>
        <div class="footer">{''.join(footer)}</div>
    </div>
    <script>
        function post(url) {{
            fetch(url, {{method: 'POST'}}).then(() => setTimeout(() => location.reload(), 1000));
        }}
    </script>
</body>
</html>"""
