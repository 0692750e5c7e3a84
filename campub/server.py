"""
Flask-based control and health server.

Provides:
  GET  /            - HTML page with the current state and a flip button
  GET  /health      - JSON health check endpoint
  GET  /flip_image  - Current flip state
  POST /flip_image  - Queue a flip toggle ({"data": true} or a bare JSON bool)

The server runs on its own thread. It never touches the loop's state
directly: toggles go through FlipController.submit() and are applied at the
loop's next drain point.
"""

import threading
from typing import Optional

from flask import Flask, jsonify, render_template_string, request
from werkzeug.serving import make_server

from . import config
from .flip import FlipController
from .metrics import PublishStats


INDEX_HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>campub</title>
    <style>
        body {
            font-family: monospace;
            background: #000;
            color: #fff;
            padding: 20px;
        }
        button {
            font-family: monospace;
            padding: 6px 12px;
        }
        .info { color: #888; font-size: 12px; }
    </style>
</head>
<body>
    <h1>CAMPUB</h1>
    <p>Topic: {{ topic }} | {{ width }}x{{ height }} @ {{ freq }}Hz</p>
    <p>Flip: <span id="flip">{{ 'on' if flipped else 'off' }}</span>
       <button onclick="toggle()">Toggle</button></p>
    <p class="info">Health: <a href="/health">/health</a></p>
    <script>
        async function toggle() {
            const el = document.getElementById('flip');
            const next = el.textContent !== 'on';
            await fetch('/flip_image', {
                method: 'POST',
                headers: {'Content-Type': 'application/json'},
                body: JSON.stringify({data: next})
            });
            el.textContent = next ? 'on' : 'off';
        }
    </script>
</body>
</html>
"""


def create_app(
    flip: FlipController,
    stats: PublishStats = None,
    source=None
) -> Flask:
    """
    Build the Flask app around the loop's shared objects.

    Args:
        flip: Flip controller toggles are queued on
        stats: Publish statistics reported by /health
        source: Frame source reported by /health
    """
    app = Flask(__name__)

    @app.route('/')
    def index():
        return render_template_string(
            INDEX_HTML,
            topic=config.TOPIC,
            width=config.WIDTH,
            height=config.HEIGHT,
            freq=config.FREQUENCY,
            flipped=flip.get()
        )

    @app.route('/health')
    def health():
        source_stats = {}
        source_status = "not_initialized"
        if source is not None:
            source_stats = source.get_stats()
            source_status = "ok" if source.is_running() else "stopped"

        return jsonify({
            "status": "ok",
            "source": source_status,
            "flipped": flip.get(),
            "stats": stats.get_stats() if stats is not None else {},
            "source_stats": source_stats,
            "config": {
                "topic": config.TOPIC,
                "width": config.WIDTH,
                "height": config.HEIGHT,
                "freq": config.FREQUENCY,
            },
        })

    @app.route('/flip_image', methods=['GET'])
    def get_flip():
        return jsonify({"data": flip.get()})

    @app.route('/flip_image', methods=['POST'])
    def post_flip():
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            body = body.get("data")
        if not isinstance(body, bool):
            return jsonify({"error": 'expected {"data": true|false}'}), 400

        flip.submit(body)
        return jsonify({"queued": body}), 202

    return app


class ControlServer:
    """
    Runs a Flask app on a daemon thread.

    Usage:
        server = ControlServer(create_app(flip), port=8000)
        server.start()
        ...
        server.stop()
    """

    def __init__(self, app: Flask, host: str = None, port: int = None):
        self.app = app
        self.host = host or config.HTTP_HOST
        self.port = config.HTTP_PORT if port is None else port
        self._server = None
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._server = make_server(self.host, self.port, self.app, threaded=True)
        self.port = self._server.server_port
        self._thread = threading.Thread(
            target=self._server.serve_forever,
            name="campub-http",
            daemon=True
        )
        self._thread.start()
        print(f"[server] HTTP control on http://{self.host}:{self.port}")

    def stop(self):
        if self._server is None:
            return
        print("[server] Stopping HTTP control")
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=2.0)
        self._server = None
        self._thread = None
