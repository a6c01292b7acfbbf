"""
Security API Server - Serves the Flask app on a background thread.

Runs in the same process as the pipeline, which owns the only DuckDB
connection; requests are handled one at a time.
"""

import logging
import threading
from typing import Any, Optional

from werkzeug.serving import make_server

from ..pipeline import SecurityPipeline
from ..utils.logger import info
from ..utils.threading import start_background_task
from .app import create_app
from .config import API_HOST, API_PORT, SERVER_SHUTDOWN_TIMEOUT, get_base_url
from .identity import IdentityProvider


class SecurityAPIServer:
    """werkzeug server wrapping create_app(pipeline)."""

    def __init__(
        self,
        pipeline: SecurityPipeline,
        host: str = API_HOST,
        port: int = API_PORT,
        identity_provider: Optional[IdentityProvider] = None,
    ):
        self._host = host
        self._port = port
        self._app = create_app(pipeline, identity_provider)
        self._server: Any = None
        self._thread: Optional[threading.Thread] = None

    @property
    def app(self):
        return self._app

    def start(self) -> None:
        """Start the API server in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        # werkzeug's request log duplicates the gate's activity log
        logging.getLogger("werkzeug").setLevel(logging.ERROR)

        # threaded=False: requests are serialized in front of DuckDB
        self._server = make_server(self._host, self._port, self._app, threaded=False)
        info(f"[API] Server started on {self.url}")
        self._thread = start_background_task(self._server.serve_forever, name="SecurityAPIServer")

    def stop(self) -> None:
        """Stop the API server."""
        if self._server:
            self._server.shutdown()
            if self._thread is not None:
                self._thread.join(timeout=SERVER_SHUTDOWN_TIMEOUT)
            self._server.server_close()
            info("[API] Server stopped")
        self._server = None
        self._thread = None

    def serve_forever(self) -> None:
        """Run in the foreground until interrupted (used by the CLI)."""
        self.start()
        try:
            while self.is_running:
                self._thread.join(timeout=1.0)
        except KeyboardInterrupt:
            info("[API] Interrupted")
        finally:
            self.stop()

    @property
    def url(self) -> str:
        # Port 0 binds an ephemeral port; report the real one once started
        port = self._server.server_port if self._server else self._port
        return get_base_url(self._host, port)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
