import asyncio
import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Awaitable, Callable
from urllib.parse import urlparse

from .coordinator import Coordinator
from .customised_types import ErrorCode
from .errors import PrivchatError

logger = logging.getLogger(__name__)

LOOP_CALL_TIMEOUT = 5
BUSY = {"success": False, "code": "SERVER_BUSY", "message": "Server busy, try again"}


def make_handler(coordinator: Coordinator, loop: asyncio.AbstractEventLoop):
    """Build the HTTP handler for registration, the user roster and health.

    Requests arrive on worker threads; every touch of coordinator state is
    scheduled onto ``loop`` so it stays single-threaded. The deadline is
    applied on the loop itself, so a call that times out has been cancelled
    there and never runs late.
    """

    async def _call(fn: Callable[[], Any]) -> Any:
        return fn()

    def run_on_loop(coro: Awaitable[Any]) -> Any:
        # Raises asyncio.TimeoutError once the call has been cancelled on the loop
        return asyncio.run_coroutine_threadsafe(
            asyncio.wait_for(coro, LOOP_CALL_TIMEOUT), loop
        ).result()

    def on_loop(fn: Callable[[], Any]) -> Any:
        return run_on_loop(_call(fn))

    class _DirHandler(BaseHTTPRequestHandler):
        server_version = "privchat-directory/1.0"

        def _send(self, code: int, body: dict) -> None:
            data = json.dumps(body, separators=(",", ":")).encode("utf-8")
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, format: str, *args: Any) -> None:
            logger.debug("[DIR] %s - %s", self.address_string(), format % args)

        def do_GET(self):
            try:
                path = urlparse(self.path).path
                if path == "/":
                    stats = on_loop(coordinator.stats)
                    self._send(200, {"status": "Chat Server Running", **stats})
                    return
                if path == "/api/users":
                    users = on_loop(coordinator.list_users)
                    self._send(200, {"success": True, "users": users})
                    return
                self._send(404, {"success": False, "code": "NO_ROUTE"})
            except asyncio.TimeoutError:
                logger.warning("HTTP GET %s timed out waiting for the event loop", self.path)
                self._send(503, BUSY)
            except Exception:
                logger.exception("HTTP GET error")
                self._send(500, {"success": False, "code": "SERVER_ERROR"})

        def do_POST(self):
            try:
                if urlparse(self.path).path != "/api/register":
                    self._send(404, {"success": False, "code": "NO_ROUTE"})
                    return
                length = int(self.headers.get("Content-Length") or "0")
                try:
                    payload = json.loads(self.rfile.read(length).decode("utf-8") or "{}")
                except (ValueError, UnicodeDecodeError):
                    payload = None
                if not isinstance(payload, dict):
                    self._send(400, {"success": False, "code": ErrorCode.BAD_REQUEST,
                                     "message": "Body must be a JSON object"})
                    return
                username = payload.get("username")
                if not isinstance(username, str):
                    username = ""
                try:
                    user = run_on_loop(coordinator.register(username))
                except PrivchatError as e:
                    status = 409 if e.code == ErrorCode.NAME_TAKEN else 400
                    self._send(status, {"success": False, **e.to_payload()})
                    return
                self._send(200, {"success": True, **user, "message": "Registration successful"})
            except asyncio.TimeoutError:
                # Registration was cancelled before it ran; the name stays free
                logger.warning("Registration timed out waiting for the event loop")
                self._send(503, BUSY)
            except Exception:
                logger.exception("HTTP POST error")
                self._send(500, {"success": False, "code": "SERVER_ERROR"})

    return _DirHandler


def start_directory(
    host: str, port: int, coordinator: Coordinator, loop: asyncio.AbstractEventLoop
) -> ThreadingHTTPServer:
    httpd = ThreadingHTTPServer((host, port), make_handler(coordinator, loop))
    threading.Thread(target=httpd.serve_forever, daemon=True).start()
    logger.info("[DIR] listening on http://%s:%s", host, httpd.server_address[1])
    return httpd
