import asyncio
import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Callable, Dict, Optional, Tuple

from .errors import RelayError
from .service import RelayService

logger = logging.getLogger(__name__)

MAX_BODY = 12 * 1024 * 1024
REQUEST_TIMEOUT = 10


class ApiRouter:
    """Maps POST paths to service calls and shapes ``{ok, ...}`` replies."""

    def __init__(self, service: RelayService):
        self.service = service
        # Routes return a reply dict, or a coroutine for the ones that hash credentials
        self.routes: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "/api/signup": lambda b: service.signup_async(b.get("email"), b.get("password"), b.get("displayName")),
            "/api/login": lambda b: service.login_async(b.get("email"), b.get("password")),
            "/api/restore": lambda b: service.restore(b.get("token")),
            "/api/profile/update": lambda b: service.update_profile(b.get("token"), b),
            "/api/rooms/create": lambda b: service.create_room(b.get("token"), b.get("name"), b.get("isPrivate")),
            "/api/rooms/invite": lambda b: service.invite(b.get("token"), b.get("roomId"), b.get("email")),
            "/api/dms/open": lambda b: service.open_dm(b.get("token"), b.get("otherEmail")),
            "/api/state": lambda b: service.fetch_state(b.get("token")),
        }

    async def dispatch(self, path: str, body: Dict[str, Any]) -> Tuple[int, Dict[str, Any]]:
        route = self.routes.get(path)
        if route is None:
            return 404, {"ok": False, "error": "NO_ROUTE"}
        try:
            result = route(body)
            if asyncio.iscoroutine(result):
                result = await result
        except RelayError as e:
            return e.http_status, {"ok": False, "error": e.code, "detail": e.detail}
        return 200, {"ok": True, **result}


def make_handler(router: ApiRouter, loop: asyncio.AbstractEventLoop):
    """Request handler class whose calls run on ``loop``, never on the HTTP thread."""

    class _ApiHandler(BaseHTTPRequestHandler):
        server_version = "ChatRelay/1.0"

        def _send(self, code: int, body: dict) -> None:
            data = json.dumps(body, separators=(",", ":")).encode("utf-8")
            self.send_response(code)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.send_header("Access-Control-Allow-Origin", "*")
            self.end_headers()
            self.wfile.write(data)

        def log_message(self, format, *args):
            logger.debug("[HTTP] %s - %s", self.address_string(), format % args)

        def do_OPTIONS(self):
            self.send_response(204)
            self.send_header("Access-Control-Allow-Origin", "*")
            self.send_header("Access-Control-Allow-Methods", "GET, POST")
            self.send_header("Access-Control-Allow-Headers", "Content-Type")
            self.end_headers()

        def do_GET(self):
            if self.path == "/health":
                self._send(200, {"ok": True, "service": "chat-relay"})
                return
            self._send(404, {"ok": False, "error": "NO_ROUTE"})

        def do_POST(self):
            try:
                length = int(self.headers.get("Content-Length") or "0")
                if length > MAX_BODY:
                    self._send(413, {"ok": False, "error": "TOO_LARGE"})
                    return
                raw = self.rfile.read(length) if length else b"{}"
                try:
                    body = json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    self._send(400, {"ok": False, "error": "InvalidRequest", "detail": "body must be JSON"})
                    return
                if not isinstance(body, dict):
                    self._send(400, {"ok": False, "error": "InvalidRequest", "detail": "body must be an object"})
                    return
                future = asyncio.run_coroutine_threadsafe(router.dispatch(self.path, body), loop)
                code, reply = future.result(timeout=REQUEST_TIMEOUT)
                self._send(code, reply)
            except Exception:
                logging.exception("HTTP POST error")
                self._send(500, {"ok": False, "error": "SERVER_ERROR"})

    return _ApiHandler


class ApiServer:
    def __init__(self, router: ApiRouter, host: str, port: int):
        self.router = router
        self.host = host
        self.port = port
        self._httpd: Optional[ThreadingHTTPServer] = None

    def start(self, loop: asyncio.AbstractEventLoop) -> None:
        self._httpd = ThreadingHTTPServer((self.host, self.port), make_handler(self.router, loop))
        self.port = self._httpd.server_address[1]
        threading.Thread(target=self._httpd.serve_forever, daemon=True).start()
        logger.info("[HTTP] listening on http://%s:%s", self.host, self.port)

    def stop(self) -> None:
        if self._httpd:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None
