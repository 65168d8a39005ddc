"""Short-lived local HTTP listener that receives the authorization code"""
import logging
import threading
from concurrent.futures import Future
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlparse

from api.client import ProviderError
from utils.config import Config
from .pages import error_page, success_page

logger = logging.getLogger(__name__)

FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


def parse_form_fields(body: str) -> Dict[str, str]:
    """
    Decode an application/x-www-form-urlencoded body

    Duplicate field names keep their first value.
    """
    fields: Dict[str, str] = {}
    for key, value in parse_qsl(body, keep_blank_values=True):
        fields.setdefault(key, value)
    return fields


class CallbackHandler(BaseHTTPRequestHandler):
    """Accepts the provider's form_post redirect. Methods without a do_* handler get 501."""

    server: "_CallbackHTTPServer"

    def do_POST(self):
        if urlparse(self.path).path != self.server.callback_path:
            self._respond(HTTPStatus.NOT_FOUND)
            return

        content_type = self.headers.get('Content-Type') or ''
        if not content_type.lower().startswith(FORM_CONTENT_TYPE):
            self._respond(HTTPStatus.UNSUPPORTED_MEDIA_TYPE)
            return

        try:
            length = int(self.headers.get('Content-Length') or 0)
        except ValueError:
            length = -1
        if length < 0:
            self._respond(HTTPStatus.BAD_REQUEST)
            return
        body = self.rfile.read(length).decode('utf-8', errors='replace')
        fields = parse_form_fields(body)

        if 'code' in fields:
            logger.info("Received Microsoft authentication code")
            self.server.receiver.deliver_code(fields['code'])
            self._respond(HTTPStatus.OK, success_page())
        else:
            error = fields.get('error', 'unknown')
            logger.error(f"Received error from Microsoft authentication: {error}")
            self.server.receiver.deliver_error(error, fields.get('error_description'))
            self._respond(HTTPStatus.BAD_REQUEST, error_page(error))

    def do_GET(self):
        self._respond(HTTPStatus.METHOD_NOT_ALLOWED, headers={'Allow': 'POST'})

    def do_HEAD(self):
        self._respond(HTTPStatus.METHOD_NOT_ALLOWED, headers={'Allow': 'POST'})

    def _respond(self, status: HTTPStatus, content: Optional[bytes] = None, headers: Optional[Dict[str, str]] = None):
        self.send_response(status)
        for name, value in (headers or {}).items():
            self.send_header(name, value)
        if content is not None:
            self.send_header('Content-Type', 'text/html; charset=utf-8')
        self.send_header('Content-Length', str(len(content or b'')))
        self.end_headers()
        if content and self.command != 'HEAD':
            self.wfile.write(content)

    def log_message(self, format, *args):
        logger.debug("Callback request: " + format % args)


class _CallbackHTTPServer(HTTPServer):
    def __init__(self, address, receiver: "CallbackServer"):
        self.receiver = receiver
        self.callback_path = receiver.path
        super().__init__(address, CallbackHandler)


class CallbackServer:
    """Owns the listener and the code future.

    The future resolves with the authorization code, or fails with
    ProviderError carrying the provider's `error` field ("unknown" if
    absent). The listener shuts itself down once the future settles.
    """

    def __init__(
        self,
        host: str = Config.CALLBACK_HOST,
        port: int = Config.CALLBACK_PORT,
        path: str = Config.CALLBACK_PATH,
        fallback_to_free_port: bool = True,
    ):
        self.host = host
        self.port = port
        self.path = path
        self.fallback_to_free_port = fallback_to_free_port
        self.code: Future = Future()
        self._httpd: Optional[_CallbackHTTPServer] = None
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self.code.add_done_callback(self._on_settled)

    @property
    def redirect_uri(self) -> str:
        return f"http://{self.host}:{self.port}{self.path}"

    def start(self) -> "CallbackServer":
        """Bind and serve on a daemon thread"""
        try:
            self._httpd = _CallbackHTTPServer((self.host, self.port), self)
        except OSError:
            if not self.fallback_to_free_port:
                raise
            logger.warning(f"Callback port {self.port} is in use, using a free port instead")
            self._httpd = _CallbackHTTPServer((self.host, 0), self)
        self.port = self._httpd.server_address[1]

        self._thread = threading.Thread(
            target=self._httpd.serve_forever, name="ReAuth Callback Server", daemon=True
        )
        self._thread.start()
        logger.info(f"Listening for authorization code on {self.redirect_uri}")
        return self

    def deliver_code(self, code: str) -> None:
        if not self.code.done():
            self.code.set_result(code)

    def deliver_error(self, error: str, description: Optional[str] = None) -> None:
        if not self.code.done():
            self.code.set_exception(ProviderError(error, description))

    def _on_settled(self, future: Future) -> None:
        # Runs on the serving thread; shutdown() from there would deadlock
        threading.Thread(target=self.stop, name="ReAuth Callback Shutdown", daemon=True).start()

    def stop(self) -> None:
        with self._lock:
            httpd, self._httpd = self._httpd, None
        if httpd is None:
            return
        httpd.shutdown()
        httpd.server_close()
        if not self.code.done():
            self.code.cancel()
        logger.info("Callback server stopped")

