"""Browser login: PKCE authorization code delivered to a local listener"""
import base64
import hashlib
import logging
import secrets
from concurrent.futures import Future
from typing import Callable, Optional, Tuple
from urllib.parse import parse_qs, urlparse

from api.client import ConfigurationError, MicrosoftAuthClient
from callback.server import CallbackServer
from .base import FlowCallback, MicrosoftFlow
from .stage import FlowStage

logger = logging.getLogger(__name__)


def generate_pkce_pair() -> Tuple[str, str]:
    """
    Generate PKCE code verifier and challenge

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    code_verifier = base64.urlsafe_b64encode(
        secrets.token_bytes(32)
    ).decode('utf-8').rstrip('=')

    challenge_bytes = hashlib.sha256(code_verifier.encode('utf-8')).digest()
    code_challenge = base64.urlsafe_b64encode(challenge_bytes).decode('utf-8').rstrip('=')

    return code_verifier, code_challenge


def check_login_url(url: str, redirect_uri: str) -> None:
    """Raise ConfigurationError unless url is absolute and redirects to redirect_uri"""
    parsed = urlparse(url)
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise ConfigurationError(f"Malformed login URL: {url}")
    redirects = parse_qs(parsed.query).get('redirect_uri', [])
    if redirects != [redirect_uri]:
        raise ConfigurationError(
            f"Login URL redirects to {redirects or 'nothing'}, listener is on {redirect_uri}"
        )


class AuthorizationCodeFlow(MicrosoftFlow):
    """INITIAL -> MS_AWAIT_AUTH_CODE -> MS_REDEEM_AUTH_CODE -> Xbox/XSTS/game chain -> FINISHED"""

    def __init__(
        self,
        api: MicrosoftAuthClient,
        executor,
        callback: Optional[FlowCallback] = None,
        client_id: Optional[str] = None,
        server_factory: Callable[[], CallbackServer] = CallbackServer,
    ):
        super().__init__(api, executor, callback, client_id)
        self.server_factory = server_factory
        self.server: Optional[CallbackServer] = None
        self._login_url: Future = Future()
        self._code_verifier: Optional[str] = None

    def get_login_url(self) -> Future:
        """Resolves with the URL the user has to open"""
        return self._login_url

    def _begin(self) -> None:
        self.server = self.server_factory().start()
        if self.is_cancelled():
            # cancel() ran its cleanup before the listener existed
            self.server.stop()
            return
        redirect_uri = self.server.redirect_uri

        self._code_verifier, code_challenge = generate_pkce_pair()
        state = secrets.token_urlsafe(16)
        url = self.api.build_authorize_url(redirect_uri, state, code_challenge)
        check_login_url(url, redirect_uri)

        self._login_url.set_result(url)
        self._advance(FlowStage.MS_AWAIT_AUTH_CODE, self._await_code, url)

    def _await_code(self, url: str) -> None:
        logger.info(f"Waiting for login in browser: {url}")
        self.server.code.add_done_callback(self._on_code)

    def _on_code(self, future: Future) -> None:
        # Called on the listener thread; continue on the executor
        if future.cancelled():
            return
        self._submit(self._receive_code, future)

    def _receive_code(self, future: Future) -> None:
        code = future.result()
        self._advance(FlowStage.MS_REDEEM_AUTH_CODE, self._redeem, code)

    def _redeem(self, code: str) -> None:
        tokens = self.api.redeem_auth_code(code, self.server.redirect_uri, self._code_verifier)
        self._authenticate(tokens)

    def _cleanup(self) -> None:
        if self.server is not None:
            self.server.stop()
        self._login_url.cancel()
