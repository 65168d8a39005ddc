"""Cached, asynchronously refreshed validity of the current access token"""
import logging
import threading
import time
from typing import Callable, Optional

from utils.config import Config
from .credential_store import CredentialStore
from .session import SessionStatus
from .yggdrasil import UserAuthentication, YggdrasilUserAuthentication

logger = logging.getLogger(__name__)


class SessionValidator:
    """Answers "is the current token still good?" without ever blocking the caller.

    The answer is cached for Config.SESSION_CACHE_TTL seconds. When the cache
    runs out (or the caller forces it) the status drops to UNKNOWN, then
    REFRESHING while a check runs on the executor, then VALID or INVALID.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        executor,
        check_auth: Optional[UserAuthentication] = None,
        cache_ttl: float = Config.SESSION_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.credential_store = credential_store
        self.executor = executor
        # Validation requests must not carry a client token
        self.check_auth = check_auth or YggdrasilUserAuthentication(client_token=None)
        self.cache_ttl = cache_ttl
        self.clock = clock

        self._lock = threading.Lock()
        self._status = SessionStatus.UNKNOWN
        self._last_check: Optional[float] = None
        # Bumped whenever the session is replaced; older checks are discarded
        self._generation = 0

    def get_status(self, force: bool = False) -> SessionStatus:
        """
        Get the cached status, kicking off a re-check if needed

        Args:
            force: Discard the cached value even if it has not expired

        Returns:
            Best-known status; REFRESHING while a check is in flight
        """
        with self._lock:
            now = self.clock()
            expired = self._last_check is None or now - self._last_check >= self.cache_ttl
            if force or expired:
                if self._status != SessionStatus.REFRESHING or force:
                    self._status = SessionStatus.UNKNOWN

            if self._status != SessionStatus.UNKNOWN:
                return self._status

            self._status = SessionStatus.REFRESHING
            self._last_check = now
            session = self.credential_store.get_session()
            token = session.access_token if session else None
            generation = self._generation

        self.executor.submit(self._update_status, token, generation)
        return SessionStatus.REFRESHING

    def _update_status(self, access_token: Optional[str], generation: int) -> None:
        try:
            self.check_auth.set_access_token(access_token)
            valid = bool(access_token) and self.check_auth.check_token_validity()
        except Exception as e:
            logger.warning(f"Session validity check failed, treating as invalid: {e}")
            valid = False

        status = SessionStatus.VALID if valid else SessionStatus.INVALID
        with self._lock:
            if generation != self._generation:
                logger.debug("Session was replaced during the validity check, dropping the result")
                return
            self._status = status
            self._last_check = self.clock()
        logger.info(f"Session status: {status.value}")

    def invalidate(self) -> None:
        """Forget the cached answer (the session was replaced)"""
        with self._lock:
            self._generation += 1
            self._status = SessionStatus.UNKNOWN
            self._last_check = None
