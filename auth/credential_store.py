"""Current session holder plus persisted login preferences in the OS keyring"""
import json
import logging
import threading
from typing import Optional

import keyring
from keyring.errors import KeyringError

from utils.config import Config
from .session import Credentials, Session

logger = logging.getLogger(__name__)

CREDENTIALS_KEY = "credentials"


class CredentialStore:
    """Owns the single live Session and the saved login credentials.

    The session only lives in memory and is swapped wholesale by
    set_session. Credentials and config values go to the OS keyring.
    """

    def __init__(self, session: Optional[Session] = None, service_name: str = Config.SERVICE_NAME):
        self.service_name = service_name
        self._session = session
        self._lock = threading.Lock()

    def get_session(self) -> Optional[Session]:
        with self._lock:
            return self._session

    def set_session(self, session: Session) -> None:
        """Replace the live session"""
        with self._lock:
            self._session = session
        logger.info(f"Session set for {session.username} ({session.account_type.value})")

    def set_credentials(self, username: str, login: str, password: str = "") -> None:
        """
        Persist login preferences

        Args:
            username: Profile name of the account
            login: Identifier used to log in (email or legacy username)
            password: Stored only if non-empty; pass "" to forget it
        """
        payload = {'username': username, 'login': login, 'password': password}
        keyring.set_password(self.service_name, CREDENTIALS_KEY, json.dumps(payload))

    def get_credentials(self) -> Credentials:
        """
        Load saved login preferences

        Returns:
            Stored credentials, or empty Credentials if none or unreadable
        """
        try:
            raw = keyring.get_password(self.service_name, CREDENTIALS_KEY)
            if raw:
                data = json.loads(raw)
                return Credentials(
                    username=data.get('username', ''),
                    login=data.get('login', ''),
                    password=data.get('password', ''),
                )
        except (KeyringError, ValueError) as e:
            logger.warning(f"Could not read stored credentials: {e}")
        return Credentials()

    def save_config(self, key: str, value: str) -> None:
        keyring.set_password(self.service_name, f"config_{key}", value)

    def get_config(self, key: str) -> Optional[str]:
        try:
            return keyring.get_password(self.service_name, f"config_{key}")
        except KeyringError:
            return None

    def delete_config(self, key: str) -> None:
        try:
            keyring.delete_password(self.service_name, f"config_{key}")
        except KeyringError:
            logger.debug(f"No stored config value for {key}")
