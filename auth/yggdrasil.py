"""Legacy (Yggdrasil) user authentication behind a narrow port"""
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

import requests

from api.client import BadCredentialsError, GameProfile, ProviderError, TransportError
from utils.config import Config

logger = logging.getLogger(__name__)


class UserAuthentication(ABC):
    """What the session validator and the password flow need from an auth backend"""

    username: Optional[str] = None
    password: Optional[str] = None
    selected_profile: Optional[GameProfile] = None
    user_type: Optional[str] = None

    @abstractmethod
    def set_access_token(self, access_token: Optional[str]) -> None:
        ...

    @abstractmethod
    def check_token_validity(self) -> bool:
        ...

    @abstractmethod
    def log_in_with_password(self) -> None:
        ...

    @abstractmethod
    def get_authenticated_token(self) -> Optional[str]:
        ...

    @abstractmethod
    def log_out(self) -> None:
        ...


class YggdrasilUserAuthentication(UserAuthentication):
    """requests-based adapter for the legacy auth server.

    Two instances are used: one without a client token for validation
    requests, one with a client token for password logins.
    """

    def __init__(self, client_token: Optional[str] = None, timeout: float = Config.REQUEST_TIMEOUT):
        self.client_token = client_token
        self.timeout = timeout
        self.http = requests.Session()
        self._access_token: Optional[str] = None

    def set_access_token(self, access_token: Optional[str]) -> None:
        self._access_token = access_token

    def get_authenticated_token(self) -> Optional[str]:
        return self._access_token

    def _post(self, url: str, payload: dict) -> requests.Response:
        try:
            return self.http.post(url, json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    def check_token_validity(self) -> bool:
        """204 means valid; any other answer means the token is not usable"""
        if not self._access_token:
            return False
        payload = {'accessToken': self._access_token}
        if self.client_token:
            payload['clientToken'] = self.client_token
        response = self._post(Config.YGGDRASIL_VALIDATE_URL, payload)
        return response.status_code == 204

    def log_in_with_password(self) -> None:
        """
        Authenticate username/password and populate the selected profile

        Raises:
            BadCredentialsError: Server answered ForbiddenOperationException
            ProviderError: Any other error the server reported
            TransportError: Network failure or unparseable answer
        """
        if not self.username or not self.password:
            raise BadCredentialsError("missing_credentials", "Username and password are required")

        logger.info(f"Logging in as {self.username}")
        response = self._post(Config.YGGDRASIL_AUTH_URL, {
            'agent': {'name': 'Minecraft', 'version': 1},
            'username': self.username,
            'password': self.password,
            'clientToken': self.client_token,
            'requestUser': True,
        })
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(f"Malformed login response ({response.status_code})") from e

        if not isinstance(data, dict):
            raise TransportError(f"Malformed login response ({response.status_code})")

        if not response.ok:
            error = data.get('error', f"http_{response.status_code}")
            message = data.get('errorMessage')
            if error == 'ForbiddenOperationException':
                raise BadCredentialsError(message or error, message)
            raise ProviderError(error, message)

        profile = data.get('selectedProfile')
        if not profile:
            raise ProviderError("no_profile", "Account has no game profile")
        try:
            self.selected_profile = GameProfile(profile['id'], profile['name'])
        except (KeyError, TypeError) as e:
            raise TransportError(f"Login response is missing profile field {e}") from e
        self._access_token = data.get('accessToken')
        user = data.get('user')
        self.user_type = "mojang" if isinstance(user, dict) and user.get('username') else "legacy"

    def log_out(self) -> None:
        """Drop everything the last login left behind"""
        self.password = None
        self.selected_profile = None
        self.user_type = None
        self._access_token = None


def new_client_token() -> str:
    return uuid.uuid4().hex
