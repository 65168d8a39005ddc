"""Glue between flows, the live session and saved profiles"""
import hashlib
import logging
import re
import uuid
from concurrent.futures import Future
from typing import Callable, Optional

from api.client import MicrosoftAuthClient
from flows.authorization_code import AuthorizationCodeFlow
from flows.base import Flow, FlowCallback
from flows.device_code import DeviceCodeFlow
from flows.password import PasswordFlow
from flows.refresh import RefreshTokenFlow
from .credential_store import CredentialStore
from .profile_manager import Profile, ProfileManager
from .session import AccountType, Session, SessionStatus
from .session_validator import SessionValidator
from .yggdrasil import UserAuthentication, YggdrasilUserAuthentication, new_client_token

logger = logging.getLogger(__name__)

# Valid game names: 2-16 letters, digits or underscores
NAME_PATTERN = re.compile(r"[A-Za-z0-9_]{2,16}")


def offline_uuid(username: str) -> uuid.UUID:
    """Name-based (MD5, version 3) id the game server assigns offline players"""
    digest = hashlib.md5(f"OfflinePlayer:{username}".encode('utf-8')).digest()
    return uuid.UUID(bytes=digest, version=3)


class SessionHelper:
    """Creates flows, installs the sessions they produce and saves their profiles.

    This is the only writer of the live session besides offline mode.
    """

    def __init__(
        self,
        credential_store: CredentialStore,
        executor,
        api: Optional[MicrosoftAuthClient] = None,
        profile_manager: Optional[ProfileManager] = None,
        validator: Optional[SessionValidator] = None,
        auth_factory: Optional[Callable[[], UserAuthentication]] = None,
    ):
        self.credential_store = credential_store
        self.executor = executor
        self.api = api or MicrosoftAuthClient()
        self.profile_manager = profile_manager or ProfileManager()
        self.validator = validator or SessionValidator(credential_store, executor)
        self.auth_factory = auth_factory or (lambda: YggdrasilUserAuthentication(new_client_token()))

    def get_session(self) -> Optional[Session]:
        return self.credential_store.get_session()

    def set_session(self, session: Session) -> None:
        self.credential_store.set_session(session)
        self.validator.invalidate()

    def get_status(self, force: bool = False) -> SessionStatus:
        return self.validator.get_status(force)

    @staticmethod
    def is_valid_name(username: str) -> bool:
        return NAME_PATTERN.fullmatch(username) is not None

    def offline(self, username: str) -> Session:
        """Switch to an offline session; the id is derived from the name"""
        session = Session(
            username=username,
            user_id=str(offline_uuid(username)),
            access_token="invalid",
            client_id=self._client_id(),
            account_type=AccountType.LEGACY,
        )
        self.set_session(session)
        logger.info("Offline username set!")
        self.credential_store.set_credentials(username, "", "")
        return session

    def _client_id(self) -> Optional[str]:
        current = self.credential_store.get_session()
        return current.client_id if current else None

    def attach(self, flow: Flow) -> Flow:
        """Install the flow's session when it succeeds and keep its profile"""
        flow.get_session().add_done_callback(self._on_session)
        if flow.has_profile():
            flow.get_profile().add_done_callback(self._on_profile)
        return flow

    def _on_session(self, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.set_session(future.result())

    def _on_profile(self, future: Future) -> None:
        if future.cancelled() or future.exception() is not None:
            return
        self.profile_manager.save_profile(future.result())

    def authorization_code_flow(self, callback: Optional[FlowCallback] = None, **kwargs) -> AuthorizationCodeFlow:
        flow = AuthorizationCodeFlow(self.api, self.executor, callback, self._client_id(), **kwargs)
        return self.attach(flow)

    def device_code_flow(self, callback: Optional[FlowCallback] = None, **kwargs) -> DeviceCodeFlow:
        flow = DeviceCodeFlow(self.api, self.executor, callback, self._client_id(), **kwargs)
        return self.attach(flow)

    def refresh_flow(self, profile: Profile, callback: Optional[FlowCallback] = None) -> RefreshTokenFlow:
        flow = RefreshTokenFlow(self.api, profile, self.executor, callback, self._client_id())
        return self.attach(flow)

    def password_flow(
        self,
        login: str,
        password: str,
        save_password: bool = False,
        callback: Optional[FlowCallback] = None,
    ) -> PasswordFlow:
        flow = PasswordFlow(
            self.auth_factory(), self.credential_store, login, password,
            self.executor, save_password=save_password, callback=callback,
        )
        return self.attach(flow)
