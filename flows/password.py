"""Legacy username/password login"""
import logging
from typing import Optional

from api.client import BadCredentialsError, ProviderError
from auth.credential_store import CredentialStore
from auth.session import AccountType, Session
from auth.yggdrasil import UserAuthentication
from .base import Flow, FlowCallback
from .stage import FlowStage

logger = logging.getLogger(__name__)


class PasswordFlow(Flow):
    """INITIAL -> LEGACY_AUTH -> FINISHED

    The auth object is transient: it is logged out whatever happens.
    Credentials are persisted only after a successful login, and the
    password only when save_password is set.
    """

    def __init__(
        self,
        auth: UserAuthentication,
        credential_store: CredentialStore,
        login: str,
        password: str,
        executor,
        save_password: bool = False,
        callback: Optional[FlowCallback] = None,
    ):
        super().__init__(executor, callback)
        self.auth = auth
        self.credential_store = credential_store
        self.login = login
        self.save_password = save_password
        self._password = password

    def _begin(self) -> None:
        self._advance(FlowStage.LEGACY_AUTH, self._log_in)

    def _log_in(self) -> None:
        self.auth.username = self.login
        self.auth.password = self._password
        try:
            self.auth.log_in_with_password()
            profile = self.auth.selected_profile
            current = self.credential_store.get_session()
            session = Session(
                username=profile.name,
                user_id=profile.uuid,
                access_token=self.auth.get_authenticated_token(),
                client_id=current.client_id if current else None,
                account_type=AccountType.by_name(self.auth.user_type),
            )
        finally:
            self.auth.log_out()

        if self.is_cancelled():
            return
        self.credential_store.set_credentials(
            session.username, self.login, self._password if self.save_password else ""
        )
        self._password = None
        self._finish(session)

    def _reason(self, error: Exception) -> str:
        if isinstance(error, ProviderError) and not isinstance(error, BadCredentialsError):
            logger.error(f"Login server returned unexpected error: {error.error} ({error.description})")
            return "login failed"
        return super()._reason(error)
