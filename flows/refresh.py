"""Log back into a saved profile using its refresh token"""
from typing import Optional

from api.client import MicrosoftAuthClient
from auth.profile_manager import Profile
from .base import FlowCallback, MicrosoftFlow
from .stage import FlowStage


class RefreshTokenFlow(MicrosoftFlow):
    """INITIAL -> MS_REFRESH_TOKEN -> Xbox/XSTS/game chain -> FINISHED"""

    def __init__(
        self,
        api: MicrosoftAuthClient,
        profile: Profile,
        executor,
        callback: Optional[FlowCallback] = None,
        client_id: Optional[str] = None,
    ):
        super().__init__(api, executor, callback, client_id)
        self.profile = profile

    def _begin(self) -> None:
        self._advance(FlowStage.MS_REFRESH_TOKEN, self._refresh)

    def _refresh(self) -> None:
        tokens = self.api.refresh_token(self.profile.refresh_token)
        self._authenticate(tokens)
