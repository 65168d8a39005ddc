"""Saved identities from completed Microsoft logins"""
import json
import logging
import time
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import keyring
from keyring.errors import KeyringError

from utils.config import Config
from .session import AccountType

logger = logging.getLogger(__name__)

PROFILE_INDEX_KEY = "profile_index"


@dataclass(frozen=True)
class Profile:
    username: str
    uuid: str
    refresh_token: str
    account_type: AccountType = AccountType.MSA
    saved_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['account_type'] = self.account_type.value
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Profile":
        return cls(
            username=data['username'],
            uuid=data['uuid'],
            refresh_token=data.get('refresh_token', ''),
            account_type=AccountType.by_name(data.get('account_type')),
            saved_at=data.get('saved_at', 0.0),
        )


class ProfileManager:
    """Keyring-backed profile storage keyed by account uuid.

    The refresh token is a secret, so each profile is a keyring entry; a
    separate index entry lists the known uuids since keyrings cannot be
    enumerated.
    """

    def __init__(self, service_name: str = Config.SERVICE_NAME):
        self.service_name = service_name

    def _load_index(self) -> List[str]:
        raw = keyring.get_password(self.service_name, PROFILE_INDEX_KEY)
        return json.loads(raw) if raw else []

    def _save_index(self, index: List[str]) -> None:
        keyring.set_password(self.service_name, PROFILE_INDEX_KEY, json.dumps(index))

    def save_profile(self, profile: Profile) -> bool:
        """
        Store or overwrite a profile

        Failures are logged, never raised: losing a saved profile must not
        fail the login that produced it.

        Returns:
            True if the profile was written
        """
        try:
            keyring.set_password(self.service_name, f"profile_{profile.uuid}", json.dumps(profile.to_dict()))
            index = self._load_index()
            if profile.uuid not in index:
                index.append(profile.uuid)
                self._save_index(index)
        except (KeyringError, ValueError) as e:
            logger.error(f"Failed to save profile for {profile.username}: {e}")
            return False
        logger.info(f"Saved profile {profile.username}")
        return True

    def get_profile(self, uuid: str) -> Optional[Profile]:
        try:
            raw = keyring.get_password(self.service_name, f"profile_{uuid}")
            if raw:
                return Profile.from_dict(json.loads(raw))
        except (KeyringError, ValueError, KeyError) as e:
            logger.warning(f"Could not read profile {uuid}: {e}")
        return None

    def list_profiles(self) -> List[Profile]:
        try:
            index = self._load_index()
        except (KeyringError, ValueError) as e:
            logger.warning(f"Could not read profile index: {e}")
            return []
        profiles = [self.get_profile(uuid) for uuid in index]
        return [p for p in profiles if p is not None]

    def delete_profile(self, uuid: str) -> None:
        try:
            keyring.delete_password(self.service_name, f"profile_{uuid}")
        except KeyringError:
            logger.debug(f"No stored profile {uuid}")
        index = self._load_index()
        if uuid in index:
            index.remove(uuid)
            self._save_index(index)
