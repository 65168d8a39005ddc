"""Session and persisted credential value types"""
import enum
from dataclasses import dataclass
from typing import Optional


class AccountType(enum.Enum):
    LEGACY = "legacy"
    MOJANG = "mojang"
    MSA = "msa"

    @classmethod
    def by_name(cls, name: Optional[str]) -> "AccountType":
        """Resolve a provider-reported user type, defaulting to LEGACY"""
        for member in cls:
            if member.value == (name or "").lower():
                return member
        return cls.LEGACY


class SessionStatus(enum.Enum):
    VALID = "valid"
    UNKNOWN = "unknown"
    REFRESHING = "refreshing"
    INVALID = "invalid"


@dataclass(frozen=True)
class Session:
    """The identity the host application plays with. Replaced, never mutated."""
    username: str
    user_id: str
    access_token: str
    client_id: Optional[str] = None
    account_type: AccountType = AccountType.LEGACY


@dataclass(frozen=True)
class Credentials:
    username: str = ""
    login: str = ""
    password: str = ""
