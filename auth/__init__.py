"""Authentication package: live session, validity cache, saved credentials and profiles"""
from .session import AccountType, Credentials, Session, SessionStatus
from .credential_store import CredentialStore
from .profile_manager import Profile, ProfileManager
from .yggdrasil import UserAuthentication, YggdrasilUserAuthentication
from .session_validator import SessionValidator

__all__ = [
    'AccountType', 'Credentials', 'Session', 'SessionStatus',
    'CredentialStore', 'Profile', 'ProfileManager',
    'UserAuthentication', 'YggdrasilUserAuthentication',
    'SessionValidator',
]
