"""Configuration management"""
import os


class Config:
    """Application configuration"""

    # Keyring service name for persisted credentials and profiles
    SERVICE_NAME = "reauth"

    # Azure application used for Microsoft login
    CLIENT_ID = os.getenv("REAUTH_CLIENT_ID", "c36a9fb6-4f2a-41ff-90bd-ae7cc92031eb")
    SCOPE = "XboxLive.signin offline_access"

    # Microsoft identity platform (consumer tenant)
    MS_AUTHORIZE_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0/authorize"
    MS_TOKEN_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0/token"
    MS_DEVICE_CODE_URL = "https://login.microsoftonline.com/consumers/oauth2/v2.0/devicecode"

    # Xbox Live / XSTS
    XBOX_AUTH_URL = "https://user.auth.xboxlive.com/user/authenticate"
    XSTS_AUTH_URL = "https://xsts.auth.xboxlive.com/xsts/authorize"
    XSTS_RELYING_PARTY = "rp://api.minecraftservices.com/"

    # Game services
    MC_LOGIN_URL = "https://api.minecraftservices.com/authentication/login_with_xbox"
    MC_PROFILE_URL = "https://api.minecraftservices.com/minecraft/profile"

    # Legacy (Yggdrasil) auth server
    YGGDRASIL_AUTH_URL = "https://authserver.mojang.com/authenticate"
    YGGDRASIL_VALIDATE_URL = "https://authserver.mojang.com/validate"

    # Local redirect receiver
    CALLBACK_HOST = "localhost"
    CALLBACK_PORT = 3159
    CALLBACK_PATH = "/callback"

    # Timing (seconds)
    SESSION_CACHE_TTL = 5 * 60
    REQUEST_TIMEOUT = 30
    DEVICE_POLL_INTERVAL = 5
    DEVICE_SLOW_DOWN_STEP = 5
