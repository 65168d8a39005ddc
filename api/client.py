"""Microsoft / Xbox Live / game-services client used by the login flows"""
import logging
from dataclasses import dataclass
from typing import Dict, Optional
from urllib.parse import urlencode

import requests

from utils.config import Config

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base class for everything the login flows can fail with."""
    pass


class TransportError(AuthError):
    """Provider unreachable or answered with something unparseable."""
    pass


class ConfigurationError(AuthError):
    """Locally constructed request data is malformed. Not retryable."""
    pass


class ProviderError(AuthError):
    """Error reported by the identity provider. `error` is shown to the user as-is."""

    def __init__(self, error: str, description: Optional[str] = None):
        super().__init__(description or error)
        self.error = error
        self.description = description


class BadCredentialsError(ProviderError):
    """Legacy auth server rejected the username/password combination."""
    pass


class DeviceCodeExpiredError(ProviderError):
    """Device code validity window elapsed before the user approved."""

    def __init__(self, description: Optional[str] = None):
        super().__init__("expired", description)


# XSTS rejects some accounts with an XErr code instead of a message
XSTS_ERRORS = {
    2148916233: "This Microsoft account has no Xbox account",
    2148916235: "Xbox Live is not available in your country",
    2148916236: "Adult verification is required (South Korea)",
    2148916237: "Adult verification is required (South Korea)",
    2148916238: "Child account must be added to a family",
}


@dataclass(frozen=True)
class MicrosoftTokens:
    access_token: str
    refresh_token: str
    expires_in: int = 3600


@dataclass(frozen=True)
class DeviceCode:
    device_code: str
    user_code: str
    verification_uri: str
    expires_in: int
    interval: int
    message: str = ""


@dataclass(frozen=True)
class XboxToken:
    token: str
    user_hash: str


@dataclass(frozen=True)
class GameProfile:
    uuid: str
    name: str


class MicrosoftAuthClient:
    """Talks to the Microsoft identity platform, Xbox Live, XSTS and game services.

    Each method performs exactly one request. Failures are raised as
    TransportError (network / malformed payload) or ProviderError (the
    provider said no); nothing is retried here.
    """

    def __init__(self, client_id: Optional[str] = None, timeout: float = Config.REQUEST_TIMEOUT):
        self.client_id = client_id or Config.CLIENT_ID
        self.timeout = timeout
        self.session = requests.Session()

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        try:
            return self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"Request to {url} failed: {e}") from e

    @staticmethod
    def _json(response: requests.Response) -> Dict:
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"Malformed response from {response.url} ({response.status_code}): {response.text[:200]}"
            ) from e
        if not isinstance(data, dict):
            raise TransportError(f"Unexpected response from {response.url}: {response.text[:200]}")
        return data

    @staticmethod
    def _require(data: Dict, *keys: str):
        try:
            values = tuple(data[key] for key in keys)
        except (KeyError, TypeError) as e:
            raise TransportError(f"Response is missing field {e}") from e
        return values if len(values) > 1 else values[0]

    def _oauth_error(self, response: requests.Response) -> ProviderError:
        data = self._json(response)
        error = data.get('error', f"http_{response.status_code}")
        return ProviderError(error, data.get('error_description'))

    def build_authorize_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        """Login page URL; the provider POSTs the result back to redirect_uri."""
        params = {
            'client_id': self.client_id,
            'response_type': 'code',
            'redirect_uri': redirect_uri,
            'response_mode': 'form_post',
            'scope': Config.SCOPE,
            'state': state,
            'code_challenge': code_challenge,
            'code_challenge_method': 'S256',
            'prompt': 'select_account',
        }
        return f"{Config.MS_AUTHORIZE_URL}?{urlencode(params)}"

    def _token_request(self, data: Dict[str, str]) -> MicrosoftTokens:
        data = {'client_id': self.client_id, 'scope': Config.SCOPE, **data}
        response = self._request('POST', Config.MS_TOKEN_URL, data=data)
        if not response.ok:
            raise self._oauth_error(response)
        payload = self._json(response)
        access_token, refresh_token = self._require(payload, 'access_token', 'refresh_token')
        return MicrosoftTokens(access_token, refresh_token, int(payload.get('expires_in', 3600)))

    def redeem_auth_code(self, code: str, redirect_uri: str, code_verifier: str) -> MicrosoftTokens:
        """Exchange an authorization code (plus PKCE verifier) for Microsoft tokens"""
        logger.info("Redeeming Microsoft authorization code")
        return self._token_request({
            'grant_type': 'authorization_code',
            'code': code,
            'redirect_uri': redirect_uri,
            'code_verifier': code_verifier,
        })

    def refresh_token(self, refresh_token: str) -> MicrosoftTokens:
        """Exchange a stored refresh token for fresh Microsoft tokens"""
        logger.info("Refreshing Microsoft token")
        return self._token_request({
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token,
        })

    def request_device_code(self) -> DeviceCode:
        """Start a device-code login"""
        response = self._request(
            'POST', Config.MS_DEVICE_CODE_URL,
            data={'client_id': self.client_id, 'scope': Config.SCOPE},
        )
        if not response.ok:
            raise self._oauth_error(response)
        payload = self._json(response)
        device_code, user_code, uri, expires_in = self._require(
            payload, 'device_code', 'user_code', 'verification_uri', 'expires_in'
        )
        return DeviceCode(
            device_code=device_code,
            user_code=user_code,
            verification_uri=uri,
            expires_in=int(expires_in),
            interval=int(payload.get('interval', Config.DEVICE_POLL_INTERVAL)),
            message=payload.get('message', ''),
        )

    def poll_device_code(self, device_code: str) -> Optional[MicrosoftTokens]:
        """
        Ask whether the user approved the device code

        Returns:
            Tokens once approved, None while authorization is pending

        Raises:
            DeviceCodeExpiredError: Provider reports the code as expired
            ProviderError: Denied, slow_down, or any other provider error
        """
        response = self._request('POST', Config.MS_TOKEN_URL, data={
            'client_id': self.client_id,
            'grant_type': 'urn:ietf:params:oauth:grant-type:device_code',
            'device_code': device_code,
        })
        if response.ok:
            payload = self._json(response)
            access_token, refresh_token = self._require(payload, 'access_token', 'refresh_token')
            return MicrosoftTokens(access_token, refresh_token, int(payload.get('expires_in', 3600)))

        error = self._oauth_error(response)
        if error.error == 'authorization_pending':
            return None
        if error.error in ('expired_token', 'code_expired'):
            raise DeviceCodeExpiredError(error.description)
        raise error

    def authenticate_xbox(self, ms_access_token: str) -> XboxToken:
        """Trade a Microsoft access token for an Xbox Live user token"""
        response = self._request('POST', Config.XBOX_AUTH_URL, json={
            'Properties': {
                'AuthMethod': 'RPS',
                'SiteName': 'user.auth.xboxlive.com',
                'RpsTicket': f"d={ms_access_token}",
            },
            'RelyingParty': 'http://auth.xboxlive.com',
            'TokenType': 'JWT',
        }, headers={'Accept': 'application/json'})
        if not response.ok:
            raise ProviderError(f"Xbox Live authentication failed ({response.status_code})")
        return self._xbox_token(self._json(response))

    def authenticate_xsts(self, xbox_token: str) -> XboxToken:
        """Trade an Xbox Live user token for an XSTS token scoped to game services"""
        response = self._request('POST', Config.XSTS_AUTH_URL, json={
            'Properties': {
                'SandboxId': 'RETAIL',
                'UserTokens': [xbox_token],
            },
            'RelyingParty': Config.XSTS_RELYING_PARTY,
            'TokenType': 'JWT',
        }, headers={'Accept': 'application/json'})
        if response.status_code == 401:
            data = self._json(response)
            xerr = data.get('XErr')
            raise ProviderError(XSTS_ERRORS.get(xerr, f"XSTS authorization denied ({xerr})"))
        if not response.ok:
            raise ProviderError(f"XSTS authorization failed ({response.status_code})")
        return self._xbox_token(self._json(response))

    def _xbox_token(self, payload: Dict) -> XboxToken:
        token, claims = self._require(payload, 'Token', 'DisplayClaims')
        try:
            user_hash = claims['xui'][0]['uhs']
        except (KeyError, IndexError, TypeError) as e:
            raise TransportError("Xbox response carries no user hash") from e
        return XboxToken(token, user_hash)

    def login_with_xbox(self, xsts: XboxToken) -> str:
        """Trade the XSTS token for a game access token"""
        response = self._request('POST', Config.MC_LOGIN_URL, json={
            'identityToken': f"XBL3.0 x={xsts.user_hash};{xsts.token}",
        })
        if not response.ok:
            raise ProviderError(f"Game services login failed ({response.status_code})")
        return self._require(self._json(response), 'access_token')

    def fetch_profile(self, access_token: str) -> GameProfile:
        """Look up the game profile owned by the authenticated account"""
        response = self._request(
            'GET', Config.MC_PROFILE_URL,
            headers={'Authorization': f'Bearer {access_token}'},
        )
        if response.status_code == 404:
            raise ProviderError("This account does not own the game")
        if not response.ok:
            raise ProviderError(f"Profile lookup failed ({response.status_code})")
        uuid, name = self._require(self._json(response), 'id', 'name')
        return GameProfile(uuid, name)
