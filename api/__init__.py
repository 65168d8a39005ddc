"""API package for the identity provider and game services"""
from .client import (
    MicrosoftAuthClient,
    AuthError,
    TransportError,
    ConfigurationError,
    ProviderError,
    BadCredentialsError,
    DeviceCodeExpiredError,
)

__all__ = [
    'MicrosoftAuthClient', 'AuthError', 'TransportError', 'ConfigurationError',
    'ProviderError', 'BadCredentialsError', 'DeviceCodeExpiredError',
]
