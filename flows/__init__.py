"""Login flows and the executor they run on"""
from .stage import FlowStage
from .base import Flow, FlowCallback, FlowFailedError, MicrosoftFlow
from .executor import FlowExecutor, get_default_executor
from .authorization_code import AuthorizationCodeFlow
from .device_code import DeviceCodeFlow
from .refresh import RefreshTokenFlow
from .password import PasswordFlow

__all__ = [
    'FlowStage', 'Flow', 'FlowCallback', 'FlowFailedError', 'MicrosoftFlow',
    'FlowExecutor', 'get_default_executor',
    'AuthorizationCodeFlow', 'DeviceCodeFlow', 'RefreshTokenFlow', 'PasswordFlow',
]
