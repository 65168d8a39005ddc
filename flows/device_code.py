"""Device code login: the user approves on any browser with a short code"""
import logging
import time
from concurrent.futures import Future
from typing import Callable, Optional

from api.client import DeviceCode, DeviceCodeExpiredError, MicrosoftAuthClient, ProviderError
from utils.config import Config
from .base import FlowCallback, MicrosoftFlow
from .stage import FlowStage

logger = logging.getLogger(__name__)


class DeviceCodeFlow(MicrosoftFlow):
    """INITIAL -> MS_POLL_DEVICE_CODE -> Xbox/XSTS/game chain -> FINISHED

    Polls the token endpoint every `interval` seconds (as the provider
    asks, widened on slow_down) until approval, denial or expiry.
    """

    def __init__(
        self,
        api: MicrosoftAuthClient,
        executor,
        callback: Optional[FlowCallback] = None,
        client_id: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__(api, executor, callback, client_id)
        self.clock = clock
        self.device_code: Optional[DeviceCode] = None
        self.interval = Config.DEVICE_POLL_INTERVAL
        self.expires_at: Optional[float] = None
        self._login_url: Future = Future()
        self._code: Future = Future()

    def get_login_url(self) -> Future:
        return self._login_url

    def get_code(self) -> Future:
        return self._code

    def _begin(self) -> None:
        device_code = self.api.request_device_code()
        self.device_code = device_code
        self.interval = max(1, device_code.interval)
        self.expires_at = self.clock() + device_code.expires_in

        self._login_url.set_result(device_code.verification_uri)
        self._code.set_result(device_code.user_code)
        self._advance(FlowStage.MS_POLL_DEVICE_CODE, self._wait)

    def _wait(self) -> None:
        logger.info(f"Enter code {self.device_code.user_code} at {self.device_code.verification_uri}")
        self._submit(self._poll, delay=self.interval)

    def _poll(self) -> None:
        if self.clock() >= self.expires_at:
            raise DeviceCodeExpiredError("Device code expired before it was approved")

        try:
            tokens = self.api.poll_device_code(self.device_code.device_code)
        except DeviceCodeExpiredError:
            raise
        except ProviderError as e:
            if e.error != 'slow_down':
                raise
            self.interval += Config.DEVICE_SLOW_DOWN_STEP
            logger.info(f"Provider asked to slow down, polling every {self.interval}s")
            tokens = None

        if tokens is None:
            self._submit(self._poll, delay=self.interval)
            return
        logger.info("Device code approved")
        self._authenticate(tokens)

    def _cleanup(self) -> None:
        self._login_url.cancel()
        self._code.cancel()
