"""Console rendering of flow progress"""
import logging
import threading
import webbrowser
from typing import Optional

from flows import AuthorizationCodeFlow, DeviceCodeFlow, Flow, FlowCallback, FlowStage

logger = logging.getLogger(__name__)

STAGE_MESSAGES = {
    FlowStage.INITIAL: "Starting login...",
    FlowStage.MS_AWAIT_AUTH_CODE: "Waiting for login in your browser",
    FlowStage.MS_POLL_DEVICE_CODE: "Waiting for the code to be entered",
    FlowStage.MS_REDEEM_AUTH_CODE: "Redeeming Microsoft login",
    FlowStage.MS_REFRESH_TOKEN: "Refreshing Microsoft login",
    FlowStage.LEGACY_AUTH: "Logging in with username and password",
    FlowStage.XBOX_AUTH: "Authenticating with Xbox Live",
    FlowStage.XSTS_AUTH: "Authorizing with Xbox Live",
    FlowStage.MC_AUTH: "Logging into game services",
    FlowStage.MC_PROFILE: "Fetching game profile",
    FlowStage.FINISHED: "Login complete",
    FlowStage.FAILED: "Login failed",
    FlowStage.CANCELLED: "Login cancelled",
}


class ConsoleProgress(FlowCallback):
    """Prints one line per stage and signals when the flow is over"""

    def __init__(self, open_browser: bool = True, out=print):
        self.flow: Optional[Flow] = None
        self.open_browser = open_browser
        self.out = out
        self.done = threading.Event()

    def set_flow(self, flow: Flow) -> None:
        self.flow = flow

    def transition_stage(self, stage: FlowStage) -> None:
        self.out(STAGE_MESSAGES.get(stage, stage.name))

        if stage == FlowStage.MS_AWAIT_AUTH_CODE and isinstance(self.flow, AuthorizationCodeFlow):
            url = self.flow.get_login_url().result()
            self.out(f"  If no browser opens, visit: {url}")
            if self.open_browser:
                webbrowser.open(url)
        elif stage == FlowStage.MS_POLL_DEVICE_CODE and isinstance(self.flow, DeviceCodeFlow):
            url = self.flow.get_login_url().result()
            code = self.flow.get_code().result()
            self.out(f"  Open {url} and enter the code {code}")
        elif stage == FlowStage.FAILED and self.flow is not None and self.flow.failure is not None:
            self.out(f"  Reason: {self.flow.failure.reason}")

        if stage.is_terminal:
            self.done.set()
