"""Stage-driven login flow state machine"""
import logging
import threading
from concurrent.futures import Future
from typing import Optional

from api.client import (
    AuthError,
    ConfigurationError,
    MicrosoftAuthClient,
    MicrosoftTokens,
    ProviderError,
    TransportError,
    XboxToken,
)
from auth.profile_manager import Profile
from auth.session import AccountType, Session
from .stage import FlowStage

logger = logging.getLogger(__name__)


class FlowCallback:
    """Observer for flow progress. Notifications arrive on the flow executor, in stage order."""

    def transition_stage(self, stage: FlowStage) -> None:
        pass


class FlowFailedError(Exception):
    """A flow ended in FAILED. `reason` is safe to show to the user."""

    def __init__(self, reason: str, stage: Optional[FlowStage], cause: Optional[BaseException] = None):
        super().__init__(reason)
        self.reason = reason
        self.stage = stage
        self.cause = cause


class Flow:
    """Base for all login flows.

    Every stage is one task on the executor: check for cancellation, enter
    the stage (notify the callback), run the step. A step either schedules
    the next stage with _advance or ends the flow with _finish; any
    exception it raises fails the flow.

    get_session() resolves exactly once: with the Session, with
    FlowFailedError, or cancelled.
    """

    def __init__(self, executor, callback: Optional[FlowCallback] = None):
        self.executor = executor
        self.callback = callback or FlowCallback()
        self.failure: Optional[FlowFailedError] = None

        self._stage: Optional[FlowStage] = None
        self._lock = threading.Lock()
        self._cancelled = threading.Event()
        self._pending = None
        self._session: Future = Future()

    @property
    def name(self) -> str:
        return type(self).__name__

    @property
    def stage(self) -> Optional[FlowStage]:
        return self._stage

    def get_session(self) -> Future:
        return self._session

    def has_profile(self) -> bool:
        return False

    def get_profile(self) -> Optional[Future]:
        return None

    def is_cancelled(self) -> bool:
        return self._cancelled.is_set()

    def is_done(self) -> bool:
        stage = self._stage
        return stage is not None and stage.is_terminal

    def start(self) -> "Flow":
        logger.info(f"Starting {self.name}")
        self._advance(FlowStage.INITIAL, self._begin)
        return self

    def cancel(self) -> None:
        """Stop the flow. A request already on the wire completes, but its result is dropped."""
        with self._lock:
            if self._cancelled.is_set() or self.is_done():
                return
            self._cancelled.set()
        logger.info(f"{self.name} cancelled")

        pending = self._pending
        if pending is not None:
            pending.cancel()
        self._cleanup()
        self._session.cancel()
        profile = self.get_profile()
        if profile is not None:
            profile.cancel()
        self.executor.submit(self._notify_cancelled)

    def _begin(self) -> None:
        raise NotImplementedError

    def _cleanup(self) -> None:
        """Release flow-owned resources. Called once the flow settles."""
        pass

    def _submit(self, fn, *args, delay: float = 0) -> None:
        self._pending = self.executor.schedule(delay, self._task, fn, *args)

    def _task(self, fn, *args) -> None:
        if self.is_cancelled() or self.is_done():
            return
        try:
            fn(*args)
        except Exception as e:
            self._fail(e)

    def _advance(self, stage: FlowStage, step, *args) -> None:
        """Queue entry into `stage` followed by `step`"""
        self._submit(self._run_stage, stage, step, *args)

    def _run_stage(self, stage: FlowStage, step, *args) -> None:
        if not self._transition(stage):
            return
        self._notify(stage)
        if not self.is_cancelled():
            step(*args)

    def _transition(self, stage: FlowStage) -> bool:
        with self._lock:
            if self._cancelled.is_set() or self.is_done():
                logger.debug(f"{self.name}: dropping transition to {stage.name}")
                return False
            if self._stage is not None and stage <= self._stage:
                raise RuntimeError(f"{self.name}: illegal transition {self._stage.name} -> {stage.name}")
            self._stage = stage
        logger.info(f"{self.name}: {stage.name}")
        return True

    def _notify(self, stage: FlowStage) -> None:
        try:
            self.callback.transition_stage(stage)
        except Exception:
            logger.error(f"Flow callback raised on {stage.name}", exc_info=True)

    def _notify_cancelled(self) -> None:
        with self._lock:
            if self.is_done():
                return
            self._stage = FlowStage.CANCELLED
        self._notify(FlowStage.CANCELLED)

    def _finish(self, session: Session, profile: Optional[Profile] = None) -> bool:
        if not self._transition(FlowStage.FINISHED):
            return False
        self._cleanup()
        profile_future = self.get_profile()
        if profile_future is not None and profile is not None:
            profile_future.set_result(profile)
        self._session.set_result(session)
        logger.info(f"{self.name} finished for {session.username}")
        self._notify(FlowStage.FINISHED)
        return True

    def _reason(self, error: Exception) -> str:
        """Map an exception to the reason shown to the user, logging it on the way"""
        stage = self._stage.name if self._stage is not None else "-"
        if isinstance(error, ProviderError):
            logger.warning(f"{self.name} rejected at {stage}: {error.error}")
            return error.error
        if isinstance(error, ConfigurationError):
            logger.error(f"{self.name} misconfigured at {stage}: {error}")
            return "configuration error"
        if isinstance(error, TransportError):
            logger.error(f"{self.name} network failure at {stage}: {error}")
            return "network error"
        if isinstance(error, AuthError):
            logger.error(f"{self.name} failed at {stage}: {error}")
            return "authentication failed"
        logger.error(f"{self.name} unexpected error at {stage}", exc_info=error)
        return "unexpected error"

    def _fail(self, error: Exception) -> None:
        if self.is_cancelled() or self.is_done():
            logger.debug(f"{self.name}: ignoring error after settle: {error}")
            return
        reason = self._reason(error)
        with self._lock:
            if self._cancelled.is_set() or self.is_done():
                return
            failed_at = self._stage
            self._stage = FlowStage.FAILED
        self.failure = FlowFailedError(reason, failed_at, error)
        self._cleanup()
        profile_future = self.get_profile()
        if profile_future is not None:
            profile_future.set_exception(self.failure)
        self._session.set_exception(self.failure)
        self._notify(FlowStage.FAILED)


class MicrosoftFlow(Flow):
    """Shared tail of every Microsoft login: Xbox Live, XSTS, game login, profile."""

    def __init__(
        self,
        api: MicrosoftAuthClient,
        executor,
        callback: Optional[FlowCallback] = None,
        client_id: Optional[str] = None,
    ):
        super().__init__(executor, callback)
        self.api = api
        # Carried over from the session being replaced
        self.client_id = client_id
        self._profile: Future = Future()

    def has_profile(self) -> bool:
        return True

    def get_profile(self) -> Future:
        return self._profile

    def _authenticate(self, tokens: MicrosoftTokens) -> None:
        self._advance(FlowStage.XBOX_AUTH, self._xbox_auth, tokens)

    def _xbox_auth(self, tokens: MicrosoftTokens) -> None:
        xbox = self.api.authenticate_xbox(tokens.access_token)
        self._advance(FlowStage.XSTS_AUTH, self._xsts_auth, tokens, xbox)

    def _xsts_auth(self, tokens: MicrosoftTokens, xbox: XboxToken) -> None:
        xsts = self.api.authenticate_xsts(xbox.token)
        self._advance(FlowStage.MC_AUTH, self._game_auth, tokens, xsts)

    def _game_auth(self, tokens: MicrosoftTokens, xsts: XboxToken) -> None:
        access_token = self.api.login_with_xbox(xsts)
        self._advance(FlowStage.MC_PROFILE, self._game_profile, tokens, access_token)

    def _game_profile(self, tokens: MicrosoftTokens, access_token: str) -> None:
        game_profile = self.api.fetch_profile(access_token)
        session = Session(
            username=game_profile.name,
            user_id=game_profile.uuid,
            access_token=access_token,
            client_id=self.client_id,
            account_type=AccountType.MSA,
        )
        profile = Profile(
            username=game_profile.name,
            uuid=game_profile.uuid,
            refresh_token=tokens.refresh_token,
        )
        self._finish(session, profile)
