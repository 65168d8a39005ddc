"""Tests for the Microsoft login flows."""

from concurrent.futures import CancelledError, Future
from typing import List
from unittest import mock

import pytest

from api.client import (
    ConfigurationError,
    DeviceCode,
    DeviceCodeExpiredError,
    GameProfile,
    MicrosoftAuthClient,
    MicrosoftTokens,
    ProviderError,
    TransportError,
    XboxToken,
)
from auth.profile_manager import Profile
from auth.session import AccountType
from flows import (
    AuthorizationCodeFlow,
    DeviceCodeFlow,
    FlowFailedError,
    FlowStage,
    RefreshTokenFlow,
)

TOKENS = MicrosoftTokens("ms-access", "ms-refresh", 3600)
CHAIN = [FlowStage.XBOX_AUTH, FlowStage.XSTS_AUTH, FlowStage.MC_AUTH, FlowStage.MC_PROFILE, FlowStage.FINISHED]


def assert_well_ordered(stages: List[FlowStage]) -> None:
    assert all(a < b for a, b in zip(stages, stages[1:])), stages
    assert sum(1 for s in stages if s.is_terminal) == 1, stages


@pytest.fixture
def api() -> mock.MagicMock:
    client = mock.create_autospec(MicrosoftAuthClient, instance=True)
    real = MicrosoftAuthClient(client_id="test-client")
    client.build_authorize_url.side_effect = real.build_authorize_url
    client.request_device_code.return_value = DeviceCode(
        device_code="dev-123",
        user_code="ABCD-EFGH",
        verification_uri="https://microsoft.com/link",
        expires_in=15,
        interval=5,
    )
    client.poll_device_code.return_value = TOKENS
    client.redeem_auth_code.return_value = TOKENS
    client.refresh_token.return_value = MicrosoftTokens("ms-access-2", "ms-refresh-2")
    client.authenticate_xbox.return_value = XboxToken("xbl-token", "uhs-1")
    client.authenticate_xsts.return_value = XboxToken("xsts-token", "uhs-1")
    client.login_with_xbox.return_value = "mc-access"
    client.fetch_profile.return_value = GameProfile("0123456789abcdef0123456789abcdef", "Steve")
    return client


class StubServer:
    """Stands in for CallbackServer without opening a socket."""

    def __init__(self, redirect_uri: str = "http://localhost:3159/callback") -> None:
        self.redirect_uri = redirect_uri
        self.code: Future = Future()
        self.started = False
        self.stopped = False

    def start(self) -> "StubServer":
        self.started = True
        return self

    def stop(self) -> None:
        self.stopped = True


class TestDeviceCodeFlow:
    """Tests for DeviceCodeFlow."""

    def make_flow(self, api, executor, recorder, clock) -> DeviceCodeFlow:
        return DeviceCodeFlow(api, executor, recorder, client_id="client-1", clock=clock)

    def test_success(self, api, executor, recorder, clock) -> None:
        api.poll_device_code.side_effect = [None, TOKENS]
        flow = self.make_flow(api, executor, recorder, clock).start()
        executor.run_until_idle()

        assert recorder.stages == [FlowStage.INITIAL, FlowStage.MS_POLL_DEVICE_CODE] + CHAIN
        assert_well_ordered(recorder.stages)
        assert flow.get_login_url().result() == "https://microsoft.com/link"
        assert flow.get_code().result() == "ABCD-EFGH"

        session = flow.get_session().result()
        assert session.username == "Steve"
        assert session.user_id == "0123456789abcdef0123456789abcdef"
        assert session.access_token == "mc-access"
        assert session.client_id == "client-1"
        assert session.account_type == AccountType.MSA

        profile = flow.get_profile().result()
        assert profile.refresh_token == "ms-refresh"
        api.authenticate_xbox.assert_called_once_with("ms-access")
        api.authenticate_xsts.assert_called_once_with("xbl-token")

    def test_polls_on_provider_interval(self, api, executor, recorder, clock) -> None:
        api.request_device_code.return_value = DeviceCode("dev", "CODE", "https://x", 900, 7)
        results = iter([None, None, TOKENS])
        poll_times = []

        def record(code):
            poll_times.append(clock())
            return next(results)

        api.poll_device_code.side_effect = record
        self.make_flow(api, executor, recorder, clock).start()
        executor.run_until_idle()

        assert poll_times == [1007, 1014, 1021]

    def test_slow_down_widens_interval(self, api, executor, recorder, clock) -> None:
        api.poll_device_code.side_effect = [ProviderError("slow_down"), TOKENS]
        api.request_device_code.return_value = DeviceCode("dev", "CODE", "https://x", 900, 5)
        flow = self.make_flow(api, executor, recorder, clock).start()
        executor.run_until_idle()

        assert flow.interval == 10
        assert flow.get_session().result().username == "Steve"

    def test_expires_without_approval(self, api, executor, recorder, clock) -> None:
        api.poll_device_code.return_value = None
        flow = self.make_flow(api, executor, recorder, clock).start()
        executor.run_until_idle()

        assert recorder.stages == [FlowStage.INITIAL, FlowStage.MS_POLL_DEVICE_CODE, FlowStage.FAILED]
        assert api.poll_device_code.call_count == 2
        assert flow.failure.reason == "expired"
        with pytest.raises(FlowFailedError) as excinfo:
            flow.get_session().result()
        assert excinfo.value.stage == FlowStage.MS_POLL_DEVICE_CODE
        assert isinstance(excinfo.value.cause, DeviceCodeExpiredError)
        assert executor.pending() == []

    def test_provider_expiry(self, api, executor, recorder, clock) -> None:
        api.poll_device_code.side_effect = DeviceCodeExpiredError()
        flow = self.make_flow(api, executor, recorder, clock).start()
        executor.run_until_idle()
        assert flow.failure.reason == "expired"

    def test_denied(self, api, executor, recorder, clock) -> None:
        api.poll_device_code.side_effect = ProviderError("authorization_declined")
        flow = self.make_flow(api, executor, recorder, clock).start()
        executor.run_until_idle()

        assert recorder.stages[-1] == FlowStage.FAILED
        assert flow.failure.reason == "authorization_declined"
        with pytest.raises(FlowFailedError):
            flow.get_profile().result()

    def test_cancel_stops_polling(self, api, executor, recorder, clock) -> None:
        api.poll_device_code.return_value = None
        flow = self.make_flow(api, executor, recorder, clock).start()
        executor.run_until(lambda: flow.stage == FlowStage.MS_POLL_DEVICE_CODE)

        flow.cancel()
        executor.run_until_idle()

        api.poll_device_code.assert_not_called()
        assert recorder.stages == [FlowStage.INITIAL, FlowStage.MS_POLL_DEVICE_CODE, FlowStage.CANCELLED]
        assert flow.get_session().cancelled()
        with pytest.raises(CancelledError):
            flow.get_session().result()


class TestAuthorizationCodeFlow:
    """Tests for AuthorizationCodeFlow."""

    def make_flow(self, api, executor, recorder, server: StubServer) -> AuthorizationCodeFlow:
        return AuthorizationCodeFlow(api, executor, recorder, server_factory=lambda: server)

    def test_success(self, api, executor, recorder) -> None:
        server = StubServer()
        flow = self.make_flow(api, executor, recorder, server).start()
        executor.run_until_idle()

        assert server.started
        assert recorder.stages == [FlowStage.INITIAL, FlowStage.MS_AWAIT_AUTH_CODE]
        url = flow.get_login_url().result()
        assert "redirect_uri=http%3A%2F%2Flocalhost%3A3159%2Fcallback" in url
        assert "response_mode=form_post" in url

        server.code.set_result("ABC123")
        executor.run_until_idle()

        assert recorder.stages == [
            FlowStage.INITIAL, FlowStage.MS_AWAIT_AUTH_CODE, FlowStage.MS_REDEEM_AUTH_CODE,
        ] + CHAIN
        code, redirect_uri, verifier = api.redeem_auth_code.call_args.args
        assert code == "ABC123"
        assert redirect_uri == server.redirect_uri
        assert len(verifier) >= 43
        assert flow.get_session().result().username == "Steve"
        assert server.stopped

    def test_provider_error_from_callback(self, api, executor, recorder) -> None:
        server = StubServer()
        flow = self.make_flow(api, executor, recorder, server).start()
        executor.run_until_idle()

        server.code.set_exception(ProviderError("access_denied"))
        executor.run_until_idle()

        assert recorder.stages == [FlowStage.INITIAL, FlowStage.MS_AWAIT_AUTH_CODE, FlowStage.FAILED]
        assert flow.failure.reason == "access_denied"
        api.redeem_auth_code.assert_not_called()
        assert server.stopped

    def test_redirect_mismatch_is_configuration_error(self, api, executor, recorder) -> None:
        api.build_authorize_url.side_effect = None
        api.build_authorize_url.return_value = "https://login.example/authorize?redirect_uri=http%3A%2F%2Fevil"
        flow = self.make_flow(api, executor, recorder, StubServer()).start()
        executor.run_until_idle()

        assert recorder.stages == [FlowStage.INITIAL, FlowStage.FAILED]
        assert flow.failure.reason == "configuration error"
        assert isinstance(flow.failure.cause, ConfigurationError)

    def test_malformed_url_is_configuration_error(self, api, executor, recorder) -> None:
        api.build_authorize_url.side_effect = None
        api.build_authorize_url.return_value = "not a url"
        flow = self.make_flow(api, executor, recorder, StubServer()).start()
        executor.run_until_idle()
        assert flow.failure.reason == "configuration error"

    def test_cancel_while_waiting_stops_server(self, api, executor, recorder) -> None:
        server = StubServer()
        flow = self.make_flow(api, executor, recorder, server).start()
        executor.run_until_idle()

        flow.cancel()
        executor.run_until_idle()
        assert server.stopped
        assert recorder.stages[-1] == FlowStage.CANCELLED
        assert flow.get_profile().cancelled()

    def test_cancel_while_server_starts_stops_server(self, api, executor, recorder) -> None:
        server = StubServer()
        flow = None

        def start_then_cancel() -> StubServer:
            flow.cancel()
            return server

        flow = AuthorizationCodeFlow(api, executor, recorder, server_factory=start_then_cancel)
        flow.start()
        executor.run_until_idle()

        assert server.started
        assert server.stopped
        assert recorder.stages == [FlowStage.INITIAL, FlowStage.CANCELLED]
        api.build_authorize_url.assert_not_called()


class TestSharedChain:
    """Stage ordering, failure classification and cancellation across the Xbox chain."""

    def run_to_finish(self, api, executor, recorder, clock):
        flow = DeviceCodeFlow(api, executor, recorder, clock=clock).start()
        executor.run_until_idle()
        return flow

    def test_cancel_mid_flight_discards_result(self, api, executor, recorder, clock) -> None:
        flow = DeviceCodeFlow(api, executor, recorder, clock=clock)

        def cancel_during_call(token):
            flow.cancel()
            return XboxToken("xbl-token", "uhs-1")

        api.authenticate_xbox.side_effect = cancel_during_call
        flow.start()
        executor.run_until_idle()

        assert recorder.stages == [
            FlowStage.INITIAL, FlowStage.MS_POLL_DEVICE_CODE, FlowStage.XBOX_AUTH, FlowStage.CANCELLED,
        ]
        api.authenticate_xsts.assert_not_called()
        assert flow.get_session().cancelled()

    def test_error_after_cancel_is_not_reported(self, api, executor, recorder, clock) -> None:
        flow = DeviceCodeFlow(api, executor, recorder, clock=clock)

        def cancel_then_fail(token):
            flow.cancel()
            raise TransportError("connection reset")

        api.authenticate_xsts.side_effect = cancel_then_fail
        flow.start()
        executor.run_until_idle()

        assert FlowStage.FAILED not in recorder.stages
        assert recorder.stages[-1] == FlowStage.CANCELLED
        assert flow.failure is None

    def test_xsts_reason_is_verbatim(self, api, executor, recorder, clock) -> None:
        api.authenticate_xsts.side_effect = ProviderError("This Microsoft account has no Xbox account")
        flow = self.run_to_finish(api, executor, recorder, clock)

        assert flow.failure.reason == "This Microsoft account has no Xbox account"
        assert flow.failure.stage == FlowStage.XSTS_AUTH
        assert_well_ordered(recorder.stages)

    def test_transport_error_is_generic(self, api, executor, recorder, clock) -> None:
        api.login_with_xbox.side_effect = TransportError("timed out")
        flow = self.run_to_finish(api, executor, recorder, clock)
        assert flow.failure.reason == "network error"
        assert flow.failure.stage == FlowStage.MC_AUTH

    def test_unexpected_error_is_generic(self, api, executor, recorder, clock) -> None:
        api.fetch_profile.side_effect = KeyError("id")
        flow = self.run_to_finish(api, executor, recorder, clock)
        assert flow.failure.reason == "unexpected error"
        assert isinstance(flow.failure.cause, KeyError)
        assert_well_ordered(recorder.stages)

    def test_cancel_after_finish_is_ignored(self, api, executor, recorder, clock) -> None:
        flow = self.run_to_finish(api, executor, recorder, clock)
        flow.cancel()
        executor.run_until_idle()

        assert recorder.stages[-1] == FlowStage.FINISHED
        assert_well_ordered(recorder.stages)
        assert flow.get_session().result().username == "Steve"

    def test_callback_errors_do_not_break_flow(self, api, executor, recorder, clock) -> None:
        def explode(stage):
            raise ValueError("observer bug")

        recorder.on_stage = explode
        flow = self.run_to_finish(api, executor, recorder, clock)
        assert flow.get_session().result().username == "Steve"


class TestRefreshTokenFlow:
    """Tests for RefreshTokenFlow."""

    def test_refresh_rotates_token(self, api, executor, recorder) -> None:
        saved = Profile("Steve", "0123456789abcdef0123456789abcdef", "old-refresh")
        api.refresh_token.return_value = MicrosoftTokens("ms-access-2", "new-refresh")
        flow = RefreshTokenFlow(api, saved, executor, recorder, client_id="client-1").start()
        executor.run_until_idle()

        assert recorder.stages == [FlowStage.INITIAL, FlowStage.MS_REFRESH_TOKEN] + CHAIN
        api.refresh_token.assert_called_once_with("old-refresh")
        api.authenticate_xbox.assert_called_once_with("ms-access-2")
        assert flow.get_profile().result().refresh_token == "new-refresh"

    def test_revoked_refresh_token(self, api, executor, recorder) -> None:
        saved = Profile("Steve", "uuid", "old-refresh")
        api.refresh_token.side_effect = ProviderError("invalid_grant")
        flow = RefreshTokenFlow(api, saved, executor, recorder).start()
        executor.run_until_idle()
        assert flow.failure.reason == "invalid_grant"
        assert recorder.stages == [FlowStage.INITIAL, FlowStage.MS_REFRESH_TOKEN, FlowStage.FAILED]
