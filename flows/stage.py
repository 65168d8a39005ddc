"""Stages shared by all login flows"""
import enum


class FlowStage(enum.IntEnum):
    """Ordered checkpoints. A flow only ever moves to a higher value."""
    INITIAL = 0
    MS_AWAIT_AUTH_CODE = 1
    MS_POLL_DEVICE_CODE = 2
    MS_REDEEM_AUTH_CODE = 3
    MS_REFRESH_TOKEN = 4
    LEGACY_AUTH = 5
    XBOX_AUTH = 6
    XSTS_AUTH = 7
    MC_AUTH = 8
    MC_PROFILE = 9
    FINISHED = 10
    FAILED = 11
    CANCELLED = 12

    @property
    def is_terminal(self) -> bool:
        return self >= FlowStage.FINISHED
