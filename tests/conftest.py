"""Shared fixtures: in-memory keyring, deterministic executor, fake clock."""

import itertools
from typing import Callable, List, Optional

import keyring
import pytest
from keyring.errors import KeyringError, PasswordDeleteError

from flows import FlowCallback, FlowStage


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class _Task:
    def __init__(self, fn: Callable, args: tuple, due: float, seq: int) -> None:
        self.fn = fn
        self.args = args
        self.due = due
        self.seq = seq
        self.cancelled = False

    def cancel(self) -> bool:
        self.cancelled = True
        return True


class ManualExecutor:
    """Runs queued tasks on the test thread; delayed tasks move the fake clock."""

    def __init__(self, clock: FakeClock) -> None:
        self.clock = clock
        self.tasks: List[_Task] = []
        self._seq = itertools.count()

    def submit(self, fn: Callable, *args) -> _Task:
        return self.schedule(0, fn, *args)

    def schedule(self, delay: float, fn: Callable, *args) -> _Task:
        task = _Task(fn, args, self.clock() + max(delay, 0), next(self._seq))
        self.tasks.append(task)
        return task

    def pending(self) -> List[_Task]:
        return [t for t in self.tasks if not t.cancelled]

    def run_next(self) -> bool:
        self.tasks = self.pending()
        if not self.tasks:
            return False
        task = min(self.tasks, key=lambda t: (t.due, t.seq))
        self.tasks.remove(task)
        if task.due > self.clock.now:
            self.clock.now = task.due
        task.fn(*task.args)
        return True

    def run_until_idle(self, limit: int = 1000) -> int:
        ran = 0
        while self.run_next():
            ran += 1
            assert ran < limit, "executor did not go idle"
        return ran

    def run_until(self, predicate: Callable[[], bool], limit: int = 1000) -> None:
        for _ in range(limit):
            if predicate():
                return
            if not self.run_next():
                break
        assert predicate(), "condition not reached"


class RecordingCallback(FlowCallback):
    def __init__(self, on_stage: Optional[Callable[[FlowStage], None]] = None) -> None:
        self.stages: List[FlowStage] = []
        self.on_stage = on_stage

    def transition_stage(self, stage: FlowStage) -> None:
        self.stages.append(stage)
        if self.on_stage:
            self.on_stage(stage)


class InMemoryKeyring:
    def __init__(self) -> None:
        self.store = {}
        self.fail = False

    def set_password(self, service: str, name: str, value: str) -> None:
        if self.fail:
            raise KeyringError("keyring locked")
        self.store[(service, name)] = value

    def get_password(self, service: str, name: str) -> Optional[str]:
        if self.fail:
            raise KeyringError("keyring locked")
        return self.store.get((service, name))

    def delete_password(self, service: str, name: str) -> None:
        if (service, name) not in self.store:
            raise PasswordDeleteError("not found")
        del self.store[(service, name)]


@pytest.fixture
def fake_keyring(monkeypatch: pytest.MonkeyPatch) -> InMemoryKeyring:
    backend = InMemoryKeyring()
    monkeypatch.setattr(keyring, "set_password", backend.set_password)
    monkeypatch.setattr(keyring, "get_password", backend.get_password)
    monkeypatch.setattr(keyring, "delete_password", backend.delete_password)
    return backend


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def executor(clock: FakeClock) -> ManualExecutor:
    return ManualExecutor(clock)


@pytest.fixture
def recorder() -> RecordingCallback:
    return RecordingCallback()
