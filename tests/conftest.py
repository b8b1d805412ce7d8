"""
Pytest fixtures for the snapshot test suite: a millisecond fake clock and a
scripted browser session that replays network events as time advances.
"""

import base64
from typing import Callable, Dict, List, Optional, Tuple

import pytest

from spa_snapshot import (
    REQUEST_FAILED,
    REQUEST_FINISHED,
    REQUEST_STARTED,
    BrowserSession,
    NavigationError,
    NetworkEvent,
    Settings,
)

PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDRfake-image-body"
PNG_B64 = base64.b64encode(PNG_BYTES).decode("ascii")


class FakeClock:
    def __init__(self, ms: int = 0):
        self.ms = ms

    def __call__(self) -> float:
        return self.ms / 1000


class FakeBrowserSession(BrowserSession):
    def __init__(
        self,
        clock: FakeClock,
        events: Optional[List[Tuple[int, NetworkEvent]]] = None,
        evaluations: Optional[Dict[str, object]] = None,
        stylesheets: Optional[List[str]] = None,
    ):
        self.clock = clock
        self.events = sorted(events or [], key=lambda e: e[0])
        self.evaluations = dict(evaluations or {})
        self.stylesheets = list(stylesheets or [])
        self.listeners: List[Callable[[NetworkEvent], None]] = []
        self.calls: List[str] = []
        self.failures: Dict[str, Exception] = {}
        self.delays: Dict[str, int] = {}
        self.timeouts: Dict[str, float] = {}

    def _step(self, name: str) -> None:
        self.calls.append(name)
        self.clock.ms += self.delays.get(name, 0)
        if name in self.failures:
            raise self.failures[name]

    def enable_network(self) -> None:
        self._step("enable_network")

    def navigate(self, url: str, timeout: float) -> None:
        self._step("navigate")

    def wait_for_selector(self, selector: str, state: str, timeout: float) -> None:
        self.timeouts[selector] = timeout
        self._step(f"wait:{selector}:{state}")

    def evaluate(self, expression: str):
        self._step("evaluate")
        value = self.evaluations.get(expression)
        if value is None:
            for key, candidate in self.evaluations.items():
                if key in expression:
                    value = candidate
                    break
            else:
                raise NavigationError(f"unexpected expression: {expression[:40]}")
        if isinstance(value, Exception):
            raise value
        return value

    def subscribe(self, callback):
        self.listeners.append(callback)

        def unsubscribe():
            self.listeners.remove(callback)

        return unsubscribe

    def pump(self, seconds: float) -> None:
        target = self.clock.ms + int(round(seconds * 1000))
        while self.events and self.events[0][0] <= target:
            at, ev = self.events.pop(0)
            self.clock.ms = max(self.clock.ms, at)
            for cb in list(self.listeners):
                cb(ev)
        self.clock.ms = target

    def stylesheet_responses(self) -> List[str]:
        return list(self.stylesheets)


def started(ms: int, url: str = "https://example.com/api") -> Tuple[int, NetworkEvent]:
    return ms, NetworkEvent(REQUEST_STARTED, url, "fetch")


def finished(ms: int, url: str = "https://example.com/api") -> Tuple[int, NetworkEvent]:
    return ms, NetworkEvent(REQUEST_FINISHED, url, "fetch")


def failed(ms: int, url: str = "https://example.com/api") -> Tuple[int, NetworkEvent]:
    return ms, NetworkEvent(REQUEST_FAILED, url, "fetch")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(output_dir=str(tmp_path / "output"))
