"""
Tests for settling detection over scripted network event streams.
"""

from unittest.mock import Mock

import pytest
from playwright.sync_api import Error as PlaywrightError

from conftest import FakeBrowserSession, failed, finished, started
from spa_snapshot import (
    REQUEST_STARTED,
    RESPONSE_RECEIVED,
    CancelToken,
    CaptureCancelled,
    IdleTimeoutError,
    NavigationError,
    NetworkActivity,
    NetworkEvent,
    PlaywrightSession,
    wait_for_network_idle,
)


def wait(session, clock, **kwargs):
    kwargs.setdefault("idle_window", 1.0)
    kwargs.setdefault("hard_timeout", 30.0)
    wait_for_network_idle(session, clock=clock, **kwargs)


class TestWaitForNetworkIdle:
    def test_settles_a_full_window_after_last_finish(self, clock):
        events = [started(100), started(200), started(300)]
        events += [finished(500), finished(700), finished(900)]
        session = FakeBrowserSession(clock, events)

        wait(session, clock)

        assert 1.9 <= clock() <= 2.0

    def test_quiet_page_settles_after_one_window(self, clock):
        session = FakeBrowserSession(clock)

        wait(session, clock, idle_window=0.5)

        assert 0.5 <= clock() <= 0.55

    def test_failed_requests_count_as_done(self, clock):
        session = FakeBrowserSession(clock, [started(100), failed(400)])

        wait(session, clock)

        assert 1.4 <= clock() <= 1.5

    def test_late_request_restarts_the_window(self, clock):
        events = [started(100), finished(200), started(1100), finished(1150)]
        session = FakeBrowserSession(clock, events)

        wait(session, clock)

        assert 2.15 <= clock() <= 2.25

    def test_times_out_while_a_request_stays_open(self, clock):
        events = [started(100), started(200), started(300)]
        events += [finished(400), finished(500)]
        session = FakeBrowserSession(clock, events)

        with pytest.raises(IdleTimeoutError) as exc:
            wait(session, clock, hard_timeout=5.0)

        assert clock() == pytest.approx(5.0)
        assert exc.value.in_flight == 1
        assert exc.value.hard_timeout == 5.0

    def test_times_out_on_perpetual_polling(self, clock):
        events = []
        for ms in range(0, 10_000, 500):
            events += [started(ms + 10), finished(ms + 110)]
        session = FakeBrowserSession(clock, events)

        with pytest.raises(IdleTimeoutError):
            wait(session, clock, hard_timeout=3.0)

        assert clock() == pytest.approx(3.0)

    def test_listener_is_removed_on_success(self, clock):
        session = FakeBrowserSession(clock)

        wait(session, clock)

        assert session.listeners == []

    def test_listener_is_removed_on_timeout(self, clock):
        session = FakeBrowserSession(clock, [started(10)])

        with pytest.raises(IdleTimeoutError):
            wait(session, clock, hard_timeout=1.0)

        assert session.listeners == []

    def test_cancel_before_wait(self, clock):
        session = FakeBrowserSession(clock, [started(10)])
        token = CancelToken()
        token.cancel("user abort")

        with pytest.raises(CaptureCancelled) as exc:
            wait(session, clock, cancel=token)

        assert exc.value.reason == "user abort"
        assert clock() == 0
        assert session.listeners == []

    def test_deadline_cancels_before_hard_timeout(self, clock):
        session = FakeBrowserSession(clock, [started(10)])
        token = CancelToken(timeout=2.0, clock=clock)

        with pytest.raises(CaptureCancelled) as exc:
            wait(session, clock, cancel=token)

        assert exc.value.reason == "capture deadline exceeded"
        assert clock() == pytest.approx(2.0)

    def test_extra_finish_events_do_not_go_negative(self, clock):
        events = [finished(100), finished(200), started(300), finished(400)]
        session = FakeBrowserSession(clock, events)

        wait(session, clock)

        assert 1.4 <= clock() <= 1.5


class TestNetworkActivity:
    def test_counter_is_floored_at_zero(self):
        state = NetworkActivity()
        state.on_event(NetworkEvent("finished", "u"), now=1.0)

        assert state.in_flight == 0
        assert state.last_activity == 1.0

    def test_responses_are_not_activity(self):
        state = NetworkActivity(last_activity=0.0)
        state.on_event(NetworkEvent(RESPONSE_RECEIVED, "u", "stylesheet"), now=5.0)

        assert state.last_activity == 0.0
        assert state.is_idle(5.0, 1.0)

    def test_not_idle_with_request_in_flight(self):
        state = NetworkActivity()
        state.on_event(NetworkEvent(REQUEST_STARTED, "u"), now=0.0)

        assert not state.is_idle(100.0, 1.0)


class TestPlaywrightPump:
    def make_session(self, page):
        session = PlaywrightSession.__new__(PlaywrightSession)
        session.page = page
        return session

    def test_pump_waits_on_the_page(self):
        page = Mock()
        self.make_session(page).pump(0.05)

        page.wait_for_timeout.assert_called_once_with(pytest.approx(50))

    def test_closed_page_becomes_navigation_error(self, clock):
        page = Mock()
        page.wait_for_timeout.side_effect = PlaywrightError("Target page has been closed")
        session = self.make_session(page)

        with pytest.raises(NavigationError, match="waiting for network idle"):
            wait_for_network_idle(session, clock=clock)

        assert page.remove_listener.call_count == 4
