"""
Unit Tests for the debug event log
"""
from unittest.mock import MagicMock

from eepdesk.debug_events import DebugEventLog, DebugEventType


class TestDebugEventLog:
    """Test event recording and listeners"""

    def test_newest_first(self):
        log = DebugEventLog()

        log.log_event("first")
        log.log_event("second")

        assert [event.message for event in log.events] == ["second", "first"]
        assert [event.id for event in log.events] == [2, 1]

    def test_bounded(self):
        log = DebugEventLog(max_events=3)

        for i in range(5):
            log.log_event(f"event {i}")

        assert [event.message for event in log.events] == ["event 4", "event 3", "event 2"]

    def test_listener_notified_and_unsubscribed(self):
        log = DebugEventLog()
        listener = MagicMock()
        unsubscribe = log.subscribe(listener)

        event = log.log_event("[GET] /tasks/ succeeded (200)", DebugEventType.API_SUCCESS)
        unsubscribe()
        log.log_event("ignored")

        listener.assert_called_once_with(event)

    def test_listener_failure_is_contained(self):
        log = DebugEventLog()
        log.subscribe(MagicMock(side_effect=RuntimeError("boom")))
        after = MagicMock()
        log.subscribe(after)

        log.log_event("still recorded")

        assert log.events[0].message == "still recorded"
        after.assert_called_once()

    def test_unread_errors(self):
        log = DebugEventLog()
        log.log_event("ok", DebugEventType.API_SUCCESS)
        log.log_event("bad", DebugEventType.API_ERROR)
        log.log_event("worse", DebugEventType.ERROR)

        assert log.unread_error_count == 2
        assert log.has_unread_errors

        log.mark_all_as_read()

        assert log.unread_error_count == 0

    def test_clear(self):
        log = DebugEventLog()
        log.log_event("x")

        log.clear()

        assert log.events == []
