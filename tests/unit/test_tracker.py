"""Unit tests for the session progress tracker."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from unittest.mock import Mock

import pytest
from mathquest.tracker import ProgressTracker, XPGrantEvent, validate_grant_amount


class RecordingObserver:
    """Observer that records every notification."""

    def __init__(self):
        self.xp_changes = []
        self.level_ups = []

    def on_xp_changed(self, new_total_xp):
        self.xp_changes.append(new_total_xp)

    def on_level_up(self, new_level):
        self.level_ups.append(new_level)


class MockLedger:
    """Mock remote ledger that records reported deltas."""

    def __init__(self, error=None, raise_error=None):
        self.reports = []
        self.error = error
        self.raise_error = raise_error

    def report_delta(self, player_id, delta, reason, source):
        self.reports.append((player_id, delta, reason, source))
        if self.raise_error:
            raise self.raise_error
        return self.error


class MockProfileSource:
    """Mock profile source with fixed starting XP per player."""

    def __init__(self, starting_xp):
        self.starting_xp = starting_xp
        self.calls = []

    def load_starting_xp(self, player_id):
        self.calls.append(player_id)
        return self.starting_xp.get(player_id, 0)


@pytest.fixture
def observer():
    return RecordingObserver()


@pytest.fixture
def ledger():
    return MockLedger()


@pytest.fixture
def tracker(ledger, observer):
    tracker = ProgressTracker(ledger=ledger, player_id="student-1", observer=observer)
    yield tracker
    tracker.close()


class TestValidateGrantAmount:
    """Test grant amount validation."""

    def test_positive_integer_valid(self):
        is_valid, error = validate_grant_amount(50)
        assert is_valid is True
        assert error == ""

    def test_zero_valid(self):
        is_valid, error = validate_grant_amount(0)
        assert is_valid is True

    def test_negative_invalid(self):
        is_valid, error = validate_grant_amount(-10)
        assert is_valid is False
        assert "negative" in error

    def test_float_invalid(self):
        is_valid, error = validate_grant_amount(12.5)
        assert is_valid is False
        assert "integer" in error

    def test_bool_invalid(self):
        is_valid, error = validate_grant_amount(True)
        assert is_valid is False


class TestInitialize:
    """Test direct state initialization."""

    def test_initial_state(self):
        tracker = ProgressTracker()
        assert tracker.current_total_xp == 0
        assert tracker.current_level == 1
        tracker.close()

    def test_initialize_sets_level(self, tracker):
        tracker.initialize(250)
        assert tracker.current_total_xp == 250
        assert tracker.current_level == 3

    def test_initialize_clamps_negative(self, tracker):
        tracker.initialize(-50)
        assert tracker.current_total_xp == 0
        assert tracker.current_level == 1

    def test_initialize_does_not_report_or_level_up(self, tracker, ledger, observer):
        tracker.initialize(5000)
        tracker.wait_for_reports()

        assert ledger.reports == []
        assert observer.level_ups == []
        assert observer.xp_changes == [5000]

    def test_initialize_from_profile(self, ledger, observer):
        source = MockProfileSource({"student-9": 100})
        tracker = ProgressTracker(ledger=ledger, observer=observer)

        tracker.initialize_from_profile(source, "student-9")

        assert source.calls == ["student-9"]
        assert tracker.player_id == "student-9"
        assert tracker.current_total_xp == 100
        assert tracker.current_level == 2
        tracker.close()


class TestGrantXP:
    """Test XP grants, level-up detection, and notifications."""

    def test_zero_grant_is_noop(self, tracker, ledger, observer):
        tracker.initialize(90)
        observer.xp_changes.clear()

        result = tracker.grant_xp(0, "nothing")
        tracker.wait_for_reports()

        assert result is None
        assert tracker.current_total_xp == 90
        assert tracker.current_level == 1
        assert observer.xp_changes == []
        assert observer.level_ups == []
        assert ledger.reports == []

    def test_negative_grant_rejected(self, tracker, ledger, observer, caplog):
        tracker.initialize(90)
        observer.xp_changes.clear()

        with caplog.at_level(logging.WARNING, logger="mathquest.tracker"):
            result = tracker.grant_xp(-10, "penalty")
        tracker.wait_for_reports()

        assert result is None
        assert tracker.current_total_xp == 90
        assert observer.xp_changes == []
        assert ledger.reports == []
        assert "Rejected XP grant" in caplog.text

    def test_non_integer_grant_rejected(self, tracker, ledger):
        assert tracker.grant_xp(2.5, "fraction") is None
        tracker.wait_for_reports()

        assert tracker.current_total_xp == 0
        assert ledger.reports == []

    def test_grant_without_level_up(self, tracker, observer):
        event = tracker.grant_xp(40, "quiz")

        assert isinstance(event, XPGrantEvent)
        assert event.amount == 40
        assert event.reason == "quiz"
        assert event.source == "GameClient"
        assert tracker.current_total_xp == 40
        assert tracker.current_level == 1
        assert observer.xp_changes == [40]
        assert observer.level_ups == []

    def test_event_timestamp_is_iso8601(self, tracker):
        event = tracker.grant_xp(10, "quiz")

        assert event.timestamp.endswith('Z')
        datetime.fromisoformat(event.timestamp.replace('Z', '+00:00'))

    def test_multi_level_grant_fires_single_level_up(self, tracker, observer):
        tracker.initialize(90)
        observer.xp_changes.clear()

        tracker.grant_xp(500, "big quest")

        assert tracker.current_total_xp == 590
        assert tracker.current_level == 4
        assert observer.level_ups == [4]
        assert observer.xp_changes == [590]

    def test_end_to_end_scenario(self, tracker, observer):
        tracker.initialize(0)
        assert tracker.current_level == 1

        tracker.grant_xp(100, "quiz")
        assert tracker.current_total_xp == 100
        assert tracker.current_level == 2
        assert observer.level_ups == [2]

        tracker.grant_xp(150, "quiz")
        assert tracker.current_total_xp == 250
        assert tracker.current_level == 3
        assert observer.level_ups == [2, 3]

    def test_source_override(self, tracker, ledger):
        tracker.grant_xp(25, "Daily login bonus", source="LoginSystem")
        tracker.wait_for_reports()

        assert ledger.reports == [("student-1", 25, "Daily login bonus", "LoginSystem")]

    def test_observer_exception_does_not_abort_grant(self, ledger):
        bad_observer = Mock()
        bad_observer.on_xp_changed.side_effect = RuntimeError("display gone")
        tracker = ProgressTracker(ledger=ledger, player_id="student-1", observer=bad_observer)

        tracker.grant_xp(100, "quiz")
        tracker.wait_for_reports()

        assert tracker.current_level == 2
        bad_observer.on_level_up.assert_called_once_with(2)
        assert len(ledger.reports) == 1
        tracker.close()

    def test_concurrent_grants_are_serialized(self, ledger):
        tracker = ProgressTracker(ledger=ledger, player_id="student-1")

        def grant_many():
            for _ in range(100):
                tracker.grant_xp(1, "tick")

        threads = [threading.Thread(target=grant_many) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        tracker.close()

        assert tracker.current_total_xp == 400
        assert tracker.current_level == 3
        assert len(ledger.reports) == 400

    def test_notifications_follow_grant_order(self, ledger):
        first_notified = threading.Event()

        class SlowObserver(RecordingObserver):
            def on_xp_changed(self, new_total_xp):
                if not first_notified.is_set():
                    first_notified.set()
                    time.sleep(0.2)
                super().on_xp_changed(new_total_xp)

        observer = SlowObserver()
        tracker = ProgressTracker(ledger=ledger, player_id="student-1", observer=observer)

        first = threading.Thread(target=tracker.grant_xp, args=(10, "first"))
        first.start()
        assert first_notified.wait(timeout=5)
        second = threading.Thread(target=tracker.grant_xp, args=(5, "second"))
        second.start()
        first.join()
        second.join()
        tracker.close()

        assert tracker.current_total_xp == 15
        assert observer.xp_changes == [10, 15]
        assert [report[2] for report in ledger.reports] == ["first", "second"]

    def test_observer_may_grant_from_callback(self, ledger):
        tracker = ProgressTracker(ledger=ledger, player_id="student-1")

        class BonusOnLevelUp(RecordingObserver):
            def on_level_up(self, new_level):
                super().on_level_up(new_level)
                tracker.grant_xp(5, "level-up bonus")

        observer = BonusOnLevelUp()
        tracker.set_observer(observer)

        tracker.grant_xp(100, "quiz")
        tracker.close()

        assert tracker.current_total_xp == 105
        assert observer.xp_changes == [0, 100, 105]
        assert observer.level_ups == [2]


class TestSetObserver:
    """Test observer attachment."""

    def test_attaching_observer_pushes_current_state(self, ledger):
        tracker = ProgressTracker(ledger=ledger, player_id="student-1")
        tracker.initialize(300)
        observer = RecordingObserver()

        tracker.set_observer(observer)

        assert tracker.observer is observer
        assert observer.xp_changes == [300]
        assert observer.level_ups == []
        tracker.close()

    def test_replaced_observer_no_longer_notified(self, tracker, observer):
        replacement = RecordingObserver()
        tracker.set_observer(replacement)
        observer.xp_changes.clear()

        tracker.grant_xp(100, "quiz")

        assert observer.xp_changes == []
        assert replacement.xp_changes == [0, 100]
        assert replacement.level_ups == [2]

    def test_attach_waits_for_in_flight_grant(self, ledger):
        calls = []
        notifying = threading.Event()

        class SlowObserver:
            def on_xp_changed(self, new_total_xp):
                notifying.set()
                time.sleep(0.2)
                calls.append(("old", new_total_xp))

            def on_level_up(self, new_level):
                calls.append(("old-level", new_level))

        class NewObserver(RecordingObserver):
            def on_xp_changed(self, new_total_xp):
                calls.append(("new", new_total_xp))

        tracker = ProgressTracker(ledger=ledger, player_id="student-1", observer=SlowObserver())

        grant = threading.Thread(target=tracker.grant_xp, args=(10, "quiz"))
        grant.start()
        assert notifying.wait(timeout=5)
        tracker.set_observer(NewObserver())
        grant.join()
        tracker.close()

        assert calls == [("old", 10), ("new", 10)]


class TestRemoteReporting:
    """Test fire-and-forget forwarding to the remote ledger."""

    def test_grant_reported_to_ledger(self, tracker, ledger):
        tracker.grant_xp(100, "quiz")
        tracker.wait_for_reports()

        assert ledger.reports == [("student-1", 100, "quiz", "GameClient")]

    def test_no_report_without_player_id(self, ledger):
        tracker = ProgressTracker(ledger=ledger)

        tracker.grant_xp(100, "quiz")
        tracker.close()

        assert tracker.current_total_xp == 100
        assert ledger.reports == []

    def test_no_report_without_ledger(self):
        tracker = ProgressTracker(player_id="student-1")

        event = tracker.grant_xp(100, "quiz")
        tracker.close()

        assert event is not None
        assert tracker.current_level == 2

    def test_ledger_error_logged_and_state_kept(self, observer, caplog):
        ledger = MockLedger(error="Error 500: Internal Server Error")
        tracker = ProgressTracker(ledger=ledger, player_id="student-1", observer=observer)

        with caplog.at_level(logging.WARNING, logger="mathquest.tracker"):
            tracker.grant_xp(100, "quiz")
            tracker.wait_for_reports()

        assert tracker.current_total_xp == 100
        assert tracker.current_level == 2
        warnings = [r for r in caplog.records if "Failed to report" in r.getMessage()]
        assert len(warnings) == 1
        assert "Error 500" in warnings[0].getMessage()
        tracker.close()

    def test_ledger_exception_logged_not_raised(self, caplog):
        ledger = MockLedger(raise_error=ConnectionError("network down"))
        tracker = ProgressTracker(ledger=ledger, player_id="student-1")

        with caplog.at_level(logging.WARNING, logger="mathquest.tracker"):
            tracker.grant_xp(100, "quiz")
            tracker.wait_for_reports()

        assert tracker.current_total_xp == 100
        assert len(ledger.reports) == 1
        assert "network down" in caplog.text
        tracker.close()

    def test_report_does_not_block_caller(self):
        release = threading.Event()

        class SlowLedger(MockLedger):
            def report_delta(self, player_id, delta, reason, source):
                release.wait(timeout=5)
                return super().report_delta(player_id, delta, reason, source)

        ledger = SlowLedger()
        tracker = ProgressTracker(ledger=ledger, player_id="student-1")

        tracker.grant_xp(100, "quiz")

        assert tracker.current_level == 2
        assert ledger.reports == []

        release.set()
        tracker.close()
        assert ledger.reports == [("student-1", 100, "quiz", "GameClient")]

    def test_injected_executor_not_shut_down(self, ledger):
        executor = ThreadPoolExecutor(max_workers=1)
        tracker = ProgressTracker(ledger=ledger, player_id="student-1", executor=executor)

        tracker.grant_xp(10, "quiz")
        tracker.close()

        assert ledger.reports == [("student-1", 10, "quiz", "GameClient")]
        assert executor.submit(lambda: 42).result() == 42
        executor.shutdown()
