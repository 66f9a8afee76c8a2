"""Tests for per-path event debouncing."""

import threading

from drover.watcher.debounce import DEBOUNCE_SECONDS, EventDebouncer


class TestShouldSuppress:
    def test_first_event_passes(self):
        debouncer = EventDebouncer()
        assert debouncer.should_suppress("/in/a.csv", now=100.0) is False

    def test_second_event_within_window_suppressed(self):
        debouncer = EventDebouncer()
        debouncer.should_suppress("/in/a.csv", now=100.0)
        assert debouncer.should_suppress("/in/a.csv", now=101.5) is True

    def test_event_after_window_passes(self):
        debouncer = EventDebouncer()
        debouncer.should_suppress("/in/a.csv", now=100.0)
        assert debouncer.should_suppress("/in/a.csv", now=102.5) is False

    def test_suppressed_event_does_not_refresh_timestamp(self):
        debouncer = EventDebouncer()
        debouncer.should_suppress("/in/a.csv", now=100.0)
        assert debouncer.should_suppress("/in/a.csv", now=101.9) is True
        # Measured from 100.0, not from the suppressed 101.9
        assert debouncer.should_suppress("/in/a.csv", now=102.1) is False

    def test_passing_event_updates_timestamp(self):
        debouncer = EventDebouncer()
        debouncer.should_suppress("/in/a.csv", now=100.0)
        debouncer.should_suppress("/in/a.csv", now=103.0)
        assert debouncer.should_suppress("/in/a.csv", now=104.0) is True

    def test_paths_are_independent(self):
        debouncer = EventDebouncer()
        debouncer.should_suppress("/in/a.csv", now=100.0)
        assert debouncer.should_suppress("/in/b.csv", now=100.5) is False
        assert len(debouncer) == 2

    def test_custom_window(self):
        debouncer = EventDebouncer(window=0.5)
        debouncer.should_suppress("/in/a.csv", now=100.0)
        assert debouncer.should_suppress("/in/a.csv", now=100.6) is False

    def test_default_window(self):
        assert EventDebouncer().window == DEBOUNCE_SECONDS == 2.0


class TestConcurrency:
    def test_only_one_of_simultaneous_events_passes(self):
        debouncer = EventDebouncer()
        results = []
        barrier = threading.Barrier(8)

        def fire():
            barrier.wait()
            results.append(debouncer.should_suppress("/in/a.csv", now=50.0))

        threads = [threading.Thread(target=fire) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(False) == 1
        assert results.count(True) == 7
