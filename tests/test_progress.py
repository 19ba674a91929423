"""Test progress trackers and signal-driven cancellation."""

import asyncio
import io
import os
import signal

import pytest
from rich.console import Console

from internxt_backup.progress import CountingProgressTracker, RichProgressTracker
from internxt_backup.signals import cancel_on_signals


class TestCountingProgressTracker:
    def test_counts(self):
        tracker = CountingProgressTracker()
        tracker.initialize(4)
        tracker.record_success()
        tracker.record_failure()
        assert tracker.percentage == 50
        assert tracker.is_complete is False

        tracker.record_success()
        tracker.record_success()
        assert tracker.percentage == 100
        assert tracker.is_complete is True

    def test_empty(self):
        tracker = CountingProgressTracker()
        tracker.initialize(0)
        assert tracker.percentage == 0
        assert tracker.is_complete is False


class TestRichProgressTracker:
    def _tracker(self):
        output = io.StringIO()
        return RichProgressTracker("Upload", console=Console(file=output, width=120)), output

    def test_success_summary(self):
        tracker, output = self._tracker()
        tracker.initialize(2)
        tracker.start()
        tracker.record_success()
        tracker.record_success()
        tracker.display_summary()
        assert "All 2 files uploaded" in output.getvalue()

    def test_failure_summary(self):
        tracker, output = self._tracker()
        tracker.initialize(2)
        tracker.start()
        tracker.record_success()
        tracker.record_failure()
        tracker.display_summary()
        assert "1 succeeded, 1 failed" in output.getvalue()

    def test_interrupted_summary_shows_percentage(self):
        tracker, output = self._tracker()
        tracker.initialize(4)
        tracker.start()
        tracker.record_success()
        tracker.display_summary()
        text = output.getvalue()
        assert "stopped at 25%" in text
        assert "3 not processed" in text

    def test_empty_summary_is_success(self):
        tracker, output = self._tracker()
        tracker.initialize(0)
        tracker.display_summary()
        assert "All 0 files uploaded" in output.getvalue()

    def test_stop_is_idempotent(self):
        tracker, _ = self._tracker()
        tracker.initialize(1)
        tracker.start()
        tracker.stop()
        tracker.stop()


class TestCancelOnSignals:
    @pytest.mark.asyncio
    async def test_sigterm_sets_event(self):
        cancel = asyncio.Event()
        with cancel_on_signals(cancel):
            os.kill(os.getpid(), signal.SIGTERM)
            await asyncio.wait_for(cancel.wait(), timeout=5)
        assert cancel.is_set()

    @pytest.mark.asyncio
    async def test_handlers_removed_on_exit(self):
        cancel = asyncio.Event()
        loop = asyncio.get_running_loop()
        with cancel_on_signals(cancel):
            pass
        assert loop.remove_signal_handler(signal.SIGTERM) is False
