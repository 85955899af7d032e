"""Tests for progress tracking and run history"""

from datetime import datetime, timezone

import pytest

from strmarr.models import FailedItem, MediaType, RunResult, SyncState
from strmarr.sync.progress import HISTORY_SIZE, ProgressTracker, RunHistory

START = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def make_result(minute=0, failed=0, **counts):
    result = RunResult(start_time=START.replace(minute=minute), state=SyncState.COMPLETE, success=True)
    result.end_time = result.start_time.replace(second=30)
    result.failed_items = [
        FailedItem(MediaType.MOVIE, i, f"Movie {i}", "boom", result.start_time, category_id=1)
        for i in range(failed)
    ]
    for name, value in counts.items():
        setattr(result, name, value)
    return result


class TestProgressTracker:
    """Test live progress counters"""

    def test_counters(self):
        tracker = ProgressTracker(clock=lambda: START)

        tracker.start()
        tracker.add_total(4)
        tracker.item_done(created=1)
        tracker.item_done(updated=1)
        snapshot = tracker.snapshot()

        assert snapshot["is_running"] is True
        assert snapshot["processed_items"] == 2
        assert snapshot["created"] == 1
        assert snapshot["updated"] == 1
        assert snapshot["percent"] == 50.0
        assert snapshot["started_at"] == START.isoformat()

    def test_start_resets(self):
        tracker = ProgressTracker()
        tracker.start()
        tracker.add_total(2)
        tracker.item_done()
        tracker.finish()

        tracker.start()

        assert tracker.snapshot()["total_items"] == 0
        assert tracker.snapshot()["processed_items"] == 0

    def test_finish(self):
        tracker = ProgressTracker()
        tracker.start()
        tracker.set_phase("Syncing")

        tracker.finish()

        assert tracker.snapshot()["is_running"] is False
        assert tracker.snapshot()["phase"] == "Idle"

    def test_percent_capped(self):
        tracker = ProgressTracker()
        tracker.start()
        tracker.add_total(1)
        tracker.item_done()
        tracker.item_done()

        assert tracker.snapshot()["percent"] == 100.0


class TestRunHistory:
    """Test persisted run history"""

    def test_newest_first(self, temp_dir):
        history = RunHistory(temp_dir / "history.json")
        history.record(make_result(minute=1))
        history.record(make_result(minute=2))

        assert [r.start_time.minute for r in history.all()] == [2, 1]
        assert history.last().start_time.minute == 2

    def test_trimmed_to_size(self, temp_dir):
        history = RunHistory(temp_dir / "history.json")
        for minute in range(HISTORY_SIZE + 3):
            history.record(make_result(minute=minute))

        assert len(history) == HISTORY_SIZE
        assert history.all()[-1].start_time.minute == 3

    def test_persisted(self, temp_dir):
        path = temp_dir / "history.json"
        history = RunHistory(path)
        history.record(make_result(minute=1, failed=1, movies_created=4))
        history.record(make_result(minute=2, failed=2, movies_created=7))

        reloaded = RunHistory(path)

        assert len(reloaded) == 2
        assert reloaded.last().movies_created == 7
        assert len(reloaded.failed_items()) == 2
        # only the newest run keeps its failed items on disk
        assert reloaded.all()[1].failed_items == []

    def test_update_last(self, temp_dir):
        path = temp_dir / "history.json"
        history = RunHistory(path)
        history.record(make_result(minute=1, failed=2))

        last = history.last()
        last.failed_items = last.failed_items[:1]
        history.update_last(last)

        assert len(RunHistory(path)) == 1
        assert len(RunHistory(path).failed_items()) == 1

    def test_corrupt_file_ignored(self, temp_dir):
        path = temp_dir / "history.json"
        path.write_text("[[[")

        history = RunHistory(path)

        assert len(history) == 0
        assert history.last() is None
        assert history.failed_items() == []

    def test_in_memory(self):
        history = RunHistory()
        history.record(make_result())

        assert len(history) == 1


class TestRunResult:
    """Test run result counters"""

    def test_increment_and_merge(self):
        result = make_result()
        result.increment(movies_created=2, errors=1)
        other = make_result(episodes_created=5)

        result.merge_counts(other)

        assert result.movies_created == 2
        assert result.episodes_created == 5
        assert result.errors == 1

    def test_unknown_counter(self):
        result = make_result()

        with pytest.raises(AttributeError, match="bogus"):
            result.increment(bogus=1)

    def test_dict_round_trip_keeps_failures(self):
        result = make_result(failed=1, series_created=3)

        restored = RunResult.from_dict(result.to_dict())

        assert restored.series_created == 3
        assert restored.failed_items == result.failed_items
        assert restored.duration_seconds == 30.0
