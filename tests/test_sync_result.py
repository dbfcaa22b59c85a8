"""Tests for SyncResult counting and merging."""

from datetime import UTC, datetime, timedelta

from lubelogger_sync.exceptions import RemoteOperationError
from lubelogger_sync.sync import SyncResult, SyncResultStatus

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def result(successes=0, failures=0, start=T0, end=None) -> SyncResult:
    r = SyncResult(start_time=start, end_time=end)
    r.add_success(successes)
    for i in range(failures):
        r.add_failure("Vehicle", i, f"error {i}")
    return r


class TestStatus:
    def test_success(self):
        assert result(successes=2).status == SyncResultStatus.SUCCESS

    def test_partial(self):
        assert result(successes=1, failures=1).status == SyncResultStatus.PARTIAL_SUCCESS

    def test_empty_is_failure(self):
        """An empty campaign (offline, already running) is reported as Failure."""
        empty = SyncResult().complete()
        assert empty.status == SyncResultStatus.FAILURE
        assert empty.is_empty

    def test_all_failed(self):
        assert result(failures=2).status == SyncResultStatus.FAILURE


class TestMerge:
    def test_counts_and_errors_combine(self):
        a = result(successes=2, failures=1)
        b = result(successes=1, failures=2)
        b.add_skipped("no adapter", count=3)
        b.add_conflict()

        merged = a.merge(b)

        assert merged.success_count == 3
        assert merged.failure_count == 3
        assert merged.skipped_count == 3
        assert merged.conflict_count == 1
        assert [e.cause for e in merged.errors] == ["error 0", "error 0", "error 1"]
        assert merged.skip_reasons == ["no adapter"]
        # Inputs untouched
        assert a.success_count == 2

    def test_merge_is_associative(self):
        a = result(1, 0, start=T0, end=T0 + timedelta(seconds=1))
        b = result(0, 1, start=T0 + timedelta(seconds=2), end=T0 + timedelta(seconds=3))
        c = result(4, 2, start=T0 - timedelta(seconds=1), end=T0 + timedelta(seconds=2))

        left = a.merge(b).merge(c)
        right = a.merge(b.merge(c))

        assert left.to_dict() == right.to_dict()

    def test_merge_counts_are_commutative(self):
        a = result(2, 1, start=T0, end=T0 + timedelta(seconds=4))
        b = result(5, 0, start=T0 + timedelta(seconds=1), end=T0 + timedelta(seconds=9))

        ab, ba = a.merge(b), b.merge(a)

        assert (ab.success_count, ab.failure_count) == (ba.success_count, ba.failure_count)
        assert ab.status == ba.status
        assert ab.duration == ba.duration

    def test_time_window_spans_inputs(self):
        a = result(start=T0 + timedelta(seconds=5), end=T0 + timedelta(seconds=6))
        b = result(start=T0, end=T0 + timedelta(seconds=2))

        merged = SyncResult.combine(a, b)

        assert merged.start_time == T0
        assert merged.end_time == T0 + timedelta(seconds=6)
        assert merged.duration == timedelta(seconds=6)

    def test_combine_nothing_is_empty(self):
        combined = SyncResult.combine()
        assert combined.is_empty
        assert combined.duration == timedelta(0)


def test_failure_records_exception_type():
    r = SyncResult()
    r.add_failure("Vehicle", 7, RemoteOperationError("Vehicle", "update", 500))

    assert r.errors[0].error_type == "RemoteOperationError"
    assert r.to_dict()["errors"][0]["entity_id"] == 7
