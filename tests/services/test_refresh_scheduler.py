"""
Unit Tests for RefreshScheduler

Covers the due-for-refresh policy, per-record failure isolation and the
events reported for each outcome.
"""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent.parent
sys.path.insert(0, str(project_root))

import asyncio
import threading
from datetime import datetime, timedelta, timezone

import pytest

from app.models.knowledge_base import (
    NEVER_REFRESHED,
    REFRESH_FIELDS,
    KnowledgeBaseRecord,
    RefreshFailure,
    RefreshSuccess,
)
from app.services.catalog import CatalogUnavailableError
from app.services.refresh_scheduler import (
    REFRESH_FAILURE_EVENT,
    REFRESH_SUCCESS_EVENT,
    RefreshScheduler,
    is_due,
)

NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)


def make_record(kb_id="kb-1", hours_ago=25, frequency=24, **kwargs):
    last = NEVER_REFRESHED if hours_ago is None else NOW - timedelta(hours=hours_ago)
    return KnowledgeBaseRecord(
        kb_id=kb_id,
        last_refresh_datetime=last,
        refresh_frequency_in_hours=frequency,
        **kwargs,
    )


class FakeCatalog:
    def __init__(self, records=None, error=None, record_error=None):
        self.records = records or []
        self.error = error
        self.record_error = record_error
        self.requested_fields = None
        self.recorded = []

    def get_all(self, fields=None):
        self.requested_fields = fields
        if self.error:
            raise self.error
        return list(self.records)

    def record_refresh(self, kb_id, refreshed_at):
        if self.record_error:
            raise self.record_error
        self.recorded.append((kb_id, refreshed_at))


class FakeRefresher:
    def __init__(self, failures=None):
        self.failures = failures or {}
        self.calls = []

    async def refresh(self, record):
        self.calls.append(record.kb_id)
        if record.kb_id in self.failures:
            raise self.failures[record.kb_id]
        return NOW


class RecordingReporter:
    def __init__(self):
        self.infos = []
        self.warnings = []
        self.events = []

    def log_info(self, message):
        self.infos.append(message)

    def log_warning(self, message, error=None):
        self.warnings.append((message, error))

    def log_event(self, name, properties):
        self.events.append((name, properties))


def make_scheduler(catalog, refresher=None, reporter=None):
    return RefreshScheduler(
        catalog=catalog,
        refresher=refresher or FakeRefresher(),
        reporter=reporter or RecordingReporter(),
        clock=lambda: NOW,
    )


# ── Due-for-refresh policy ─────────────────────────────


@pytest.mark.parametrize("hours_ago", [None, 0, 1, 24, 1000])
def test_zero_frequency_is_never_due(hours_ago):
    assert is_due(make_record(hours_ago=hours_ago, frequency=0), NOW) is False


@pytest.mark.parametrize("frequency", [0, 1, 24, 10000])
def test_never_refreshed_is_never_due(frequency):
    assert is_due(make_record(hours_ago=None, frequency=frequency), NOW) is False


def test_overdue_record_is_due():
    assert is_due(make_record(hours_ago=25, frequency=24), NOW) is True


def test_recent_record_is_not_due():
    assert is_due(make_record(hours_ago=23, frequency=24), NOW) is False


def test_boundary_is_not_due():
    """Refreshed exactly `frequency` hours ago: not yet due."""
    assert is_due(make_record(hours_ago=24, frequency=24), NOW) is False
    assert is_due(
        make_record(hours_ago=24, frequency=24), NOW + timedelta(microseconds=1)
    ) is True


def test_naive_timestamp_treated_as_utc():
    record = KnowledgeBaseRecord(
        kb_id="kb-naive",
        last_refresh_datetime=datetime(2026, 10, 18, 11, 0, 0),
        refresh_frequency_in_hours=24,
    )
    assert is_due(record, NOW) is True


# ── Refresh cycle ──────────────────────────────────────


def test_cycle_requests_projected_fields():
    catalog = FakeCatalog()
    asyncio.run(make_scheduler(catalog).run_refresh_cycle())
    assert catalog.requested_fields == REFRESH_FIELDS


def test_end_to_end_mixed_outcomes():
    """K1 succeeds, K2 is skipped, K3 times out."""
    k1 = make_record("K1", hours_ago=30)
    k2 = make_record("K2", hours_ago=2)
    k3 = make_record("K3", hours_ago=48)
    catalog = FakeCatalog([k1, k2, k3])
    refresher = FakeRefresher(failures={"K3": TimeoutError("timeout")})
    reporter = RecordingReporter()

    summary = asyncio.run(
        make_scheduler(catalog, refresher, reporter).run_refresh_cycle()
    )

    assert refresher.calls == ["K1", "K3"]
    assert any("Skipping refresh for K2" in m for m in reporter.infos)
    assert reporter.events == [
        (REFRESH_SUCCESS_EVENT, {"KnowledgeBaseId": "K1"}),
        (
            REFRESH_FAILURE_EVENT,
            {
                "KnowledgeBaseId": "K3",
                "LastRefreshDateTime": "2026-10-17 12:00:00Z",
                "ErrorMessage": "timeout",
            },
        ),
    ]
    assert len(reporter.warnings) == 1
    message, error = reporter.warnings[0]
    assert message == "Failed to refresh KB K3: timeout"
    assert isinstance(error, TimeoutError)

    assert summary.total == 3
    assert summary.skipped == 1
    assert summary.succeeded == 1
    assert summary.failed == 1


def test_failure_does_not_stop_later_records():
    records = [make_record("A"), make_record("B")]
    refresher = FakeRefresher(failures={"A": RuntimeError("boom")})
    reporter = RecordingReporter()

    summary = asyncio.run(
        make_scheduler(FakeCatalog(records), refresher, reporter).run_refresh_cycle()
    )

    assert refresher.calls == ["A", "B"]
    assert [type(o) for o in summary.outcomes] == [RefreshFailure, RefreshSuccess]
    assert [name for name, _ in reporter.events] == [
        REFRESH_FAILURE_EVENT,
        REFRESH_SUCCESS_EVENT,
    ]


def test_one_event_per_due_record_and_none_for_skipped():
    records = [
        make_record("due-1"),
        make_record("disabled", frequency=0),
        make_record("never", hours_ago=None),
        make_record("due-2"),
        make_record("fresh", hours_ago=1),
    ]
    reporter = RecordingReporter()
    asyncio.run(
        make_scheduler(FakeCatalog(records), reporter=reporter).run_refresh_cycle()
    )

    event_ids = [props["KnowledgeBaseId"] for _, props in reporter.events]
    assert event_ids == ["due-1", "due-2"]
    skipped = [m for m in reporter.infos if m.startswith("Skipping refresh")]
    assert len(skipped) == 3


def test_successful_refresh_is_recorded_in_catalog():
    catalog = FakeCatalog([make_record("kb-1")])
    asyncio.run(make_scheduler(catalog).run_refresh_cycle())
    assert catalog.recorded == [("kb-1", NOW)]


def test_record_failure_reported_as_refresh_failure():
    catalog = FakeCatalog(
        [make_record("kb-1")],
        record_error=CatalogUnavailableError("disk full"),
    )
    reporter = RecordingReporter()

    summary = asyncio.run(make_scheduler(catalog, reporter=reporter).run_refresh_cycle())

    assert summary.failed == 1
    assert reporter.events[0][0] == REFRESH_FAILURE_EVENT
    assert reporter.events[0][1]["ErrorMessage"] == "disk full"


def test_empty_error_message_falls_back_to_type_name():
    refresher = FakeRefresher(failures={"kb-1": ConnectionError()})
    reporter = RecordingReporter()
    asyncio.run(
        make_scheduler(
            FakeCatalog([make_record("kb-1")]), refresher, reporter
        ).run_refresh_cycle()
    )
    assert reporter.events[0][1]["ErrorMessage"] == "ConnectionError"


def test_catalog_failure_propagates():
    error = CatalogUnavailableError("storage offline")
    reporter = RecordingReporter()
    scheduler = make_scheduler(FakeCatalog(error=error), reporter=reporter)

    with pytest.raises(CatalogUnavailableError) as exc_info:
        asyncio.run(scheduler.run_refresh_cycle())

    assert exc_info.value is error
    assert reporter.events == []


@pytest.mark.asyncio
async def test_empty_catalog_completes_without_events():
    reporter = RecordingReporter()
    summary = await make_scheduler(FakeCatalog(), reporter=reporter).run_refresh_cycle()

    assert summary.total == 0
    assert reporter.events == []
    assert "Found 0 configured knowledge bases" in reporter.infos


def test_huge_frequency_is_not_due():
    record = make_record("huge", hours_ago=1, frequency=100_000_000)
    assert is_due(record, NOW) is False


def test_frequency_beyond_timedelta_range_is_not_due():
    record = make_record("overflow", hours_ago=1, frequency=10**12)
    assert is_due(record, NOW) is False


def test_timestamp_near_max_is_not_due():
    record = KnowledgeBaseRecord(
        kb_id="far-future",
        last_refresh_datetime=datetime.max.replace(tzinfo=timezone.utc),
        refresh_frequency_in_hours=24,
    )
    assert is_due(record, NOW) is False


def test_huge_frequency_does_not_abort_cycle():
    records = [
        make_record("huge", hours_ago=1, frequency=100_000_000),
        make_record("due", hours_ago=30, frequency=24),
    ]
    refresher = FakeRefresher()
    reporter = RecordingReporter()

    summary = asyncio.run(
        make_scheduler(FakeCatalog(records), refresher, reporter).run_refresh_cycle()
    )

    assert refresher.calls == ["due"]
    assert summary.skipped == 1
    assert reporter.events == [(REFRESH_SUCCESS_EVENT, {"KnowledgeBaseId": "due"})]


def test_refresh_timestamp_is_recorded_off_the_event_loop_thread():
    loop_thread = threading.get_ident()
    record_threads = []

    class ThreadTrackingCatalog(FakeCatalog):
        def record_refresh(self, kb_id, refreshed_at):
            record_threads.append(threading.get_ident())
            super().record_refresh(kb_id, refreshed_at)

    catalog = ThreadTrackingCatalog([make_record("kb-1")])
    asyncio.run(make_scheduler(catalog).run_refresh_cycle())

    assert catalog.recorded == [("kb-1", NOW)]
    assert record_threads and record_threads[0] != loop_thread
