"""
Knowledge Base Refresh Scheduler

Runs one refresh cycle over the catalog:
1. Read a projected snapshot of every configured knowledge base
2. Decide per record whether it is due for a refresh
3. Refresh due records one at a time, isolating each failure
4. Report every outcome as a structured event
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from app.models.knowledge_base import (
    REFRESH_FIELDS,
    KnowledgeBaseRecord,
    RefreshCycleSummary,
    RefreshFailure,
    RefreshOutcome,
    RefreshSuccess,
    format_universal_sortable,
)
from app.services.catalog import KnowledgeBaseCatalog
from app.services.event_reporter import EventReporter
from app.services.refresher import KnowledgeBaseRefresher

logger = logging.getLogger(__name__)

REFRESH_SUCCESS_EVENT = "KnowledgeBaseRefreshSuccess"
REFRESH_FAILURE_EVENT = "KnowledgeBaseRefreshFailure"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def is_due(record: KnowledgeBaseRecord, now: datetime) -> bool:
    """
    Whether a record should be refreshed at `now`.

    Never-refreshed records and records with a zero frequency are exempt.
    A record refreshed exactly `frequency` hours ago is not yet due.
    """
    if record.never_refreshed or record.refresh_frequency_in_hours <= 0:
        return False
    try:
        interval = timedelta(hours=record.refresh_frequency_in_hours)
    except OverflowError:
        return False
    return now - record.last_refresh_datetime > interval


class RefreshScheduler:
    """
    Refreshes every knowledge base that is due, one at a time.
    """

    def __init__(
        self,
        catalog: KnowledgeBaseCatalog,
        refresher: KnowledgeBaseRefresher,
        reporter: EventReporter,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.catalog = catalog
        self.refresher = refresher
        self.reporter = reporter
        self.clock = clock or utc_now

    async def run_refresh_cycle(self) -> RefreshCycleSummary:
        """
        Refresh all knowledge bases due for a refresh.

        Only a catalog failure propagates; per-record failures are reported
        and the cycle moves on to the next record.

        Returns:
            RefreshCycleSummary with one outcome per attempted record
        """
        self.reporter.log_info("Refreshing all knowledge bases")

        records = self.catalog.get_all(fields=REFRESH_FIELDS)
        self.reporter.log_info(f"Found {len(records)} configured knowledge bases")

        summary = RefreshCycleSummary(started_at=self.clock(), total=len(records))
        for record in records:
            if not is_due(record, self.clock()):
                self.reporter.log_info(
                    f"Skipping refresh for {record.kb_id}, refreshed less than "
                    f"{record.refresh_frequency_in_hours} hours ago or refresh disabled"
                )
                summary.skipped += 1
                continue

            outcome = await self._attempt_refresh(record)
            self._report(outcome)
            summary.outcomes.append(outcome)

        logger.info(
            f"Refresh cycle complete: {summary.succeeded} succeeded, "
            f"{summary.failed} failed, {summary.skipped} skipped"
        )
        return summary

    async def _attempt_refresh(self, record: KnowledgeBaseRecord) -> RefreshOutcome:
        """Refresh one record and persist its new timestamp, capturing any error."""
        try:
            refreshed_at = await self.refresher.refresh(record)
            await asyncio.to_thread(
                self.catalog.record_refresh, record.kb_id, refreshed_at
            )
        except Exception as e:
            return RefreshFailure(
                kb_id=record.kb_id,
                last_refresh_datetime=record.last_refresh_datetime,
                error_message=str(e) or type(e).__name__,
                error=e,
            )
        return RefreshSuccess(kb_id=record.kb_id, refreshed_at=refreshed_at)

    def _report(self, outcome: RefreshOutcome) -> None:
        if isinstance(outcome, RefreshSuccess):
            self.reporter.log_event(
                REFRESH_SUCCESS_EVENT, {"KnowledgeBaseId": outcome.kb_id}
            )
            return

        self.reporter.log_event(
            REFRESH_FAILURE_EVENT,
            {
                "KnowledgeBaseId": outcome.kb_id,
                "LastRefreshDateTime": format_universal_sortable(
                    outcome.last_refresh_datetime
                ),
                "ErrorMessage": outcome.error_message,
            },
        )
        self.reporter.log_warning(
            f"Failed to refresh KB {outcome.kb_id}: {outcome.error_message}",
            error=outcome.error,
        )
