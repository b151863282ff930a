"""Daily reminder & penalty batch

One run = activation, then three idempotent passes:

1. Upcoming: applications due in N days get a ledger entry and `reminder_3_days`
2. Due today: applications due today get `due_today`
3. Overdue: every unsettled ledger entry past its due date advances through
   grace_period → overdue, with penalty recomputed from scratch

Every pass and every entry is isolated. A failing entry is rolled back,
counted and left for the next run; the run itself never raises.
"""

import logging
import time
from datetime import date, datetime, timedelta
from typing import Awaitable, Callable, List, Optional
from zoneinfo import ZoneInfo
from sqlalchemy.orm import Session

from emi_engine.config import Settings, settings as default_settings
from emi_engine.domain.applications import (
    activate_application,
    first_pending_installment,
    mark_defaulted,
    mark_installment_overdue,
)
from emi_engine.domain.exceptions import ConcurrentUpdateError
from emi_engine.domain.models import (
    ApplicationStatus,
    BatchRunSummary,
    EmiApplication,
    LedgerStatus,
    NotificationChannel,
    NotificationType,
    PenaltyLedgerEntry,
)
from emi_engine.domain.penalty import advance_ledger_entry, is_open, penalty_start_date
from emi_engine.infrastructure.database.repositories import (
    ApplicationRepository,
    BatchRunRepository,
    LedgerRepository,
)
from emi_engine.infrastructure.observability.logging import log_batch_run
from emi_engine.infrastructure.observability.metrics import (
    batch_entry_failures_counter,
    ledger_transition_counter,
    record_batch_run,
)
from emi_engine.services.applications import ensure_ledger_entry
from emi_engine.services.notifier import NotificationDispatcher, NotificationSink

logger = logging.getLogger(__name__)

# Defaulted applications keep receiving reminders; the flag is a risk signal, not a freeze
REMINDABLE_STATUSES = (ApplicationStatus.ACTIVE, ApplicationStatus.DEFAULTED)


def business_date(now: datetime, timezone_name: str) -> date:
    """Calendar date of an instant in the batch timezone; naive instants are taken as local"""
    if now.tzinfo is None:
        return now.date()
    return now.astimezone(ZoneInfo(timezone_name)).date()


class DailyBatchJob:
    """Runs the daily passes against one database session"""

    def __init__(self, db: Session, sink: NotificationSink, config: Settings = default_settings):
        self.db = db
        self.settings = config
        self.applications = ApplicationRepository(db)
        self.ledger = LedgerRepository(db)
        self.runs = BatchRunRepository(db)
        self.dispatcher = NotificationDispatcher(db, sink, NotificationChannel(config.notification_channel))

    async def run(self, now: datetime) -> BatchRunSummary:
        """
        Execute one run for the business date of `now`.

        Returns a summary with skipped=True if another run is still in flight.
        """
        start_time = time.time()
        today = business_date(now, self.settings.batch_timezone)
        summary = BatchRunSummary(business_date=today, started_at=now)

        stale_before = now - timedelta(minutes=self.settings.batch_stale_after_minutes)
        try:
            run_id = self.runs.start_run(today, now, stale_before)
            self.db.commit()
        except ConcurrentUpdateError:
            self.db.rollback()
            logger.info("Another batch run is in flight; skipping", extra={"business_date": str(today)})
            run_id = None
        except Exception:
            self.db.rollback()
            logger.exception("Could not record batch start; skipping run")
            run_id = None

        if run_id is None:
            summary.skipped = True
            summary.finished_at = now
            record_batch_run("skipped", 0.0)
            log_batch_run(summary, 0.0)
            return summary

        await self._run_pass("activation", self._activation_pass, today, now, summary)
        await self._run_pass("upcoming", self._upcoming_pass, today, now, summary)
        await self._run_pass("due_today", self._due_today_pass, today, now, summary)
        await self._run_pass("overdue", self._overdue_pass, today, now, summary)

        duration = time.time() - start_time
        summary.finished_at = now + timedelta(seconds=duration)
        outcome = "failed" if summary.pass_failures else "completed"
        try:
            self.runs.finish_run(run_id, outcome, summary.finished_at, summary.as_dict())
            self.db.commit()
        except Exception:
            # Stays "running" until stale; the next day's run is unaffected
            self.db.rollback()
            logger.exception("Could not record batch completion", extra={"run_id": str(run_id)})

        record_batch_run(outcome, duration)
        log_batch_run(summary, duration * 1000)
        return summary

    async def _run_pass(
        self,
        name: str,
        batch_pass: Callable[[date, datetime, BatchRunSummary], Awaitable[None]],
        today: date,
        now: datetime,
        summary: BatchRunSummary,
    ) -> None:
        try:
            await batch_pass(today, now, summary)
        except Exception:
            self.db.rollback()
            summary.pass_failures += 1
            logger.exception(f"Batch pass {name} aborted", extra={"batch_pass": name})

    def _entry_failed(self, batch_pass: str, key: str, summary: BatchRunSummary, error: Exception) -> None:
        self.db.rollback()
        summary.entry_failures += 1
        batch_entry_failures_counter.labels(batch_pass=batch_pass).inc()
        if isinstance(error, ConcurrentUpdateError):
            logger.info(f"Skipped {key}: {error}", extra={"batch_pass": batch_pass})
        else:
            logger.error(
                f"Failed to process {key}: {error}",
                extra={"batch_pass": batch_pass},
                exc_info=error,
            )

    async def _activation_pass(self, today: date, now: datetime, summary: BatchRunSummary) -> None:
        """Approved applications become active once their first installment nears"""
        cutoff = today + timedelta(days=self.settings.reminder_days_before_due)
        for application in self.applications.find_approved_due_by(cutoff):
            try:
                if activate_application(application, now):
                    self.applications.save(application)
                    self.db.commit()
                    summary.applications_activated += 1
            except Exception as e:
                self._entry_failed("activation", f"application {application.id}", summary, e)

    async def _upcoming_pass(self, today: date, now: datetime, summary: BatchRunSummary) -> None:
        due_date = today + timedelta(days=self.settings.reminder_days_before_due)
        summary.upcoming_reminders += await self._remind(
            "upcoming", due_date, NotificationType.REMINDER_3_DAYS, now, summary
        )

    async def _due_today_pass(self, today: date, now: datetime, summary: BatchRunSummary) -> None:
        summary.due_today_reminders += await self._remind(
            "due_today", today, NotificationType.DUE_TODAY, now, summary
        )

    async def _remind(
        self,
        batch_pass: str,
        due_date: date,
        notification_type: NotificationType,
        now: datetime,
        summary: BatchRunSummary,
    ) -> int:
        """Ensure a ledger entry and send one milestone reminder per application due on due_date"""
        sent = 0
        for application in self.applications.find_by_next_due_date(due_date, REMINDABLE_STATUSES):
            try:
                entry = self._ensure_entry(application, summary)
                if entry is None:
                    continue
                if await self._notify(entry, notification_type, now, summary):
                    sent += 1
            except Exception as e:
                self._entry_failed(batch_pass, f"application {application.id}", summary, e)
        return sent

    def _ensure_entry(self, application: EmiApplication, summary: BatchRunSummary) -> Optional[PenaltyLedgerEntry]:
        installment = first_pending_installment(application)
        if installment is None:
            return None
        entry, created = ensure_ledger_entry(self.db, application, installment, self.settings)
        if created:
            self.db.commit()
            summary.ledger_entries_created += 1
        return entry

    async def _notify(
        self,
        entry: PenaltyLedgerEntry,
        notification_type: NotificationType,
        now: datetime,
        summary: BatchRunSummary,
    ) -> bool:
        if entry.has_notification(notification_type):
            return False
        delivered = await self.dispatcher.dispatch(entry, notification_type, now)
        if delivered:
            summary.notifications_sent += 1
        else:
            summary.notification_failures += 1
        return delivered

    async def _overdue_pass(self, today: date, now: datetime, summary: BatchRunSummary) -> None:
        # Installments whose reminder windows were missed (runs skipped) still need an entry
        for application in self.applications.find_past_due(today, REMINDABLE_STATUSES):
            try:
                self._ensure_entry(application, summary)
            except Exception as e:
                self._entry_failed("overdue", f"application {application.id}", summary, e)

        entries: List[PenaltyLedgerEntry] = self.ledger.find_open_due_before(today)
        logger.info(f"Processing {len(entries)} unsettled ledger entries", extra={"batch_pass": "overdue"})

        for entry in entries:
            try:
                await self._advance_entry(entry, today, now, summary)
                summary.entries_processed += 1
            except Exception as e:
                self._entry_failed("overdue", f"ledger entry {entry.id}", summary, e)

    async def _advance_entry(
        self,
        entry: PenaltyLedgerEntry,
        today: date,
        now: datetime,
        summary: BatchRunSummary,
    ) -> None:
        """
        Advance one entry; a version conflict here means the payment path got
        there first and the entry is skipped.
        """
        if not is_open(entry):
            return

        for _, target in advance_ledger_entry(entry, today):
            ledger_transition_counter.labels(status=target.value).inc()
            if target == LedgerStatus.GRACE_PERIOD:
                summary.grace_period_transitions += 1
            elif target == LedgerStatus.OVERDUE:
                summary.overdue_transitions += 1

        self.ledger.save(entry)
        self.db.commit()

        if entry.status == LedgerStatus.GRACE_PERIOD and today < penalty_start_date(entry):
            await self._notify(entry, NotificationType.OVERDUE_1_DAY, now, summary)

        if entry.status == LedgerStatus.OVERDUE:
            self._flag_application(entry)
            await self._notify(entry, NotificationType.OVERDUE_GRACE_ENDED, now, summary)

    def _flag_application(self, entry: PenaltyLedgerEntry) -> None:
        """Overdue installment and defaulted application; re-asserted every run so a failed save heals"""
        application = self.applications.get(entry.application_id)
        if application is None:
            logger.warning(f"Ledger entry {entry.id} references missing application {entry.application_id}")
            return

        changed = mark_installment_overdue(application, entry.installment_number)
        if mark_defaulted(application):
            changed = True
            logger.warning(
                "Application defaulted",
                extra={"application_id": str(application.id), "ledger_entry_id": str(entry.id)},
            )
        if changed:
            self.applications.save(application)
            self.db.commit()


async def run_daily_batch(
    now: datetime,
    db: Session,
    sink: NotificationSink,
    config: Settings = default_settings,
) -> BatchRunSummary:
    """Externally-triggerable daily run; safe to call repeatedly for the same day"""
    return await DailyBatchJob(db, sink, config).run(now)
