"""Data access layer mapping EMI aggregates to and from ORM records

Repositories flush but never commit; the calling service owns the transaction.
Applications and ledger entries are saved under an optimistic lock: the
version the caller loaded must still be current.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from emi_engine.domain.exceptions import ConcurrentUpdateError, NotFoundError
from emi_engine.domain.models import (
    ApplicationStatus,
    DeliveryStatus,
    EmiApplication,
    EmiPlan,
    Installment,
    InstallmentStatus,
    LedgerStatus,
    NotificationChannel,
    NotificationRecord,
    NotificationType,
    PenaltyLedgerEntry,
)
from emi_engine.infrastructure.database.models import (
    BatchRunRecord,
    EmiApplicationRecord,
    EmiInstallmentRecord,
    EmiPlanRecord,
    NotificationAttemptRecord,
    PenaltyLedgerRecord,
)


def _flush(db: Session, what: str) -> None:
    try:
        db.flush()
    except StaleDataError as e:
        raise ConcurrentUpdateError(f"{what} was modified concurrently") from e
    except IntegrityError as e:
        raise ConcurrentUpdateError(f"{what} conflicts with an existing record") from e


class PlanRepository:
    """Repository for EMI plan templates"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_domain(record: EmiPlanRecord) -> EmiPlan:
        return EmiPlan(
            id=record.id,
            name=record.name,
            tenure_months=record.tenure_months,
            interest_rate=record.interest_rate,
            processing_fee=record.processing_fee,
            min_order_amount=record.min_order_amount,
            max_order_amount=record.max_order_amount,
            is_active=record.is_active,
        )

    def add(self, plan: EmiPlan) -> EmiPlan:
        self.db.add(
            EmiPlanRecord(
                id=plan.id,
                name=plan.name,
                tenure_months=plan.tenure_months,
                interest_rate=plan.interest_rate,
                processing_fee=plan.processing_fee,
                min_order_amount=plan.min_order_amount,
                max_order_amount=plan.max_order_amount,
                is_active=plan.is_active,
            )
        )
        self.db.flush()
        return plan

    def get(self, plan_id: uuid.UUID) -> Optional[EmiPlan]:
        record = self.db.get(EmiPlanRecord, plan_id)
        return self._to_domain(record) if record else None

    def list_active(self, amount: Optional[int] = None) -> List[EmiPlan]:
        """Active plans, optionally only those whose bounds admit the amount"""
        query = self.db.query(EmiPlanRecord).filter(EmiPlanRecord.is_active.is_(True))
        if amount is not None:
            query = query.filter(
                EmiPlanRecord.min_order_amount <= amount,
                or_(EmiPlanRecord.max_order_amount.is_(None), EmiPlanRecord.max_order_amount >= amount),
            )
        return [self._to_domain(r) for r in query.order_by(EmiPlanRecord.tenure_months).all()]


class ApplicationRepository:
    """Repository for EMI applications and their embedded installments"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_domain(record: EmiApplicationRecord) -> EmiApplication:
        return EmiApplication(
            id=record.id,
            user_id=record.user_id,
            order_id=record.order_id,
            plan_id=record.plan_id,
            principal_amount=record.principal_amount,
            tenure=record.tenure,
            monthly_emi=record.monthly_emi,
            total_interest=record.total_interest,
            processing_fee=record.processing_fee,
            total_amount=record.total_amount,
            status=ApplicationStatus(record.status),
            installments=[
                Installment(
                    installment_number=i.installment_number,
                    due_date=i.due_date,
                    amount=i.amount,
                    status=InstallmentStatus(i.status),
                    paid_date=i.paid_date,
                    transaction_id=i.transaction_id,
                    payment_method=i.payment_method,
                )
                for i in record.installments
            ],
            paid_installments=record.paid_installments,
            remaining_installments=record.remaining_installments,
            next_due_date=record.next_due_date,
            created_at=record.created_at,
            approved_at=record.approved_at,
            disbursed_at=record.disbursed_at,
            completed_at=record.completed_at,
            rejected_at=record.rejected_at,
            rejection_reason=record.rejection_reason,
            version=record.version,
        )

    @staticmethod
    def _apply(record: EmiApplicationRecord, application: EmiApplication) -> None:
        record.status = application.status.value
        record.paid_installments = application.paid_installments
        record.remaining_installments = application.remaining_installments
        record.next_due_date = application.next_due_date
        record.approved_at = application.approved_at
        record.disbursed_at = application.disbursed_at
        record.completed_at = application.completed_at
        record.rejected_at = application.rejected_at
        record.rejection_reason = application.rejection_reason

        existing = {i.installment_number: i for i in record.installments}
        for installment in application.installments:
            row = existing.get(installment.installment_number)
            if row is None:
                row = EmiInstallmentRecord(installment_number=installment.installment_number)
                record.installments.append(row)
            row.due_date = installment.due_date
            row.amount = installment.amount
            row.status = installment.status.value
            row.paid_date = installment.paid_date
            row.transaction_id = installment.transaction_id
            row.payment_method = installment.payment_method

    def add(self, application: EmiApplication) -> EmiApplication:
        record = EmiApplicationRecord(
            id=application.id,
            user_id=application.user_id,
            order_id=application.order_id,
            plan_id=application.plan_id,
            principal_amount=application.principal_amount,
            total_interest=application.total_interest,
            processing_fee=application.processing_fee,
            total_amount=application.total_amount,
            tenure=application.tenure,
            monthly_emi=application.monthly_emi,
        )
        if application.created_at is not None:
            record.created_at = application.created_at
        self._apply(record, application)
        self.db.add(record)
        _flush(self.db, f"Application {application.id}")
        application.version = record.version
        return application

    def get(self, application_id: uuid.UUID) -> Optional[EmiApplication]:
        record = self.db.get(EmiApplicationRecord, application_id)
        return self._to_domain(record) if record else None

    def save(self, application: EmiApplication) -> EmiApplication:
        """
        Persist changes under the optimistic lock.

        Raises:
            NotFoundError: Application was never added
            ConcurrentUpdateError: Someone saved a newer version since it was loaded
        """
        record = self.db.get(EmiApplicationRecord, application.id)
        if record is None:
            raise NotFoundError(f"Application {application.id} not found")
        if record.version != application.version:
            raise ConcurrentUpdateError(
                f"Application {application.id} changed (version {record.version}, loaded {application.version})"
            )

        self._apply(record, application)
        _flush(self.db, f"Application {application.id}")
        application.version = record.version
        return application

    def list_by_user(self, user_id: str, limit: int = 20) -> List[EmiApplication]:
        records = (
            self.db.query(EmiApplicationRecord)
            .filter(EmiApplicationRecord.user_id == user_id)
            .order_by(EmiApplicationRecord.created_at.desc())
            .limit(limit)
            .all()
        )
        return [self._to_domain(r) for r in records]

    def find_by_next_due_date(
        self,
        due_date: date,
        statuses: Iterable[ApplicationStatus],
    ) -> List[EmiApplication]:
        records = (
            self.db.query(EmiApplicationRecord)
            .filter(
                EmiApplicationRecord.next_due_date == due_date,
                EmiApplicationRecord.status.in_([s.value for s in statuses]),
            )
            .all()
        )
        return [self._to_domain(r) for r in records]

    def find_past_due(self, today: date, statuses: Iterable[ApplicationStatus]) -> List[EmiApplication]:
        """Applications whose earliest pending installment is already behind today"""
        records = (
            self.db.query(EmiApplicationRecord)
            .filter(
                EmiApplicationRecord.next_due_date < today,
                EmiApplicationRecord.status.in_([s.value for s in statuses]),
            )
            .all()
        )
        return [self._to_domain(r) for r in records]

    def find_approved_due_by(self, cutoff: date) -> List[EmiApplication]:
        """Approved, not yet active applications whose first due date is on or before cutoff"""
        records = (
            self.db.query(EmiApplicationRecord)
            .filter(
                EmiApplicationRecord.status == ApplicationStatus.APPROVED.value,
                EmiApplicationRecord.next_due_date <= cutoff,
            )
            .all()
        )
        return [self._to_domain(r) for r in records]


class LedgerRepository:
    """Repository for penalty ledger entries and their notification log"""

    def __init__(self, db: Session):
        self.db = db

    @staticmethod
    def _to_domain(record: PenaltyLedgerRecord) -> PenaltyLedgerEntry:
        return PenaltyLedgerEntry(
            id=record.id,
            application_id=record.application_id,
            user_id=record.user_id,
            installment_number=record.installment_number,
            original_amount=record.original_amount,
            due_date=record.due_date,
            penalty_rate=Decimal(str(record.penalty_rate)),
            grace_period_days=record.grace_period_days,
            missed_date=record.missed_date,
            days_overdue=record.days_overdue,
            penalty_amount=record.penalty_amount,
            total_payable=record.total_payable,
            is_in_grace_period=record.is_in_grace_period,
            status=LedgerStatus(record.status),
            paid_amount=record.paid_amount,
            paid_date=record.paid_date,
            payment_reference=record.payment_reference,
            is_waived=record.is_waived,
            waiver_reason=record.waiver_reason,
            waived_by=record.waived_by,
            waived_at=record.waived_at,
            waived_penalty_amount=record.waived_penalty_amount,
            notifications=[
                NotificationRecord(
                    id=n.id,
                    notification_type=NotificationType(n.notification_type),
                    channel=NotificationChannel(n.channel),
                    sent_at=n.sent_at,
                    status=DeliveryStatus(n.status),
                )
                for n in record.notifications
            ],
            version=record.version,
        )

    @staticmethod
    def _apply(record: PenaltyLedgerRecord, entry: PenaltyLedgerEntry) -> None:
        record.missed_date = entry.missed_date
        record.days_overdue = entry.days_overdue
        record.penalty_amount = entry.penalty_amount
        record.total_payable = entry.total_payable
        record.is_in_grace_period = entry.is_in_grace_period
        record.status = entry.status.value
        record.paid_amount = entry.paid_amount
        record.paid_date = entry.paid_date
        record.payment_reference = entry.payment_reference
        record.is_waived = entry.is_waived
        record.waiver_reason = entry.waiver_reason
        record.waived_by = entry.waived_by
        record.waived_at = entry.waived_at
        record.waived_penalty_amount = entry.waived_penalty_amount

        # Notification log is append-only: new records are inserted, known ones only change status
        existing = {n.id: n for n in record.notifications}
        for notification in entry.notifications:
            row = existing.get(notification.id) if notification.id else None
            if row is None:
                notification.id = notification.id or uuid.uuid4()
                row = NotificationAttemptRecord(
                    id=notification.id,
                    sequence=len(record.notifications) + 1,
                    notification_type=notification.notification_type.value,
                    channel=notification.channel.value,
                    sent_at=notification.sent_at,
                )
                record.notifications.append(row)
            row.status = notification.status.value

    def add(self, entry: PenaltyLedgerEntry) -> PenaltyLedgerEntry:
        """
        Insert a new entry.

        Raises:
            ConcurrentUpdateError: An entry for the same (application, due date) already exists
        """
        record = PenaltyLedgerRecord(
            id=entry.id,
            application_id=entry.application_id,
            user_id=entry.user_id,
            installment_number=entry.installment_number,
            original_amount=entry.original_amount,
            due_date=entry.due_date,
            penalty_rate=float(entry.penalty_rate),
            grace_period_days=entry.grace_period_days,
        )
        self._apply(record, entry)
        self.db.add(record)
        _flush(self.db, f"Ledger entry for application {entry.application_id} due {entry.due_date}")
        entry.version = record.version
        return entry

    def get(self, entry_id: uuid.UUID) -> Optional[PenaltyLedgerEntry]:
        record = self.db.get(PenaltyLedgerRecord, entry_id)
        return self._to_domain(record) if record else None

    def get_by_installment(self, application_id: uuid.UUID, installment_number: int) -> Optional[PenaltyLedgerEntry]:
        record = (
            self.db.query(PenaltyLedgerRecord)
            .filter(
                PenaltyLedgerRecord.application_id == application_id,
                PenaltyLedgerRecord.installment_number == installment_number,
            )
            .first()
        )
        return self._to_domain(record) if record else None

    def exists_for_application(self, application_id: uuid.UUID) -> bool:
        return (
            self.db.query(PenaltyLedgerRecord.id)
            .filter(PenaltyLedgerRecord.application_id == application_id)
            .first()
            is not None
        )

    def save(self, entry: PenaltyLedgerEntry) -> PenaltyLedgerEntry:
        """
        Persist changes under the optimistic lock.

        Raises:
            NotFoundError: Entry was never added
            ConcurrentUpdateError: Someone (e.g. the payment path) saved a newer version
        """
        record = self.db.get(PenaltyLedgerRecord, entry.id)
        if record is None:
            raise NotFoundError(f"Ledger entry {entry.id} not found")
        if record.version != entry.version:
            raise ConcurrentUpdateError(
                f"Ledger entry {entry.id} changed (version {record.version}, loaded {entry.version})"
            )

        self._apply(record, entry)
        _flush(self.db, f"Ledger entry {entry.id}")
        entry.version = record.version
        return entry

    def find_open_due_before(self, today: date) -> List[PenaltyLedgerEntry]:
        """Unsettled entries whose due date has passed, oldest first"""
        records = (
            self.db.query(PenaltyLedgerRecord)
            .filter(
                PenaltyLedgerRecord.status.in_(
                    [LedgerStatus.PENDING.value, LedgerStatus.GRACE_PERIOD.value, LedgerStatus.OVERDUE.value]
                ),
                PenaltyLedgerRecord.due_date < today,
            )
            .order_by(PenaltyLedgerRecord.due_date)
            .all()
        )
        return [self._to_domain(r) for r in records]


class BatchRunRepository:
    """Repository for daily batch runs"""

    def __init__(self, db: Session):
        self.db = db

    def start_run(self, business_date: date, started_at: datetime, stale_before: datetime) -> uuid.UUID:
        """
        Claim the in-flight flag.

        Runs still marked running since before stale_before are abandoned first.

        Raises:
            ConcurrentUpdateError: Another run holds the flag
        """
        self.db.query(BatchRunRecord).filter(
            BatchRunRecord.status == "running",
            BatchRunRecord.started_at <= stale_before,
        ).update({BatchRunRecord.status: "abandoned"}, synchronize_session=False)

        record = BatchRunRecord(business_date=business_date, status="running", started_at=started_at)
        self.db.add(record)
        _flush(self.db, f"Batch run for {business_date}")
        return record.id

    def finish_run(self, run_id: uuid.UUID, status: str, finished_at: datetime, summary: dict) -> None:
        record = self.db.get(BatchRunRecord, run_id)
        if record is None:
            raise NotFoundError(f"Batch run {run_id} not found")
        record.status = status
        record.finished_at = finished_at
        record.summary = summary
        self.db.flush()

    def latest(self, limit: int = 10) -> List[BatchRunRecord]:
        return self.db.query(BatchRunRecord).order_by(BatchRunRecord.started_at.desc()).limit(limit).all()
