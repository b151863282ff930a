"""EMI application service - plans, approval, schedule and installment settlement"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Tuple
from sqlalchemy.orm import Session

from emi_engine.config import Settings, settings as default_settings
from emi_engine.domain import applications as lifecycle
from emi_engine.domain.amortization import calculate_emi_for_plan, validate_plan_definition
from emi_engine.domain.exceptions import (
    ConcurrentUpdateError,
    DomainException,
    NotFoundError,
    StateConflictError,
)
from emi_engine.domain.installments import generate_schedule
from emi_engine.domain.models import (
    ApplicationStatus,
    EmiApplication,
    EmiPlan,
    EmiQuote,
    Installment,
    NotificationChannel,
    NotificationType,
    PaymentInfo,
    PenaltyLedgerEntry,
)
from emi_engine.domain.penalty import is_open, mark_paid, open_ledger_entry, waive_penalty
from emi_engine.infrastructure.clients.eligibility import EligibilityClient
from emi_engine.infrastructure.database.repositories import (
    ApplicationRepository,
    LedgerRepository,
    PlanRepository,
)
from emi_engine.infrastructure.observability.logging import log_installment_payment
from emi_engine.infrastructure.observability.metrics import (
    application_decision_counter,
    installment_payment_counter,
    ledger_transition_counter,
)
from emi_engine.services.notifier import NotificationDispatcher, NotificationSink

logger = logging.getLogger(__name__)


def ensure_ledger_entry(
    db: Session,
    application: EmiApplication,
    installment: Installment,
    config: Settings = default_settings,
) -> Tuple[PenaltyLedgerEntry, bool]:
    """
    Fetch or lazily create the ledger entry of an installment.

    Returns (entry, created). The caller commits.

    Raises:
        ConcurrentUpdateError: Another writer created the entry for this installment first
    """
    repo = LedgerRepository(db)
    entry = repo.get_by_installment(application.id, installment.installment_number)
    if entry is not None:
        return entry, False

    entry = open_ledger_entry(
        application,
        installment,
        penalty_rate=Decimal(str(config.penalty_rate_percent)),
        grace_period_days=config.grace_period_days,
    )
    repo.add(entry)
    return entry, True


class EmiService:
    """Synchronous entry points used by the API and the payment feed"""

    def __init__(self, db: Session, config: Settings = default_settings):
        self.db = db
        self.settings = config
        self.plans = PlanRepository(db)
        self.applications = ApplicationRepository(db)
        self.ledger = LedgerRepository(db)

    # Plans

    def create_plan(self, plan: EmiPlan) -> EmiPlan:
        validate_plan_definition(plan, self.settings.allowed_tenures)
        self.plans.add(plan)
        self.db.commit()
        return plan

    def list_plans(self, amount: Optional[int] = None) -> List[Tuple[EmiPlan, Optional[EmiQuote]]]:
        """Active plans, each with its computed EMI when an order amount is given"""
        return [
            (plan, calculate_emi_for_plan(plan, amount, self.settings.allowed_tenures) if amount else None)
            for plan in self.plans.list_active(amount)
        ]

    def calculate_emi(self, plan_id: uuid.UUID, principal: int) -> EmiQuote:
        return calculate_emi_for_plan(self._require_plan(plan_id), principal, self.settings.allowed_tenures)

    # Applications

    def apply(self, user_id: str, order_id: str, plan_id: uuid.UUID, principal: int, now: datetime) -> EmiApplication:
        """Open a pending application; nothing is persisted when validation fails"""
        plan = self._require_plan(plan_id)
        application = lifecycle.create_application(
            plan, principal, user_id, order_id, now, self.settings.allowed_tenures
        )
        self.applications.add(application)
        self.db.commit()
        return application

    async def approve(self, application_id: uuid.UUID, eligibility: EligibilityClient, now: datetime) -> EmiApplication:
        """
        Run the eligibility check and move pending → approved (with schedule) or rejected.

        Raises:
            StateConflictError: Application is not pending
            EligibilityServiceError: Eligibility service unavailable; application stays pending
        """
        application = self._require_application(application_id)
        if application.status != ApplicationStatus.PENDING:
            raise StateConflictError(
                f"Application {application_id} is {application.status.value}, not pending"
            )

        decision = await eligibility.is_eligible(application.user_id, application.principal_amount)

        if decision.approved and application.principal_amount <= decision.credit_limit:
            lifecycle.approve_application(application, now, self.settings.installment_due_day)
            outcome = "approved"
        else:
            reason = (
                f"Amount {application.principal_amount} exceeds credit limit of {decision.credit_limit}"
                if decision.approved
                else "Eligibility check failed"
            )
            lifecycle.reject_application(application, reason, now)
            outcome = "rejected"

        self.applications.save(application)
        self.db.commit()
        application_decision_counter.labels(outcome=outcome).inc()
        logger.info(
            f"Application {outcome}",
            extra={"application_id": str(application.id), "user_id": application.user_id},
        )
        return application

    def generate_schedule(self, application_id: uuid.UUID, now: datetime) -> List[Installment]:
        """
        Regenerate the schedule of an approved application.

        Raises:
            StateConflictError: Not yet approved, an installment is no longer pending,
                or the ledger already tracks one of its installments
        """
        application = self._require_application(application_id)
        if application.status in (ApplicationStatus.PENDING, ApplicationStatus.REJECTED):
            raise StateConflictError(
                f"Application {application_id} is {application.status.value}; approve it before scheduling"
            )
        if self.ledger.exists_for_application(application_id):
            raise StateConflictError(
                f"Application {application_id} has ledger entries; schedule cannot be regenerated"
            )

        installments = generate_schedule(application, now.date(), self.settings.installment_due_day)
        self.applications.save(application)
        self.db.commit()
        return installments

    def activate(self, application_id: uuid.UUID, now: datetime) -> EmiApplication:
        """Disbursement: approved → active"""
        application = self._require_application(application_id)
        if lifecycle.activate_application(application, now):
            self.applications.save(application)
            self.db.commit()
        return application

    def record_installment_payment(
        self,
        application_id: uuid.UUID,
        installment_number: int,
        payment: PaymentInfo,
    ) -> EmiApplication:
        """
        Settle an installment from a payment confirmation and close its ledger entry.

        The payment path wins races with the batch: on an optimistic-lock
        conflict it reloads and re-applies itself.

        Raises:
            NotFoundError: Unknown application or installment
            StateConflictError: Installment already paid
            ConcurrentUpdateError: Still conflicting after the configured retries
        """
        attempts = max(1, self.settings.payment_conflict_retries)
        for attempt in range(1, attempts + 1):
            try:
                application, entry = self._settle_installment(application_id, installment_number, payment)
                self.db.commit()
            except ConcurrentUpdateError:
                self.db.rollback()
                if attempt == attempts:
                    installment_payment_counter.labels(outcome="conflict").inc()
                    raise
                logger.info(
                    f"Payment for application {application_id} lost a write race, retrying",
                    extra={"attempt": attempt},
                )
                continue
            except DomainException:
                self.db.rollback()
                raise

            installment_payment_counter.labels(outcome="paid").inc()
            log_installment_payment(
                application_id=str(application.id),
                installment_number=installment_number,
                transaction_id=payment.transaction_id,
                penalty_amount=entry.penalty_amount if entry else 0,
                application_status=application.status.value,
            )
            return application

    def _settle_installment(
        self,
        application_id: uuid.UUID,
        installment_number: int,
        payment: PaymentInfo,
    ) -> Tuple[EmiApplication, Optional[PenaltyLedgerEntry]]:
        application = self._require_application(application_id)
        lifecycle.record_installment_payment(application, installment_number, payment)
        self.applications.save(application)

        entry = self.ledger.get_by_installment(application.id, installment_number)
        if entry is not None and is_open(entry):
            mark_paid(entry, payment)
            self.ledger.save(entry)
            ledger_transition_counter.labels(status="paid").inc()
        return application, entry

    async def record_installment_failure(
        self,
        application_id: uuid.UUID,
        installment_number: int,
        now: datetime,
        sink: NotificationSink,
    ) -> EmiApplication:
        """
        Auto-debit failed: flag the installment and send `payment_failed` once.

        Raises:
            NotFoundError: Unknown application or installment
            StateConflictError: Installment already paid
        """
        application = self._require_application(application_id)
        try:
            installment = lifecycle.record_installment_failure(application, installment_number)
            self.applications.save(application)
            entry, _ = ensure_ledger_entry(self.db, application, installment, self.settings)
            self.db.commit()
        except DomainException:
            self.db.rollback()
            raise

        installment_payment_counter.labels(outcome="failed").inc()
        dispatcher = NotificationDispatcher(self.db, sink, NotificationChannel(self.settings.notification_channel))
        await dispatcher.dispatch(entry, NotificationType.PAYMENT_FAILED, now)
        return application

    def waive_penalty(self, entry_id: uuid.UUID, reason: str, waived_by: str, now: datetime) -> PenaltyLedgerEntry:
        """
        Administrative waiver of an unsettled entry.

        Raises:
            NotFoundError: Unknown ledger entry
            StateConflictError: Entry already paid or waived
        """
        entry = self._require_entry(entry_id)
        try:
            waive_penalty(entry, reason, waived_by, now)
            self.ledger.save(entry)
            self.db.commit()
        except DomainException:
            self.db.rollback()
            raise

        ledger_transition_counter.labels(status="waived").inc()
        logger.info(
            "Penalty waived",
            extra={"ledger_entry_id": str(entry.id), "waived_by": waived_by, "amount": entry.waived_penalty_amount},
        )
        return entry

    # Read accessors

    def get_application(self, application_id: uuid.UUID) -> EmiApplication:
        return self._require_application(application_id)

    def get_schedule(self, application_id: uuid.UUID) -> List[Installment]:
        return sorted(self._require_application(application_id).installments, key=lambda i: i.installment_number)

    def list_applications(self, user_id: str, limit: int = 20) -> List[EmiApplication]:
        return self.applications.list_by_user(user_id, limit)

    def get_penalty_snapshot(self, entry_id: uuid.UUID) -> PenaltyLedgerEntry:
        return self._require_entry(entry_id)

    def get_installment_penalty(self, application_id: uuid.UUID, installment_number: int) -> PenaltyLedgerEntry:
        entry = self.ledger.get_by_installment(application_id, installment_number)
        if entry is None:
            raise NotFoundError(
                f"No ledger entry for installment {installment_number} of application {application_id}"
            )
        return entry

    def _require_plan(self, plan_id: uuid.UUID) -> EmiPlan:
        plan = self.plans.get(plan_id)
        if plan is None:
            raise NotFoundError(f"EMI plan {plan_id} not found")
        return plan

    def _require_application(self, application_id: uuid.UUID) -> EmiApplication:
        application = self.applications.get(application_id)
        if application is None:
            raise NotFoundError(f"EMI application {application_id} not found")
        return application

    def _require_entry(self, entry_id: uuid.UUID) -> PenaltyLedgerEntry:
        entry = self.ledger.get(entry_id)
        if entry is None:
            raise NotFoundError(f"Ledger entry {entry_id} not found")
        return entry
