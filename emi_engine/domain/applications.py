"""EMI application lifecycle - creation, approval, settlement and status flags"""

from datetime import date, datetime
from typing import List, Optional, Sequence

from emi_engine.domain.amortization import ALLOWED_TENURES, calculate_emi_for_plan
from emi_engine.domain.exceptions import StateConflictError, NotFoundError, ValidationError
from emi_engine.domain.installments import DEFAULT_DUE_DAY, generate_schedule
from emi_engine.domain.models import (
    ApplicationStatus,
    EmiApplication,
    EmiPlan,
    Installment,
    InstallmentStatus,
    PaymentInfo,
)

# Installments may be settled in these states; defaulted is a risk flag, not a freeze
PAYABLE_STATUSES = frozenset(
    {ApplicationStatus.APPROVED, ApplicationStatus.ACTIVE, ApplicationStatus.DEFAULTED}
)


def create_application(
    plan: EmiPlan,
    principal: int,
    user_id: str,
    order_id: str,
    now: datetime,
    allowed_tenures: Sequence[int] = ALLOWED_TENURES,
) -> EmiApplication:
    """Price the principal on the plan and open a pending application"""
    if not user_id or not order_id:
        raise ValidationError("user_id and order_id are required")

    quote = calculate_emi_for_plan(plan, principal, allowed_tenures)

    return EmiApplication(
        user_id=user_id,
        order_id=order_id,
        plan_id=plan.id,
        principal_amount=principal,
        tenure=quote.tenure_months,
        monthly_emi=quote.monthly_emi,
        total_interest=quote.total_interest,
        processing_fee=quote.processing_fee,
        total_amount=quote.total_amount,
        created_at=now,
    )


def approve_application(
    application: EmiApplication,
    now: datetime,
    due_day: int = DEFAULT_DUE_DAY,
) -> List[Installment]:
    """pending → approved: stamp approved_at and generate the schedule"""
    if application.status != ApplicationStatus.PENDING:
        raise StateConflictError(
            f"Only pending applications can be approved, application {application.id} is {application.status.value}"
        )

    installments = generate_schedule(application, now.date(), due_day)
    application.status = ApplicationStatus.APPROVED
    application.approved_at = now
    return installments


def reject_application(application: EmiApplication, reason: str, now: datetime) -> None:
    """pending → rejected (terminal)"""
    if application.status != ApplicationStatus.PENDING:
        raise StateConflictError(
            f"Only pending applications can be rejected, application {application.id} is {application.status.value}"
        )
    application.status = ApplicationStatus.REJECTED
    application.rejected_at = now
    application.rejection_reason = reason


def activate_application(application: EmiApplication, now: datetime) -> bool:
    """
    approved → active once disbursed or once the first installment is due.

    Returns False when already active (or further along), so callers can re-run it.
    """
    if application.status == ApplicationStatus.APPROVED:
        application.status = ApplicationStatus.ACTIVE
        application.disbursed_at = application.disbursed_at or now
        return True
    if application.status in (ApplicationStatus.PENDING, ApplicationStatus.REJECTED):
        raise StateConflictError(
            f"Application {application.id} is {application.status.value} and cannot be activated"
        )
    return False


def first_pending_installment(application: EmiApplication) -> Optional[Installment]:
    for installment in sorted(application.installments, key=lambda i: i.installment_number):
        if installment.status == InstallmentStatus.PENDING:
            return installment
    return None


def refresh_next_due_date(application: EmiApplication) -> Optional[date]:
    """next_due_date always tracks the earliest pending installment"""
    installment = first_pending_installment(application)
    application.next_due_date = installment.due_date if installment else None
    return application.next_due_date


def _require_installment(application: EmiApplication, installment_number: int) -> Installment:
    installment = application.get_installment(installment_number)
    if installment is None:
        raise NotFoundError(
            f"Installment {installment_number} not found on application {application.id}"
        )
    return installment


def record_installment_payment(
    application: EmiApplication,
    installment_number: int,
    payment: PaymentInfo,
) -> Installment:
    """
    Settle one installment from a payment confirmation.

    Requirements:
    - paid_installments + remaining_installments == tenure after every payment
    - next_due_date moves to the next pending installment
    - Application completes when nothing remains (even if defaulted)

    Raises:
        NotFoundError: Unknown installment ordinal
        StateConflictError: Installment already paid, or application not payable
    """
    if application.status not in PAYABLE_STATUSES:
        raise StateConflictError(
            f"Application {application.id} is {application.status.value}; installments cannot be paid"
        )

    installment = _require_installment(application, installment_number)
    if installment.status == InstallmentStatus.PAID:
        raise StateConflictError(
            f"Installment {installment_number} of application {application.id} is already paid"
        )

    installment.status = InstallmentStatus.PAID
    installment.paid_date = payment.paid_at
    installment.transaction_id = payment.transaction_id
    installment.payment_method = payment.payment_method

    application.paid_installments += 1
    application.remaining_installments -= 1
    refresh_next_due_date(application)

    if application.remaining_installments == 0:
        application.status = ApplicationStatus.COMPLETED
        application.completed_at = payment.paid_at

    return installment


def record_installment_failure(application: EmiApplication, installment_number: int) -> Installment:
    """Auto-debit for an installment failed; it stays payable but is no longer pending"""
    if application.status not in PAYABLE_STATUSES:
        raise StateConflictError(
            f"Application {application.id} is {application.status.value}; payment failures cannot be recorded"
        )

    installment = _require_installment(application, installment_number)
    if installment.status == InstallmentStatus.PAID:
        raise StateConflictError(
            f"Installment {installment_number} of application {application.id} is already paid"
        )

    installment.status = InstallmentStatus.FAILED
    refresh_next_due_date(application)
    return installment


def mark_installment_overdue(application: EmiApplication, installment_number: int) -> bool:
    """Flag a missed installment; returns True if anything changed"""
    installment = application.get_installment(installment_number)
    if installment is None or installment.status not in (InstallmentStatus.PENDING, InstallmentStatus.FAILED):
        return False

    installment.status = InstallmentStatus.OVERDUE
    refresh_next_due_date(application)
    return True


def mark_defaulted(application: EmiApplication) -> bool:
    """Raise the defaulted risk flag; returns True if the status changed"""
    if application.status in (ApplicationStatus.APPROVED, ApplicationStatus.ACTIVE):
        application.status = ApplicationStatus.DEFAULTED
        return True
    return False
