"""Pydantic schemas for API request/response validation"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Literal, Optional

from emi_engine.domain.models import (
    BatchRunSummary,
    EmiApplication,
    EmiPlan,
    EmiQuote,
    Installment,
    PenaltyLedgerEntry,
)


class PlanCreateRequest(BaseModel):
    """Request body for POST /v1/plans"""

    name: str = Field(..., min_length=1)
    tenure_months: int = Field(..., description="One of 3, 6, 9, 12, 18, 24")
    interest_rate: float = Field(0.0, ge=0, description="Annual %, 0 for no-cost EMI")
    processing_fee: int = Field(0, ge=0)
    min_order_amount: int = Field(..., gt=0)
    max_order_amount: Optional[int] = Field(None, gt=0)
    is_active: bool = True


class PlanResponse(BaseModel):
    """Plan with its computed EMI when an order amount was given"""

    plan_id: str
    name: str
    tenure_months: int
    interest_rate: float
    processing_fee: int
    min_order_amount: int
    max_order_amount: Optional[int] = None
    is_active: bool
    calculated_emi: Optional[int] = None
    total_amount: Optional[int] = None

    @classmethod
    def from_domain(cls, plan: EmiPlan, quote: Optional[EmiQuote] = None) -> "PlanResponse":
        return cls(
            plan_id=str(plan.id),
            name=plan.name,
            tenure_months=plan.tenure_months,
            interest_rate=plan.interest_rate,
            processing_fee=plan.processing_fee,
            min_order_amount=plan.min_order_amount,
            max_order_amount=plan.max_order_amount,
            is_active=plan.is_active,
            calculated_emi=quote.monthly_emi if quote else None,
            total_amount=quote.total_amount if quote else None,
        )


class PlanListResponse(BaseModel):
    """Response for GET /v1/plans"""

    plans: List[PlanResponse]


class ApplicationRequest(BaseModel):
    """Request body for POST /v1/applications"""

    user_id: str = Field(..., min_length=1, description="User identifier")
    order_id: str = Field(..., min_length=1, description="Order being financed")
    plan_id: str = Field(..., description="EMI plan identifier")
    principal_amount: int = Field(..., gt=0, description="Amount to finance")


class InstallmentSchema(BaseModel):
    """Single installment in a repayment schedule"""

    installment_number: int
    due_date: date
    amount: int
    status: str
    paid_date: Optional[datetime] = None
    transaction_id: Optional[str] = None

    @classmethod
    def from_domain(cls, installment: Installment) -> "InstallmentSchema":
        return cls(
            installment_number=installment.installment_number,
            due_date=installment.due_date,
            amount=installment.amount,
            status=installment.status.value,
            paid_date=installment.paid_date,
            transaction_id=installment.transaction_id,
        )


class ApplicationResponse(BaseModel):
    """EMI application with its schedule"""

    application_id: str
    user_id: str
    order_id: str
    plan_id: str
    status: str
    principal_amount: int
    monthly_emi: int
    total_interest: int
    processing_fee: int
    total_amount: int
    tenure: int
    paid_installments: int
    remaining_installments: int
    next_due_date: Optional[date] = None
    rejection_reason: Optional[str] = None
    installments: List[InstallmentSchema]

    @classmethod
    def from_domain(cls, application: EmiApplication) -> "ApplicationResponse":
        return cls(
            application_id=str(application.id),
            user_id=application.user_id,
            order_id=application.order_id,
            plan_id=str(application.plan_id),
            status=application.status.value,
            principal_amount=application.principal_amount,
            monthly_emi=application.monthly_emi,
            total_interest=application.total_interest,
            processing_fee=application.processing_fee,
            total_amount=application.total_amount,
            tenure=application.tenure,
            paid_installments=application.paid_installments,
            remaining_installments=application.remaining_installments,
            next_due_date=application.next_due_date,
            rejection_reason=application.rejection_reason,
            installments=[InstallmentSchema.from_domain(i) for i in application.installments],
        )


class ApplicationListResponse(BaseModel):
    """Response for GET /v1/applications"""

    user_id: str
    applications: List[ApplicationResponse]


class ScheduleResponse(BaseModel):
    """Response for GET /v1/applications/{application_id}/schedule"""

    application_id: str
    installments: List[InstallmentSchema]


class PaymentRequest(BaseModel):
    """Payment confirmation for one installment"""

    transaction_id: str = Field(..., min_length=1)
    payment_method: Literal["upi", "card", "netbanking", "wallet"]
    paid_at: Optional[datetime] = None


class PaymentFailureRequest(BaseModel):
    """Auto-debit failure for one installment"""

    failed_at: Optional[datetime] = None


class NotificationSchema(BaseModel):
    notification_type: str
    channel: str
    sent_at: datetime
    status: str


class PenaltySnapshot(BaseModel):
    """Current penalty position of a ledger entry"""

    ledger_entry_id: str
    application_id: str
    installment_number: int
    status: str
    due_date: date
    missed_date: Optional[date] = None
    original_amount: int
    penalty_rate: float
    grace_period_days: int
    days_overdue: int
    penalty_amount: int
    total_payable: int
    is_in_grace_period: bool
    paid_amount: Optional[int] = None
    paid_date: Optional[datetime] = None
    payment_reference: Optional[str] = None
    is_waived: bool
    waiver_reason: Optional[str] = None
    waived_by: Optional[str] = None
    waived_penalty_amount: int
    notifications: List[NotificationSchema]

    @classmethod
    def from_domain(cls, entry: PenaltyLedgerEntry) -> "PenaltySnapshot":
        return cls(
            ledger_entry_id=str(entry.id),
            application_id=str(entry.application_id),
            installment_number=entry.installment_number,
            status=entry.status.value,
            due_date=entry.due_date,
            missed_date=entry.missed_date,
            original_amount=entry.original_amount,
            penalty_rate=float(entry.penalty_rate),
            grace_period_days=entry.grace_period_days,
            days_overdue=entry.days_overdue,
            penalty_amount=entry.penalty_amount,
            total_payable=entry.total_payable,
            is_in_grace_period=entry.is_in_grace_period,
            paid_amount=entry.paid_amount,
            paid_date=entry.paid_date,
            payment_reference=entry.payment_reference,
            is_waived=entry.is_waived,
            waiver_reason=entry.waiver_reason,
            waived_by=entry.waived_by,
            waived_penalty_amount=entry.waived_penalty_amount,
            notifications=[
                NotificationSchema(
                    notification_type=n.notification_type.value,
                    channel=n.channel.value,
                    sent_at=n.sent_at,
                    status=n.status.value,
                )
                for n in entry.notifications
            ],
        )


class WaiveRequest(BaseModel):
    """Administrative penalty waiver"""

    reason: str = Field(..., min_length=1)
    waived_by: str = Field(..., min_length=1)


class BatchRunRequest(BaseModel):
    """Optional synthetic clock for POST /v1/batch/run"""

    now: Optional[datetime] = None


class BatchRunResponse(BaseModel):
    """Summary of a daily batch run"""

    business_date: date
    skipped: bool
    applications_activated: int
    upcoming_reminders: int
    due_today_reminders: int
    ledger_entries_created: int
    entries_processed: int
    grace_period_transitions: int
    overdue_transitions: int
    notifications_sent: int
    notification_failures: int
    entry_failures: int
    pass_failures: int

    @classmethod
    def from_domain(cls, summary: BatchRunSummary) -> "BatchRunResponse":
        data = summary.as_dict()
        data.pop("started_at")
        data.pop("finished_at")
        return cls(**data)
