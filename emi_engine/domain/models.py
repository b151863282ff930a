"""Domain models - pure Python dataclasses representing business entities

Money amounts are integers in the plan's billing unit (e.g. whole rupees).
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional


class InstallmentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"
    FAILED = "failed"


class ApplicationStatus(str, Enum):
    PENDING = "pending"  # Awaiting eligibility check
    APPROVED = "approved"  # Eligible, schedule generated
    REJECTED = "rejected"  # Failed eligibility, terminal
    ACTIVE = "active"  # Disbursed, payments ongoing
    COMPLETED = "completed"  # All installments paid
    DEFAULTED = "defaulted"  # An installment went past its grace period unpaid


class LedgerStatus(str, Enum):
    PENDING = "pending"
    GRACE_PERIOD = "grace_period"
    OVERDUE = "overdue"
    PAID = "paid"
    WAIVED = "waived"


class NotificationType(str, Enum):
    REMINDER_3_DAYS = "reminder_3_days"
    DUE_TODAY = "due_today"
    PAYMENT_FAILED = "payment_failed"
    OVERDUE_1_DAY = "overdue_1_day"
    OVERDUE_GRACE_ENDED = "overdue_grace_ended"


class NotificationChannel(str, Enum):
    PUSH = "push"
    SMS = "sms"
    EMAIL = "email"
    WHATSAPP = "whatsapp"


class DeliveryStatus(str, Enum):
    QUEUED = "queued"  # Recorded, sink not called yet
    SENT = "sent"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass
class EmiPlan:
    """EMI plan template offered to buyers"""

    name: str
    tenure_months: int
    min_order_amount: int
    interest_rate: float = 0.0  # Annual %, 0 means no-cost EMI
    processing_fee: int = 0
    max_order_amount: Optional[int] = None
    is_active: bool = True
    id: uuid.UUID = field(default_factory=uuid.uuid4)


@dataclass
class EmiQuote:
    """Computed cost of financing a principal on a plan"""

    monthly_emi: int
    total_interest: int
    processing_fee: int
    total_amount: int
    tenure_months: int


@dataclass
class Installment:
    """Single payment in a repayment schedule"""

    installment_number: int
    due_date: date
    amount: int
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_date: Optional[datetime] = None
    transaction_id: Optional[str] = None
    payment_method: Optional[str] = None


@dataclass
class PaymentInfo:
    """Confirmation delivered by the payment feed for one installment"""

    transaction_id: str
    payment_method: str
    paid_at: datetime


@dataclass
class EmiApplication:
    """A buyer's EMI application and its installment schedule"""

    user_id: str
    order_id: str
    plan_id: uuid.UUID
    principal_amount: int
    tenure: int
    monthly_emi: int
    total_interest: int
    processing_fee: int
    total_amount: int
    status: ApplicationStatus = ApplicationStatus.PENDING
    installments: List[Installment] = field(default_factory=list)
    paid_installments: int = 0
    remaining_installments: int = 0
    next_due_date: Optional[date] = None
    created_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    disbursed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    version: int = 0

    def get_installment(self, installment_number: int) -> Optional[Installment]:
        for installment in self.installments:
            if installment.installment_number == installment_number:
                return installment
        return None


@dataclass
class NotificationRecord:
    """One notification attempt for a ledger entry milestone"""

    notification_type: NotificationType
    channel: NotificationChannel
    sent_at: datetime
    status: DeliveryStatus = DeliveryStatus.QUEUED
    id: Optional[uuid.UUID] = None


@dataclass
class PenaltyLedgerEntry:
    """Penalty tracking for one installment of one application"""

    application_id: uuid.UUID
    user_id: str
    installment_number: int
    original_amount: int
    due_date: date
    penalty_rate: Decimal = Decimal("0.1")  # % per day
    grace_period_days: int = 3
    missed_date: Optional[date] = None
    days_overdue: int = 0
    penalty_amount: int = 0
    total_payable: int = 0
    is_in_grace_period: bool = True
    status: LedgerStatus = LedgerStatus.PENDING

    # Settlement
    paid_amount: Optional[int] = None
    paid_date: Optional[datetime] = None
    payment_reference: Optional[str] = None

    # Waiver
    is_waived: bool = False
    waiver_reason: Optional[str] = None
    waived_by: Optional[str] = None
    waived_at: Optional[datetime] = None
    waived_penalty_amount: int = 0

    notifications: List[NotificationRecord] = field(default_factory=list)
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    version: int = 0

    def has_notification(self, notification_type: NotificationType) -> bool:
        return any(n.notification_type == notification_type for n in self.notifications)


@dataclass
class EligibilityDecision:
    """Answer from the external eligibility/credit service"""

    approved: bool
    credit_limit: int


@dataclass
class DeliveryResult:
    """Answer from the notification sink"""

    delivered: bool
    reference: Optional[str] = None


@dataclass
class BatchRunSummary:
    """Outcome counters for one daily batch run"""

    business_date: date
    started_at: datetime
    finished_at: Optional[datetime] = None
    skipped: bool = False
    applications_activated: int = 0
    upcoming_reminders: int = 0
    due_today_reminders: int = 0
    ledger_entries_created: int = 0
    entries_processed: int = 0
    grace_period_transitions: int = 0
    overdue_transitions: int = 0
    notifications_sent: int = 0
    notification_failures: int = 0
    entry_failures: int = 0
    pass_failures: int = 0

    def as_dict(self) -> dict:
        return {
            "business_date": self.business_date.isoformat(),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "skipped": self.skipped,
            "applications_activated": self.applications_activated,
            "upcoming_reminders": self.upcoming_reminders,
            "due_today_reminders": self.due_today_reminders,
            "ledger_entries_created": self.ledger_entries_created,
            "entries_processed": self.entries_processed,
            "grace_period_transitions": self.grace_period_transitions,
            "overdue_transitions": self.overdue_transitions,
            "notifications_sent": self.notifications_sent,
            "notification_failures": self.notification_failures,
            "entry_failures": self.entry_failures,
            "pass_failures": self.pass_failures,
        }
