"""Penalty ledger state machine and late-fee calculation

pending ──(day after due)──▶ grace_period ──(grace ends)──▶ overdue
   │                               │                           │
   └───────────────┬───────────────┴─────────────┬─────────────┘
                   ▼                             ▼
                 paid                          waived

Penalty is simple interest on the original installment, linear in days
overdue, recomputed from scratch for a given business date.
"""

from datetime import date, datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import List, Tuple

from emi_engine.domain.exceptions import StateConflictError
from emi_engine.domain.models import (
    DeliveryStatus,
    EmiApplication,
    Installment,
    LedgerStatus,
    NotificationChannel,
    NotificationRecord,
    NotificationType,
    PaymentInfo,
    PenaltyLedgerEntry,
)

DEFAULT_PENALTY_RATE = Decimal("0.1")
DEFAULT_GRACE_PERIOD_DAYS = 3

OPEN_STATUSES = frozenset({LedgerStatus.PENDING, LedgerStatus.GRACE_PERIOD, LedgerStatus.OVERDUE})

ALLOWED_TRANSITIONS = {
    LedgerStatus.PENDING: {LedgerStatus.GRACE_PERIOD, LedgerStatus.OVERDUE, LedgerStatus.PAID, LedgerStatus.WAIVED},
    LedgerStatus.GRACE_PERIOD: {LedgerStatus.OVERDUE, LedgerStatus.PAID, LedgerStatus.WAIVED},
    LedgerStatus.OVERDUE: {LedgerStatus.PAID, LedgerStatus.WAIVED},
    LedgerStatus.PAID: set(),
    LedgerStatus.WAIVED: set(),
}

Transition = Tuple[LedgerStatus, LedgerStatus]


def open_ledger_entry(
    application: EmiApplication,
    installment: Installment,
    penalty_rate: Decimal = DEFAULT_PENALTY_RATE,
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
) -> PenaltyLedgerEntry:
    """New pending entry; original_amount is a copy and never follows later installment edits"""
    return PenaltyLedgerEntry(
        application_id=application.id,
        user_id=application.user_id,
        installment_number=installment.installment_number,
        original_amount=installment.amount,
        due_date=installment.due_date,
        penalty_rate=Decimal(str(penalty_rate)),
        grace_period_days=grace_period_days,
        total_payable=installment.amount,
    )


def is_open(entry: PenaltyLedgerEntry) -> bool:
    return entry.status in OPEN_STATUSES


def penalty_start_date(entry: PenaltyLedgerEntry) -> date:
    """
    First day a penalty can accrue.

    The due date is payable through its end, and so is every grace day, so
    with grace 3 and due D: D+1..D+3 are grace, D+4 is day 0 of overdue.
    """
    return entry.due_date + timedelta(days=entry.grace_period_days + 1)


def _transition(entry: PenaltyLedgerEntry, target: LedgerStatus) -> Transition:
    if target not in ALLOWED_TRANSITIONS[entry.status]:
        raise StateConflictError(
            f"Ledger entry {entry.id} cannot move from {entry.status.value} to {target.value}"
        )
    previous = entry.status
    entry.status = target
    return previous, target


def calculate_penalty(entry: PenaltyLedgerEntry, today: date) -> int:
    """
    Recompute the penalty for a business date.

    daysOverdue = today - penalty_start_date
    penalty     = round_half_up(original * rate / 100 * daysOverdue)

    Only overdue entries accrue. Paid/waived entries return their frozen value
    untouched; pending/grace entries carry no penalty.
    """
    if entry.status in (LedgerStatus.PAID, LedgerStatus.WAIVED):
        return entry.penalty_amount

    days = (today - penalty_start_date(entry)).days
    if entry.status != LedgerStatus.OVERDUE or days < 0:
        entry.days_overdue = 0
        entry.penalty_amount = 0
        entry.total_payable = entry.original_amount
        return 0

    penalty = (Decimal(entry.original_amount) * entry.penalty_rate / 100 * days).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    entry.days_overdue = days
    entry.penalty_amount = int(penalty)
    entry.total_payable = entry.original_amount + entry.penalty_amount
    return entry.penalty_amount


def enter_grace_period(entry: PenaltyLedgerEntry, today: date) -> Transition:
    """pending → grace_period, from the day after the due date"""
    if today <= entry.due_date:
        raise StateConflictError(f"Ledger entry {entry.id} is not past its due date {entry.due_date}")
    transition = _transition(entry, LedgerStatus.GRACE_PERIOD)
    entry.is_in_grace_period = True
    return transition


def end_grace_period(entry: PenaltyLedgerEntry, today: date) -> Transition:
    """grace_period → overdue: record the miss and compute the first penalty"""
    if today < penalty_start_date(entry):
        raise StateConflictError(f"Ledger entry {entry.id} is still within its grace period")
    transition = _transition(entry, LedgerStatus.OVERDUE)
    entry.is_in_grace_period = False
    entry.missed_date = entry.due_date
    calculate_penalty(entry, today)
    return transition


def advance_ledger_entry(entry: PenaltyLedgerEntry, today: date) -> List[Transition]:
    """
    Apply every transition due by a business date, in order.

    Returns the transitions taken. Terminal entries are left untouched, so a
    batch racing a payment never changes a paid entry.
    """
    if not is_open(entry):
        return []

    transitions: List[Transition] = []
    if entry.status == LedgerStatus.PENDING and today > entry.due_date:
        transitions.append(enter_grace_period(entry, today))

    if entry.status == LedgerStatus.GRACE_PERIOD and today >= penalty_start_date(entry):
        transitions.append(end_grace_period(entry, today))
    elif entry.status == LedgerStatus.OVERDUE:
        calculate_penalty(entry, today)

    return transitions


def mark_paid(entry: PenaltyLedgerEntry, payment: PaymentInfo) -> Transition:
    """Settle the entry, freezing the penalty at its last computed value"""
    transition = _transition(entry, LedgerStatus.PAID)
    entry.is_in_grace_period = False
    entry.paid_amount = entry.total_payable
    entry.paid_date = payment.paid_at
    entry.payment_reference = payment.transaction_id
    return transition


def waive_penalty(entry: PenaltyLedgerEntry, reason: str, waived_by: str, now: datetime) -> Transition:
    """Forgive the penalty; the forgiven amount is kept for audit"""
    transition = _transition(entry, LedgerStatus.WAIVED)
    entry.is_in_grace_period = False
    entry.is_waived = True
    entry.waiver_reason = reason
    entry.waived_by = waived_by
    entry.waived_at = now
    entry.waived_penalty_amount = entry.penalty_amount
    entry.penalty_amount = 0
    entry.total_payable = entry.original_amount
    return transition


def log_notification(
    entry: PenaltyLedgerEntry,
    notification_type: NotificationType,
    channel: NotificationChannel,
    now: datetime,
) -> NotificationRecord:
    """Append a queued notification record; at most one per milestone type"""
    if entry.has_notification(notification_type):
        raise StateConflictError(
            f"Notification {notification_type.value} already logged for ledger entry {entry.id}"
        )
    record = NotificationRecord(
        notification_type=notification_type,
        channel=channel,
        sent_at=now,
        status=DeliveryStatus.QUEUED,
    )
    entry.notifications.append(record)
    return record
