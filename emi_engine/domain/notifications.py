"""Notification templates for EMI payment milestones"""

from datetime import date
from typing import Dict

from emi_engine.domain.models import NotificationType, PenaltyLedgerEntry

CURRENCY_SYMBOL = "₹"

TEMPLATES: Dict[NotificationType, Dict[str, str]] = {
    NotificationType.REMINDER_3_DAYS: {
        "title": "EMI Due in 3 Days",
        "body": "Keep {currency}{amount} ready in your bank for auto-debit on {dueDate}",
    },
    NotificationType.DUE_TODAY: {
        "title": "EMI Payment Today",
        "body": "Your EMI of {currency}{amount} will be auto-debited today",
    },
    NotificationType.PAYMENT_FAILED: {
        "title": "Payment Failed",
        "body": "EMI of {currency}{amount} failed. Pay manually within {graceDays} days to avoid penalty",
    },
    NotificationType.OVERDUE_1_DAY: {
        "title": "Payment Overdue",
        "body": "Your EMI is overdue. Pay {currency}{amount} now to avoid credit score impact",
    },
    NotificationType.OVERDUE_GRACE_ENDED: {
        "title": "Grace Period Ended",
        "body": "Late fee of {currency}{penalty} applied. Pay {currency}{totalAmount} now to close",
    },
}


def format_amount(amount: int) -> str:
    return f"{amount:,}"


def format_due_date(due_date: date) -> str:
    """e.g. 5 Feb"""
    return f"{due_date.day} {due_date.strftime('%b')}"


def build_substitutions(
    notification_type: NotificationType,
    entry: PenaltyLedgerEntry,
) -> Dict[str, str]:
    """Placeholder values for a milestone, taken from the ledger entry snapshot"""
    substitutions = {
        "currency": CURRENCY_SYMBOL,
        "amount": format_amount(entry.original_amount),
        "dueDate": format_due_date(entry.due_date),
        "installmentNumber": str(entry.installment_number),
    }
    if notification_type == NotificationType.PAYMENT_FAILED:
        substitutions["graceDays"] = str(entry.grace_period_days)
    if notification_type == NotificationType.OVERDUE_GRACE_ENDED:
        substitutions["penalty"] = format_amount(entry.penalty_amount)
        substitutions["totalAmount"] = format_amount(entry.total_payable)
    return substitutions


def render_notification(notification_type: NotificationType, substitutions: Dict[str, str]) -> Dict[str, str]:
    """Fill a template; unknown placeholders are left as-is"""
    template = TEMPLATES[notification_type]
    rendered = {}
    for part, text in template.items():
        for key, value in substitutions.items():
            text = text.replace(f"{{{key}}}", value)
        rendered[part] = text
    return rendered
