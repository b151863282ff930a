"""Unit tests for notification templates"""

import uuid
from datetime import date
from emi_engine.domain.models import LedgerStatus, NotificationType, PenaltyLedgerEntry
from emi_engine.domain.notifications import (
    TEMPLATES,
    build_substitutions,
    format_amount,
    format_due_date,
    render_notification,
)


def make_entry(**overrides) -> PenaltyLedgerEntry:
    values = dict(
        application_id=uuid.uuid4(),
        user_id="user_good",
        installment_number=2,
        original_amount=12500,
        due_date=date(2025, 3, 5),
        total_payable=12500,
    )
    values.update(overrides)
    return PenaltyLedgerEntry(**values)


def test_every_milestone_has_a_template():
    assert set(TEMPLATES) == set(NotificationType)


def test_format_amount_groups_thousands():
    assert format_amount(999) == "999"
    assert format_amount(12500) == "12,500"


def test_format_due_date():
    assert format_due_date(date(2025, 2, 5)) == "5 Feb"


def test_reminder_substitutions():
    subs = build_substitutions(NotificationType.REMINDER_3_DAYS, make_entry())

    assert subs["currency"] == "₹"
    assert subs["amount"] == "12,500"
    assert subs["dueDate"] == "5 Mar"
    assert subs["installmentNumber"] == "2"
    assert "penalty" not in subs


def test_reminder_renders():
    entry = make_entry()
    rendered = render_notification(
        NotificationType.REMINDER_3_DAYS,
        build_substitutions(NotificationType.REMINDER_3_DAYS, entry),
    )

    assert rendered["title"] == "EMI Due in 3 Days"
    assert rendered["body"] == "Keep ₹12,500 ready in your bank for auto-debit on 5 Mar"


def test_payment_failed_mentions_grace_days():
    entry = make_entry(grace_period_days=5)
    rendered = render_notification(
        NotificationType.PAYMENT_FAILED,
        build_substitutions(NotificationType.PAYMENT_FAILED, entry),
    )

    assert rendered["body"] == "EMI of ₹12,500 failed. Pay manually within 5 days to avoid penalty"


def test_grace_ended_carries_penalty_and_total():
    entry = make_entry(status=LedgerStatus.OVERDUE, penalty_amount=63, total_payable=12563)
    rendered = render_notification(
        NotificationType.OVERDUE_GRACE_ENDED,
        build_substitutions(NotificationType.OVERDUE_GRACE_ENDED, entry),
    )

    assert rendered["title"] == "Grace Period Ended"
    assert rendered["body"] == "Late fee of ₹63 applied. Pay ₹12,563 now to close"


def test_unknown_placeholders_left_as_is():
    rendered = render_notification(NotificationType.DUE_TODAY, {"currency": "₹"})
    assert rendered["body"] == "Your EMI of ₹{amount} will be auto-debited today"
