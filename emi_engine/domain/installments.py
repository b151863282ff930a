"""Installment schedule generation for EMI repayment"""

from datetime import date
from typing import List
from dateutil.relativedelta import relativedelta

from emi_engine.domain.exceptions import StateConflictError, ValidationError
from emi_engine.domain.models import EmiApplication, Installment, InstallmentStatus

DEFAULT_DUE_DAY = 5


def split_amount(total: int, parts: int) -> List[int]:
    """
    Split a total into equal parts, last part absorbing the remainder.

    Example:
        3103 / 3 → [1034, 1034, 1035]
    """
    base_amount = total // parts
    remainder = total % parts
    return [base_amount + (remainder if i == parts - 1 else 0) for i in range(parts)]


def installment_due_dates(generated_on: date, tenure: int, due_day: int = DEFAULT_DUE_DAY) -> List[date]:
    """
    Due dates pinned to one day of month, starting the month after generation.

    Calendar-month arithmetic: Jan 10 → Feb 5, Mar 5, Apr 5. Jan 31 → Feb 5.
    """
    return [generated_on + relativedelta(months=i, day=due_day) for i in range(1, tenure + 1)]


def generate_schedule(
    application: EmiApplication,
    generated_on: date,
    due_day: int = DEFAULT_DUE_DAY,
) -> List[Installment]:
    """
    Materialize the installment schedule of an application.

    Requirements:
    - One installment per ordinal 1..tenure, all pending
    - Amounts sum to principal + total_interest (equal to monthly_emi, remainder on the last)
    - Counters reset: paid 0, remaining tenure, next_due_date = first due date

    Raises:
        StateConflictError: If any installment is no longer pending
    """
    settled = [i.installment_number for i in application.installments if i.status != InstallmentStatus.PENDING]
    if settled:
        raise StateConflictError(
            f"Application {application.id} has installments {settled} past pending; schedule cannot be regenerated"
        )
    if application.tenure <= 0:
        raise ValidationError(f"Tenure must be positive, got {application.tenure}")

    repayable = application.principal_amount + application.total_interest
    amounts = split_amount(repayable, application.tenure)
    due_dates = installment_due_dates(generated_on, application.tenure, due_day)

    installments = [
        Installment(installment_number=number, due_date=due_date, amount=amount)
        for number, (due_date, amount) in enumerate(zip(due_dates, amounts), start=1)
    ]

    application.installments = installments
    application.paid_installments = 0
    application.remaining_installments = application.tenure
    application.next_due_date = installments[0].due_date

    return installments
