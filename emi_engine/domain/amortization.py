"""EMI amortization math - fixed monthly payment for a principal, rate and tenure"""

from decimal import Decimal, ROUND_CEILING
from typing import Sequence

from emi_engine.domain.exceptions import ValidationError
from emi_engine.domain.models import EmiPlan, EmiQuote

ALLOWED_TENURES = (3, 6, 9, 12, 18, 24)


def calculate_emi(principal: int, annual_rate: float, tenure_months: int) -> int:
    """
    Fixed monthly payment, rounded up to the billing unit.

    - annual_rate == 0: no-cost EMI, ceil(P / N)
    - otherwise: reducing-balance annuity P * r * (1+r)^N / ((1+r)^N - 1)
      with r = annual_rate / 12 / 100

    Rounding is always a ceiling so the lender never loses to rounding.

    Example:
        6000 at 12% for 6 months → r = 0.01 → 1035.29 → 1036
    """
    if principal <= 0:
        raise ValidationError(f"Principal must be positive, got {principal}")
    if tenure_months <= 0:
        raise ValidationError(f"Tenure must be a positive number of months, got {tenure_months}")
    if annual_rate < 0:
        raise ValidationError(f"Interest rate cannot be negative, got {annual_rate}")

    if annual_rate == 0:
        # Integer ceiling division, no float involved
        return -(-principal // tenure_months)

    monthly_rate = Decimal(str(annual_rate)) / 12 / 100
    growth = (1 + monthly_rate) ** tenure_months
    emi = Decimal(principal) * monthly_rate * growth / (growth - 1)
    return int(emi.to_integral_value(rounding=ROUND_CEILING))


def validate_plan_definition(plan: EmiPlan, allowed_tenures: Sequence[int] = ALLOWED_TENURES) -> None:
    """Administrative checks on a plan template before it is offered"""
    if not plan.name:
        raise ValidationError("Plan name is required")
    if plan.tenure_months not in allowed_tenures:
        raise ValidationError(
            f"Tenure must be one of {', '.join(str(t) for t in allowed_tenures)} months, got {plan.tenure_months}"
        )
    if plan.interest_rate < 0:
        raise ValidationError("Interest rate cannot be negative")
    if plan.processing_fee < 0:
        raise ValidationError("Processing fee cannot be negative")
    if plan.min_order_amount <= 0:
        raise ValidationError("Minimum order amount must be positive")
    if plan.max_order_amount is not None and plan.max_order_amount < plan.min_order_amount:
        raise ValidationError("Maximum order amount cannot be below the minimum")


def validate_plan_terms(
    plan: EmiPlan,
    principal: int,
    allowed_tenures: Sequence[int] = ALLOWED_TENURES,
) -> None:
    """Reject (never clamp) a principal or tenure the plan does not allow"""
    if not plan.is_active:
        raise ValidationError(f"EMI plan '{plan.name}' is not active")
    if plan.tenure_months not in allowed_tenures:
        raise ValidationError(
            f"Tenure must be one of {', '.join(str(t) for t in allowed_tenures)} months, got {plan.tenure_months}"
        )
    if principal < plan.min_order_amount:
        raise ValidationError(f"Amount {principal} is below the plan minimum of {plan.min_order_amount}")
    if plan.max_order_amount is not None and principal > plan.max_order_amount:
        raise ValidationError(f"Amount {principal} exceeds the plan maximum of {plan.max_order_amount}")


def calculate_emi_for_plan(
    plan: EmiPlan,
    principal: int,
    allowed_tenures: Sequence[int] = ALLOWED_TENURES,
) -> EmiQuote:
    """
    Price a principal on a plan.

    total_interest is whatever the ceiled payments collect above the principal,
    so for a no-cost plan it is the (at most N-1) rounding surplus.
    The processing fee is charged on top and never split into installments.
    """
    validate_plan_terms(plan, principal, allowed_tenures)

    monthly_emi = calculate_emi(principal, plan.interest_rate, plan.tenure_months)
    repayable = monthly_emi * plan.tenure_months

    return EmiQuote(
        monthly_emi=monthly_emi,
        total_interest=repayable - principal,
        processing_fee=plan.processing_fee,
        total_amount=repayable + plan.processing_fee,
        tenure_months=plan.tenure_months,
    )
