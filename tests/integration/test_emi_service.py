"""Integration tests for the EMI application service"""

import uuid
import pytest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import AsyncMock
from sqlalchemy.orm import Session

from emi_engine.domain.exceptions import (
    ConcurrentUpdateError,
    EligibilityServiceError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from emi_engine.domain.models import (
    ApplicationStatus,
    DeliveryStatus,
    EligibilityDecision,
    EmiPlan,
    InstallmentStatus,
    LedgerStatus,
    NotificationType,
    PaymentInfo,
)
from emi_engine.domain.penalty import advance_ledger_entry, open_ledger_entry
from emi_engine.infrastructure.database.models import PenaltyLedgerRecord
from emi_engine.infrastructure.database.repositories import LedgerRepository
from emi_engine.services.applications import EmiService, ensure_ledger_entry
from emi_engine.services.batch import run_daily_batch

NOW = datetime(2025, 1, 10, 9, 0, tzinfo=timezone.utc)


def eligibility(approved: bool = True, credit_limit: int = 100000) -> AsyncMock:
    client = AsyncMock()
    client.is_eligible.return_value = EligibilityDecision(approved=approved, credit_limit=credit_limit)
    return client


def payment(tx: str = "tx_1") -> PaymentInfo:
    return PaymentInfo(transaction_id=tx, payment_method="upi", paid_at=datetime(2025, 2, 5, 10, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(db: Session) -> EmiService:
    return EmiService(db)


@pytest.fixture
def plan(service: EmiService, interest_plan: EmiPlan) -> EmiPlan:
    return service.create_plan(interest_plan)


def test_create_plan_rejects_bad_tenure(service: EmiService):
    with pytest.raises(ValidationError):
        service.create_plan(EmiPlan(name="7 Month", tenure_months=7, min_order_amount=1000))
    assert service.list_plans() == []


def test_list_plans_with_amount(service: EmiService, plan: EmiPlan, no_cost_plan: EmiPlan):
    service.create_plan(no_cost_plan)
    service.create_plan(EmiPlan(name="Big ticket", tenure_months=12, min_order_amount=50000, interest_rate=14))

    results = service.list_plans(6000)

    assert [p.name for p, _ in results] == ["3 Month No-Cost EMI", "6 Month EMI"]
    assert [q.monthly_emi for _, q in results] == [2000, 1036]


def test_list_plans_without_amount(service: EmiService, plan: EmiPlan):
    results = service.list_plans()
    assert [(p.id, q) for p, q in results] == [(plan.id, None)]


def test_calculate_emi(service: EmiService, plan: EmiPlan):
    assert service.calculate_emi(plan.id, 6000).total_amount == 6315


def test_calculate_emi_unknown_plan(service: EmiService):
    with pytest.raises(NotFoundError):
        service.calculate_emi(uuid.uuid4(), 6000)


def test_apply_persists_pending(service: EmiService, plan: EmiPlan):
    application = service.apply("user_good", "order-1", plan.id, 6000, NOW)

    stored = service.get_application(application.id)
    assert stored.status == ApplicationStatus.PENDING
    assert stored.total_amount == 6315
    assert stored.installments == []


def test_apply_out_of_bounds_persists_nothing(service: EmiService, plan: EmiPlan):
    with pytest.raises(ValidationError):
        service.apply("user_good", "order-1", plan.id, 500, NOW)
    assert service.list_applications("user_good") == []


async def test_approve_generates_schedule(service: EmiService, plan: EmiPlan):
    application = service.apply("user_good", "order-1", plan.id, 6000, NOW)

    approved = await service.approve(application.id, eligibility(), NOW)

    assert approved.status == ApplicationStatus.APPROVED
    schedule = service.get_schedule(application.id)
    assert len(schedule) == 6
    assert schedule[0].due_date == date(2025, 2, 5)
    assert sum(i.amount for i in schedule) == 6216


async def test_approve_over_credit_limit_rejects(service: EmiService, plan: EmiPlan):
    application = service.apply("user_thin", "order-1", plan.id, 6000, NOW)

    rejected = await service.approve(application.id, eligibility(credit_limit=5000), NOW)

    assert rejected.status == ApplicationStatus.REJECTED
    assert "credit limit" in rejected.rejection_reason
    assert service.get_schedule(application.id) == []


async def test_approve_ineligible_rejects(service: EmiService, plan: EmiPlan):
    application = service.apply("user_blocked", "order-1", plan.id, 6000, NOW)

    rejected = await service.approve(application.id, eligibility(approved=False, credit_limit=0), NOW)

    assert rejected.rejection_reason == "Eligibility check failed"


async def test_approve_when_eligibility_down_keeps_pending(service: EmiService, plan: EmiPlan):
    application = service.apply("user_good", "order-1", plan.id, 6000, NOW)
    client = AsyncMock()
    client.is_eligible.side_effect = EligibilityServiceError("timeout")

    with pytest.raises(EligibilityServiceError):
        await service.approve(application.id, client, NOW)
    assert service.get_application(application.id).status == ApplicationStatus.PENDING


async def test_approve_twice_conflicts(service: EmiService, plan: EmiPlan):
    application = service.apply("user_good", "order-1", plan.id, 6000, NOW)
    await service.approve(application.id, eligibility(), NOW)

    with pytest.raises(StateConflictError):
        await service.approve(application.id, eligibility(), NOW)


def test_generate_schedule_requires_approval(service: EmiService, plan: EmiPlan):
    application = service.apply("user_good", "order-1", plan.id, 6000, NOW)
    with pytest.raises(StateConflictError):
        service.generate_schedule(application.id, NOW)


async def test_regenerate_schedule_after_missed_installment_conflicts(
    db: Session,
    service: EmiService,
    sink,
    make_active_application,
):
    """A missed installment keeps its due date and its single ledger entry"""
    application = make_active_application()
    await run_daily_batch(datetime(2025, 2, 9, 9, 0, tzinfo=timezone.utc), db, sink)

    with pytest.raises(StateConflictError):
        service.generate_schedule(application.id, datetime(2025, 2, 20, 9, 0, tzinfo=timezone.utc))

    schedule = service.get_schedule(application.id)
    assert schedule[0].status == InstallmentStatus.OVERDUE
    assert schedule[0].due_date == date(2025, 2, 5)

    service.record_installment_payment(application.id, 1, payment())
    await run_daily_batch(datetime(2025, 3, 15, 9, 0, tzinfo=timezone.utc), db, sink)

    rows = (
        db.query(PenaltyLedgerRecord)
        .filter(PenaltyLedgerRecord.application_id == application.id, PenaltyLedgerRecord.installment_number == 1)
        .all()
    )
    assert [r.status for r in rows] == ["paid"]
    assert sink.types().count("overdue_grace_ended") == 2  # installments 1 and 2, once each


def test_regenerate_schedule_with_ledger_entry_conflicts(db: Session, service: EmiService, make_active_application):
    application = make_active_application()
    ensure_ledger_entry(db, application, application.installments[0])
    db.commit()

    with pytest.raises(StateConflictError):
        service.generate_schedule(application.id, NOW + timedelta(days=10))
    assert service.get_schedule(application.id)[0].due_date == date(2025, 2, 5)


def test_second_ledger_entry_for_installment_rejected(db: Session, make_active_application):
    application = make_active_application()
    repo = LedgerRepository(db)
    repo.add(open_ledger_entry(application, application.installments[0]))
    db.commit()

    duplicate = open_ledger_entry(application, application.installments[0])
    duplicate.due_date = date(2025, 2, 20)
    with pytest.raises(ConcurrentUpdateError):
        repo.add(duplicate)
    db.rollback()

    assert repo.get_by_installment(application.id, 1).due_date == date(2025, 2, 5)


def test_payment_settles_installment_and_ledger(db: Session, service: EmiService, make_active_application):
    application = make_active_application()
    entry, created = ensure_ledger_entry(db, application, application.installments[0])
    db.commit()
    assert created is True

    paid = service.record_installment_payment(application.id, 1, payment())

    assert paid.paid_installments == 1
    assert paid.remaining_installments == 2
    assert paid.next_due_date == date(2025, 3, 5)
    assert paid.get_installment(1).status == InstallmentStatus.PAID

    entry = service.get_installment_penalty(application.id, 1)
    assert entry.status == LedgerStatus.PAID
    assert entry.paid_amount == 1000
    assert entry.payment_reference == "tx_1"


def test_payment_closes_overdue_entry_with_penalty(db: Session, service: EmiService, make_active_application):
    application = make_active_application()
    entry, _ = ensure_ledger_entry(db, application, application.installments[0])
    advance_ledger_entry(entry, date(2025, 2, 15))  # 6 days past penalty start
    LedgerRepository(db).save(entry)
    db.commit()

    service.record_installment_payment(application.id, 1, payment())

    entry = service.get_installment_penalty(application.id, 1)
    assert entry.status == LedgerStatus.PAID
    assert entry.penalty_amount == 6
    assert entry.paid_amount == 1006


def test_payment_without_ledger_entry(service: EmiService, make_active_application):
    """Installments paid before any reminder never get a ledger entry"""
    application = make_active_application()

    service.record_installment_payment(application.id, 1, payment())

    with pytest.raises(NotFoundError):
        service.get_installment_penalty(application.id, 1)


def test_full_repayment_completes(service: EmiService, make_active_application):
    application = make_active_application()
    for number in (1, 2, 3):
        application = service.record_installment_payment(application.id, number, payment(f"tx_{number}"))
        assert application.paid_installments + application.remaining_installments == application.tenure

    stored = service.get_application(application.id)
    assert stored.status == ApplicationStatus.COMPLETED
    assert stored.next_due_date is None


def test_duplicate_payment_conflicts(service: EmiService, make_active_application):
    application = make_active_application()
    service.record_installment_payment(application.id, 1, payment())

    with pytest.raises(StateConflictError):
        service.record_installment_payment(application.id, 1, payment("tx_dup"))
    assert service.get_application(application.id).paid_installments == 1


def test_payment_for_unknown_installment(service: EmiService, make_active_application):
    application = make_active_application()
    with pytest.raises(NotFoundError):
        service.record_installment_payment(application.id, 9, payment())


def test_payment_retries_after_write_conflict(
    service: EmiService,
    make_active_application,
    monkeypatch: pytest.MonkeyPatch,
):
    application = make_active_application()
    save = service.applications.save
    calls = []

    def conflict_once(app):
        calls.append(app.id)
        if len(calls) == 1:
            raise ConcurrentUpdateError("batch got there first")
        return save(app)

    monkeypatch.setattr(service.applications, "save", conflict_once)
    paid = service.record_installment_payment(application.id, 1, payment())

    assert len(calls) == 2
    assert paid.paid_installments == 1


def test_payment_gives_up_after_retries(
    service: EmiService,
    make_active_application,
    monkeypatch: pytest.MonkeyPatch,
):
    application = make_active_application()

    def always_conflict(app):
        raise ConcurrentUpdateError("still racing")

    monkeypatch.setattr(service.applications, "save", always_conflict)
    with pytest.raises(ConcurrentUpdateError):
        service.record_installment_payment(application.id, 1, payment())

    monkeypatch.undo()
    assert service.get_application(application.id).paid_installments == 0


async def test_payment_failure_notifies_once(service: EmiService, sink, make_active_application):
    application = make_active_application()
    failed_at = datetime(2025, 2, 5, 11, 0, tzinfo=timezone.utc)

    updated = await service.record_installment_failure(application.id, 1, failed_at, sink)
    await service.record_installment_failure(application.id, 1, failed_at, sink)

    assert updated.get_installment(1).status == InstallmentStatus.FAILED
    assert updated.next_due_date == date(2025, 3, 5)
    assert sink.types() == ["payment_failed"]
    assert sink.sent[0]["substitutions"]["graceDays"] == "3"

    entry = service.get_installment_penalty(application.id, 1)
    assert entry.has_notification(NotificationType.PAYMENT_FAILED)
    assert entry.notifications[0].status == DeliveryStatus.DELIVERED


async def test_payment_failure_after_payment_conflicts(service: EmiService, sink, make_active_application):
    application = make_active_application()
    service.record_installment_payment(application.id, 1, payment())

    with pytest.raises(StateConflictError):
        await service.record_installment_failure(application.id, 1, NOW, sink)
    assert sink.sent == []


def test_waive_penalty(db: Session, service: EmiService, make_active_application):
    application = make_active_application()
    entry, _ = ensure_ledger_entry(db, application, application.installments[0])
    advance_ledger_entry(entry, date(2025, 2, 19))
    LedgerRepository(db).save(entry)
    db.commit()

    waived = service.waive_penalty(entry.id, "Auto-debit outage", "ops@example.com", NOW + timedelta(days=40))

    assert waived.status == LedgerStatus.WAIVED
    assert waived.waived_penalty_amount == 10
    assert service.get_penalty_snapshot(entry.id).total_payable == 1000


def test_waive_paid_entry_conflicts(db: Session, service: EmiService, make_active_application):
    application = make_active_application()
    entry, _ = ensure_ledger_entry(db, application, application.installments[0])
    db.commit()
    service.record_installment_payment(application.id, 1, payment())

    with pytest.raises(StateConflictError):
        service.waive_penalty(entry.id, "late", "ops", NOW)
    assert service.get_penalty_snapshot(entry.id).status == LedgerStatus.PAID


def test_waive_unknown_entry(service: EmiService):
    with pytest.raises(NotFoundError):
        service.waive_penalty(uuid.uuid4(), "late", "ops", NOW)


def test_ensure_ledger_entry_is_idempotent(db: Session, make_active_application):
    application = make_active_application()
    first, created = ensure_ledger_entry(db, application, application.installments[0])
    db.commit()
    second, created_again = ensure_ledger_entry(db, application, application.installments[0])

    assert created is True
    assert created_again is False
    assert second.id == first.id
