"""SQLAlchemy ORM models for plans, applications, installments and the penalty ledger"""

import uuid
from sqlalchemy import (
    Column,
    String,
    BigInteger,
    Boolean,
    Float,
    DateTime,
    Date,
    Integer,
    ForeignKey,
    Text,
    JSON,
    Uuid,
    UniqueConstraint,
    Index,
    text,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

Base = declarative_base()


class EmiPlanRecord(Base):
    """EMI plan template"""

    __tablename__ = "emi_plan"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    tenure_months = Column(Integer, nullable=False)
    interest_rate = Column(Float, nullable=False, default=0.0)
    processing_fee = Column(BigInteger, nullable=False, default=0)
    min_order_amount = Column(BigInteger, nullable=False)
    max_order_amount = Column(BigInteger, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class EmiApplicationRecord(Base):
    """EMI application aggregate root; installments share its lifetime"""

    __tablename__ = "emi_application"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False, index=True)
    order_id = Column(Text, nullable=False)
    plan_id = Column(Uuid(as_uuid=True), ForeignKey("emi_plan.id"), nullable=False)
    principal_amount = Column(BigInteger, nullable=False)
    total_interest = Column(BigInteger, nullable=False, default=0)
    processing_fee = Column(BigInteger, nullable=False, default=0)
    total_amount = Column(BigInteger, nullable=False)
    tenure = Column(Integer, nullable=False)
    monthly_emi = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default="pending", index=True)
    paid_installments = Column(Integer, nullable=False, default=0)
    remaining_installments = Column(Integer, nullable=False, default=0)
    next_due_date = Column(Date, nullable=True, index=True)
    rejection_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    approved_at = Column(DateTime(timezone=True), nullable=True)
    disbursed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False)

    installments = relationship(
        "EmiInstallmentRecord",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="EmiInstallmentRecord.installment_number",
    )

    __mapper_args__ = {"version_id_col": version}


class EmiInstallmentRecord(Base):
    """Individual installment within an application schedule"""

    __tablename__ = "emi_installment"
    __table_args__ = (UniqueConstraint("application_id", "installment_number"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(
        Uuid(as_uuid=True), ForeignKey("emi_application.id", ondelete="CASCADE"), nullable=False
    )
    installment_number = Column(Integer, nullable=False)
    due_date = Column(Date, nullable=False)
    amount = Column(BigInteger, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    paid_date = Column(DateTime(timezone=True), nullable=True)
    transaction_id = Column(Text, nullable=True)
    payment_method = Column(Text, nullable=True)

    application = relationship("EmiApplicationRecord", back_populates="installments")


class PenaltyLedgerRecord(Base):
    """Penalty ledger entry; one per installment of an application"""

    __tablename__ = "penalty_ledger_entry"
    __table_args__ = (
        UniqueConstraint("application_id", "installment_number"),
        UniqueConstraint("application_id", "due_date"),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    application_id = Column(Uuid(as_uuid=True), ForeignKey("emi_application.id"), nullable=False, index=True)
    user_id = Column(Text, nullable=False, index=True)
    installment_number = Column(Integer, nullable=False)
    original_amount = Column(BigInteger, nullable=False)
    due_date = Column(Date, nullable=False, index=True)
    missed_date = Column(Date, nullable=True)
    penalty_rate = Column(Float, nullable=False, default=0.1)
    grace_period_days = Column(Integer, nullable=False, default=3)
    days_overdue = Column(Integer, nullable=False, default=0)
    penalty_amount = Column(BigInteger, nullable=False, default=0)
    total_payable = Column(BigInteger, nullable=False)
    is_in_grace_period = Column(Boolean, nullable=False, default=True)
    status = Column(String(20), nullable=False, default="pending", index=True)
    paid_amount = Column(BigInteger, nullable=True)
    paid_date = Column(DateTime(timezone=True), nullable=True)
    payment_reference = Column(Text, nullable=True)
    is_waived = Column(Boolean, nullable=False, default=False)
    waiver_reason = Column(Text, nullable=True)
    waived_by = Column(Text, nullable=True)
    waived_at = Column(DateTime(timezone=True), nullable=True)
    waived_penalty_amount = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=func.now())
    version = Column(Integer, nullable=False)

    notifications = relationship(
        "NotificationAttemptRecord",
        back_populates="ledger_entry",
        cascade="all, delete-orphan",
        order_by="NotificationAttemptRecord.sequence",
    )

    __mapper_args__ = {"version_id_col": version}


class NotificationAttemptRecord(Base):
    """Append-only notification log; the unique key is the at-most-once guard"""

    __tablename__ = "notification_attempt"
    __table_args__ = (UniqueConstraint("ledger_entry_id", "notification_type"),)

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ledger_entry_id = Column(
        Uuid(as_uuid=True), ForeignKey("penalty_ledger_entry.id", ondelete="CASCADE"), nullable=False
    )
    sequence = Column(Integer, nullable=False)
    notification_type = Column(String(40), nullable=False)
    channel = Column(String(20), nullable=False)
    sent_at = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default="queued")

    ledger_entry = relationship("PenaltyLedgerRecord", back_populates="notifications")


class BatchRunRecord(Base):
    """Daily batch run: in-flight flag while running, completion log afterwards

    At most one row may be running; the partial unique index makes claiming the
    flag a single atomic insert.
    """

    __tablename__ = "batch_run"
    __table_args__ = (
        Index(
            "uq_batch_run_in_flight",
            "status",
            unique=True,
            postgresql_where=text("status = 'running'"),
            sqlite_where=text("status = 'running'"),
        ),
    )

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    business_date = Column(Date, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="running", index=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    summary = Column(JSON, nullable=True)
