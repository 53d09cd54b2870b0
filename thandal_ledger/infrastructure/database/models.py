"""SQLAlchemy ORM models for loans, repayment rows and capital tracking"""

import uuid
from sqlalchemy import (
    BigInteger,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.sql import func

from thandal_ledger.domain.models import LoanStatus, RepaymentStatus

Base = declarative_base()


class Borrower(Base):
    """Borrower profile (managed elsewhere; the ledger only reads name/phone)"""

    __tablename__ = "borrower"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    phone_number = Column(Text, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loans = relationship("Loan", back_populates="borrower")


class Loan(Base):
    """Loan issued by a lender to a borrower"""

    __tablename__ = "loan"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrower.id", ondelete="CASCADE"), nullable=False, index=True)
    issued_by_id = Column(Text, nullable=False, index=True)
    principal_paise = Column(BigInteger, nullable=False)
    upfront_deducted_paise = Column(BigInteger, nullable=False, default=0)
    daily_repayment_paise = Column(BigInteger, nullable=False)
    pending_paise = Column(BigInteger, nullable=False)
    # Recovered before the loan was registered in the system (migrated loans only)
    recovered_before_registration_paise = Column(BigInteger, nullable=False, default=0)
    days_to_repay = Column(JSON, nullable=False)
    issued_at = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    status = Column(Text, nullable=False, default=LoanStatus.ACTIVE.value)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    borrower = relationship("Borrower", back_populates="loans")
    repayments = relationship(
        "Repayment",
        back_populates="loan",
        cascade="all, delete-orphan",
        order_by="Repayment.due_date",
    )


class Repayment(Base):
    """One scheduled due date of a loan; resolved exactly once"""

    __tablename__ = "repayment"
    __table_args__ = (
        UniqueConstraint("loan_id", "due_date", name="uq_repayment_loan_due_date"),
        Index("ix_repayment_status_due_date", "status", "due_date"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False)
    borrower_id = Column(UUID(as_uuid=True), ForeignKey("borrower.id", ondelete="CASCADE"), nullable=False, index=True)
    due_date = Column(Date, nullable=False)
    amount_due_paise = Column(BigInteger, nullable=False)
    amount_paid_paise = Column(BigInteger, nullable=False, default=0)
    status = Column(Text, nullable=False, default=RepaymentStatus.UNPAID.value)
    paid_at = Column(DateTime(timezone=True), nullable=True)
    paid_on = Column(Date, nullable=True, index=True)  # Business date of paid_at
    settled_day_close_id = Column(UUID(as_uuid=True), ForeignKey("day_close.id"), nullable=True, index=True)  # Day-close that counted this cash
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    loan = relationship("Loan", back_populates="repayments")
    borrower = relationship("Borrower")


class PaymentReceipt(Base):
    """Idempotency record: one client key resolves at most one payment"""

    __tablename__ = "payment_receipt"

    idempotency_key = Column(Text, primary_key=True)
    loan_id = Column(UUID(as_uuid=True), ForeignKey("loan.id", ondelete="CASCADE"), nullable=False)
    repayment_id = Column(UUID(as_uuid=True), ForeignKey("repayment.id", ondelete="CASCADE"), nullable=False)
    amount_paise = Column(BigInteger, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    repayment = relationship("Repayment")


class CapitalSnapshot(Base):
    """Append-only capital history; the row with the highest id is current"""

    __tablename__ = "capital_snapshot"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Text, nullable=False, index=True)
    snapshot_date = Column(Date, nullable=False)
    idle_capital_paise = Column(BigInteger, nullable=False)
    pending_loan_paise = Column(BigInteger, nullable=False)
    total_capital_paise = Column(BigInteger, nullable=False)
    amount_collected_today_paise = Column(BigInteger, nullable=False, default=0)
    event = Column(Text, nullable=False)
    note = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class DayClose(Base):
    """Marks a lender's business day as closed; unique per (lender, date)"""

    __tablename__ = "day_close"
    __table_args__ = (UniqueConstraint("user_id", "business_date", name="uq_day_close_user_date"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Text, nullable=False)
    business_date = Column(Date, nullable=False)
    missed_count = Column(Integer, nullable=False, default=0)
    collected_paise = Column(BigInteger, nullable=False, default=0)
    closed_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())


class RiskThreshold(Base):
    """Per-lender override of the risk band boundaries"""

    __tablename__ = "risk_threshold"

    user_id = Column(Text, primary_key=True)
    low_threshold = Column(Integer, nullable=False)
    medium_threshold = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
