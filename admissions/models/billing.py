import enum
import uuid
from sqlalchemy import (
    Column, String, Integer, DateTime, Boolean, Text, JSON, Numeric, ForeignKey, Enum as SAEnum
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from ..core.database import Base


def _enum(enum_cls):
    """String-backed enum column type storing the member values"""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=20,
        values_callable=lambda members: [m.value for m in members]
    )


class PaymentPlanType(str, enum.Enum):
    EARLY_BIRD = "early_bird"  # per semester, 4 installments
    MID = "mid"                # two semesters at a time, 2 installments
    NORMAL = "normal"          # single upfront payment


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"


class ApplicationFeeStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentPlan(Base):
    """Billing plan catalog entry"""
    __tablename__ = "payment_plans"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(100), nullable=False)
    type = Column(_enum(PaymentPlanType), nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)

    # Pricing (NGN)
    total_amount = Column(Numeric(12, 2), nullable=False)
    installment_amount = Column(Numeric(12, 2), nullable=False)
    number_of_installments = Column(Integer, nullable=False, default=1)
    semesters_per_installment = Column(Integer, nullable=False, default=1)

    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    subscriptions = relationship("Subscription", back_populates="plan")


class Subscription(Base):
    """Per-user installment progress against a plan"""
    __tablename__ = "subscriptions"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    plan_id = Column(String(36), ForeignKey("payment_plans.id"), nullable=False, index=True)

    status = Column(_enum(SubscriptionStatus), nullable=False, default=SubscriptionStatus.PENDING, index=True)

    # Program period
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    current_semester = Column(Integer, nullable=False, default=0)

    # Payment progress
    total_amount_paid = Column(Numeric(12, 2), nullable=False, default=0)
    amount_remaining = Column(Numeric(12, 2), nullable=False)
    next_payment_due = Column(DateTime(timezone=True), nullable=True, index=True)
    next_payment_amount = Column(Numeric(12, 2), nullable=True)
    last_payment_date = Column(DateTime(timezone=True), nullable=True)
    auto_renew = Column(Boolean, default=False, nullable=False)

    # Cancellation
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancellation_reason = Column(Text, nullable=True)

    meta_data = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    plan = relationship("PaymentPlan", back_populates="subscriptions")
    transactions = relationship("Transaction", back_populates="subscription")


class Transaction(Base):
    """Ledger entry, one per payment attempt"""
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    subscription_id = Column(String(36), ForeignKey("subscriptions.id"), nullable=True, index=True)
    plan_id = Column(String(36), ForeignKey("payment_plans.id"), nullable=True)

    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="NGN")
    status = Column(_enum(TransactionStatus), nullable=False, default=TransactionStatus.PENDING, index=True)
    payment_method = Column(String(30), nullable=True)

    # Paystack
    paystack_reference = Column(String(100), nullable=False, unique=True, index=True)
    paystack_access_code = Column(String(100), nullable=True)
    paystack_authorization_url = Column(String(500), nullable=True)

    payment_date = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)
    meta_data = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    subscription = relationship("Subscription", back_populates="transactions")


class ApplicationFee(Base):
    """One-time application fee payment"""
    __tablename__ = "application_fees"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    amount = Column(Numeric(12, 2), nullable=False, default=20000)
    currency = Column(String(3), nullable=False, default="NGN")
    status = Column(_enum(ApplicationFeeStatus), nullable=False, default=ApplicationFeeStatus.PENDING, index=True)

    paystack_reference = Column(String(100), nullable=False, unique=True, index=True)
    paystack_access_code = Column(String(100), nullable=True)
    paystack_authorization_url = Column(String(500), nullable=True)
    payment_method = Column(String(30), nullable=True)
    payment_date = Column(DateTime(timezone=True), nullable=True)
    failure_reason = Column(Text, nullable=True)

    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refund_reason = Column(Text, nullable=True)

    meta_data = Column("metadata", JSON, default=dict)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())


class PaystackWebhook(Base):
    """Log of signature-valid Paystack webhook events"""
    __tablename__ = "paystack_webhooks"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    event_type = Column(String(50), nullable=False, index=True)
    reference = Column(String(100), nullable=True, index=True)
    raw_data = Column(JSON, nullable=False)
    signature = Column(String(256), nullable=True)

    processed = Column(Boolean, default=False, nullable=False)
    processing_error = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
