"""Data access layer for plans, subscriptions, the transaction ledger and application fees"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import update, func, distinct
from sqlalchemy.orm import Session

from ..models.billing import (
    PaymentPlan, PaymentPlanType, Subscription, SubscriptionStatus,
    Transaction, TransactionStatus, ApplicationFee, ApplicationFeeStatus, PaystackWebhook
)
from ..utils.dates import utc_now


class PlanRepository:
    """Repository for the payment plan catalog"""

    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, plan_id: str) -> Optional[PaymentPlan]:
        return self.db.query(PaymentPlan).filter(PaymentPlan.id == plan_id).first()

    def find_by_type(self, plan_type: PaymentPlanType) -> Optional[PaymentPlan]:
        """Active plan of the given type, or None"""
        return self.db.query(PaymentPlan).filter(
            PaymentPlan.type == plan_type,
            PaymentPlan.is_active == True  # noqa: E712
        ).first()

    def find_any_by_type(self, plan_type: PaymentPlanType) -> Optional[PaymentPlan]:
        return self.db.query(PaymentPlan).filter(PaymentPlan.type == plan_type).first()

    def find_active(self) -> List[PaymentPlan]:
        return (
            self.db.query(PaymentPlan)
            .filter(PaymentPlan.is_active == True)  # noqa: E712
            .order_by(PaymentPlan.total_amount.asc(), PaymentPlan.number_of_installments.desc())
            .all()
        )

    def find_all(self) -> List[PaymentPlan]:
        return self.db.query(PaymentPlan).order_by(PaymentPlan.created_at.asc()).all()

    def create(self, **fields) -> PaymentPlan:
        plan = PaymentPlan(**fields)
        self.db.add(plan)
        self.db.flush()
        return plan

    def set_active(self, plan: PaymentPlan, is_active: bool) -> PaymentPlan:
        plan.is_active = is_active
        self.db.flush()
        return plan


class SubscriptionRepository:
    """Repository for subscription records"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> Subscription:
        subscription = Subscription(**fields)
        self.db.add(subscription)
        self.db.flush()
        return subscription

    def find_by_id(self, subscription_id: str) -> Optional[Subscription]:
        return self.db.query(Subscription).filter(Subscription.id == subscription_id).first()

    def lock_by_id(self, subscription_id: str) -> Optional[Subscription]:
        """Load the row with FOR UPDATE (no-op on SQLite) and refresh stale identity-map state"""
        return (
            self.db.query(Subscription)
            .filter(Subscription.id == subscription_id)
            .with_for_update()
            .populate_existing()
            .first()
        )

    def find_by_user(self, user_id: str) -> List[Subscription]:
        return (
            self.db.query(Subscription)
            .filter(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc())
            .all()
        )

    def find_active_by_user(self, user_id: str) -> Optional[Subscription]:
        """Subscription with status=active and an end date in the future"""
        return self.db.query(Subscription).filter(
            Subscription.user_id == user_id,
            Subscription.status == SubscriptionStatus.ACTIVE,
            Subscription.end_date > utc_now()
        ).first()

    def find_pending_for_plan_type(self, user_id: str, plan_type: PaymentPlanType) -> Optional[Subscription]:
        """Unfinished pending subscription for the same plan type"""
        return (
            self.db.query(Subscription)
            .join(PaymentPlan, Subscription.plan_id == PaymentPlan.id)
            .filter(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.PENDING,
                Subscription.amount_remaining > 0,
                PaymentPlan.type == plan_type
            )
            .order_by(Subscription.created_at.desc())
            .first()
        )

    def update_payment_info(
        self,
        subscription: Subscription,
        total_amount_paid: Decimal,
        amount_remaining: Decimal,
        current_semester: int,
        next_payment_due: Optional[datetime],
        next_payment_amount: Optional[Decimal],
        status: SubscriptionStatus
    ) -> Subscription:
        subscription.total_amount_paid = total_amount_paid
        subscription.amount_remaining = amount_remaining
        subscription.current_semester = current_semester
        subscription.next_payment_due = next_payment_due
        subscription.next_payment_amount = next_payment_amount
        subscription.status = status
        subscription.last_payment_date = utc_now()
        self.db.flush()
        return subscription

    def cancel(self, subscription: Subscription, reason: Optional[str] = None) -> Subscription:
        subscription.status = SubscriptionStatus.CANCELLED
        subscription.cancelled_at = utc_now()
        subscription.cancellation_reason = reason
        self.db.flush()
        return subscription

    def count_all(self) -> int:
        return self.db.query(func.count(Subscription.id)).scalar() or 0

    def count_by_status(self, status: SubscriptionStatus) -> int:
        return self.db.query(func.count(Subscription.id)).filter(Subscription.status == status).scalar() or 0

    def count_by_plan_type(self) -> Dict[str, int]:
        rows = (
            self.db.query(PaymentPlan.type, func.count(Subscription.id))
            .join(Subscription, Subscription.plan_id == PaymentPlan.id)
            .group_by(PaymentPlan.type)
            .all()
        )
        counts = {plan_type.value: 0 for plan_type in PaymentPlanType}
        for plan_type, count in rows:
            counts[plan_type.value] = count
        return counts

    def count_part_paid(self) -> int:
        """Subscriptions that have started paying but still carry a balance"""
        return self.db.query(func.count(Subscription.id)).filter(
            Subscription.status.in_([SubscriptionStatus.PENDING, SubscriptionStatus.ACTIVE]),
            Subscription.total_amount_paid > 0,
            Subscription.amount_remaining > 0
        ).scalar() or 0


class TransactionRepository:
    """Repository for the payment ledger"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> Transaction:
        transaction = Transaction(**fields)
        self.db.add(transaction)
        self.db.flush()
        return transaction

    def find_by_reference(self, reference: str) -> Optional[Transaction]:
        return self.db.query(Transaction).filter(Transaction.paystack_reference == reference).first()

    def find_by_user(self, user_id: str) -> List[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc())
            .all()
        )

    def find_by_subscription(self, subscription_id: str) -> List[Transaction]:
        return (
            self.db.query(Transaction)
            .filter(Transaction.subscription_id == subscription_id)
            .order_by(Transaction.created_at.desc())
            .all()
        )

    def mark_success(
        self,
        reference: str,
        payment_date: datetime,
        payment_method: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """
        Compare-and-set a transaction to SUCCESS.

        Returns True only for the caller whose UPDATE performed the transition;
        a concurrent verifier of the same reference gets False.
        """
        values = {
            Transaction.status: TransactionStatus.SUCCESS,
            Transaction.payment_date: payment_date,
            Transaction.payment_method: payment_method,
            Transaction.failure_reason: None,
            Transaction.updated_at: utc_now(),
        }
        if metadata is not None:
            values[Transaction.meta_data] = metadata

        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.paystack_reference == reference,
                Transaction.status != TransactionStatus.SUCCESS
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_failed(
        self,
        reference: str,
        failure_reason: Optional[str],
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Mark FAILED unless the transaction already settled"""
        values = {
            Transaction.status: TransactionStatus.FAILED,
            Transaction.failure_reason: failure_reason,
            Transaction.updated_at: utc_now(),
        }
        if metadata is not None:
            values[Transaction.meta_data] = metadata

        result = self.db.execute(
            update(Transaction)
            .where(
                Transaction.paystack_reference == reference,
                Transaction.status != TransactionStatus.SUCCESS
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def _sum_successful(self, *criteria) -> Decimal:
        total = self.db.query(func.coalesce(func.sum(Transaction.amount), 0)).filter(
            Transaction.status == TransactionStatus.SUCCESS,
            *criteria
        ).scalar()
        return Decimal(str(total or 0))

    def total_revenue(self) -> Decimal:
        return self._sum_successful()

    def total_subscription_revenue(self) -> Decimal:
        return self._sum_successful(Transaction.subscription_id.isnot(None))

    def total_application_fee_revenue(self) -> Decimal:
        return self._sum_successful(Transaction.subscription_id.is_(None))

    def count_paying_users(self) -> int:
        return self.db.query(func.count(distinct(Transaction.user_id))).filter(
            Transaction.status == TransactionStatus.SUCCESS
        ).scalar() or 0


class ApplicationFeeRepository:
    """Repository for one-time application fee payments"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> ApplicationFee:
        fee = ApplicationFee(**fields)
        self.db.add(fee)
        self.db.flush()
        return fee

    def find_by_reference(self, reference: str) -> Optional[ApplicationFee]:
        return self.db.query(ApplicationFee).filter(ApplicationFee.paystack_reference == reference).first()

    def find_latest_by_user(self, user_id: str) -> Optional[ApplicationFee]:
        return (
            self.db.query(ApplicationFee)
            .filter(ApplicationFee.user_id == user_id)
            .order_by(ApplicationFee.created_at.desc())
            .first()
        )

    def has_user_paid(self, user_id: str) -> bool:
        return self.db.query(ApplicationFee.id).filter(
            ApplicationFee.user_id == user_id,
            ApplicationFee.status == ApplicationFeeStatus.PAID
        ).first() is not None

    def mark_paid(
        self,
        reference: str,
        payment_date: datetime,
        payment_method: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        """Compare-and-set to PAID; False when another verifier got there first"""
        values = {
            ApplicationFee.status: ApplicationFeeStatus.PAID,
            ApplicationFee.payment_date: payment_date,
            ApplicationFee.payment_method: payment_method,
            ApplicationFee.failure_reason: None,
            ApplicationFee.updated_at: utc_now(),
        }
        if metadata is not None:
            values[ApplicationFee.meta_data] = metadata

        result = self.db.execute(
            update(ApplicationFee)
            .where(
                ApplicationFee.paystack_reference == reference,
                ApplicationFee.status != ApplicationFeeStatus.PAID
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def mark_failed(
        self,
        reference: str,
        failure_reason: Optional[str],
        metadata: Optional[Dict[str, Any]] = None
    ) -> bool:
        values = {
            ApplicationFee.status: ApplicationFeeStatus.FAILED,
            ApplicationFee.failure_reason: failure_reason,
            ApplicationFee.updated_at: utc_now(),
        }
        if metadata is not None:
            values[ApplicationFee.meta_data] = metadata

        result = self.db.execute(
            update(ApplicationFee)
            .where(
                ApplicationFee.paystack_reference == reference,
                ApplicationFee.status != ApplicationFeeStatus.PAID
            )
            .values(values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def total_revenue(self) -> Decimal:
        total = self.db.query(func.coalesce(func.sum(ApplicationFee.amount), 0)).filter(
            ApplicationFee.status == ApplicationFeeStatus.PAID
        ).scalar()
        return Decimal(str(total or 0))

    def count_all(self) -> int:
        return self.db.query(func.count(ApplicationFee.id)).scalar() or 0

    def count_by_status(self, status: ApplicationFeeStatus) -> int:
        return self.db.query(func.count(ApplicationFee.id)).filter(ApplicationFee.status == status).scalar() or 0


class WebhookRepository:
    """Audit log of Paystack webhook deliveries"""

    def __init__(self, db: Session):
        self.db = db

    def log_event(
        self,
        event_type: str,
        raw_data: Dict[str, Any],
        reference: Optional[str] = None,
        signature: Optional[str] = None
    ) -> PaystackWebhook:
        webhook = PaystackWebhook(
            event_type=event_type or "unknown",
            reference=reference,
            raw_data=raw_data,
            signature=signature
        )
        self.db.add(webhook)
        self.db.commit()
        self.db.refresh(webhook)
        return webhook

    def mark_processed(self, webhook_id: str, success: bool, error: Optional[str] = None) -> None:
        webhook = self.db.query(PaystackWebhook).filter(PaystackWebhook.id == webhook_id).first()
        if not webhook:
            return
        webhook.processed = success
        webhook.processing_error = error
        webhook.processed_at = utc_now()
        self.db.commit()
