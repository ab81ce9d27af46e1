from datetime import timedelta
from decimal import Decimal
from typing import Dict, Any, Optional, List, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    ConflictError, GatewayError, IntegrityError, NotFoundError,
    PaymentFailedError, PaymentInitError, ValidationError
)
from ..core.logging_config import get_logger, log_payment_event
from ..models.billing import (
    PaymentPlan, PaymentPlanType, Subscription, SubscriptionStatus, Transaction, TransactionStatus
)
from ..repositories.accounts import UserRepository
from ..repositories.billing import PlanRepository, SubscriptionRepository, TransactionRepository
from ..utils.dates import utc_now, add_months, parse_gateway_timestamp
from . import notifications
from .paystack_client import PaystackClient, SUBSCRIPTION_REFERENCE_PREFIX

logger = get_logger("subscription_service")

# Months until the next installment falls due, by plan type
NEXT_PAYMENT_OFFSET_MONTHS = {
    PaymentPlanType.EARLY_BIRD: 3,
    PaymentPlanType.MID: 6,
    PaymentPlanType.NORMAL: None,
}


def _as_plan_type(plan_type: Union[str, PaymentPlanType]) -> PaymentPlanType:
    try:
        return PaymentPlanType(plan_type)
    except ValueError:
        raise ValidationError(f"Invalid plan type: {plan_type}")


class SubscriptionService:
    """Installment subscriptions and payment reconciliation"""

    def __init__(self, db: Session, paystack: Optional[PaystackClient] = None, email_service=None):
        self.db = db
        self.paystack = paystack
        self.email_service = email_service
        self.plans = PlanRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.transactions = TransactionRepository(db)
        self.users = UserRepository(db)

    def create_subscription(
        self,
        user_id: str,
        plan_type: Union[str, PaymentPlanType],
        metadata: Optional[Dict[str, Any]] = None
    ) -> Subscription:
        """Create a pending subscription, or return the user's unfinished one for the same plan

        Raises:
            ConflictError: the user already holds an active, unexpired subscription
            NotFoundError: the plan type is unknown or inactive
        """
        plan_type = _as_plan_type(plan_type)

        if self.subscriptions.find_active_by_user(user_id):
            raise ConflictError("User already has an active subscription")

        existing = self.subscriptions.find_pending_for_plan_type(user_id, plan_type)
        if existing:
            logger.info(f"Reusing pending subscription {existing.id} for user {user_id}")
            return existing

        plan = self.plans.find_by_type(plan_type)
        if not plan:
            raise NotFoundError("Payment plan not found")

        start_date = utc_now()
        end_date = add_months(start_date, settings.PROGRAM_DURATION_MONTHS)

        next_payment_due = None
        next_payment_amount = None
        if plan.number_of_installments > 1:
            next_payment_due = start_date + timedelta(days=settings.FIRST_INSTALLMENT_GRACE_DAYS)
            next_payment_amount = plan.installment_amount

        subscription = self.subscriptions.create(
            user_id=user_id,
            plan_id=plan.id,
            status=SubscriptionStatus.PENDING,
            start_date=start_date,
            end_date=end_date,
            current_semester=0,
            total_amount_paid=Decimal("0"),
            amount_remaining=plan.total_amount,
            next_payment_due=next_payment_due,
            next_payment_amount=next_payment_amount,
            meta_data=metadata or {}
        )
        self.db.commit()
        self.db.refresh(subscription)

        logger.info(f"Created {plan_type.value} subscription {subscription.id} for user {user_id}")
        return subscription

    async def initiate_payment(
        self,
        user_id: str,
        email: str,
        plan_type: Optional[Union[str, PaymentPlanType]] = None,
        subscription_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Start a Paystack checkout for the next installment.

        The charge is always the plan's installment amount.

        Returns:
            {"subscription", "transaction", "payment_url"}
        """
        if subscription_id:
            subscription = self.subscriptions.find_by_id(subscription_id)
            if not subscription or subscription.user_id != user_id:
                raise NotFoundError("Subscription not found")
        elif plan_type:
            subscription = self.create_subscription(user_id, plan_type, metadata)
        else:
            raise ValidationError("Either subscription_id or plan_type is required")

        if subscription.status == SubscriptionStatus.CANCELLED:
            raise ConflictError("Cannot pay for a cancelled subscription")
        if subscription.amount_remaining <= 0:
            raise ConflictError("Subscription is already fully paid")

        plan = self.plans.find_by_id(subscription.plan_id)
        if not plan:
            raise NotFoundError("Payment plan not found")

        amount = plan.installment_amount
        if amount is None or amount <= 0:
            raise ValidationError("Invalid payment amount")

        reference = PaystackClient.generate_reference(SUBSCRIPTION_REFERENCE_PREFIX)
        payment_metadata = {
            **(metadata or {}),
            "user_id": user_id,
            "subscription_id": subscription.id,
            "plan_id": plan.id,
            "plan_type": plan.type.value,
            "payment_type": "subscription",
        }

        try:
            result = await self.paystack.initialize_transaction(
                email=email,
                amount=amount,
                reference=reference,
                metadata=payment_metadata,
                currency=settings.DEFAULT_CURRENCY
            )
        except GatewayError as e:
            log_payment_event("initialize_failed", reference, subscription_id=subscription.id, error=e.message)
            raise PaymentInitError(f"Failed to initialize payment: {e.message}") from e

        transaction = self.transactions.create(
            user_id=user_id,
            subscription_id=subscription.id,
            plan_id=plan.id,
            amount=amount,
            currency=settings.DEFAULT_CURRENCY,
            status=TransactionStatus.PENDING,
            paystack_reference=reference,
            paystack_access_code=result.get("access_code"),
            paystack_authorization_url=result.get("authorization_url"),
            meta_data=payment_metadata
        )
        self.db.commit()
        self.db.refresh(transaction)
        self.db.refresh(subscription)

        log_payment_event("initialized", reference, subscription_id=subscription.id, amount=str(amount))

        return {
            "subscription": subscription,
            "transaction": transaction,
            "payment_url": result.get("authorization_url"),
        }

    async def verify_payment(self, reference: str) -> Dict[str, Any]:
        """
        Settle a payment by reference. Safe to call any number of times,
        concurrently or not: a subscription is credited at most once per reference.

        Returns:
            {"transaction", "subscription"}
        """
        transaction = self.transactions.find_by_reference(reference)
        if not transaction:
            raise NotFoundError("Transaction not found")

        if transaction.status == TransactionStatus.SUCCESS:
            log_payment_event("already_verified", reference)
            return self._current_state(transaction)

        if not transaction.subscription_id:
            raise NotFoundError("Subscription not found")

        payment_data = await self.paystack.verify_transaction(reference)

        if payment_data.get("status") != "success":
            gateway_response = payment_data.get("gateway_response") or payment_data.get("status") or "Payment failed"
            self.transactions.mark_failed(
                reference,
                failure_reason=gateway_response,
                metadata={**(transaction.meta_data or {}), "paystack_status": payment_data.get("status")}
            )
            self.db.commit()
            log_payment_event("failed", reference, gateway_response=gateway_response)
            raise PaymentFailedError(f"Payment failed: {gateway_response}", reference, gateway_response)

        try:
            subscription, became_active = self._settle(transaction, payment_data)
        except Exception:
            self.db.rollback()
            raise

        if subscription is None:
            # Another verifier settled this reference first
            self.db.rollback()
            transaction = self.transactions.find_by_reference(reference)
            log_payment_event("settled_concurrently", reference)
            return self._current_state(transaction)

        self.db.refresh(transaction)
        self.db.refresh(subscription)
        log_payment_event(
            "verified",
            reference,
            subscription_id=subscription.id,
            total_amount_paid=str(subscription.total_amount_paid),
            amount_remaining=str(subscription.amount_remaining)
        )

        if became_active:
            user = self.users.find_by_id(subscription.user_id)
            if user:
                notifications.send_subscription_confirmation(self.email_service, user.email, user.first_name)

        return {"transaction": transaction, "subscription": subscription}

    def _settle(self, transaction: Transaction, payment_data: Dict[str, Any]):
        """
        Mark the ledger row successful and credit the subscription inside one
        database transaction.

        Returns (subscription, became_active); subscription is None when the
        compare-and-set on the ledger row lost to a concurrent verifier.
        """
        reference = transaction.paystack_reference
        amount = Decimal(transaction.amount)
        prior_metadata = dict(transaction.meta_data or {})

        settled = self.transactions.mark_success(
            reference,
            payment_date=parse_gateway_timestamp(payment_data.get("paid_at")),
            payment_method=payment_data.get("channel")
        )
        if not settled:
            return None, False

        subscription = self.subscriptions.lock_by_id(transaction.subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found")

        plan = self.plans.find_by_id(subscription.plan_id)
        if not plan:
            raise NotFoundError("Payment plan not found")

        new_total_paid = Decimal(subscription.total_amount_paid or 0) + amount
        new_amount_remaining = Decimal(plan.total_amount) - new_total_paid
        if new_amount_remaining < 0:
            raise IntegrityError(
                f"Payment {reference} would overpay subscription {subscription.id} "
                f"(remaining {new_amount_remaining})"
            )

        new_semester = min(
            (subscription.current_semester or 0) + plan.semesters_per_installment,
            settings.MAX_SEMESTERS
        )

        now = utc_now()
        if new_amount_remaining > 0:
            offset = NEXT_PAYMENT_OFFSET_MONTHS.get(plan.type)
            next_payment_due = add_months(now, offset) if offset else None
            next_payment_amount = plan.installment_amount
            status = subscription.status
        else:
            next_payment_due = None
            next_payment_amount = None
            status = SubscriptionStatus.ACTIVE

        became_active = status == SubscriptionStatus.ACTIVE and subscription.status != SubscriptionStatus.ACTIVE

        self.subscriptions.update_payment_info(
            subscription,
            total_amount_paid=new_total_paid,
            amount_remaining=new_amount_remaining,
            current_semester=new_semester,
            next_payment_due=next_payment_due,
            next_payment_amount=next_payment_amount,
            status=status
        )
        transaction.meta_data = {
            **prior_metadata,
            "gateway_response": payment_data.get("gateway_response"),
            "semesters_paid": plan.semesters_per_installment,
            "installment_number": new_semester // max(plan.semesters_per_installment, 1),
        }
        self.users.set_subscription(subscription.user_id, subscription.id)
        self.db.commit()
        return subscription, became_active

    def _current_state(self, transaction: Transaction) -> Dict[str, Any]:
        subscription = None
        if transaction.subscription_id:
            subscription = self.subscriptions.find_by_id(transaction.subscription_id)
        return {"transaction": transaction, "subscription": subscription}

    def get_user_subscriptions(self, user_id: str) -> List[Subscription]:
        return self.subscriptions.find_by_user(user_id)

    def get_user_active_subscription(self, user_id: str) -> Optional[Subscription]:
        return self.subscriptions.find_active_by_user(user_id)

    def get_subscription_by_id(self, subscription_id: str) -> Subscription:
        subscription = self.subscriptions.find_by_id(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found")
        return subscription

    def get_user_transactions(self, user_id: str) -> List[Transaction]:
        return self.transactions.find_by_user(user_id)

    def get_subscription_transactions(self, subscription_id: str) -> List[Transaction]:
        return self.transactions.find_by_subscription(subscription_id)

    def get_payment_plans(self) -> List[PaymentPlan]:
        return self.plans.find_active()

    def get_payment_plan_by_type(self, plan_type: Union[str, PaymentPlanType]) -> PaymentPlan:
        plan = self.plans.find_by_type(_as_plan_type(plan_type))
        if not plan:
            raise NotFoundError("Payment plan not found")
        return plan

    def cancel_subscription(self, subscription_id: str, reason: Optional[str] = None) -> Subscription:
        subscription = self.get_subscription_by_id(subscription_id)
        if subscription.status == SubscriptionStatus.CANCELLED:
            raise ConflictError("Subscription is already cancelled")

        self.subscriptions.cancel(subscription, reason)
        self.db.commit()
        self.db.refresh(subscription)
        logger.info(f"Cancelled subscription {subscription.id}")
        return subscription

    def check_user_access(self, user_id: str) -> Dict[str, Any]:
        """Whether the user currently holds a paid-up, unexpired subscription"""
        active = self.subscriptions.find_active_by_user(user_id)
        if active:
            return {"has_access": True, "subscription": active, "message": "Access granted"}

        subscriptions = self.subscriptions.find_by_user(user_id)
        if not subscriptions:
            return {"has_access": False, "subscription": None, "message": "No active subscription found"}

        latest = subscriptions[0]
        if latest.status != SubscriptionStatus.ACTIVE:
            return {"has_access": False, "subscription": latest, "message": "Subscription is not active"}

        return {"has_access": False, "subscription": latest, "message": "Subscription has expired"}

    def get_payment_stats(self) -> Dict[str, Any]:
        by_plan = self.subscriptions.count_by_plan_type()
        return {
            "total_revenue": float(self.transactions.total_revenue()),
            "subscription_revenue": float(self.transactions.total_subscription_revenue()),
            "application_fee_revenue": float(self.transactions.total_application_fee_revenue()),
            "total_subscriptions": self.subscriptions.count_all(),
            "active_subscriptions": self.subscriptions.count_by_status(SubscriptionStatus.ACTIVE),
            "pending_subscriptions": self.subscriptions.count_by_status(SubscriptionStatus.PENDING),
            "pending_payments": self.subscriptions.count_part_paid(),
            "paying_users": self.transactions.count_paying_users(),
            "early_bird_subscriptions": by_plan[PaymentPlanType.EARLY_BIRD.value],
            "mid_subscriptions": by_plan[PaymentPlanType.MID.value],
            "normal_subscriptions": by_plan[PaymentPlanType.NORMAL.value],
        }
