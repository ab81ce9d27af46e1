from decimal import Decimal
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ConflictError, GatewayError, NotFoundError, PaymentFailedError, PaymentInitError
from ..core.logging_config import get_logger, log_payment_event
from ..models.billing import ApplicationFee, ApplicationFeeStatus, TransactionStatus
from ..repositories.accounts import UserRepository
from ..repositories.billing import ApplicationFeeRepository, TransactionRepository
from ..utils.dates import parse_gateway_timestamp
from . import notifications
from .paystack_client import PaystackClient, APPLICATION_FEE_REFERENCE_PREFIX

logger = get_logger("application_fee_service")

APPLICATION_FEE_PAYMENT_TYPE = "application_fee"


class ApplicationFeeService:
    """One-time application fee: checkout, verification and reporting"""

    def __init__(self, db: Session, paystack: Optional[PaystackClient] = None, email_service=None):
        self.db = db
        self.paystack = paystack
        self.email_service = email_service
        self.fees = ApplicationFeeRepository(db)
        self.transactions = TransactionRepository(db)
        self.users = UserRepository(db)

    @property
    def amount(self) -> Decimal:
        return Decimal(settings.APPLICATION_FEE_AMOUNT)

    async def initiate_payment(
        self,
        user_id: str,
        email: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """
        Start a Paystack checkout for the application fee.

        Returns:
            {"application_fee", "payment_url", "reference", "access_code"}
        """
        if self.fees.has_user_paid(user_id):
            raise ConflictError("Application fee has already been paid")

        reference = PaystackClient.generate_reference(APPLICATION_FEE_REFERENCE_PREFIX)
        payment_metadata = {
            **(metadata or {}),
            "user_id": user_id,
            "payment_type": APPLICATION_FEE_PAYMENT_TYPE,
        }

        try:
            result = await self.paystack.initialize_transaction(
                email=email,
                amount=self.amount,
                reference=reference,
                metadata=payment_metadata,
                currency=settings.DEFAULT_CURRENCY
            )
        except GatewayError as e:
            log_payment_event("initialize_failed", reference, user_id=user_id, error=e.message)
            raise PaymentInitError(f"Failed to initialize payment: {e.message}") from e

        fee = self.fees.create(
            user_id=user_id,
            amount=self.amount,
            currency=settings.DEFAULT_CURRENCY,
            status=ApplicationFeeStatus.PENDING,
            paystack_reference=reference,
            paystack_access_code=result.get("access_code"),
            paystack_authorization_url=result.get("authorization_url"),
            meta_data=payment_metadata
        )
        # Mirror into the ledger so revenue reporting sees every payment
        self.transactions.create(
            user_id=user_id,
            amount=self.amount,
            currency=settings.DEFAULT_CURRENCY,
            status=TransactionStatus.PENDING,
            paystack_reference=reference,
            paystack_access_code=result.get("access_code"),
            paystack_authorization_url=result.get("authorization_url"),
            meta_data=payment_metadata
        )
        self.db.commit()
        self.db.refresh(fee)

        log_payment_event("initialized", reference, user_id=user_id, amount=str(self.amount))

        return {
            "application_fee": fee,
            "payment_url": result.get("authorization_url"),
            "reference": reference,
            "access_code": result.get("access_code"),
        }

    async def verify_payment(self, reference: str) -> ApplicationFee:
        """Settle an application fee by reference; repeated calls are no-ops once paid"""
        fee = self.fees.find_by_reference(reference)
        if not fee:
            raise NotFoundError("Application fee record not found")

        if fee.status == ApplicationFeeStatus.PAID:
            log_payment_event("already_verified", reference)
            return fee

        payment_data = await self.paystack.verify_transaction(reference)

        if payment_data.get("status") != "success":
            gateway_response = payment_data.get("gateway_response") or payment_data.get("status") or "Payment failed"
            self.fees.mark_failed(reference, failure_reason=gateway_response)
            self.transactions.mark_failed(reference, failure_reason=gateway_response)
            self.db.commit()
            log_payment_event("failed", reference, gateway_response=gateway_response)
            raise PaymentFailedError(f"Payment failed: {gateway_response}", reference, gateway_response)

        payment_date = parse_gateway_timestamp(payment_data.get("paid_at"))
        channel = payment_data.get("channel")
        user_id = fee.user_id

        try:
            settled = self.fees.mark_paid(reference, payment_date=payment_date, payment_method=channel)
            if settled:
                self.transactions.mark_success(reference, payment_date=payment_date, payment_method=channel)
                self.users.set_application_fee_paid(user_id, True)
                self.db.commit()
            else:
                self.db.rollback()
        except Exception:
            self.db.rollback()
            raise

        self.db.expire_all()
        fee = self.fees.find_by_reference(reference)

        if not settled:
            log_payment_event("settled_concurrently", reference)
            return fee

        log_payment_event("verified", reference, user_id=user_id)

        user = self.users.find_by_id(user_id)
        if user:
            notifications.send_application_fee_confirmation(
                self.email_service, user.email, user.first_name, fee.amount, reference
            )

        return fee

    def has_user_paid(self, user_id: str) -> bool:
        return self.fees.has_user_paid(user_id)

    def get_user_application_fee(self, user_id: str) -> Optional[ApplicationFee]:
        return self.fees.find_latest_by_user(user_id)

    def get_by_reference(self, reference: str) -> Optional[ApplicationFee]:
        return self.fees.find_by_reference(reference)

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "total_revenue": float(self.fees.total_revenue()),
            "total_applications": self.fees.count_all(),
            "paid_applications": self.fees.count_by_status(ApplicationFeeStatus.PAID),
            "pending_payments": self.fees.count_by_status(ApplicationFeeStatus.PENDING),
            "failed_payments": self.fees.count_by_status(ApplicationFeeStatus.FAILED),
            "application_fee_amount": float(self.amount),
        }
