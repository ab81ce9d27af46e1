from typing import Dict, Any, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.exceptions import AdmissionsServiceError
from ..models.billing import PaymentPlanType
from ..models.user import User
from ..schemas import PlanResponse, SubscriptionResponse, TransactionResponse, serialize
from ..services.dependencies import get_current_user, get_subscription_service
from ..services.subscription_service import SubscriptionService
from ..utils.responses import success_response

router = APIRouter()
logger = logging.getLogger(__name__)


class SubscriptionCreateRequest(BaseModel):
    plan_type: PaymentPlanType = Field(..., description="Payment plan: early_bird, mid or normal")
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Additional metadata")


class SubscriptionPayRequest(BaseModel):
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Additional payment metadata")


class SubscriptionCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Cancellation reason")


def _payment_payload(result: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "subscription": serialize(SubscriptionResponse, result["subscription"]),
        "transaction": serialize(TransactionResponse, result["transaction"]),
        "payment_url": result["payment_url"],
        "reference": result["transaction"].paystack_reference,
    }


def _owned(subscription, user: User):
    if subscription.user_id != user.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")
    return subscription


@router.get("/plans")
async def list_plans(service: SubscriptionService = Depends(get_subscription_service)) -> Dict[str, Any]:
    """List active payment plans (public)"""
    plans = service.get_payment_plans()
    return success_response("Payment plans retrieved successfully", serialize(PlanResponse, plans))


@router.get("/plans/{plan_type}")
async def get_plan(
    plan_type: PaymentPlanType,
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    plan = service.get_payment_plan_by_type(plan_type)
    return success_response("Payment plan retrieved successfully", serialize(PlanResponse, plan))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_subscription(
    request: SubscriptionCreateRequest,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    """Create (or reuse) a subscription and start payment of its first installment"""
    try:
        result = await service.initiate_payment(
            user_id=current_user.id,
            email=current_user.email,
            plan_type=request.plan_type,
            metadata=request.metadata
        )
        return success_response("Subscription created and payment initiated", _payment_payload(result))

    except (HTTPException, AdmissionsServiceError):
        raise
    except Exception as e:
        logger.error(f"Failed to create subscription for user {current_user.id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create subscription"
        )


@router.get("/verify")
async def verify_payment(
    reference: str = Query(..., min_length=1, description="Paystack transaction reference"),
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    """Verify a payment after the Paystack redirect"""
    result = await service.verify_payment(reference)
    return success_response("Payment verified successfully", {
        "transaction": serialize(TransactionResponse, result["transaction"]),
        "subscription": serialize(SubscriptionResponse, result["subscription"]),
    })


@router.get("/my-subscriptions")
async def my_subscriptions(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    subscriptions = service.get_user_subscriptions(current_user.id)
    return success_response("Subscriptions retrieved successfully", serialize(SubscriptionResponse, subscriptions))


@router.get("/active")
async def active_subscription(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    subscription = service.get_user_active_subscription(current_user.id)
    if not subscription:
        return success_response("No active subscription found")
    return success_response("Active subscription retrieved successfully", serialize(SubscriptionResponse, subscription))


@router.get("/check-access")
async def check_access(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    result = service.check_user_access(current_user.id)
    return success_response(result["message"], {
        "has_access": result["has_access"],
        "subscription": serialize(SubscriptionResponse, result["subscription"]),
    })


@router.get("/transactions/my-transactions")
async def my_transactions(
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    transactions = service.get_user_transactions(current_user.id)
    return success_response("Transactions retrieved successfully", serialize(TransactionResponse, transactions))


@router.get("/{subscription_id}")
async def get_subscription(
    subscription_id: str,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    subscription = _owned(service.get_subscription_by_id(subscription_id), current_user)
    return success_response("Subscription retrieved successfully", serialize(SubscriptionResponse, subscription))


@router.post("/{subscription_id}/pay")
async def pay_installment(
    subscription_id: str,
    request: Optional[SubscriptionPayRequest] = None,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    """Start payment of the next installment on an existing subscription"""
    result = await service.initiate_payment(
        user_id=current_user.id,
        email=current_user.email,
        subscription_id=subscription_id,
        metadata=request.metadata if request else None
    )
    return success_response("Payment initiated successfully", _payment_payload(result))


@router.get("/{subscription_id}/transactions")
async def subscription_transactions(
    subscription_id: str,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    _owned(service.get_subscription_by_id(subscription_id), current_user)
    transactions = service.get_subscription_transactions(subscription_id)
    return success_response("Transactions retrieved successfully", serialize(TransactionResponse, transactions))


@router.patch("/{subscription_id}/cancel")
async def cancel_subscription(
    subscription_id: str,
    request: Optional[SubscriptionCancelRequest] = None,
    current_user: User = Depends(get_current_user),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    _owned(service.get_subscription_by_id(subscription_id), current_user)
    subscription = service.cancel_subscription(subscription_id, request.reason if request else None)
    logger.info(f"User {current_user.id} cancelled subscription {subscription_id}")
    return success_response("Subscription cancelled successfully", serialize(SubscriptionResponse, subscription))
