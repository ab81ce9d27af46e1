"""Response models shared across routers"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models.admin import AdminRole, AdminStatus
from .models.billing import PaymentPlanType, SubscriptionStatus, TransactionStatus, ApplicationFeeStatus
from .models.user import UserRole, UserStatus


class PlanResponse(BaseModel):
    id: str
    name: str
    type: PaymentPlanType
    description: Optional[str] = None
    total_amount: float
    installment_amount: float
    number_of_installments: int
    semesters_per_installment: int
    is_active: bool
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionResponse(BaseModel):
    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    start_date: datetime
    end_date: datetime
    current_semester: int
    total_amount_paid: float
    amount_remaining: float
    next_payment_due: Optional[datetime] = None
    next_payment_amount: Optional[float] = None
    last_payment_date: Optional[datetime] = None
    auto_renew: bool = False
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta_data")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransactionResponse(BaseModel):
    id: str
    user_id: str
    subscription_id: Optional[str] = None
    plan_id: Optional[str] = None
    amount: float
    currency: str
    status: TransactionStatus
    payment_method: Optional[str] = None
    paystack_reference: str
    paystack_authorization_url: Optional[str] = None
    payment_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="meta_data")
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ApplicationFeeResponse(BaseModel):
    id: str
    user_id: str
    amount: float
    currency: str
    status: ApplicationFeeStatus
    paystack_reference: str
    paystack_authorization_url: Optional[str] = None
    payment_method: Optional[str] = None
    payment_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class UserResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    role: UserRole
    status: UserStatus
    phone_number: Optional[str] = None
    how_did_you_hear_about_us: Optional[str] = None
    is_email_verified: bool
    application_fee_paid: bool
    subscription_id: Optional[str] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class AdminResponse(BaseModel):
    id: str
    first_name: str
    last_name: str
    email: str
    role: AdminRole
    status: AdminStatus
    permissions: Optional[List[str]] = None
    last_login: Optional[datetime] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


def serialize(model_cls, obj):
    """ORM object (or list of them) to response model(s); None passes through"""
    if obj is None:
        return None
    if isinstance(obj, list):
        return [model_cls.model_validate(item) for item in obj]
    return model_cls.model_validate(obj)
