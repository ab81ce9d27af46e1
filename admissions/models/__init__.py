"""Database models for the admissions service"""
from .user import User, UserRole, UserStatus, ReferralSource, REFERRAL_SOURCE_LABELS
from .admin import Admin, AdminRole, AdminStatus, AdminPermission, DEFAULT_ADMIN_PERMISSIONS
from .billing import (
    PaymentPlan,
    Subscription,
    Transaction,
    ApplicationFee,
    PaystackWebhook,
    PaymentPlanType,
    SubscriptionStatus,
    TransactionStatus,
    ApplicationFeeStatus
)

__all__ = [
    "User",
    "UserRole",
    "UserStatus",
    "ReferralSource",
    "REFERRAL_SOURCE_LABELS",
    "Admin",
    "AdminRole",
    "AdminStatus",
    "AdminPermission",
    "DEFAULT_ADMIN_PERMISSIONS",
    "PaymentPlan",
    "Subscription",
    "Transaction",
    "ApplicationFee",
    "PaystackWebhook",
    "PaymentPlanType",
    "SubscriptionStatus",
    "TransactionStatus",
    "ApplicationFeeStatus"
]
