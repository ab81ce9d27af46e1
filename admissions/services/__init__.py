"""Business services for the admissions service"""
from .paystack_client import PaystackClient
from .email_service import EmailService
from .subscription_service import SubscriptionService
from .application_fee_service import ApplicationFeeService
from .auth_service import AuthService, UserAuthService, AdminAuthService
from .admin_service import AdminService

__all__ = [
    "PaystackClient",
    "EmailService",
    "SubscriptionService",
    "ApplicationFeeService",
    "AuthService",
    "UserAuthService",
    "AdminAuthService",
    "AdminService"
]
