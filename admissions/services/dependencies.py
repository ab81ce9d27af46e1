from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from typing import Optional
import logging

from sqlalchemy.orm import Session

from ..core.database import get_db
from ..core.exceptions import AuthenticationError
from ..models.admin import Admin, AdminPermission, AdminRole, AdminStatus
from ..models.user import User, UserStatus
from ..repositories.accounts import UserRepository, AdminRepository
from .admin_service import AdminService
from .application_fee_service import ApplicationFeeService
from .auth_service import AuthService, UserAuthService, AdminAuthService, SCOPE_USER, SCOPE_ADMIN
from .email_service import EmailService
from .paystack_client import PaystackClient
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)
# Configure HTTPBearer to return 401 instead of 403 for authentication failures
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"}
    )


def _decode(credentials: Optional[HTTPAuthorizationCredentials], scope: str) -> dict:
    if not credentials:
        raise _unauthorized("Authentication required")
    try:
        return AuthService.decode_token(credentials.credentials, token_type="access", scope=scope)
    except AuthenticationError as e:
        logger.warning(f"Rejected {scope} token: {e.message}")
        raise _unauthorized(e.message)


# Process-wide clients built in the application lifespan

def get_paystack_client(request: Request) -> PaystackClient:
    return request.app.state.paystack_client


def get_email_service(request: Request) -> EmailService:
    return request.app.state.email_service


# Per-request services

def get_subscription_service(
    db: Session = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
    email_service: EmailService = Depends(get_email_service)
) -> SubscriptionService:
    return SubscriptionService(db, paystack, email_service)


def get_application_fee_service(
    db: Session = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
    email_service: EmailService = Depends(get_email_service)
) -> ApplicationFeeService:
    return ApplicationFeeService(db, paystack, email_service)


def get_user_auth_service(
    db: Session = Depends(get_db),
    email_service: EmailService = Depends(get_email_service),
    subscription_service: SubscriptionService = Depends(get_subscription_service)
) -> UserAuthService:
    return UserAuthService(db, email_service, subscription_service)


def get_admin_auth_service(db: Session = Depends(get_db)) -> AdminAuthService:
    return AdminAuthService(db)


def get_admin_service(db: Session = Depends(get_db)) -> AdminService:
    return AdminService(db)


# Authentication

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Resolve the applicant behind a user-scoped access token"""
    payload = _decode(credentials, SCOPE_USER)

    user = UserRepository(db).find_by_id(payload["sub"])
    if not user:
        raise _unauthorized("User not found")
    if payload.get("ver") != user.token_version:
        raise _unauthorized("Token has been revoked")
    if user.status == UserStatus.SUSPENDED:
        raise _unauthorized("Account is suspended")

    return user


async def get_current_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> Admin:
    """Resolve the admin behind an admin-scoped access token"""
    payload = _decode(credentials, SCOPE_ADMIN)

    admin = AdminRepository(db).find_by_id(payload["sub"])
    if not admin:
        raise _unauthorized("Admin not found")
    if admin.status != AdminStatus.ACTIVE:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin account is not active")

    return admin


def require_super_admin(admin: Admin = Depends(get_current_admin)) -> Admin:
    if admin.role != AdminRole.SUPER_ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")
    return admin


def require_permission(permission: AdminPermission):
    """Dependency factory: the current admin must hold the given permission"""

    def checker(admin: Admin = Depends(get_current_admin)) -> Admin:
        if not admin.has_permission(permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permission: {permission.value}"
            )
        return admin

    return checker
