from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
import os
import secrets

from jose import JWTError, ExpiredSignatureError, jwt
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import (
    AuthenticationError, ConflictError, NotFoundError, PermissionDeniedError, ValidationError
)
from ..core.logging_config import get_logger
from ..models.admin import Admin, AdminStatus
from ..models.billing import PaymentPlanType
from ..models.user import User, UserRole, UserStatus
from ..repositories.accounts import UserRepository, AdminRepository
from ..utils.dates import utc_now
from . import notifications

logger = get_logger("auth")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

SCOPE_USER = "user"
SCOPE_ADMIN = "admin"


class AuthService:
    """Password hashing, JWT issuance and one-time codes"""

    @staticmethod
    def verify_password(plain_password: str, hashed_password: str) -> bool:
        """Verify a plain password against its hash"""
        return pwd_context.verify(plain_password, hashed_password)

    @staticmethod
    def get_password_hash(password: str) -> str:
        """Hash a password"""
        return pwd_context.hash(password)

    @staticmethod
    def validate_password(password: str) -> None:
        if not password or len(password) < settings.PASSWORD_MIN_LENGTH:
            raise ValidationError(f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters long")

    @staticmethod
    def _secret(token_type: str) -> str:
        if token_type == "refresh":
            return os.environ.get("JWT_REFRESH_SECRET_KEY") or os.environ.get("JWT_SECRET_KEY")
        return os.environ.get("JWT_SECRET_KEY")

    @staticmethod
    def create_access_token(subject: str, scope: str, version: int = 0,
                            extra: Optional[Dict[str, Any]] = None,
                            expires_delta: Optional[timedelta] = None) -> str:
        """Create a JWT access token"""
        expire = datetime.now(timezone.utc) + (
            expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
        )
        to_encode = dict(extra or {})
        to_encode.update({"sub": subject, "scope": scope, "ver": version, "type": "access", "exp": expire})
        return jwt.encode(to_encode, AuthService._secret("access"), algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def create_refresh_token(subject: str, scope: str, version: int = 0) -> str:
        """Create a JWT refresh token"""
        expire = datetime.now(timezone.utc) + timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS)
        to_encode = {"sub": subject, "scope": scope, "ver": version, "type": "refresh", "exp": expire}
        return jwt.encode(to_encode, AuthService._secret("refresh"), algorithm=settings.JWT_ALGORITHM)

    @staticmethod
    def create_token_pair(subject: str, scope: str, version: int = 0,
                          extra: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return {
            "access_token": AuthService.create_access_token(subject, scope, version, extra),
            "refresh_token": AuthService.create_refresh_token(subject, scope, version),
            "token_type": "bearer",
            "expires_in": settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        }

    @staticmethod
    def decode_token(token: str, token_type: str = "access", scope: Optional[str] = None) -> Dict[str, Any]:
        """
        Verify and decode a JWT.

        Raises:
            AuthenticationError: expired, malformed, wrong type or wrong scope
        """
        try:
            payload = jwt.decode(token, AuthService._secret(token_type), algorithms=[settings.JWT_ALGORITHM])
        except ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except JWTError:
            raise AuthenticationError("Invalid token")

        if payload.get("type") != token_type:
            raise AuthenticationError("Invalid token type")
        if scope and payload.get("scope") != scope:
            raise AuthenticationError("Invalid token scope")
        if not payload.get("sub"):
            raise AuthenticationError("Invalid token")
        return payload

    @staticmethod
    def generate_code() -> str:
        """Six-digit numeric code for email verification and password reset"""
        return str(100000 + secrets.randbelow(900000))


def _user_payload(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
        "role": user.role,
        "status": user.status,
        "is_email_verified": user.is_email_verified,
        "application_fee_paid": user.application_fee_paid,
        "subscription_id": user.subscription_id,
    }


class UserAuthService:
    """Registration, login and account recovery for applicants"""

    def __init__(self, db: Session, email_service=None, subscription_service=None):
        self.db = db
        self.users = UserRepository(db)
        self.email_service = email_service
        self.subscription_service = subscription_service

    def _tokens(self, user: User) -> Dict[str, Any]:
        return AuthService.create_token_pair(
            user.id, SCOPE_USER, user.token_version, extra={"email": user.email, "role": user.role.value}
        )

    def register(
        self,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        phone_number: Optional[str] = None,
        how_did_you_hear_about_us: Optional[str] = None,
        role: UserRole = UserRole.STUDENT
    ) -> Dict[str, Any]:
        if self.users.find_by_email(email):
            raise ConflictError("User with this email already exists")
        AuthService.validate_password(password)

        code = AuthService.generate_code()
        user = self.users.create(
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            hashed_password=AuthService.get_password_hash(password),
            phone_number=phone_number,
            how_did_you_hear_about_us=how_did_you_hear_about_us,
            role=role,
            status=UserStatus.ACTIVE,
            email_verification_token=code,
            token_version=0
        )
        self.db.commit()
        self.db.refresh(user)
        logger.info(f"Registered user {user.id}")

        # Every applicant starts on the early bird plan; they may switch before paying
        if self.subscription_service is not None:
            try:
                self.subscription_service.create_subscription(user.id, PaymentPlanType.EARLY_BIRD)
            except Exception as e:
                logger.warning(f"Default subscription not created for user {user.id}: {e}")
                self.db.rollback()

        notifications.send_verification_email(self.email_service, user.email, user.first_name, code)

        return {"user": _user_payload(user), "tokens": self._tokens(user)}

    def login(self, email: str, password: str) -> Dict[str, Any]:
        user = self.users.find_by_email(email)
        if not user or not AuthService.verify_password(password, user.hashed_password):
            raise AuthenticationError("Invalid email or password")
        if user.status in (UserStatus.SUSPENDED, UserStatus.INACTIVE):
            raise PermissionDeniedError("Account is not active. Please contact administrator.")

        self.users.update_last_login(user)
        self.db.commit()
        self.db.refresh(user)
        return {"user": _user_payload(user), "tokens": self._tokens(user)}

    def refresh(self, refresh_token: str) -> Dict[str, Any]:
        payload = AuthService.decode_token(refresh_token, token_type="refresh", scope=SCOPE_USER)
        user = self.users.find_by_id(payload["sub"])
        if not user:
            raise AuthenticationError("User not found")
        if payload.get("ver") != user.token_version:
            raise AuthenticationError("Invalid refresh token")
        return {"user": _user_payload(user), "tokens": self._tokens(user)}

    def logout_all(self, user_id: str) -> None:
        """Invalidate every token issued so far"""
        user = self.users.find_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        user.token_version = (user.token_version or 0) + 1
        self.db.commit()

    def verify_email(self, code: str) -> User:
        user = self.users.find_by_verification_token(code)
        if not user:
            raise ValidationError("Invalid or expired verification token")

        user.is_email_verified = True
        user.email_verification_token = None
        self.db.commit()
        self.db.refresh(user)

        notifications.send_welcome_email(self.email_service, user.email, user.first_name)
        return user

    def resend_verification(self, email: str) -> None:
        user = self.users.find_by_email(email)
        if not user:
            raise NotFoundError("User not found")
        if user.is_email_verified:
            raise ValidationError("Email is already verified")

        code = AuthService.generate_code()
        user.email_verification_token = code
        self.db.commit()
        notifications.send_verification_email(self.email_service, user.email, user.first_name, code)

    def forgot_password(self, email: str) -> None:
        """Issue a reset code; unknown emails are ignored so accounts cannot be probed"""
        user = self.users.find_by_email(email)
        if not user:
            logger.info("Password reset requested for unknown email")
            return

        code = AuthService.generate_code()
        user.password_reset_token = code
        user.password_reset_expires = utc_now() + timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES)
        self.db.commit()
        notifications.send_password_reset_email(self.email_service, user.email, user.first_name, code)

    def reset_password(self, code: str, new_password: str) -> None:
        user = self.users.find_by_reset_token(code)
        if not user:
            raise ValidationError("Invalid or expired password reset token")
        AuthService.validate_password(new_password)

        user.hashed_password = AuthService.get_password_hash(new_password)
        user.password_reset_token = None
        user.password_reset_expires = None
        user.token_version = (user.token_version or 0) + 1
        self.db.commit()

    def change_password(self, user_id: str, current_password: str, new_password: str) -> None:
        user = self.users.find_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        if not AuthService.verify_password(current_password, user.hashed_password):
            raise AuthenticationError("Current password is incorrect")
        AuthService.validate_password(new_password)

        user.hashed_password = AuthService.get_password_hash(new_password)
        self.db.commit()


class AdminAuthService:
    """Admin login"""

    def __init__(self, db: Session):
        self.db = db
        self.admins = AdminRepository(db)

    def login(self, email: str, password: str) -> Dict[str, Any]:
        admin = self.admins.find_by_email(email)
        if not admin or not AuthService.verify_password(password, admin.hashed_password):
            raise AuthenticationError("Invalid email or password")
        if admin.status != AdminStatus.ACTIVE:
            raise PermissionDeniedError("Admin account is not active")

        self.admins.update_last_login(admin)
        self.db.commit()
        self.db.refresh(admin)

        tokens = AuthService.create_token_pair(
            admin.id, SCOPE_ADMIN, extra={"email": admin.email, "role": admin.role.value}
        )
        return {"admin": admin, "tokens": tokens}

    def get_admin(self, admin_id: str) -> Admin:
        admin = self.admins.find_by_id(admin_id)
        if not admin:
            raise NotFoundError("Admin not found")
        return admin
