import enum
import uuid
from sqlalchemy import Column, String, Integer, DateTime, Boolean, Enum as SAEnum
from sqlalchemy.sql import func

from ..core.database import Base


class UserRole(str, enum.Enum):
    STUDENT = "student"
    TEACHER = "teacher"
    PARENT = "parent"
    ADMIN = "admin"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    PENDING = "pending"


class ReferralSource(str, enum.Enum):
    """Answers to "how did you hear about us", in marketing report order"""
    WHATSAPP = "whatsapp"
    FRIEND_REFERRAL = "friend_referral"
    FACEBOOK = "facebook"
    LINKEDIN = "linkedin"
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    GOOGLE_SEARCH = "google_search"
    EVENT_CONFERENCE = "event_conference"
    BLOG_ARTICLE = "blog_article"
    OTHER = "other"


REFERRAL_SOURCE_LABELS = {
    ReferralSource.WHATSAPP: "Whatsapp",
    ReferralSource.FRIEND_REFERRAL: "Friend/Referral",
    ReferralSource.FACEBOOK: "Facebook",
    ReferralSource.LINKEDIN: "Linkedin",
    ReferralSource.TWITTER: "Twitter",
    ReferralSource.INSTAGRAM: "Instagram",
    ReferralSource.GOOGLE_SEARCH: "Google Search",
    ReferralSource.EVENT_CONFERENCE: "Event/ Conference",
    ReferralSource.BLOG_ARTICLE: "Blog/ Article",
    ReferralSource.OTHER: "Other",
}


class User(Base):
    """Applicant / student account"""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)

    role = Column(
        SAEnum(UserRole, native_enum=False, length=20, values_callable=lambda m: [e.value for e in m]),
        nullable=False,
        default=UserRole.STUDENT
    )
    status = Column(
        SAEnum(UserStatus, native_enum=False, length=20, values_callable=lambda m: [e.value for e in m]),
        nullable=False,
        default=UserStatus.ACTIVE,
        index=True
    )

    phone_number = Column(String(20), nullable=True)
    how_did_you_hear_about_us = Column(String(100), nullable=True)

    # Email verification / password reset (6-digit codes)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    email_verification_token = Column(String(10), nullable=True, index=True)
    password_reset_token = Column(String(10), nullable=True, index=True)
    password_reset_expires = Column(DateTime(timezone=True), nullable=True)

    # Incremented to invalidate all outstanding refresh tokens
    token_version = Column(Integer, default=0, nullable=False)
    last_login = Column(DateTime(timezone=True), nullable=True)

    # Denormalized from the billing ledger
    application_fee_paid = Column(Boolean, default=False, nullable=False)
    subscription_id = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
