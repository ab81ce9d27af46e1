import enum
import uuid
from sqlalchemy import Column, String, DateTime, JSON, Enum as SAEnum
from sqlalchemy.sql import func

from ..core.database import Base


class AdminRole(str, enum.Enum):
    SUPER_ADMIN = "super_admin"
    ADMIN = "admin"
    MODERATOR = "moderator"


class AdminStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class AdminPermission(str, enum.Enum):
    MANAGE_USERS = "manage_users"
    VIEW_USERS = "view_users"
    MANAGE_SUBSCRIPTIONS = "manage_subscriptions"
    VIEW_SUBSCRIPTIONS = "view_subscriptions"
    MANAGE_PAYMENTS = "manage_payments"
    VIEW_PAYMENTS = "view_payments"
    MANAGE_ADMINS = "manage_admins"


DEFAULT_ADMIN_PERMISSIONS = {
    AdminRole.SUPER_ADMIN: [p.value for p in AdminPermission],
    AdminRole.ADMIN: [
        AdminPermission.MANAGE_USERS.value,
        AdminPermission.VIEW_USERS.value,
        AdminPermission.MANAGE_SUBSCRIPTIONS.value,
        AdminPermission.VIEW_SUBSCRIPTIONS.value,
        AdminPermission.VIEW_PAYMENTS.value,
    ],
    AdminRole.MODERATOR: [
        AdminPermission.VIEW_USERS.value,
        AdminPermission.VIEW_SUBSCRIPTIONS.value,
        AdminPermission.VIEW_PAYMENTS.value,
    ],
}


class Admin(Base):
    """Back-office administrator account"""
    __tablename__ = "admins"

    id = Column(String(36), primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    hashed_password = Column(String(255), nullable=False)

    role = Column(
        SAEnum(AdminRole, native_enum=False, length=20, values_callable=lambda m: [e.value for e in m]),
        nullable=False,
        default=AdminRole.ADMIN
    )
    status = Column(
        SAEnum(AdminStatus, native_enum=False, length=20, values_callable=lambda m: [e.value for e in m]),
        nullable=False,
        default=AdminStatus.ACTIVE
    )
    permissions = Column(JSON, default=list)

    last_login = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(36), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    def has_permission(self, permission: AdminPermission) -> bool:
        if self.role == AdminRole.SUPER_ADMIN:
            return True
        return permission.value in (self.permissions or [])
