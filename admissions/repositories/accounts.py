"""Data access layer for user and admin accounts"""

from typing import Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..models.user import User, UserStatus
from ..models.admin import Admin, AdminPermission, AdminRole, AdminStatus
from ..utils.dates import utc_now


class UserRepository:
    """Repository for user accounts (the user directory)"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> User:
        fields["email"] = fields["email"].strip().lower()
        user = User(**fields)
        self.db.add(user)
        self.db.flush()
        return user

    def find_by_id(self, user_id: str) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def find_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.strip().lower()).first()

    def find_by_verification_token(self, token: str) -> Optional[User]:
        return self.db.query(User).filter(User.email_verification_token == token).first()

    def find_by_reset_token(self, token: str) -> Optional[User]:
        return self.db.query(User).filter(
            User.password_reset_token == token,
            User.password_reset_expires > utc_now()
        ).first()

    def update_last_login(self, user: User) -> None:
        user.last_login = utc_now()
        self.db.flush()

    def set_application_fee_paid(self, user_id: str, paid: bool = True) -> None:
        user = self.find_by_id(user_id)
        if user:
            user.application_fee_paid = paid
            self.db.flush()

    def set_subscription(self, user_id: str, subscription_id: str) -> None:
        user = self.find_by_id(user_id)
        if user:
            user.subscription_id = subscription_id
            self.db.flush()

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None
    ) -> Tuple[List[User], int]:
        query = self.db.query(User)
        if status:
            query = query.filter(User.status == status)
        if search:
            pattern = f"%{search.strip().lower()}%"
            query = query.filter(or_(
                func.lower(User.email).like(pattern),
                func.lower(User.first_name).like(pattern),
                func.lower(User.last_name).like(pattern)
            ))

        total = query.count()
        users = (
            query.order_by(User.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return users, total

    def count_by_status(self) -> Dict[str, int]:
        rows = self.db.query(User.status, func.count(User.id)).group_by(User.status).all()
        counts = {status.value: 0 for status in UserStatus}
        for status, count in rows:
            counts[status.value] = count
        return counts

    def count_application_fee_paid(self) -> int:
        return self.db.query(func.count(User.id)).filter(User.application_fee_paid == True).scalar() or 0  # noqa: E712

    def count_by_referral_source(self) -> Dict[Optional[str], int]:
        rows = (
            self.db.query(User.how_did_you_hear_about_us, func.count(User.id))
            .group_by(User.how_did_you_hear_about_us)
            .all()
        )
        return {source: count for source, count in rows}


class AdminRepository:
    """Repository for back-office admins"""

    def __init__(self, db: Session):
        self.db = db

    def create(self, **fields) -> Admin:
        fields["email"] = fields["email"].strip().lower()
        admin = Admin(**fields)
        self.db.add(admin)
        self.db.flush()
        return admin

    def find_by_id(self, admin_id: str) -> Optional[Admin]:
        return self.db.query(Admin).filter(Admin.id == admin_id).first()

    def find_by_email(self, email: str) -> Optional[Admin]:
        return self.db.query(Admin).filter(Admin.email == email.strip().lower()).first()

    def list_admins(self, page: int = 1, limit: int = 10) -> Tuple[List[Admin], int]:
        query = self.db.query(Admin)
        total = query.count()
        admins = query.order_by(Admin.created_at.desc()).offset((page - 1) * limit).limit(limit).all()
        return admins, total

    def update_status(self, admin: Admin, status: AdminStatus) -> Admin:
        admin.status = status
        self.db.flush()
        return admin

    def update(self, admin: Admin, **fields) -> Admin:
        if "email" in fields:
            fields["email"] = fields["email"].strip().lower()
        for key, value in fields.items():
            setattr(admin, key, value)
        self.db.flush()
        return admin

    def update_permissions(self, admin: Admin, permissions: List[str]) -> Admin:
        admin.permissions = list(permissions)
        self.db.flush()
        return admin

    def delete(self, admin: Admin) -> None:
        self.db.delete(admin)
        self.db.flush()

    def search(self, term: str, limit: int = 10) -> List[Admin]:
        pattern = f"%{term.strip().lower()}%"
        return (
            self.db.query(Admin)
            .filter(or_(
                func.lower(Admin.email).like(pattern),
                func.lower(Admin.first_name).like(pattern),
                func.lower(Admin.last_name).like(pattern)
            ))
            .order_by(Admin.created_at.desc())
            .limit(limit)
            .all()
        )

    def find_by_role(self, role: AdminRole) -> List[Admin]:
        return self.db.query(Admin).filter(Admin.role == role).order_by(Admin.created_at.desc()).all()

    def find_active_with_permission(self, permission: AdminPermission) -> List[Admin]:
        # permissions is a JSON list, matched in Python
        active = self.db.query(Admin).filter(Admin.status == AdminStatus.ACTIVE).order_by(Admin.created_at.desc())
        return [admin for admin in active if admin.has_permission(permission)]

    def count_by_status(self) -> Dict[str, int]:
        rows = self.db.query(Admin.status, func.count(Admin.id)).group_by(Admin.status).all()
        counts = {status.value: 0 for status in AdminStatus}
        for status, count in rows:
            counts[status.value] = count
        return counts

    def count_by_role(self) -> Dict[str, int]:
        rows = self.db.query(Admin.role, func.count(Admin.id)).group_by(Admin.role).all()
        counts = {role.value: 0 for role in AdminRole}
        for role, count in rows:
            counts[role.value] = count
        return counts

    def update_last_login(self, admin: Admin) -> None:
        admin.last_login = utc_now()
        self.db.flush()
