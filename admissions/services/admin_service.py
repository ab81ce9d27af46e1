import math
from decimal import Decimal
from typing import Dict, Any, List, Optional, Union

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError, ValidationError
from ..core.logging_config import get_logger
from ..models.admin import Admin, AdminPermission, AdminRole, AdminStatus, DEFAULT_ADMIN_PERMISSIONS
from ..models.billing import PaymentPlan, PaymentPlanType
from ..models.user import UserStatus, ReferralSource, REFERRAL_SOURCE_LABELS
from ..repositories.accounts import UserRepository, AdminRepository
from ..repositories.billing import PlanRepository, SubscriptionRepository, ApplicationFeeRepository
from .auth_service import AuthService

logger = get_logger("admin_service")


def _pagination(page: int, limit: int, total: int) -> Dict[str, int]:
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


class AdminService:
    """Back-office operations: user directory, plan catalog and admin accounts"""

    def __init__(self, db: Session):
        self.db = db
        self.users = UserRepository(db)
        self.admins = AdminRepository(db)
        self.plans = PlanRepository(db)
        self.subscriptions = SubscriptionRepository(db)
        self.fees = ApplicationFeeRepository(db)

    # Users

    def list_users(
        self,
        page: int = 1,
        limit: int = 10,
        status: Optional[UserStatus] = None,
        search: Optional[str] = None
    ) -> Dict[str, Any]:
        users, total = self.users.list_users(page=page, limit=limit, status=status, search=search)
        return {"users": users, "pagination": _pagination(page, limit, total)}

    def get_user(self, user_id: str) -> Dict[str, Any]:
        user = self.users.find_by_id(user_id)
        if not user:
            raise NotFoundError("User not found")
        return {
            "user": user,
            "subscriptions": self.subscriptions.find_by_user(user_id),
            "application_fee": self.fees.find_latest_by_user(user_id),
        }

    def get_user_status_counts(self) -> Dict[str, Any]:
        counts = self.users.count_by_status()
        return {
            "total": sum(counts.values()),
            "by_status": counts,
            "application_fee_paid": self.users.count_application_fee_paid(),
        }

    # Payment plans

    def list_plans(self) -> List[PaymentPlan]:
        return self.plans.find_all()

    def create_plan(
        self,
        name: str,
        plan_type: Union[str, PaymentPlanType],
        total_amount: Decimal,
        installment_amount: Decimal,
        number_of_installments: int,
        semesters_per_installment: int,
        description: Optional[str] = None,
        is_active: bool = True
    ) -> PaymentPlan:
        """
        Add a plan to the catalog.

        The installments must add up to the total and cover the full program.
        """
        try:
            plan_type = PaymentPlanType(plan_type)
        except ValueError:
            raise ValidationError(f"Invalid plan type: {plan_type}")

        if self.plans.find_any_by_type(plan_type):
            raise ConflictError(f"A plan of type {plan_type.value} already exists")

        total_amount = Decimal(str(total_amount))
        installment_amount = Decimal(str(installment_amount))
        if installment_amount * number_of_installments != total_amount:
            raise ValidationError("installment_amount x number_of_installments must equal total_amount")
        if semesters_per_installment * number_of_installments != settings.MAX_SEMESTERS:
            raise ValidationError(f"Installments must cover exactly {settings.MAX_SEMESTERS} semesters")

        plan = self.plans.create(
            name=name,
            type=plan_type,
            description=description,
            total_amount=total_amount,
            installment_amount=installment_amount,
            number_of_installments=number_of_installments,
            semesters_per_installment=semesters_per_installment,
            is_active=is_active
        )
        self.db.commit()
        self.db.refresh(plan)
        logger.info(f"Created payment plan {plan.type.value} ({plan.id})")
        return plan

    def set_plan_active(self, plan_id: str, is_active: bool) -> PaymentPlan:
        plan = self.plans.find_by_id(plan_id)
        if not plan:
            raise NotFoundError("Payment plan not found")
        self.plans.set_active(plan, is_active)
        self.db.commit()
        self.db.refresh(plan)
        logger.info(f"Payment plan {plan.id} {'activated' if is_active else 'deactivated'}")
        return plan

    # Admin accounts

    def list_admins(self, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        admins, total = self.admins.list_admins(page=page, limit=limit)
        return {"admins": admins, "pagination": _pagination(page, limit, total)}

    def create_admin(
        self,
        created_by: Admin,
        first_name: str,
        last_name: str,
        email: str,
        password: str,
        role: AdminRole = AdminRole.ADMIN,
        permissions: Optional[List[str]] = None
    ) -> Admin:
        if self.admins.find_by_email(email):
            raise ConflictError("Admin with this email already exists")
        AuthService.validate_password(password)

        admin = self.admins.create(
            first_name=first_name,
            last_name=last_name,
            email=email,
            hashed_password=AuthService.get_password_hash(password),
            role=role,
            status=AdminStatus.ACTIVE,
            permissions=permissions if permissions is not None else list(DEFAULT_ADMIN_PERMISSIONS[role]),
            created_by=created_by.id if created_by else None
        )
        self.db.commit()
        self.db.refresh(admin)
        logger.info(f"Admin {admin.id} created by {admin.created_by}")
        return admin

    def update_admin_status(self, actor: Admin, admin_id: str, status: AdminStatus) -> Admin:
        admin = self.admins.find_by_id(admin_id)
        if not admin:
            raise NotFoundError("Admin not found")
        if actor and admin.id == actor.id:
            raise ValidationError("You cannot change your own status")

        self.admins.update_status(admin, status)
        self.db.commit()
        self.db.refresh(admin)
        return admin

    def get_admin(self, admin_id: str) -> Admin:
        admin = self.admins.find_by_id(admin_id)
        if not admin:
            raise NotFoundError("Admin not found")
        return admin

    def update_admin(
        self,
        actor: Admin,
        admin_id: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[AdminRole] = None
    ) -> Admin:
        """Edit profile fields and role. Omitted fields are left unchanged."""
        admin = self.get_admin(admin_id)
        if role is not None and role != admin.role and actor and admin.id == actor.id:
            raise ValidationError("You cannot change your own role")

        fields: Dict[str, Any] = {}
        if first_name is not None:
            fields["first_name"] = first_name
        if last_name is not None:
            fields["last_name"] = last_name
        if email is not None and email.strip().lower() != admin.email:
            if self.admins.find_by_email(email):
                raise ConflictError("Admin with this email already exists")
            fields["email"] = email
        if role is not None:
            fields["role"] = role

        self.admins.update(admin, **fields)
        self.db.commit()
        self.db.refresh(admin)
        logger.info(f"Admin {admin.id} updated by {actor.id if actor else None}")
        return admin

    def update_admin_permissions(self, actor: Admin, admin_id: str, permissions: List[str]) -> Admin:
        admin = self.get_admin(admin_id)
        if actor and admin.id == actor.id:
            raise ValidationError("You cannot change your own permissions")

        # Order-preserving dedupe
        self.admins.update_permissions(admin, list(dict.fromkeys(permissions)))
        self.db.commit()
        self.db.refresh(admin)
        logger.info(f"Admin {admin.id} permissions set to {admin.permissions}")
        return admin

    def delete_admin(self, actor: Admin, admin_id: str) -> None:
        admin = self.get_admin(admin_id)
        if actor and admin.id == actor.id:
            raise ValidationError("You cannot delete your own account")

        self.admins.delete(admin)
        self.db.commit()
        logger.info(f"Admin {admin_id} deleted by {actor.id if actor else None}")

    def search_admins(self, term: str, limit: int = 10) -> List[Admin]:
        return self.admins.search(term, limit)

    def get_admins_by_role(self, role: AdminRole) -> List[Admin]:
        return self.admins.find_by_role(role)

    def get_admins_by_permission(self, permission: AdminPermission) -> List[Admin]:
        return self.admins.find_active_with_permission(permission)

    def get_admin_stats(self) -> Dict[str, Any]:
        by_status = self.admins.count_by_status()
        return {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_role": self.admins.count_by_role(),
        }

    # Reporting

    def get_marketing_funnel(self) -> List[Dict[str, Any]]:
        """Registrations per referral source. Blank or unrecognised answers count as other."""
        counts = {source: 0 for source in ReferralSource}
        for answer, count in self.users.count_by_referral_source().items():
            try:
                source = ReferralSource((answer or "").strip().lower())
            except ValueError:
                source = ReferralSource.OTHER
            counts[source] += count

        return [
            {"value": source.value, "label": REFERRAL_SOURCE_LABELS[source], "count": counts[source]}
            for source in ReferralSource
        ]
