from decimal import Decimal
from typing import Dict, Any, List, Optional
import logging

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, EmailStr, Field

from ..models.admin import Admin, AdminPermission, AdminRole, AdminStatus
from ..models.billing import PaymentPlanType
from ..models.user import UserStatus
from ..schemas import (
    AdminResponse, ApplicationFeeResponse, PlanResponse, SubscriptionResponse, UserResponse, serialize
)
from ..services.admin_service import AdminService
from ..services.application_fee_service import ApplicationFeeService
from ..services.auth_service import AdminAuthService
from ..services.dependencies import (
    get_admin_auth_service, get_admin_service, get_application_fee_service, get_subscription_service,
    get_current_admin, require_permission, require_super_admin
)
from ..services.subscription_service import SubscriptionService
from ..utils.responses import success_response

router = APIRouter()
logger = logging.getLogger(__name__)


class AdminLoginRequest(BaseModel):
    email: EmailStr
    password: str


class PlanCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: PaymentPlanType
    description: Optional[str] = None
    total_amount: Decimal = Field(..., gt=0)
    installment_amount: Decimal = Field(..., gt=0)
    number_of_installments: int = Field(..., ge=1, le=4)
    semesters_per_installment: int = Field(..., ge=1, le=4)
    is_active: bool = True


class AdminCreateRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str
    role: AdminRole = AdminRole.ADMIN
    permissions: Optional[List[AdminPermission]] = None


class AdminStatusRequest(BaseModel):
    status: AdminStatus


class AdminUpdateRequest(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    email: Optional[EmailStr] = None
    role: Optional[AdminRole] = None


class AdminPermissionsRequest(BaseModel):
    permissions: List[AdminPermission]


@router.post("/auth/login")
async def admin_login(
    request: AdminLoginRequest,
    service: AdminAuthService = Depends(get_admin_auth_service)
) -> Dict[str, Any]:
    result = service.login(request.email, request.password)
    return success_response("Admin login successful", {
        "admin": serialize(AdminResponse, result["admin"]),
        **result["tokens"],
    })


@router.get("/me")
async def admin_me(admin: Admin = Depends(get_current_admin)) -> Dict[str, Any]:
    return success_response("Admin profile retrieved successfully", serialize(AdminResponse, admin))


# Users

@router.get("/users")
async def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[UserStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=100),
    admin: Admin = Depends(require_permission(AdminPermission.VIEW_USERS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    result = service.list_users(page=page, limit=limit, status=status_filter, search=search)
    return success_response("Users retrieved successfully", {
        "users": serialize(UserResponse, result["users"]),
        "pagination": result["pagination"],
    })


@router.get("/users/stats/status-counts")
async def user_status_counts(
    admin: Admin = Depends(require_permission(AdminPermission.VIEW_USERS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    return success_response("User status counts retrieved successfully", service.get_user_status_counts())


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    admin: Admin = Depends(require_permission(AdminPermission.VIEW_USERS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    result = service.get_user(user_id)
    return success_response("User retrieved successfully", {
        "user": serialize(UserResponse, result["user"]),
        "subscriptions": serialize(SubscriptionResponse, result["subscriptions"]),
        "application_fee": serialize(ApplicationFeeResponse, result["application_fee"]),
    })


# Statistics

@router.get("/stats/payments")
async def payment_stats(
    admin: Admin = Depends(require_permission(AdminPermission.VIEW_PAYMENTS)),
    service: SubscriptionService = Depends(get_subscription_service)
) -> Dict[str, Any]:
    return success_response("Payment statistics retrieved successfully", service.get_payment_stats())


@router.get("/stats/application-fees")
async def application_fee_stats(
    admin: Admin = Depends(require_permission(AdminPermission.VIEW_PAYMENTS)),
    service: ApplicationFeeService = Depends(get_application_fee_service)
) -> Dict[str, Any]:
    return success_response("Application fee statistics retrieved successfully", service.get_statistics())


@router.get("/stats/marketing-funnel")
async def marketing_funnel(
    admin: Admin = Depends(require_permission(AdminPermission.VIEW_USERS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    return success_response("Marketing funnel stats retrieved successfully", service.get_marketing_funnel())


# Payment plans

@router.get("/plans")
async def list_plans(
    admin: Admin = Depends(get_current_admin),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    return success_response("Payment plans retrieved successfully", serialize(PlanResponse, service.list_plans()))


@router.post("/plans", status_code=status.HTTP_201_CREATED)
async def create_plan(
    request: PlanCreateRequest,
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_SUBSCRIPTIONS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    plan = service.create_plan(
        name=request.name,
        plan_type=request.type,
        total_amount=request.total_amount,
        installment_amount=request.installment_amount,
        number_of_installments=request.number_of_installments,
        semesters_per_installment=request.semesters_per_installment,
        description=request.description,
        is_active=request.is_active
    )
    logger.info(f"Admin {admin.id} created plan {plan.id}")
    return success_response("Payment plan created successfully", serialize(PlanResponse, plan))


@router.patch("/plans/{plan_id}/activate")
async def activate_plan(
    plan_id: str,
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_SUBSCRIPTIONS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    plan = service.set_plan_active(plan_id, True)
    return success_response("Payment plan activated", serialize(PlanResponse, plan))


@router.patch("/plans/{plan_id}/deactivate")
async def deactivate_plan(
    plan_id: str,
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_SUBSCRIPTIONS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    plan = service.set_plan_active(plan_id, False)
    return success_response("Payment plan deactivated", serialize(PlanResponse, plan))


# Admin accounts

@router.get("/admins")
async def list_admins(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_ADMINS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    result = service.list_admins(page=page, limit=limit)
    return success_response("Admins retrieved successfully", {
        "admins": serialize(AdminResponse, result["admins"]),
        "pagination": result["pagination"],
    })


@router.post("/admins", status_code=status.HTTP_201_CREATED)
async def create_admin(
    request: AdminCreateRequest,
    admin: Admin = Depends(require_super_admin),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    created = service.create_admin(
        created_by=admin,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password,
        role=request.role,
        permissions=[p.value for p in request.permissions] if request.permissions is not None else None
    )
    return success_response("Admin created successfully", serialize(AdminResponse, created))


@router.get("/admins/stats")
async def admin_stats(
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_ADMINS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    return success_response("Admin statistics retrieved successfully", service.get_admin_stats())


@router.get("/admins/search")
async def search_admins(
    q: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(10, ge=1, le=100),
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_ADMINS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    admins = service.search_admins(q, limit)
    return success_response("Admins retrieved successfully", serialize(AdminResponse, admins))


@router.get("/admins/role/{role}")
async def admins_by_role(
    role: AdminRole,
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_ADMINS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    return success_response("Admins retrieved successfully", serialize(AdminResponse, service.get_admins_by_role(role)))


@router.get("/admins/permission/{permission}")
async def admins_by_permission(
    permission: AdminPermission,
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_ADMINS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    admins = service.get_admins_by_permission(permission)
    return success_response("Admins retrieved successfully", serialize(AdminResponse, admins))


@router.get("/admins/{admin_id}")
async def get_admin(
    admin_id: str,
    admin: Admin = Depends(require_permission(AdminPermission.MANAGE_ADMINS)),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    return success_response("Admin retrieved successfully", serialize(AdminResponse, service.get_admin(admin_id)))


@router.put("/admins/{admin_id}")
async def update_admin(
    admin_id: str,
    request: AdminUpdateRequest,
    admin: Admin = Depends(require_super_admin),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    updated = service.update_admin(
        admin,
        admin_id,
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        role=request.role
    )
    return success_response("Admin updated successfully", serialize(AdminResponse, updated))


@router.patch("/admins/{admin_id}/status")
async def update_admin_status(
    admin_id: str,
    request: AdminStatusRequest,
    admin: Admin = Depends(require_super_admin),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    updated = service.update_admin_status(admin, admin_id, request.status)
    return success_response("Admin status updated successfully", serialize(AdminResponse, updated))


@router.patch("/admins/{admin_id}/permissions")
async def update_admin_permissions(
    admin_id: str,
    request: AdminPermissionsRequest,
    admin: Admin = Depends(require_super_admin),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    updated = service.update_admin_permissions(admin, admin_id, [p.value for p in request.permissions])
    return success_response("Admin permissions updated successfully", serialize(AdminResponse, updated))


@router.delete("/admins/{admin_id}")
async def delete_admin(
    admin_id: str,
    admin: Admin = Depends(require_super_admin),
    service: AdminService = Depends(get_admin_service)
) -> Dict[str, Any]:
    service.delete_admin(admin, admin_id)
    return success_response("Admin deleted successfully")
