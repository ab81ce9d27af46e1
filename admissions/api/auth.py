from typing import Dict, Any, Optional
import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, EmailStr, Field

from ..models.user import User
from ..schemas import UserResponse, serialize
from ..services.auth_service import UserAuthService
from ..services.dependencies import get_current_user, get_user_auth_service
from ..utils.responses import success_response

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=1)
    phone_number: Optional[str] = Field(None, max_length=20)
    how_did_you_hear_about_us: Optional[str] = Field(None, max_length=100)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RefreshRequest(BaseModel):
    refresh_token: str


class CodeRequest(BaseModel):
    token: str = Field(..., min_length=6, max_length=6, description="Six-digit code from the email")


class EmailRequest(BaseModel):
    email: EmailStr


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=6, max_length=6)
    password: str


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str


def _auth_payload(result: Dict[str, Any]) -> Dict[str, Any]:
    return {"user": result["user"], **result["tokens"]}


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register(
    request: RegisterRequest,
    service: UserAuthService = Depends(get_user_auth_service)
) -> Dict[str, Any]:
    result = service.register(
        first_name=request.first_name,
        last_name=request.last_name,
        email=request.email,
        password=request.password,
        phone_number=request.phone_number,
        how_did_you_hear_about_us=request.how_did_you_hear_about_us
    )
    return success_response("User registered successfully. Please check your email for verification.",
                            _auth_payload(result))


@router.post("/login")
async def login(request: LoginRequest, service: UserAuthService = Depends(get_user_auth_service)) -> Dict[str, Any]:
    result = service.login(request.email, request.password)
    return success_response("Login successful", _auth_payload(result))


@router.post("/refresh")
async def refresh(request: RefreshRequest, service: UserAuthService = Depends(get_user_auth_service)) -> Dict[str, Any]:
    result = service.refresh(request.refresh_token)
    return success_response("Token refreshed successfully", _auth_payload(result))


@router.post("/logout-all")
async def logout_all(
    current_user: User = Depends(get_current_user),
    service: UserAuthService = Depends(get_user_auth_service)
) -> Dict[str, Any]:
    service.logout_all(current_user.id)
    logger.info(f"User {current_user.id} logged out from all devices")
    return success_response("Logged out from all devices successfully")


@router.get("/me")
async def me(current_user: User = Depends(get_current_user)) -> Dict[str, Any]:
    return success_response("User profile retrieved successfully", serialize(UserResponse, current_user))


@router.post("/verify-email")
async def verify_email(request: CodeRequest, service: UserAuthService = Depends(get_user_auth_service)) -> Dict[str, Any]:
    user = service.verify_email(request.token)
    return success_response("Email verified successfully", serialize(UserResponse, user))


@router.post("/resend-verification")
async def resend_verification(
    request: EmailRequest,
    service: UserAuthService = Depends(get_user_auth_service)
) -> Dict[str, Any]:
    service.resend_verification(request.email)
    return success_response("Verification email sent")


@router.post("/forgot-password")
async def forgot_password(
    request: EmailRequest,
    service: UserAuthService = Depends(get_user_auth_service)
) -> Dict[str, Any]:
    service.forgot_password(request.email)
    return success_response("If a user with that email exists, a password reset code has been sent")


@router.post("/reset-password")
async def reset_password(
    request: ResetPasswordRequest,
    service: UserAuthService = Depends(get_user_auth_service)
) -> Dict[str, Any]:
    service.reset_password(request.token, request.password)
    return success_response("Password reset successfully")


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: UserAuthService = Depends(get_user_auth_service)
) -> Dict[str, Any]:
    service.change_password(current_user.id, request.current_password, request.new_password)
    return success_response("Password changed successfully")
