from typing import Dict, Any, Optional
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from ..core.exceptions import AdmissionsServiceError
from ..models.user import User
from ..schemas import ApplicationFeeResponse, serialize
from ..services.application_fee_service import ApplicationFeeService
from ..services.dependencies import get_current_user, get_application_fee_service
from ..utils.responses import success_response

router = APIRouter()
logger = logging.getLogger(__name__)


class ApplicationFeePayRequest(BaseModel):
    metadata: Optional[Dict[str, Any]] = Field(default=None, description="Additional payment metadata")


@router.post("/pay", status_code=status.HTTP_201_CREATED)
async def pay_application_fee(
    request: Optional[ApplicationFeePayRequest] = None,
    current_user: User = Depends(get_current_user),
    service: ApplicationFeeService = Depends(get_application_fee_service)
) -> Dict[str, Any]:
    """Start payment of the one-time application fee"""
    try:
        result = await service.initiate_payment(
            user_id=current_user.id,
            email=current_user.email,
            metadata=request.metadata if request else None
        )
        return success_response("Application fee payment initiated", {
            "application_fee": serialize(ApplicationFeeResponse, result["application_fee"]),
            "payment_url": result["payment_url"],
            "reference": result["reference"],
            "access_code": result["access_code"],
        })

    except (HTTPException, AdmissionsServiceError):
        raise
    except Exception as e:
        logger.error(f"Failed to initiate application fee for user {current_user.id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to initiate application fee payment"
        )


@router.get("/verify")
async def verify_application_fee(
    reference: str = Query(..., min_length=1, description="Paystack transaction reference"),
    current_user: User = Depends(get_current_user),
    service: ApplicationFeeService = Depends(get_application_fee_service)
) -> Dict[str, Any]:
    fee = await service.verify_payment(reference)
    return success_response("Application fee payment verified", serialize(ApplicationFeeResponse, fee))


@router.get("/status")
async def application_fee_status(
    current_user: User = Depends(get_current_user),
    service: ApplicationFeeService = Depends(get_application_fee_service)
) -> Dict[str, Any]:
    """Latest application fee record for the current user"""
    fee = service.get_user_application_fee(current_user.id)
    return success_response("Application fee status retrieved", {
        "has_paid": service.has_user_paid(current_user.id),
        "application_fee": serialize(ApplicationFeeResponse, fee),
        "amount": float(service.amount),
    })


@router.get("/check")
async def check_application_fee(
    current_user: User = Depends(get_current_user),
    service: ApplicationFeeService = Depends(get_application_fee_service)
) -> Dict[str, Any]:
    has_paid = service.has_user_paid(current_user.id)
    message = "Application fee has been paid" if has_paid else "Application fee has not been paid"
    return success_response(message, {"has_paid": has_paid})
