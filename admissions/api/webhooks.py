from typing import Dict, Any, Optional
import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from ..core.database import get_db
from ..core.exceptions import SignatureError
from ..repositories.billing import WebhookRepository
from ..services.application_fee_service import ApplicationFeeService, APPLICATION_FEE_PAYMENT_TYPE
from ..services.dependencies import get_paystack_client, get_subscription_service, get_application_fee_service
from ..services.paystack_client import PaystackClient, APPLICATION_FEE_REFERENCE_PREFIX
from ..services.subscription_service import SubscriptionService

router = APIRouter()
logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-paystack-signature"


def verify_signature(paystack: PaystackClient, body: bytes, signature: Optional[str]) -> None:
    if not paystack.verify_webhook_signature(body, signature):
        raise SignatureError("Invalid signature")


def _charge_metadata(data: Dict[str, Any]) -> Dict[str, Any]:
    metadata = data.get("metadata") or {}
    # Paystack passes metadata through verbatim, which may be a JSON string
    if isinstance(metadata, str):
        try:
            metadata = json.loads(metadata)
        except ValueError:
            return {}
    return metadata if isinstance(metadata, dict) else {}


def is_application_fee_charge(data: Dict[str, Any]) -> bool:
    metadata = _charge_metadata(data)
    payment_type = metadata.get("payment_type") or metadata.get("paymentType")
    if payment_type == APPLICATION_FEE_PAYMENT_TYPE:
        return True
    return str(data.get("reference") or "").startswith(f"{APPLICATION_FEE_REFERENCE_PREFIX}-")


async def dispatch_event(
    event_type: Optional[str],
    data: Dict[str, Any],
    subscription_service: SubscriptionService,
    application_fee_service: ApplicationFeeService
) -> None:
    """Route a signature-valid event to reconciliation"""
    reference = data.get("reference")

    if event_type == "charge.success":
        if not reference:
            logger.warning("charge.success event without a reference")
            return
        if is_application_fee_charge(data):
            logger.info(f"Webhook settling application fee {reference}")
            await application_fee_service.verify_payment(reference)
        else:
            logger.info(f"Webhook settling subscription payment {reference}")
            await subscription_service.verify_payment(reference)

    elif event_type == "charge.failed":
        logger.warning(
            f"Paystack reported failed charge {reference}",
            extra={"reference": reference, "gateway_response": data.get("gateway_response")}
        )

    else:
        logger.info(f"Ignoring Paystack webhook event: {event_type}")


@router.post("/paystack")
async def handle_paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    paystack: PaystackClient = Depends(get_paystack_client),
    subscription_service: SubscriptionService = Depends(get_subscription_service),
    application_fee_service: ApplicationFeeService = Depends(get_application_fee_service)
) -> PlainTextResponse:
    """
    Handle Paystack webhook events.

    Responds 400 only for a bad signature. Every signature-valid delivery is
    acknowledged with 200 so that processing errors do not trigger Paystack retries.
    """
    body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)

    try:
        verify_signature(paystack, body, signature)
    except SignatureError as e:
        logger.warning(f"Rejected Paystack webhook: {e.message}")
        return PlainTextResponse(e.message, status_code=400)

    try:
        event = json.loads(body.decode("utf-8"))
    except ValueError:
        logger.error("Paystack webhook body is not valid JSON")
        return PlainTextResponse("Webhook received", status_code=200)

    if not isinstance(event, dict):
        logger.error("Paystack webhook body is not a JSON object")
        return PlainTextResponse("Webhook received", status_code=200)

    event_type = event.get("event")
    data = event.get("data")
    if not isinstance(data, dict):
        data = {}
    reference = data.get("reference")

    webhooks = WebhookRepository(db)
    webhook = None
    try:
        webhook = webhooks.log_event(event_type, event, reference=reference, signature=signature)
    except Exception as e:
        logger.error(f"Failed to record webhook event {event_type}: {e}")
        db.rollback()

    error = None
    try:
        await dispatch_event(event_type, data, subscription_service, application_fee_service)
    except Exception as e:
        error = str(getattr(e, "message", e))
        logger.error(
            f"Error processing webhook {event_type} for {reference}: {error}",
            extra={"reference": reference}
        )
        db.rollback()

    if webhook is not None:
        try:
            webhooks.mark_processed(webhook.id, success=error is None, error=error)
        except Exception as e:
            logger.error(f"Failed to update webhook record {webhook.id}: {e}")
            db.rollback()

    return PlainTextResponse("Webhook received", status_code=200)
