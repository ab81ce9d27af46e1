"""
Tests for the one-time application fee
"""

from decimal import Decimal

import pytest

from admissions.core.exceptions import ConflictError, GatewayError, NotFoundError, PaymentFailedError, PaymentInitError
from admissions.models import ApplicationFee, ApplicationFeeStatus, Transaction, TransactionStatus

from conftest import gateway_success, gateway_failure


async def pay_fee(service, paystack_client, user):
    initiated = await service.initiate_payment(user.id, user.email)
    reference = initiated["reference"]
    paystack_client.verify_transaction.return_value = gateway_success(reference, 20000, channel="bank_transfer")
    return await service.verify_payment(reference)


class TestInitiateApplicationFee:

    @pytest.mark.asyncio
    async def test_creates_fee_and_ledger_entry(self, application_fee_service, paystack_client, user, db):
        result = await application_fee_service.initiate_payment(user.id, user.email, {"source": "portal"})

        fee = result["application_fee"]
        assert result["reference"].startswith("APP-")
        assert result["access_code"] == "ac_test"
        assert fee.status == ApplicationFeeStatus.PENDING
        assert fee.amount == Decimal("20000")

        call = paystack_client.initialize_transaction.await_args
        assert call.kwargs["amount"] == Decimal("20000")
        assert call.kwargs["metadata"]["payment_type"] == "application_fee"
        assert call.kwargs["metadata"]["source"] == "portal"

        transaction = db.query(Transaction).filter(Transaction.paystack_reference == result["reference"]).one()
        assert transaction.subscription_id is None
        assert transaction.status == TransactionStatus.PENDING

    @pytest.mark.asyncio
    async def test_gateway_failure(self, application_fee_service, paystack_client, user, db):
        paystack_client.initialize_transaction.side_effect = GatewayError("Paystack unavailable")

        with pytest.raises(PaymentInitError):
            await application_fee_service.initiate_payment(user.id, user.email)

        assert db.query(ApplicationFee).count() == 0
        assert db.query(Transaction).count() == 0

    @pytest.mark.asyncio
    async def test_already_paid(self, application_fee_service, paystack_client, user):
        await pay_fee(application_fee_service, paystack_client, user)

        with pytest.raises(ConflictError, match="already been paid"):
            await application_fee_service.initiate_payment(user.id, user.email)


class TestVerifyApplicationFee:

    @pytest.mark.asyncio
    async def test_success(self, application_fee_service, paystack_client, email_service, user, db):
        fee = await pay_fee(application_fee_service, paystack_client, user)

        assert fee.status == ApplicationFeeStatus.PAID
        assert fee.payment_method == "bank_transfer"
        assert fee.payment_date is not None

        transaction = db.query(Transaction).filter(Transaction.paystack_reference == fee.paystack_reference).one()
        assert transaction.status == TransactionStatus.SUCCESS

        db.refresh(user)
        assert user.application_fee_paid is True
        assert application_fee_service.has_user_paid(user.id) is True

        email_service.send_email.assert_called_once()
        assert fee.paystack_reference in email_service.send_email.call_args.kwargs["html_content"]

    @pytest.mark.asyncio
    async def test_idempotent(self, application_fee_service, paystack_client, email_service, user):
        fee = await pay_fee(application_fee_service, paystack_client, user)

        again = await application_fee_service.verify_payment(fee.paystack_reference)

        assert again.status == ApplicationFeeStatus.PAID
        assert paystack_client.verify_transaction.await_count == 1
        email_service.send_email.assert_called_once()

    @pytest.mark.asyncio
    async def test_failed(self, application_fee_service, paystack_client, user, db):
        initiated = await application_fee_service.initiate_payment(user.id, user.email)
        reference = initiated["reference"]
        paystack_client.verify_transaction.return_value = gateway_failure(reference, "Insufficient funds")

        with pytest.raises(PaymentFailedError, match="Insufficient funds"):
            await application_fee_service.verify_payment(reference)

        fee = application_fee_service.get_by_reference(reference)
        assert fee.status == ApplicationFeeStatus.FAILED
        assert fee.failure_reason == "Insufficient funds"

        transaction = db.query(Transaction).filter(Transaction.paystack_reference == reference).one()
        assert transaction.status == TransactionStatus.FAILED

        db.refresh(user)
        assert user.application_fee_paid is False

    @pytest.mark.asyncio
    async def test_unknown_reference(self, application_fee_service):
        with pytest.raises(NotFoundError, match="Application fee record not found"):
            await application_fee_service.verify_payment("APP-missing")


class TestApplicationFeeStatistics:

    @pytest.mark.asyncio
    async def test_statistics(self, application_fee_service, paystack_client, user, other_user):
        await pay_fee(application_fee_service, paystack_client, user)
        await application_fee_service.initiate_payment(other_user.id, other_user.email)

        stats = application_fee_service.get_statistics()

        assert stats["total_revenue"] == 20000.0
        assert stats["total_applications"] == 2
        assert stats["paid_applications"] == 1
        assert stats["pending_payments"] == 1
        assert stats["failed_payments"] == 0
        assert stats["application_fee_amount"] == 20000.0

    @pytest.mark.asyncio
    async def test_latest_fee_for_user(self, application_fee_service, user):
        assert application_fee_service.get_user_application_fee(user.id) is None

        result = await application_fee_service.initiate_payment(user.id, user.email)

        latest = application_fee_service.get_user_application_fee(user.id)
        assert latest.paystack_reference == result["reference"]
