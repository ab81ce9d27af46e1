"""
Concurrent verification of the same reference (redirect and webhook racing)
must credit the subscription exactly once.
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from admissions.models import Subscription, Transaction, TransactionStatus, ApplicationFee, ApplicationFeeStatus
from admissions.services.application_fee_service import ApplicationFeeService
from admissions.services.subscription_service import SubscriptionService

from conftest import gateway_success


def rendezvous_verifier(payload: dict, parties: int = 2) -> AsyncMock:
    """verify_transaction mock that returns only after every caller has arrived"""
    arrived = []
    everyone_in = asyncio.Event()

    async def verify(reference):
        arrived.append(reference)
        if len(arrived) >= parties:
            everyone_in.set()
        await everyone_in.wait()
        return payload

    return AsyncMock(side_effect=verify)


class TestConcurrentSubscriptionVerification:

    @pytest.mark.asyncio
    async def test_credited_once(self, session_factory, paystack_client, email_service, user, plans):
        setup_session = session_factory()
        initiated = await SubscriptionService(setup_session, paystack_client, email_service).initiate_payment(
            user.id, user.email, plan_type="early_bird"
        )
        reference = initiated["transaction"].paystack_reference
        subscription_id = initiated["subscription"].id
        setup_session.close()

        paystack_client.verify_transaction = rendezvous_verifier(gateway_success(reference, 150000))

        redirect_session = session_factory()
        webhook_session = session_factory()
        try:
            results = await asyncio.gather(
                SubscriptionService(redirect_session, paystack_client, email_service).verify_payment(reference),
                SubscriptionService(webhook_session, paystack_client, email_service).verify_payment(reference),
            )
            for result in results:
                assert result["transaction"].status == TransactionStatus.SUCCESS
                assert result["subscription"].total_amount_paid == Decimal("150000")
                assert result["subscription"].current_semester == 1
        finally:
            redirect_session.close()
            webhook_session.close()

        assert paystack_client.verify_transaction.await_count == 2

        check = session_factory()
        try:
            subscription = check.query(Subscription).filter(Subscription.id == subscription_id).one()
            assert subscription.total_amount_paid == Decimal("150000")
            assert subscription.amount_remaining == Decimal("450000")
            assert subscription.current_semester == 1

            transaction = check.query(Transaction).filter(Transaction.paystack_reference == reference).one()
            assert transaction.status == TransactionStatus.SUCCESS
        finally:
            check.close()

    @pytest.mark.asyncio
    async def test_final_installment_activates_once(self, session_factory, paystack_client, email_service, user, plans):
        setup_session = session_factory()
        initiated = await SubscriptionService(setup_session, paystack_client, email_service).initiate_payment(
            user.id, user.email, plan_type="normal"
        )
        reference = initiated["transaction"].paystack_reference
        setup_session.close()

        paystack_client.verify_transaction = rendezvous_verifier(gateway_success(reference, 600000))

        first, second = session_factory(), session_factory()
        try:
            await asyncio.gather(
                SubscriptionService(first, paystack_client, email_service).verify_payment(reference),
                SubscriptionService(second, paystack_client, email_service).verify_payment(reference),
            )
        finally:
            first.close()
            second.close()

        # Only the settling verifier sends the confirmation
        email_service.send_email.assert_called_once()


class TestConcurrentApplicationFeeVerification:

    @pytest.mark.asyncio
    async def test_paid_once(self, session_factory, paystack_client, email_service, user):
        setup_session = session_factory()
        initiated = await ApplicationFeeService(setup_session, paystack_client, email_service).initiate_payment(
            user.id, user.email
        )
        reference = initiated["reference"]
        setup_session.close()

        paystack_client.verify_transaction = rendezvous_verifier(gateway_success(reference, 20000))

        first, second = session_factory(), session_factory()
        try:
            fees = await asyncio.gather(
                ApplicationFeeService(first, paystack_client, email_service).verify_payment(reference),
                ApplicationFeeService(second, paystack_client, email_service).verify_payment(reference),
            )
            assert all(fee.status == ApplicationFeeStatus.PAID for fee in fees)
        finally:
            first.close()
            second.close()

        email_service.send_email.assert_called_once()

        check = session_factory()
        try:
            assert check.query(ApplicationFee).filter(ApplicationFee.status == ApplicationFeeStatus.PAID).count() == 1
        finally:
            check.close()
