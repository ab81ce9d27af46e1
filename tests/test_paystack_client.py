"""
Tests for the Paystack client against a mocked HTTP transport
"""

import hashlib
import hmac
import json
from decimal import Decimal

import httpx
import pytest
from tenacity import wait_none

from admissions.core.exceptions import GatewayError
from admissions.services.paystack_client import (
    PaystackClient, SUBSCRIPTION_REFERENCE_PREFIX, APPLICATION_FEE_REFERENCE_PREFIX
)

SECRET = "sk_test_secret"


def make_client(handler, **kwargs) -> PaystackClient:
    return PaystackClient(
        secret_key=SECRET,
        callback_url="http://testserver/payment/callback",
        transport=httpx.MockTransport(handler),
        **kwargs
    )


@pytest.fixture
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(PaystackClient._send.retry, "wait", wait_none())


class TestAmountConversion:

    def test_naira_to_kobo(self):
        assert PaystackClient.naira_to_kobo(Decimal("150000")) == 15000000
        assert PaystackClient.naira_to_kobo(20000) == 2000000

    def test_naira_to_kobo_rounds_half_up(self):
        assert PaystackClient.naira_to_kobo(Decimal("100.005")) == 10001
        assert PaystackClient.naira_to_kobo(Decimal("199.994")) == 19999

    def test_kobo_to_naira(self):
        assert PaystackClient.kobo_to_naira(15000000) == Decimal("150000.00")


class TestGenerateReference:

    def test_prefixes(self):
        assert PaystackClient.generate_reference().startswith(f"{SUBSCRIPTION_REFERENCE_PREFIX}-")
        assert PaystackClient.generate_reference(APPLICATION_FEE_REFERENCE_PREFIX).startswith("APP-")

    def test_references_are_unique(self):
        references = {PaystackClient.generate_reference() for _ in range(50)}
        assert len(references) == 50


class TestInitializeTransaction:

    @pytest.mark.asyncio
    async def test_sends_amount_in_kobo_with_callback(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["method"] = request.method
            captured["path"] = request.url.path
            captured["auth"] = request.headers.get("Authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": "https://checkout.paystack.com/abc",
                    "access_code": "abc",
                    "reference": "SUB-1-abc"
                }
            })

        client = make_client(handler)
        result = await client.initialize_transaction(
            email="ada@example.com",
            amount=Decimal("150000"),
            reference="SUB-1-abc",
            metadata={"payment_type": "subscription"}
        )

        assert result["authorization_url"] == "https://checkout.paystack.com/abc"
        assert captured["method"] == "POST"
        assert captured["path"] == "/transaction/initialize"
        assert captured["auth"] == f"Bearer {SECRET}"
        assert captured["body"]["amount"] == 15000000
        assert captured["body"]["currency"] == "NGN"
        assert captured["body"]["callback_url"] == "http://testserver/payment/callback"
        assert captured["body"]["metadata"]["payment_type"] == "subscription"
        assert "cancel_action" in captured["body"]["metadata"]

    @pytest.mark.asyncio
    async def test_gateway_message_is_propagated(self):
        def handler(request):
            return httpx.Response(400, json={"status": False, "message": "Invalid key"})

        client = make_client(handler)
        with pytest.raises(GatewayError) as exc_info:
            await client.initialize_transaction("ada@example.com", Decimal("100"), "SUB-1-x")

        assert exc_info.value.message == "Invalid key"
        assert exc_info.value.gateway_status_code == 400
        assert exc_info.value.response_data["status"] is False

    @pytest.mark.asyncio
    async def test_false_status_on_200_is_an_error(self):
        def handler(request):
            return httpx.Response(200, json={"status": False, "message": "Duplicate Transaction Reference"})

        client = make_client(handler)
        with pytest.raises(GatewayError, match="Duplicate Transaction Reference"):
            await client.initialize_transaction("ada@example.com", Decimal("100"), "SUB-1-x")

    @pytest.mark.asyncio
    async def test_timeout_is_retried_then_raised(self, no_retry_wait):
        calls = []

        def handler(request):
            calls.append(request)
            raise httpx.ReadTimeout("timed out", request=request)

        client = make_client(handler, timeout=1.0)
        with pytest.raises(GatewayError) as exc_info:
            await client.initialize_transaction("ada@example.com", Decimal("100"), "SUB-1-x")

        assert "Failed to connect to Paystack" in exc_info.value.message
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(self, no_retry_wait):
        calls = []

        def handler(request):
            calls.append(request)
            if len(calls) == 1:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(200, json={"status": True, "data": {"authorization_url": "u", "access_code": "a"}})

        client = make_client(handler)
        result = await client.initialize_transaction("ada@example.com", Decimal("100"), "SUB-1-x")

        assert result["access_code"] == "a"
        assert len(calls) == 2


class TestVerifyTransaction:

    @pytest.mark.asyncio
    async def test_returns_transaction_data(self):
        def handler(request):
            assert request.url.path == "/transaction/verify/SUB-1-abc"
            return httpx.Response(200, json={
                "status": True,
                "message": "Verification successful",
                "data": {"status": "success", "amount": 15000000, "reference": "SUB-1-abc", "channel": "card"}
            })

        client = make_client(handler)
        data = await client.verify_transaction("SUB-1-abc")

        assert data["status"] == "success"
        assert data["amount"] == 15000000

    @pytest.mark.asyncio
    async def test_unknown_reference(self):
        def handler(request):
            return httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})

        client = make_client(handler)
        with pytest.raises(GatewayError) as exc_info:
            await client.verify_transaction("SUB-missing")

        assert exc_info.value.gateway_status_code == 404


class TestListTransactions:

    @pytest.mark.asyncio
    async def test_returns_data_and_meta(self):
        def handler(request):
            assert request.url.params["perPage"] == "10"
            assert request.url.params["page"] == "2"
            return httpx.Response(200, json={
                "status": True,
                "data": [{"reference": "SUB-1"}],
                "meta": {"total": 11, "page": 2}
            })

        client = make_client(handler)
        result = await client.list_transactions(per_page=10, page=2)

        assert result["data"] == [{"reference": "SUB-1"}]
        assert result["meta"]["page"] == 2


class TestWebhookSignature:

    def _sign(self, body: bytes, secret: str = SECRET) -> str:
        return hmac.new(secret.encode("utf-8"), body, hashlib.sha512).hexdigest()

    def test_valid_signature(self):
        client = PaystackClient(secret_key=SECRET)
        body = b'{"event":"charge.success","data":{"reference":"SUB-1"}}'

        assert client.verify_webhook_signature(body, self._sign(body)) is True

    def test_tampered_body(self):
        client = PaystackClient(secret_key=SECRET)
        body = b'{"event":"charge.success","data":{"reference":"SUB-1"}}'
        signature = self._sign(body)

        assert client.verify_webhook_signature(body + b" ", signature) is False

    def test_missing_signature(self):
        client = PaystackClient(secret_key=SECRET)

        assert client.verify_webhook_signature(b"{}", None) is False
        assert client.verify_webhook_signature(b"{}", "") is False

    def test_non_ascii_signature(self):
        client = PaystackClient(secret_key=SECRET)

        assert client.verify_webhook_signature(b"{}", "\xe9abc") is False

    def test_dedicated_webhook_secret(self):
        client = PaystackClient(secret_key=SECRET, webhook_secret="whsec_other")
        body = b"{}"

        assert client.verify_webhook_signature(body, self._sign(body, "whsec_other")) is True
        assert client.verify_webhook_signature(body, self._sign(body)) is False
