import json
from decimal import Decimal

import httpx
import pytest

from donation_ledger.core.exceptions import PaymentProviderError
from donation_ledger.services.paypal_client import SANDBOX_BASE_URL, PayPalClient


def make_client(handler, client_id="id", client_secret="secret"):
    http = httpx.Client(base_url=SANDBOX_BASE_URL, transport=httpx.MockTransport(handler))
    return PayPalClient(client_id, client_secret, mode="sandbox", http_client=http)


def token_response():
    return httpx.Response(200, json={"access_token": "tok", "expires_in": 3600})


def test_create_order_sends_campaign_as_custom_id():
    seen = []

    def handler(request):
        seen.append(request)
        if request.url.path == "/v1/oauth2/token":
            return token_response()
        return httpx.Response(201, json={"id": "ORDER1", "status": "CREATED"})

    client = make_client(handler)
    order = client.create_order(Decimal("12.50"), "GBP", "c1")

    assert order["id"] == "ORDER1"
    body = json.loads(seen[1].content)
    assert body["purchase_units"][0] == {
        "custom_id": "c1",
        "amount": {"currency_code": "GBP", "value": "12.50"},
    }
    assert seen[1].headers["Authorization"] == "Bearer tok"


def test_access_token_is_cached():
    calls = {"token": 0}

    def handler(request):
        if request.url.path == "/v1/oauth2/token":
            calls["token"] += 1
            return token_response()
        return httpx.Response(200, json={"id": "ORDER1"})

    client = make_client(handler)
    client.get_order("ORDER1")
    client.get_order("ORDER1")

    assert calls["token"] == 1


def test_capture_reads_back_already_captured_order():
    def handler(request):
        if request.url.path == "/v1/oauth2/token":
            return token_response()
        if request.url.path.endswith("/capture"):
            return httpx.Response(422, json={"details": [{"issue": "ORDER_ALREADY_CAPTURED"}]})
        return httpx.Response(200, json={"id": "ORDER1", "status": "COMPLETED"})

    order = make_client(handler).capture_order("ORDER1")

    assert order["status"] == "COMPLETED"


def test_capture_failure_raises_provider_error():
    def handler(request):
        if request.url.path == "/v1/oauth2/token":
            return token_response()
        return httpx.Response(422, json={"details": [{"issue": "INSTRUMENT_DECLINED"}]})

    with pytest.raises(PaymentProviderError) as exc_info:
        make_client(handler).capture_order("ORDER1")
    assert exc_info.value.provider_status == 422


def test_missing_credentials_raise_provider_error():
    client = make_client(lambda request: token_response(), client_id="", client_secret="")

    with pytest.raises(PaymentProviderError):
        client.get_order("ORDER1")


def test_auth_failure_raises_provider_error():
    client = make_client(lambda request: httpx.Response(401, json={"error": "invalid_client"}))

    with pytest.raises(PaymentProviderError) as exc_info:
        client.create_order(Decimal("1"), "GBP", "c1")
    assert exc_info.value.provider_status == 401
