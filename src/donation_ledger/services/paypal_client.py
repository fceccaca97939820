import logging
import time
from decimal import Decimal

import httpx
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from donation_ledger.core.exceptions import PaymentProviderError

logger = logging.getLogger(__name__)

LIVE_BASE_URL = "https://api-m.paypal.com"
SANDBOX_BASE_URL = "https://api-m.sandbox.paypal.com"


class PayPalClient:
    """Thin wrapper over the PayPal Orders v2 REST API."""

    def __init__(self, client_id: str, client_secret: str, mode: str = "sandbox", http_client: httpx.Client | None = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = LIVE_BASE_URL if mode == "live" else SANDBOX_BASE_URL
        self.http = http_client or httpx.Client(base_url=self.base_url, timeout=15.0)
        self._token: str | None = None
        self._token_expires_at = 0.0

    @retry(
        wait=wait_exponential(multiplier=1, min=1, max=4),
        stop=stop_after_attempt(3),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True
    )
    def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        return self.http.request(method, path, **kwargs)

    def _access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        if not self.client_id or not self.client_secret:
            raise PaymentProviderError("PayPal credentials are not configured")

        response = self._send(
            "POST",
            "/v1/oauth2/token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
        )
        if response.status_code != 200:
            logger.error(f"PayPal OAuth failed: {response.status_code} {response.text}")
            raise PaymentProviderError("PayPal auth failed", provider_status=response.status_code)

        body = response.json()
        self._token = body["access_token"]
        # Refresh a minute early.
        self._token_expires_at = time.monotonic() + max(0, int(body.get("expires_in", 0)) - 60)
        return self._token

    def _call(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        headers = {"Authorization": f"Bearer {self._access_token()}"}
        if json is not None:
            headers["Content-Type"] = "application/json"
        return self._send(method, path, json=json, headers=headers)

    def create_order(self, amount: Decimal, currency: str, campaign_id: str) -> dict:
        response = self._call("POST", "/v2/checkout/orders", json={
            "intent": "CAPTURE",
            "purchase_units": [{
                "custom_id": campaign_id,
                "amount": {"currency_code": currency, "value": str(amount)},
            }],
        })
        if response.status_code not in (200, 201):
            logger.error(f"PayPal create order failed: {response.status_code} {response.text}")
            raise PaymentProviderError("PayPal order creation failed", provider_status=response.status_code)
        return response.json()

    def get_order(self, order_id: str) -> dict:
        response = self._call("GET", f"/v2/checkout/orders/{order_id}")
        if response.status_code != 200:
            logger.error(f"PayPal get order {order_id} failed: {response.status_code} {response.text}")
            raise PaymentProviderError("PayPal order lookup failed", provider_status=response.status_code)
        return response.json()

    def capture_order(self, order_id: str) -> dict:
        """Captures an approved order; an order captured earlier is read back instead."""
        response = self._call("POST", f"/v2/checkout/orders/{order_id}/capture", json={})
        if response.status_code in (200, 201):
            return response.json()

        if response.status_code == 422 and _issue(response) == "ORDER_ALREADY_CAPTURED":
            logger.info(f"PayPal order {order_id} already captured, reading it back")
            return self.get_order(order_id)

        logger.error(f"PayPal capture {order_id} failed: {response.status_code} {response.text}")
        raise PaymentProviderError("PayPal capture failed", provider_status=response.status_code)


def _issue(response: httpx.Response) -> str | None:
    try:
        details = response.json().get("details") or []
    except ValueError:
        return None
    return details[0].get("issue") if details else None
