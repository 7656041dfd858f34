import hashlib
import hmac
import logging

import httpx

from shared.breaker import CircuitBreaker
from . import config

logger = logging.getLogger(__name__)

cb_razorpay = CircuitBreaker("razorpay", failure_threshold=5, reset_timeout_seconds=30)

# swapped for an httpx.MockTransport in tests
transport: httpx.AsyncBaseTransport | None = None


class PaymentGatewayError(Exception):
    pass


def to_paise(amount: float) -> int:
    return int(round(float(amount) * 100))


async def create_order(amount: float, currency: str, receipt: str, notes: dict) -> dict:
    """
    Create a Razorpay order. Raises PaymentGatewayError on any upstream
    failure (the upstream body is logged, never returned), and
    CircuitBreakerOpen while the gateway is considered down.

    Only transport errors and 5xx count against the breaker. A 4xx is the
    gateway answering, so it closes the breaker like a success does.
    """
    await cb_razorpay.allow_request()

    payload = {
        "amount": to_paise(amount),
        "currency": currency,
        "receipt": receipt,
        "notes": notes,
    }

    try:
        async with httpx.AsyncClient(
            timeout=config.RAZORPAY_TIMEOUT_SECONDS,
            auth=(config.RAZORPAY_KEY_ID, config.RAZORPAY_KEY_SECRET or ""),
            transport=transport,
        ) as client:
            resp = await client.post(f"{config.RAZORPAY_API_URL}/orders", json=payload)
    except httpx.HTTPError as e:
        await cb_razorpay.record_failure()
        logger.error("Razorpay order request failed: %s", e)
        raise PaymentGatewayError("Razorpay unreachable") from e

    if resp.status_code >= 500:
        await cb_razorpay.record_failure()
    else:
        await cb_razorpay.record_success()

    if resp.status_code >= 400:
        logger.error("Razorpay order creation failed (%s): %s", resp.status_code, resp.text)
        raise PaymentGatewayError(f"Razorpay returned {resp.status_code}")

    return resp.json()


def compute_signature(order_id: str, gateway_payment_id: str, secret: str) -> str:
    message = f"{order_id}|{gateway_payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, gateway_payment_id: str, signature: str, secret: str) -> bool:
    if not signature:
        return False
    expected = compute_signature(order_id, gateway_payment_id, secret)
    return hmac.compare_digest(expected.encode("ascii"), signature.encode("utf-8", "surrogatepass"))
