# ================================================================
# services/stripe_client.py
# ================================================================
# Minimal Stripe REST client over httpx (form-encoded requests,
# bearer secret key). Only the calls this service makes.
import logging
from typing import Any, Dict, List, Optional

import httpx

from config import STRIPE_SECRET_KEY, STRIPE_API_BASE

logger = logging.getLogger(__name__)

STRIPE_TIMEOUT = 20.0

# Checkout catalogue shown on the billing page
STRIPE_PRODUCTS = [
    {
        "id": "prod_SkGQB88LYZDhx4",
        "name": "PBE Pro Play Yearly",
        "description": "Annual subscription to PBE Pro Play with advanced features and unlimited access.",
        "price_id": "price_1RoltBEGamTK7gLp3vFhnNpg",
        "mode": "subscription",
        "price": 150.00,
        "currency": "GBP",
        "interval": "year",
        "features": [
            "Unlimited quiz sessions",
            "Advanced analytics",
            "Priority support",
            "All question tiers",
            "Team collaboration",
            "Study schedule management",
        ],
    },
    {
        "id": "prod_SkG8EHn9mio3Tg",
        "name": "PBE Pro Plan",
        "description": "Monthly subscription to PBE Pro with enhanced features and team management.",
        "price_id": "price_1RolccEGamTK7gLpzKYZ7aYj",
        "mode": "subscription",
        "price": 15.00,
        "currency": "GBP",
        "interval": "month",
        "features": [
            "Enhanced quiz features",
            "Team management",
            "Progress tracking",
            "Pro question access",
            "Custom quiz builder",
            "Basic analytics",
        ],
    },
]


def get_product_by_price_id(price_id: str) -> Optional[dict]:
    return next((p for p in STRIPE_PRODUCTS if p["price_id"] == price_id), None)


class StripeAPIError(Exception):
    def __init__(self, message: str, status_code: int = 502, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


def encode_params(params: Dict[str, Any]) -> Dict[str, Any]:
    """Stripe's form style: lists as key[], bools as true/false, None dropped."""
    encoded = {}
    for key, value in params.items():
        if value is None:
            continue
        if isinstance(value, (list, tuple)):
            encoded[f"{key}[]"] = [str(v) for v in value]
        elif isinstance(value, bool):
            encoded[key] = "true" if value else "false"
        else:
            encoded[key] = str(value)
    return encoded


async def stripe_request(method: str, path: str, params: Optional[Dict[str, Any]] = None,
                         client: Optional[httpx.AsyncClient] = None) -> dict:
    url = f"{STRIPE_API_BASE}{path}"
    headers = {"Authorization": f"Bearer {STRIPE_SECRET_KEY}"}
    encoded = encode_params(params or {})

    async def _send(c: httpx.AsyncClient) -> httpx.Response:
        if method == "GET":
            return await c.get(url, params=encoded, headers=headers)
        return await c.request(method, url, data=encoded or None, headers=headers)

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=STRIPE_TIMEOUT) as c:
                resp = await _send(c)
        else:
            resp = await _send(client)
    except httpx.HTTPError as e:
        logger.error(f"❌ Stripe unreachable ({method} {path}): {e}")
        raise StripeAPIError("Stripe is unreachable", status_code=502)

    if resp.status_code >= 400:
        try:
            err = resp.json().get("error", {})
        except ValueError:
            err = {}
        message = err.get("message") or f"Stripe error {resp.status_code}"
        logger.error(f"🚫 Stripe {method} {path} failed [{resp.status_code}]: {message}")
        raise StripeAPIError(message, status_code=resp.status_code, code=err.get("code"))

    return resp.json()


# ------------------------------------------------------
# Calls
# ------------------------------------------------------
async def list_subscriptions(customer_id: str, client: Optional[httpx.AsyncClient] = None) -> List[dict]:
    """Latest subscription of any status, with its default payment method expanded."""
    data = await stripe_request("GET", "/subscriptions", {
        "customer": customer_id,
        "limit": 1,
        "status": "all",
        "expand": ["data.default_payment_method"],
    }, client=client)
    return data.get("data", [])


async def list_invoices(customer_id: str, limit: int = 10,
                        client: Optional[httpx.AsyncClient] = None) -> List[dict]:
    data = await stripe_request("GET", "/invoices", {"customer": customer_id, "limit": limit}, client=client)
    return data.get("data", [])


async def retrieve_subscription(subscription_id: str, client: Optional[httpx.AsyncClient] = None) -> dict:
    return await stripe_request("GET", f"/subscriptions/{subscription_id}", client=client)


async def set_cancel_at_period_end(subscription_id: str, cancel: bool = True,
                                   client: Optional[httpx.AsyncClient] = None) -> dict:
    return await stripe_request(
        "POST", f"/subscriptions/{subscription_id}", {"cancel_at_period_end": cancel}, client=client
    )
