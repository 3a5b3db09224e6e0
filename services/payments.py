# ================================================================
# services/payments.py
# ================================================================
# Stripe webhook verification and subscription reconciliation.
import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from config import STRIPE_WEBHOOK_SECRET, STRIPE_WEBHOOK_TOLERANCE
from db import get_async_session
from helpers import mask_sensitive, utcnow
from models import StripeCustomer, StripeSubscription, StripeOrder, PlanPrice, Subscription
from services import stripe_client

logger = logging.getLogger("payments")

FREE_PLAN_DAYS = 30


class WebhookSignatureError(Exception):
    pass


class SubscriptionSyncError(Exception):
    pass


class SubscriptionOwnershipError(Exception):
    pass


class CustomerNotFound(Exception):
    pass


# ------------------------------------------------------
# 1. Webhook signature (Stripe-Signature: t=...,v1=...)
# ------------------------------------------------------
def parse_signature_header(header: str) -> Tuple[Optional[int], List[str]]:
    timestamp = None
    signatures = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                timestamp = None
        elif key == "v1" and value:
            signatures.append(value)
    return timestamp, signatures


def compute_signature(payload: bytes, timestamp: int, secret: str) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def construct_event(payload: bytes, header: str, secret: str = None,
                    tolerance: int = None, now: Optional[float] = None) -> dict:
    """
    Verify a Stripe webhook body against its signature header and return
    the parsed event. Raises WebhookSignatureError on any mismatch.
    """
    secret = secret or STRIPE_WEBHOOK_SECRET
    tolerance = STRIPE_WEBHOOK_TOLERANCE if tolerance is None else tolerance

    timestamp, signatures = parse_signature_header(header or "")
    if timestamp is None:
        raise WebhookSignatureError("Unable to extract timestamp from signature header")
    if not signatures:
        raise WebhookSignatureError("No v1 signatures found in header")

    expected = compute_signature(payload, timestamp, secret)
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise WebhookSignatureError("No signatures found matching the expected signature for payload")

    now = time.time() if now is None else now
    if tolerance and timestamp < now - tolerance:
        raise WebhookSignatureError("Timestamp outside the tolerance zone")

    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise WebhookSignatureError(f"Invalid payload: {e}")


# ------------------------------------------------------
# 2. Event routing
# ------------------------------------------------------
async def handle_stripe_event(event: dict) -> str:
    """
    Returns what was done: 'ignored', 'order' or 'synced'.
    Sync failures propagate so the background runner logs them.
    """
    event_type = event.get("type", "")
    data = (event.get("data") or {}).get("object")

    if not data:
        logger.warning(f"⚠️ No data object in event: {event_type}")
        return "ignored"
    if "customer" not in data:
        logger.warning(f"⚠️ No customer found in event: {event_type}")
        return "ignored"

    # one-time payments are recorded from checkout.session.completed only
    if event_type == "payment_intent.succeeded" and data.get("invoice") is None:
        logger.info("ℹ️ Skipping payment_intent.succeeded for one-time payment")
        return "ignored"

    customer_id = data.get("customer")
    if not customer_id or not isinstance(customer_id, str):
        logger.error(f"❌ Invalid customer id on event {event.get('id')} ({event_type})")
        return "ignored"

    logger.info(f"💳 Processing {event_type} for customer {mask_sensitive(customer_id)}")

    is_subscription = True
    if event_type == "checkout.session.completed":
        is_subscription = data.get("mode") == "subscription"

    if is_subscription:
        await sync_customer_from_stripe(customer_id)
        return "synced"

    if data.get("mode") == "payment" and data.get("payment_status") == "paid":
        async with get_async_session() as session:
            await record_one_time_order(session, customer_id, data)
            await session.commit()
        return "order"
    return "ignored"


async def process_event_safely(event: dict):
    """Background-task entry point: the webhook has already answered 200."""
    try:
        outcome = await handle_stripe_event(event)
        logger.info(f"✅ Stripe event {event.get('id')} ({event.get('type')}) → {outcome}")
    except Exception:
        logger.exception(f"❌ Failed to process Stripe event {event.get('id')} ({event.get('type')})")


async def record_one_time_order(session: AsyncSession, customer_id: str, checkout: dict):
    session.add(StripeOrder(
        customer_id=customer_id,
        checkout_session_id=checkout.get("id"),
        payment_intent_id=checkout.get("payment_intent"),
        amount_subtotal=checkout.get("amount_subtotal") or 0,
        amount_total=checkout.get("amount_total") or 0,
        currency=checkout.get("currency") or "usd",
        payment_status="paid",
        status="completed",
    ))
    await session.flush()
    logger.info(f"🧾 One-time order recorded for checkout {checkout.get('id')}")


# ------------------------------------------------------
# 3. Subscription sync
# ------------------------------------------------------
def select_plan_id(rows: List[Tuple[str, str]], currency: str) -> str:
    """rows: (plan_id, currency) for one Stripe price. Exact currency first, then any."""
    for plan_id, row_currency in rows:
        if row_currency == currency:
            return plan_id
    if rows:
        logger.info(f"ℹ️ Plan matched ignoring currency {currency}")
        return rows[0][0]
    return "free"


def _ts(value: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value else None


def subscription_rows(customer_id: str, subscription: dict) -> dict:
    """Column values for stripe_subscriptions from a Stripe subscription object."""
    item = ((subscription.get("items") or {}).get("data") or [{}])[0]
    values = {
        "customer_id": customer_id,
        "subscription_id": subscription.get("id"),
        "price_id": (item.get("price") or {}).get("id"),
        "current_period_start": subscription.get("current_period_start") or item.get("current_period_start"),
        "current_period_end": subscription.get("current_period_end") or item.get("current_period_end"),
        "cancel_at_period_end": bool(subscription.get("cancel_at_period_end")),
        "status": subscription.get("status"),
    }
    pm = subscription.get("default_payment_method")
    if pm and not isinstance(pm, str):
        card = pm.get("card") or {}
        values["payment_method_brand"] = card.get("brand")
        values["payment_method_last4"] = card.get("last4")
    return values


async def _get_user_id_for_customer(session: AsyncSession, customer_id: str):
    result = await session.execute(
        select(StripeCustomer.user_id).where(
            StripeCustomer.customer_id == customer_id,
            StripeCustomer.deleted_at.is_(None),
        )
    )
    user_id = result.scalar_one_or_none()
    if not user_id:
        raise SubscriptionSyncError(f"Failed to find user for customer {mask_sensitive(customer_id)}")
    return user_id


async def _upsert_stripe_subscription(session: AsyncSession, values: dict):
    stmt = insert(StripeSubscription).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[StripeSubscription.customer_id],
        set_={**{k: stmt.excluded[k] for k in values if k != "customer_id"}, "updated_at": utcnow()},
    )
    await session.execute(stmt)


async def _upsert_main_subscription(session: AsyncSession, values: dict):
    stmt = insert(Subscription).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Subscription.user_id],
        set_={**{k: stmt.excluded[k] for k in values if k != "user_id"}, "updated_at": utcnow()},
    )
    await session.execute(stmt)


async def _find_plan_for_price(session: AsyncSession, price_id: str, currency: str) -> str:
    result = await session.execute(
        select(PlanPrice.plan_id, PlanPrice.currency).where(PlanPrice.stripe_price_id == price_id)
    )
    plan_id = select_plan_id([tuple(r) for r in result.all()], currency)
    if plan_id == "free":
        logger.error(f"🚨 Stripe price {price_id} not found in plan_prices; defaulting to free")
    return plan_id


async def sync_customer_from_stripe(customer_id: str, session: Optional[AsyncSession] = None):
    """Mirror the customer's latest Stripe subscription into the database."""
    if session is None:
        async with get_async_session() as s:
            await sync_customer_from_stripe(customer_id, s)
        return

    subscriptions = await stripe_client.list_subscriptions(customer_id)
    user_id = await _get_user_id_for_customer(session, customer_id)

    if not subscriptions:
        logger.info(f"ℹ️ No subscriptions for customer {mask_sensitive(customer_id)} → free plan")
        await _upsert_stripe_subscription(session, {"customer_id": customer_id, "status": "not_started"})
        await _upsert_main_subscription(session, {
            "user_id": user_id,
            "plan": "free",
            "status": "active",
            "current_period_end": utcnow() + timedelta(days=FREE_PLAN_DAYS),
            "cancel_at_period_end": False,
        })
        await session.commit()
        return

    subscription = subscriptions[0]
    values = subscription_rows(customer_id, subscription)
    await _upsert_stripe_subscription(session, values)

    currency = (subscription.get("currency") or "").upper()
    plan_id = await _find_plan_for_price(session, values["price_id"], currency)
    product = stripe_client.get_product_by_price_id(values["price_id"])
    if product:
        logger.info(f"📦 Price {values['price_id']} → {product['name']} ({product['interval']}ly)")

    await _upsert_main_subscription(session, {
        "user_id": user_id,
        "plan": plan_id,
        "status": "active" if subscription.get("status") == "active" else "canceled",
        "current_period_end": _ts(values["current_period_end"]),
        "cancel_at_period_end": values["cancel_at_period_end"],
        "cancelled_at": _ts(subscription.get("canceled_at")),
    })
    await session.commit()
    logger.info(
        f"✅ Synced customer {mask_sensitive(customer_id)} → plan={plan_id} status={subscription.get('status')}"
    )


# ------------------------------------------------------
# 4. Billing actions for the signed-in user
# ------------------------------------------------------
async def get_customer_id_for_user(session: AsyncSession, user_id) -> Optional[str]:
    result = await session.execute(
        select(StripeCustomer.customer_id).where(
            StripeCustomer.user_id == user_id,
            StripeCustomer.deleted_at.is_(None),
        )
    )
    return result.scalar_one_or_none()


async def fetch_invoices(session: AsyncSession, user_id, limit: int = 10) -> List[dict]:
    customer_id = await get_customer_id_for_user(session, user_id)
    if not customer_id:
        return []
    return await stripe_client.list_invoices(customer_id, limit=limit)


async def cancel_subscription(session: AsyncSession, user_id, subscription_id: str) -> dict:
    """Cancel at period end after checking the subscription is the caller's."""
    customer_id = await get_customer_id_for_user(session, user_id)
    if not customer_id:
        raise CustomerNotFound("Customer not found")

    subscription = await stripe_client.retrieve_subscription(subscription_id)
    if subscription.get("customer") != customer_id:
        logger.warning(f"🚫 Cancel attempt on foreign subscription {mask_sensitive(subscription_id)}")
        raise SubscriptionOwnershipError("Subscription does not belong to user")

    updated = await stripe_client.set_cancel_at_period_end(subscription_id, True)

    try:
        await session.execute(
            update(StripeSubscription)
            .where(StripeSubscription.subscription_id == subscription_id)
            .values(cancel_at_period_end=True, updated_at=utcnow())
        )
        await session.commit()
    except Exception as e:
        # Stripe already has the change; the next webhook re-syncs it
        await session.rollback()
        logger.error(f"⚠️ Local cancel bookkeeping failed for {mask_sensitive(subscription_id)}: {e}")

    logger.info(f"🛑 Subscription {mask_sensitive(subscription_id)} set to cancel at period end")
    return {
        "id": updated.get("id"),
        "cancel_at_period_end": updated.get("cancel_at_period_end"),
        "current_period_end": updated.get("current_period_end"),
    }
