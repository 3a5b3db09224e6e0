# ==============================================================
# handlers/billing.py — Stripe webhook + billing endpoints
# ==============================================================
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from db import get_session
from services import payments
from services.rate_limit import enforce_api_rate_limit
from services.stripe_client import StripeAPIError, STRIPE_PRODUCTS
from utils.security import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(tags=["billing"])


class SubscriptionAction(BaseModel):
    action: Optional[str] = None
    subscription_id: Optional[str] = None


# -------------------------------------------------
# Stripe webhook
# -------------------------------------------------
@router.post("/stripe/webhook")
async def stripe_webhook(request: Request, background_tasks: BackgroundTasks):
    """
    Verifies the Stripe-Signature header, acknowledges at once and
    reconciles the event in the background.
    """
    signature = request.headers.get("stripe-signature")
    if not signature:
        logger.warning("⚠️ Stripe webhook without signature header")
        return JSONResponse(status_code=400, content={"error": "No signature found"})

    raw_body = await request.body()
    try:
        event = payments.construct_event(raw_body, signature)
    except payments.WebhookSignatureError as e:
        logger.warning(f"⚠️ Webhook signature verification failed: {e}")
        return JSONResponse(status_code=400, content={"error": f"Webhook signature verification failed: {e}"})

    logger.info(f"📬 Stripe event received → {event.get('type')} ({event.get('id')})")
    background_tasks.add_task(payments.process_event_safely, event)
    return {"received": True}


# -------------------------------------------------
# Signed-in billing endpoints
# -------------------------------------------------
@router.get("/api/billing/products")
async def list_products():
    return {"products": STRIPE_PRODUCTS}


@router.get("/api/billing/invoices", dependencies=[Depends(enforce_api_rate_limit)])
async def fetch_invoices(
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    try:
        invoices = await payments.fetch_invoices(session, uuid.UUID(user.id))
    except StripeAPIError as e:
        raise HTTPException(status_code=502, detail=e.message)
    return {"invoices": invoices}


@router.post("/api/billing/subscription", dependencies=[Depends(enforce_api_rate_limit)])
async def manage_subscription(
    body: SubscriptionAction,
    user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
):
    if not body.action or not body.subscription_id:
        raise HTTPException(status_code=400, detail="Missing required parameters: action and subscription_id")
    if body.action != "cancel":
        raise HTTPException(status_code=400, detail='Invalid action. Only "cancel" is supported.')

    try:
        subscription = await payments.cancel_subscription(session, uuid.UUID(user.id), body.subscription_id)
    except payments.CustomerNotFound:
        raise HTTPException(status_code=404, detail="Customer not found")
    except payments.SubscriptionOwnershipError:
        raise HTTPException(status_code=403, detail="Unauthorized: Subscription does not belong to user")
    except StripeAPIError as e:
        status = 404 if e.status_code == 404 else 502
        raise HTTPException(status_code=status, detail=e.message)

    return {
        "success": True,
        "message": "Subscription will be cancelled at the end of the current billing period",
        "subscription": subscription,
    }
