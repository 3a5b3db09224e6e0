# ================================================================
# services/email.py
# ================================================================
import logging
from typing import Optional

import httpx

from config import BREVO_API_KEY, BREVO_API_URL, DEFAULT_SENDER_EMAIL, DEFAULT_SENDER_NAME
from helpers import mask_sensitive

logger = logging.getLogger(__name__)


class EmailDeliveryError(Exception):
    pass


def build_brevo_payload(
    to: str,
    subject: str,
    html_content: Optional[str] = None,
    template_id: Optional[int] = None,
    sender_email: Optional[str] = None,
    sender_name: Optional[str] = None,
) -> dict:
    if not to or not subject or (not html_content and not template_id):
        raise ValueError("Missing required email parameters")

    payload = {
        "sender": {
            "email": sender_email or DEFAULT_SENDER_EMAIL,
            "name": sender_name or DEFAULT_SENDER_NAME,
        },
        "to": [{"email": to}],
        "subject": subject,
    }
    # html body wins over a template when both are given
    if html_content:
        payload["htmlContent"] = html_content
    else:
        payload["templateId"] = template_id
    return payload


async def send_email(payload: dict, client: Optional[httpx.AsyncClient] = None) -> dict:
    """POST a prepared payload to Brevo. Returns Brevo's JSON (messageId)."""
    headers = {
        "api-key": BREVO_API_KEY,
        "Content-Type": "application/json",
        "Accept": "application/json",
    }
    recipient = payload["to"][0]["email"]

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=15.0) as c:
                resp = await c.post(BREVO_API_URL, json=payload, headers=headers)
        else:
            resp = await client.post(BREVO_API_URL, json=payload, headers=headers)
    except httpx.HTTPError as e:
        logger.error(f"❌ Brevo unreachable: {e}")
        raise EmailDeliveryError(f"Failed to send email via Brevo: {e}")

    if resp.status_code >= 400:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        logger.error(f"🚫 Brevo rejected email to {mask_sensitive(recipient)} [{resp.status_code}]")
        raise EmailDeliveryError(f"Failed to send email via Brevo: {detail}")

    data = resp.json() if resp.content else {}
    logger.info(f"📧 Email sent to {mask_sensitive(recipient)} (messageId={data.get('messageId')})")
    return data
