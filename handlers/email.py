# ==============================================================
# handlers/email.py — Transactional email relay (Brevo)
# ==============================================================
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from helpers import sanitize_for_logging
from services.email import EmailDeliveryError, build_brevo_payload, send_email
from services.rate_limit import enforce_api_rate_limit
from utils.security import CurrentUser, get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/email", tags=["email"])


class SendEmailRequest(BaseModel):
    to: Optional[str] = None
    subject: Optional[str] = None
    htmlContent: Optional[str] = None
    templateId: Optional[int] = None
    senderEmail: Optional[str] = None
    senderName: Optional[str] = None


@router.post("/send", dependencies=[Depends(enforce_api_rate_limit)])
async def send(body: SendEmailRequest, user: CurrentUser = Depends(get_current_user)):
    logger.debug(f"📨 Email request: {sanitize_for_logging({'to_email': body.to, 'subject': body.subject, 'templateId': body.templateId})}")
    try:
        payload = build_brevo_payload(
            to=body.to,
            subject=body.subject,
            html_content=body.htmlContent,
            template_id=body.templateId,
            sender_email=body.senderEmail,
            sender_name=body.senderName,
        )
    except ValueError as e:
        return JSONResponse(status_code=400, content={"error": str(e)})

    try:
        data = await send_email(payload)
    except EmailDeliveryError as e:
        return JSONResponse(status_code=500, content={"error": str(e)})

    return {"success": True, "data": data}
