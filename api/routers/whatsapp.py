from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response
from pydantic import ValidationError

from api.dependencies import get_orchestrator
from api.orchestrators.message_orchestrator import MessageOrchestrator
from api.schemas.pipeline import InboundMessage
from api.twilio import (
    TWIML_EMPTY_RESPONSE,
    TWIML_MEDIA_TYPE,
    TwilioWebhookForm,
    verify_twilio_signature,
)
from libs.common.settings import get_settings
from libs.memory.conversation_store import mask_sender

logger = structlog.get_logger(__name__)
router = APIRouter()


def empty_twiml_response() -> Response:
    return Response(content=TWIML_EMPTY_RESPONSE, media_type=TWIML_MEDIA_TYPE)


class TwimlResponder:
    """Channel acknowledgment primitive handed to the orchestrator."""

    def __init__(self):
        self.response: Response | None = None

    def __call__(self) -> None:
        self.response = empty_twiml_response()


@router.post("/whatsapp/webhook", tags=["WhatsApp"])
async def receive_whatsapp_webhook(
    request: Request,
    orchestrator: MessageOrchestrator = Depends(get_orchestrator),
) -> Response:
    """Twilio WhatsApp webhook endpoint.

    Twilio posts each inbound message as form fields (``Body``, ``From``).
    The response is always the empty TwiML document, whatever happens while
    processing; answers and errors reach the user as outbound messages.

    Example:
        ```bash
        curl -X POST http://localhost:8000/whatsapp/webhook \\
            -d "Body=Oi" -d "From=whatsapp:+5511999990000"
        ```
    """
    request_id = getattr(request.state, "request_id", "unknown")
    settings = get_settings()
    params = {key: value for key, value in (await request.form()).items() if isinstance(value, str)}

    if settings.validate_twilio_signature:
        signature = request.headers.get("X-Twilio-Signature", "")
        if not settings.twilio_auth_token or not verify_twilio_signature(
            str(request.url), params, signature, settings.twilio_auth_token
        ):
            logger.warning("Invalid Twilio webhook signature", request_id=request_id)
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Invalid signature",
            )

    try:
        payload = TwilioWebhookForm.model_validate(params)
    except ValidationError as e:
        logger.warning("Malformed Twilio webhook", request_id=request_id, error=str(e))
        return empty_twiml_response()

    logger.info(
        "WhatsApp webhook received",
        request_id=request_id,
        from_number=mask_sender(payload.from_),
        message_sid=payload.message_sid,
    )

    responder = TwimlResponder()
    try:
        await orchestrator.handle(InboundMessage(sender_id=payload.from_, text=payload.body), responder)
    except Exception as e:
        logger.error(
            "WhatsApp webhook processing failed",
            request_id=request_id,
            error=str(e),
            exc_info=True,
        )

    if responder.response is None:
        logger.error("Webhook finished without acknowledgment", request_id=request_id)
        return empty_twiml_response()
    return responder.response
