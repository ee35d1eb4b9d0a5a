"""Twilio WhatsApp integration for Converso.

This module handles webhook signature validation, the empty TwiML
acknowledgment returned to Twilio, and outbound message delivery through the
Twilio Messages REST API.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
from typing import Any, Mapping

import httpx
import structlog
from pydantic import BaseModel, Field

from api.errors import ConfigurationError, DeliveryError
from libs.common.settings import Settings, get_settings
from libs.memory.conversation_store import mask_sender

logger = structlog.get_logger(__name__)

# The only response ever returned to Twilio
TWIML_EMPTY_RESPONSE = "<Response></Response>"
TWIML_MEDIA_TYPE = "application/xml"


class TwilioWebhookForm(BaseModel):
    """Fields of a Twilio inbound WhatsApp message used by the pipeline."""

    model_config = {"populate_by_name": True}

    body: str = Field(default="", alias="Body")
    from_: str = Field(alias="From")
    message_sid: str | None = Field(default=None, alias="MessageSid")


def compute_twilio_signature(url: str, params: Mapping[str, Any], auth_token: str) -> str:
    """Compute the ``X-Twilio-Signature`` value for a request.

    Twilio signs the full URL followed by every POST parameter name and value,
    sorted by name, with HMAC-SHA1 keyed by the account auth token.
    """
    payload = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode(), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def verify_twilio_signature(url: str, params: Mapping[str, Any], signature: str, auth_token: str) -> bool:
    """Verify a Twilio webhook signature.

    Args:
        url: Full URL Twilio posted to
        params: Form parameters of the request
        signature: Value of the X-Twilio-Signature header
        auth_token: Twilio auth token from settings

    Returns:
        True if signature is valid
    """
    if not signature:
        return False
    expected = compute_twilio_signature(url, params, auth_token)
    # Use constant-time comparison to prevent timing attacks
    return hmac.compare_digest(expected, signature)


def to_whatsapp_address(sender_id: str) -> str:
    return sender_id if sender_id.startswith("whatsapp:") else f"whatsapp:{sender_id}"


class TwilioWhatsAppClient:
    """Sends WhatsApp messages via the Twilio Messages API."""

    def __init__(self, settings: Settings | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.settings = settings or get_settings()
        self._transport = transport

    async def deliver(self, sender_id: str, text: str) -> dict[str, Any]:
        """Send ``text`` to ``sender_id``.

        Returns:
            Twilio API response dictionary

        Raises:
            ConfigurationError: If Twilio credentials are missing
            DeliveryError: If Twilio rejects the message or is unreachable
        """
        settings = self.settings
        if not settings.twilio_configured:
            logger.error("Twilio credentials not configured")
            raise ConfigurationError("Twilio WhatsApp service not configured")

        url = f"/2010-04-01/Accounts/{settings.twilio_account_sid}/Messages.json"
        form = {
            "From": settings.twilio_whatsapp_number,
            "To": to_whatsapp_address(sender_id),
            "Body": text,
        }

        try:
            async with httpx.AsyncClient(
                base_url=settings.twilio_api_base_url,
                auth=(settings.twilio_account_sid, settings.twilio_auth_token),
                timeout=10.0,
                transport=self._transport,
            ) as client:
                response = await client.post(url, data=form)
                response.raise_for_status()
                result = response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Twilio API error",
                status_code=e.response.status_code,
                error=e.response.text[:200],
                to_number=mask_sender(sender_id),
            )
            raise DeliveryError("Failed to send WhatsApp message", status_code=e.response.status_code) from e
        except httpx.HTTPError as e:
            logger.error("WhatsApp send error", error=str(e), to_number=mask_sender(sender_id))
            raise DeliveryError("Failed to reach Twilio") from e

        logger.info(
            "WhatsApp message sent",
            to_number=mask_sender(sender_id),
            message_sid=result.get("sid"),
            length=len(text),
        )
        return result
