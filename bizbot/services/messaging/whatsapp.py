"""
WhatsApp Cloud API client for outbound replies.

Only text replies are sent from the pipeline; the webhook side of the
channel lives in bizbot.agents.messaging.
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from typing import Any, Dict, Optional

# ─── Third-party imports ────────────────────────────────────────────────
import requests

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.config import settings
from bizbot.errors import ExternalServiceFailure

logger = logging.getLogger(__name__)

GRAPH_API_BASE = "https://graph.facebook.com"


def messages_url(phone_number_id: Optional[str] = None, api_version: Optional[str] = None) -> str:
    return (f"{GRAPH_API_BASE}/{api_version or settings.WHATSAPP_API_VERSION}/"
            f"{phone_number_id or settings.WHATSAPP_PHONE_NUMBER_ID}/messages")


class WhatsAppClient:
    def __init__(self, api_key: Optional[str] = None, phone_number_id: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        self.api_key = api_key or settings.WHATSAPP_API_KEY
        self.phone_number_id = phone_number_id or settings.WHATSAPP_PHONE_NUMBER_ID
        self.session = session or requests.Session()

    def send_text(self, to: str, body: str) -> Dict[str, Any]:
        payload = {
            "messaging_product": "whatsapp",
            "to": to,
            "type": "text",
            "text": {"body": body},
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            response = self.session.post(messages_url(self.phone_number_id), json=payload,
                                         headers=headers, timeout=settings.HTTP_TIMEOUT_SECONDS)
        except requests.exceptions.RequestException as e:
            raise ExternalServiceFailure(f"WhatsApp send failed: {e}") from e

        if response.status_code >= 400:
            raise ExternalServiceFailure(
                f"WhatsApp send failed: {response.status_code} - {response.text}")
        if not response.content:
            logger.info(f"Reply delivered to {to}")
            return {}
        try:
            result = response.json()
        except ValueError as e:
            raise ExternalServiceFailure(
                f"WhatsApp returned a non-JSON response: {response.status_code}") from e

        logger.info(f"Reply delivered to {to}")
        return result
