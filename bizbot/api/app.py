# --------------------------- bizbot/api/app.py ----------------------------
"""
Bizbot · Webhook HTTP Surface

ROUTES:
- GET  /health                           → liveness + environment
- GET  /api/webhooks/whatsapp            → channel verification handshake
- POST /api/webhooks/whatsapp            → inbound message (bot from body)
- POST /api/webhooks/whatsapp/{bot_id}   → inbound message for one bot
- POST /api/webhooks/wompi               → signed payment notification
- POST /api/webhooks/n8n                 → workflow engine execution callback

Collaborators are built once per process by get_services(); tests swap
them through app.dependency_overrides.

Run: uvicorn bizbot.api.app:app
"""

# ─── Standard-library imports ───────────────────────────────────────────
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

# ─── Third-party imports ────────────────────────────────────────────────
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.agents.messaging.graph import MessagePipeline, verify_subscription
from bizbot.agents.payments.handlers import PaymentWebhookHandler
from bizbot.config import settings
from bizbot.services.llm import IntentClassifier, ReplyGenerator
from bizbot.services.messaging.whatsapp import WhatsAppClient
from bizbot.services.payments.wompi import SIGNATURE_HEADER
from bizbot.services.store import SupabaseStore
from bizbot.utils.security import tokens_match

logging.basicConfig(
    level=getattr(logging, str(settings.LOG_LEVEL).upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


@dataclass
class Services:
    messages: MessagePipeline
    payments: PaymentWebhookHandler


@lru_cache(maxsize=1)
def get_services() -> Services:
    store = SupabaseStore()
    pipeline = MessagePipeline(
        store=store,
        classifier=IntentClassifier(),
        responder=ReplyGenerator(),
        messenger=WhatsAppClient(),
    )
    return Services(messages=pipeline, payments=PaymentWebhookHandler(store))


app = FastAPI(title="Bizbot", description="WhatsApp automation webhooks for small businesses")


async def _json_body(request: Request) -> Optional[Dict[str, Any]]:
    try:
        body = await request.json()
    except (ValueError, UnicodeDecodeError):
        return None
    return body if isinstance(body, dict) else None


@app.get("/health")
def health() -> Dict[str, Any]:
    return {
        "status": "OK",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.ENVIRONMENT,
    }


# ╔══════════ WhatsApp ═══════════════════════════════════════════════════

@app.get("/api/webhooks/whatsapp")
def whatsapp_verify(request: Request):
    params = request.query_params
    status_code, body = verify_subscription(
        mode=params.get("hub.mode") or params.get("mode"),
        token=params.get("hub.verify_token") or params.get("verify_token"),
        challenge=params.get("hub.challenge") or params.get("challenge"),
        expected_token=settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN,
    )
    return PlainTextResponse(body, status_code=status_code)


async def _handle_message(request: Request, services: Services, bot_id: Optional[str]):
    payload = await _json_body(request)
    if payload is None:
        return JSONResponse({"success": False, "message": "Invalid JSON payload"}, status_code=400)
    status_code, body = services.messages.handle(
        payload,
        headers=dict(request.headers),
        bot_id=bot_id,
        verify_token=settings.WHATSAPP_WEBHOOK_VERIFY_TOKEN,
    )
    return JSONResponse(body, status_code=status_code)


@app.post("/api/webhooks/whatsapp")
async def whatsapp_message(request: Request, services: Services = Depends(get_services)):
    return await _handle_message(request, services, bot_id=None)


@app.post("/api/webhooks/whatsapp/{bot_id}")
async def whatsapp_bot_message(bot_id: str, request: Request,
                               services: Services = Depends(get_services)):
    return await _handle_message(request, services, bot_id=bot_id)


# ╔══════════ Payments ═══════════════════════════════════════════════════

@app.post("/api/webhooks/wompi")
async def wompi_webhook(request: Request, services: Services = Depends(get_services)):
    # Signature covers the exact bytes received
    raw_body = await request.body()
    status_code, body = services.payments.handle(raw_body, request.headers.get(SIGNATURE_HEADER))
    return JSONResponse(body, status_code=status_code)


# ╔══════════ Workflow engine callbacks ══════════════════════════════════

@app.post("/api/webhooks/n8n")
async def n8n_callback(request: Request):
    api_key = request.headers.get("x-n8n-api-key") or ""
    expected = settings.N8N_API_KEY or ""
    if not tokens_match(api_key, expected):
        logger.warning("Rejected n8n callback: invalid API key")
        return JSONResponse({"success": False, "message": "Invalid API key"}, status_code=401)

    body = await _json_body(request) or {}
    workflow_id = body.get("workflow_id")
    logger.info(f"n8n callback received: workflow={workflow_id} "
                f"execution={body.get('execution_id')} status={body.get('status')}")
    if body.get("status") == "success":
        logger.info(f"Workflow {workflow_id} executed successfully")
    elif body.get("status") == "error":
        logger.error(f"Workflow {workflow_id} failed: {json.dumps(body.get('error'), default=str)}")
    return {"success": True, "message": "Callback processed"}
