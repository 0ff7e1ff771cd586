# --------------------------- bizbot/agents/messaging/graph.py ----------------------------
"""
Bizbot · WhatsApp Message Pipeline (LangGraph)

OVERVIEW:
In-process implementation of the message-channel contract that the compiled
automation graph encodes. Each inbound webhook runs once through a LangGraph
state machine; the run ends at the first rejection or at acknowledgment.

WORKFLOW:
  authenticate → parse → resolve_contact → classify → dispatch → deliver → persist → acknowledge

BUSINESS LOGIC:
- Verification token mismatch → 401, nothing else runs
- Missing sender / empty text → 400, nothing else runs
- Non-text messages (images, audio, ...) are logged and acknowledged only
- Unknown or paused bots are acknowledged but not routed
- Contact and classification failures degrade (no contact / fallback intent)
- Delivery and persistence failures are logged; the webhook still gets 200,
  because the channel expects a fast 2xx regardless of downstream outcome

TECHNICAL ARCHITECTURE:
- LangGraph StateGraph with conditional routing after each gate
- Collaborators (store, classifier, responder, messenger, HTTP session) are
  injected once and reused; no per-request mutable shared state
- No checkpointer: every run is scoped to one webhook request
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from typing_extensions import TypedDict

# ─── Third-party imports ────────────────────────────────────────────────
import requests
from langgraph.graph import END, StateGraph

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.agents.workflow.compiler import (
    CONTACT, DISPATCH, PARSE, PROCESS, TRIGGER, default_action_body, render_template,
)
from bizbot.config import settings
from bizbot.errors import ExternalServiceFailure, ValidationFailure
from bizbot.models import (
    Action, AutomationConfig, ClassificationResult, ContactStatus, InboundMessageEvent,
)
from bizbot.services.llm.config_generator import DEFAULT_RESPONSE_TEMPLATES
from bizbot.utils.security import tokens_match

logger = logging.getLogger(__name__)

VERIFY_TOKEN_HEADER = "x-hub-verify-token"


# ╔══════════ 1. Shared State ═════════════════════════════════════════════

class MessageState(TypedDict, total=False):
    """
    State flowing through one pipeline run.

    FIELDS:
    - payload / headers / bot_id / verify_token: request inputs
    - stage: last state reached (received … acknowledged, or rejected)
    - bot / config / event / contact / history: resolved context
    - classification / reply / action: model and dispatch outputs
    - delivered / persisted: downstream outcomes (never fail the run)
    - status_code / response: what the webhook caller receives
    - errors: non-fatal problems collected along the way
    """
    payload: Dict[str, Any]
    headers: Dict[str, str]
    bot_id: Optional[str]
    verify_token: Optional[str]
    stage: str
    bot: Optional[Dict[str, Any]]
    config: Optional[AutomationConfig]
    event: Optional[InboundMessageEvent]
    contact: Optional[Dict[str, Any]]
    history: List[Dict[str, str]]
    classification: ClassificationResult
    reply: str
    action: str
    delivered: bool
    persisted: bool
    ack_message: str
    status_code: int
    response: Dict[str, Any]
    errors: List[Dict[str, str]]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _error(state: MessageState, step: str, error: Exception) -> List[Dict[str, str]]:
    return [*state.get("errors", []), {"step": step, "error": str(error), "timestamp": _now_iso()}]


def _reject(status_code: int, message: str) -> Dict[str, Any]:
    return {"stage": "rejected", "status_code": status_code,
            "response": {"success": False, "message": message}}


def select_action(actions: List[Action], classification: ClassificationResult, text: str) -> str:
    """First configured action whose name was suggested or whose trigger word appears; else 'default'."""
    lowered = (text or "").lower()
    for action in actions:
        if classification.suggested_action == action.name:
            return action.name
        if any(word.lower() in lowered for word in action.trigger_words if word):
            return action.name
    return "default"


def verify_subscription(mode: Optional[str], token: Optional[str], challenge: Optional[str],
                        expected_token: Optional[str]) -> Tuple[int, str]:
    """
    Channel ownership handshake: echo the challenge when mode and token match.

    Returns (status_code, body): 200 + challenge, 403 on mismatch, 400 when
    mode or token is missing.
    """
    if not mode or not token:
        return 400, "Missing required parameters"
    if mode == "subscribe" and tokens_match(token, expected_token):
        logger.info("WhatsApp webhook verified")
        return 200, challenge or ""
    logger.warning("WhatsApp webhook verification failed")
    return 403, "Invalid verification token"


# ╔══════════ 2. Pipeline ══════════════════════════════════════════════════

class MessagePipeline:
    """
    Message-channel event pipeline.

    KEY METHODS:
    - handle(): run one inbound webhook through the graph
    - one method per graph node, plus route_* functions for the gates
    """

    def __init__(self, store, classifier, responder, messenger,
                 http: Optional[requests.Session] = None):
        self.store = store
        self.classifier = classifier
        self.responder = responder
        self.messenger = messenger
        self.http = http or requests.Session()
        self.graph = self._build_graph()

    def handle(self, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None,
               bot_id: Optional[str] = None,
               verify_token: Optional[str] = None) -> Tuple[int, Dict[str, Any]]:
        headers = {k.lower(): v for k, v in (headers or {}).items()}
        result = self.graph.invoke({
            "payload": payload,
            "headers": headers,
            "bot_id": bot_id,
            "verify_token": verify_token,
            "stage": "received",
            "errors": [],
        })
        if result.get("errors"):
            logger.info(f"Pipeline finished at {result.get('stage')} with "
                        f"{len(result['errors'])} non-fatal errors")
        return result["status_code"], result["response"]

    # ─── Nodes ──────────────────────────────────────────────────────────
    def authenticate(self, state: MessageState) -> Dict[str, Any]:
        expected = state.get("verify_token")
        if expected:
            presented = state.get("headers", {}).get(VERIFY_TOKEN_HEADER) or ""
            if not tokens_match(presented, expected):
                logger.warning("Rejected WhatsApp webhook: invalid verification token")
                return _reject(401, "Invalid verification token")
        return {"stage": "authenticated"}

    def parse(self, state: MessageState) -> Dict[str, Any]:
        try:
            event = InboundMessageEvent.from_payload(state.get("payload"))
        except ValidationFailure as e:
            logger.warning(f"Rejected WhatsApp webhook: {e}")
            return _reject(400, str(e))

        logger.info(f"WhatsApp message received from {event.sender} (type: {event.type})")
        if not event.is_text:
            return {"stage": "parsed", "event": event,
                    "ack_message": f"Message type '{event.type}' acknowledged"}
        return {"stage": "parsed", "event": event}

    def resolve_contact(self, state: MessageState) -> Dict[str, Any]:
        event = state["event"]
        payload = state.get("payload") or {}
        bot_id = state.get("bot_id") or payload.get("bot_id")

        try:
            if bot_id:
                bot = self.store.get_bot(bot_id)
            elif payload.get("to"):
                bot = self.store.get_bot_by_whatsapp_number(str(payload["to"]))
            else:
                bot = None
        except ExternalServiceFailure as e:
            logger.error(f"Could not load bot for message from {event.sender}: {e}")
            return {"bot": None, "errors": _error(state, "resolve_bot", e),
                    "ack_message": "Message logged; bot unavailable"}

        if not bot:
            logger.warning(f"No bot configured for message from {event.sender}")
            return {"bot": None, "ack_message": "Message logged; no bot configured"}
        if bot.get("status") == "paused":
            logger.info(f"Bot {bot['id']} is paused; message not routed")
            return {"bot": None, "ack_message": "Message logged; bot paused"}

        config = self._load_config(bot)
        update: Dict[str, Any] = {"stage": "contact_resolved", "bot": bot, "config": config}
        try:
            contact = self.store.get_contact(bot["id"], event.sender)
            if contact:
                self.store.update_contact(contact["id"], {"last_interaction": _now_iso()})
            else:
                contact = self.store.create_contact({
                    "bot_id": bot["id"],
                    "phone": event.sender,
                    "status": ContactStatus.LEAD.value,
                    "last_interaction": _now_iso(),
                })
                logger.info(f"New contact {event.sender} for bot {bot['id']}")
            update["contact"] = contact
        except ExternalServiceFailure as e:
            logger.error(f"Contact resolution failed for {event.sender}: {e}")
            update["contact"] = None
            update["errors"] = _error(state, "resolve_contact", e)
        return update

    def classify(self, state: MessageState) -> Dict[str, Any]:
        event, bot, config = state["event"], state["bot"], state["config"]
        history = self._load_history(bot["id"], event.sender)

        classification = self.classifier.classify(event.body, {
            "business_type": bot.get("business_type"),
            "recent_messages": history,
            "available_actions": [a.name for a in config.available_actions],
        })

        try:
            reply = self.responder.generate(config.system_prompt, event.body, history)
        except ExternalServiceFailure as e:
            logger.error(f"Reply generation failed for bot {bot['id']}: {e}")
            reply = config.response_templates.get("error", DEFAULT_RESPONSE_TEMPLATES["error"])

        return {"stage": "classified", "history": history,
                "classification": classification, "reply": reply}

    def dispatch(self, state: MessageState) -> Dict[str, Any]:
        event, config = state["event"], state["config"]
        classification = state["classification"]
        action_name = select_action(config.available_actions, classification, event.body)
        update: Dict[str, Any] = {"stage": "dispatched", "action": action_name}

        action = next((a for a in config.available_actions if a.name == action_name), None)
        if action and action.webhook_url:
            try:
                self._call_action_webhook(state, action)
            except Exception as e:
                logger.error(f"Action webhook {action.name} failed: {e}")
                update["errors"] = _error(state, "dispatch", e)

        logger.info(f"Dispatched intent {classification.intent} to action {action_name}")
        return update

    def deliver(self, state: MessageState) -> Dict[str, Any]:
        event = state["event"]
        try:
            self.messenger.send_text(event.sender, state["reply"])
            return {"stage": "delivered", "delivered": True}
        except ExternalServiceFailure as e:
            logger.error(f"Reply delivery to {event.sender} failed: {e}")
            return {"delivered": False, "errors": _error(state, "deliver", e)}

    def persist(self, state: MessageState) -> Dict[str, Any]:
        event, bot = state["event"], state["bot"]
        classification = state["classification"]
        contact = state.get("contact") or {}
        try:
            self.store.save_conversation({
                "bot_id": bot["id"],
                "contact_id": contact.get("id"),
                "phone": event.sender,
                "message": event.body,
                "response": state["reply"],
                "intent": classification.intent or "general",
                "confidence": classification.confidence,
                "action": state.get("action"),
                "message_id": event.message_id,
                "created_at": _now_iso(),
            })
            return {"stage": "persisted", "persisted": True}
        except ExternalServiceFailure as e:
            logger.error(f"Saving conversation for bot {bot['id']} failed: {e}")
            return {"persisted": False, "errors": _error(state, "persist", e)}

    def acknowledge(self, state: MessageState) -> Dict[str, Any]:
        message = state.get("ack_message") or "Webhook processed successfully"
        return {"stage": "acknowledged", "status_code": 200,
                "response": {"success": True, "message": message}}

    # ─── Routing ────────────────────────────────────────────────────────
    @staticmethod
    def route_after_authenticate(state: MessageState) -> str:
        return "reject" if state.get("stage") == "rejected" else "continue"

    @staticmethod
    def route_after_parse(state: MessageState) -> str:
        if state.get("stage") == "rejected":
            return "reject"
        return "continue" if state["event"].is_text else "acknowledge"

    @staticmethod
    def route_after_contact(state: MessageState) -> str:
        return "continue" if state.get("bot") else "acknowledge"

    # ─── Helpers ────────────────────────────────────────────────────────
    def _load_config(self, bot: Dict[str, Any]) -> AutomationConfig:
        try:
            return AutomationConfig.from_dict(bot.get("config_json") or {})
        except ValidationFailure as e:
            # Stored blob predates the current shape; keep replying with defaults
            logger.error(f"Bot {bot.get('id')} has an invalid stored config: {e}")
            return AutomationConfig(
                system_prompt="Eres el asistente virtual de un pequeño negocio. Responde con amabilidad.",
                automation_types=[],
                available_actions=[],
                response_templates=dict(DEFAULT_RESPONSE_TEMPLATES),
                business_info={},
                integrations={},
            )

    def _load_history(self, bot_id: str, phone: str) -> List[Dict[str, str]]:
        try:
            rows = self.store.get_recent_conversations(bot_id, phone, settings.HISTORY_WINDOW)
        except ExternalServiceFailure as e:
            logger.warning(f"Could not load history for {phone}: {e}")
            return []
        history = []
        for row in reversed(rows or []):
            if row.get("message"):
                history.append({"role": "user", "content": row["message"]})
            if row.get("response"):
                history.append({"role": "assistant", "content": row["response"]})
        return history[-settings.HISTORY_WINDOW:]

    def _call_action_webhook(self, state: MessageState, action: Action) -> None:
        event, bot = state["event"], state["bot"]
        classification = state["classification"]
        contact = state.get("contact") or {}
        headers = {k: v for k, v in (state.get("headers") or {}).items()
                   if k != VERIFY_TOKEN_HEADER}
        context = {
            TRIGGER: {"body": state.get("payload") or {}, "headers": headers},
            PARSE: {"sender": event.sender, "text": event.body, "timestamp": event.timestamp,
                    "message_id": event.message_id, "type": event.type},
            CONTACT: {"contact_id": contact.get("id"), "status": contact.get("status")},
            PROCESS: {**classification.to_dict(), "reply": state["reply"]},
            DISPATCH: {"action": action.name},
        }
        if action.body_template is not None:
            body = render_template(action.body_template, context)
        else:
            template, static_body = default_action_body(bot["id"], action)
            body = {**static_body, **render_template(template, context)}

        response = self.http.post(action.webhook_url, json=body,
                                  timeout=settings.HTTP_TIMEOUT_SECONDS)
        response.raise_for_status()

    # ─── Graph ──────────────────────────────────────────────────────────
    def _build_graph(self):
        graph = StateGraph(MessageState)

        # Add nodes
        graph.add_node("authenticate", self.authenticate)
        graph.add_node("parse", self.parse)
        graph.add_node("resolve_contact", self.resolve_contact)
        graph.add_node("classify", self.classify)
        graph.add_node("dispatch", self.dispatch)
        graph.add_node("deliver", self.deliver)
        graph.add_node("persist", self.persist)
        graph.add_node("acknowledge", self.acknowledge)

        # Gates
        graph.add_conditional_edges("authenticate", self.route_after_authenticate,
                                    {"continue": "parse", "reject": END})
        graph.add_conditional_edges("parse", self.route_after_parse,
                                    {"continue": "resolve_contact", "acknowledge": "acknowledge",
                                     "reject": END})
        graph.add_conditional_edges("resolve_contact", self.route_after_contact,
                                    {"continue": "classify", "acknowledge": "acknowledge"})

        # Strict data-dependency chain
        graph.add_edge("classify", "dispatch")
        graph.add_edge("dispatch", "deliver")
        graph.add_edge("deliver", "persist")
        graph.add_edge("persist", "acknowledge")

        graph.set_entry_point("authenticate")
        graph.set_finish_point("acknowledge")
        return graph.compile()
