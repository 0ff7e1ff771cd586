# --------------------------- bizbot/services/llm/classifier.py ----------------------------
"""
Bizbot · Message Intent Classification

OVERVIEW:
Classifies each inbound WhatsApp message before the bot replies, so the
dispatch branch can route it to the right action.

CLASSIFICATION CATEGORIES:
- schedule: wants to book an appointment or reservation
- inquiry: has a general question
- sale: interested in buying
- cancel: wants to cancel something
- information: asks for information
- greeting / farewell: opening or closing message
- complaint: unhappy customer
- general: nothing specific (also the fallback)

TECHNICAL ARCHITECTURE:
- Low-temperature chat model for consistent labels
- Single JSON object response, extracted from free text
- Total function: any failure yields the fixed fallback result

DEPENDENCIES:
- Environment variables: DEEPSEEK_API_KEY, DEEPSEEK_BASE_URL, LLM_MODEL
- Input: message text + context (business type, recent history)
- Output: ClassificationResult
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from typing import Any, Dict, List, Optional

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.config import settings
from bizbot.errors import ExternalServiceFailure, MalformedUpstreamResponse
from bizbot.models import ClassificationResult, Entity
from bizbot.services.llm.client import build_chat_model, complete
from bizbot.utils.json_extract import extract_json_object

logger = logging.getLogger(__name__)

CLASSIFIER_SYSTEM_PROMPT = (
    "You are an intent classifier for WhatsApp messages sent to a small business. "
    "Analyse the message and determine its main intent."
)

INTENT_DESCRIPTIONS = {
    "schedule": "User wants to book an appointment or reservation",
    "inquiry": "User has a general question",
    "sale": "User is interested in buying",
    "cancel": "User wants to cancel something",
    "information": "User asks for information",
    "greeting": "Opening greeting",
    "farewell": "Closing message",
    "complaint": "User is unhappy",
    "general": "No specific intent",
}


class IntentClassifier:
    """
    LLM-backed intent classifier.

    CLASSIFICATION STRATEGY:
    1. List the fixed intent enumeration in the prompt
    2. Ask for a single JSON object
    3. Validate intent label and confidence
    4. Fall back to {general, 0.5, [], continue_conversation} on any failure
    """

    def __init__(self, llm=None, temperature: float = settings.CLASSIFIER_TEMPERATURE):
        self.llm = llm or build_chat_model(temperature, settings.CLASSIFIER_MAX_TOKENS)

    def classify(self, message: str, context: Optional[Dict[str, Any]] = None) -> ClassificationResult:
        context = context or {}
        prompt = self._build_classification_prompt(message, context)

        try:
            raw = complete(self.llm, CLASSIFIER_SYSTEM_PROMPT, prompt)
            result = self._parse_classification_response(raw)
            logger.info(f"Message classified as: {result.intent} (confidence: {result.confidence:.2f})")
            return result
        except ExternalServiceFailure as e:
            logger.warning(f"Classification failed, using fallback: {e}")
            return ClassificationResult.fallback()

    def _build_classification_prompt(self, message: str, context: Dict[str, Any]) -> str:
        intents = "\n".join(f"- {name}: {INTENT_DESCRIPTIONS[name]}" for name in settings.INTENTS)
        history = _format_history(context.get("recent_messages"))
        actions = context.get("available_actions") or []
        action_line = ", ".join(actions) if actions else "continue_conversation"

        prompt = f"""
        Classify the intent of this WhatsApp message:

        Message: "{message}"

        Context:
        - Business type: {context.get('business_type') or 'general'}
        - Recent history: {history}

        Possible intents:
        {intents}

        For suggested_action use one of: {action_line}

        Respond with ONLY this JSON:
        {{
          "intent": "intent name",
          "confidence": 0.85,
          "entities": [
            {{"type": "entity type", "value": "extracted value", "span": [start, end]}}
          ],
          "suggested_action": "recommended action"
        }}
        """
        return prompt.strip()

    def _parse_classification_response(self, raw: str) -> ClassificationResult:
        data = extract_json_object(raw)

        intent = data.get("intent")
        if intent not in settings.INTENTS:
            raise MalformedUpstreamResponse(f"intent {intent!r} is not in the enumeration")

        try:
            confidence = float(data["confidence"])
        except (KeyError, TypeError, ValueError):
            raise MalformedUpstreamResponse("confidence missing or not numeric")

        suggested_action = data.get("suggested_action") or "continue_conversation"

        return ClassificationResult(
            intent=intent,
            confidence=confidence,
            entities=_parse_entities(data.get("entities")),
            suggested_action=str(suggested_action),
        )


def _parse_entities(raw: Any) -> List[Entity]:
    if not isinstance(raw, list):
        return []
    entities = []
    for item in raw:
        if not isinstance(item, dict) or "value" not in item:
            continue
        span = item.get("span", item.get("position"))
        if (isinstance(span, (list, tuple)) and len(span) == 2
                and all(isinstance(n, int) for n in span)):
            span = (span[0], span[1])
        else:
            span = None
        entities.append(Entity(type=str(item.get("type", "unknown")),
                               value=str(item["value"]), span=span))
    return entities


def _format_history(history: Any) -> str:
    if not history:
        return "None"
    if isinstance(history, str):
        return history
    lines = []
    for turn in history:
        if isinstance(turn, dict):
            lines.append(f"{turn.get('role', 'user')}: {turn.get('content', '')}")
        else:
            lines.append(str(turn))
    return " | ".join(lines)
