# --------------------------- bizbot/models.py ----------------------------
"""
Bizbot · Data Model

OVERVIEW:
Plain dataclasses and enums shared by the generator, classifier, compiler
and pipelines. Everything that crosses a collaborator boundary (LLM output,
store rows, webhook bodies) enters through a ``from_dict`` constructor so
that shape errors surface as ``ValidationFailure`` in one place.

OWNERSHIP:
- BusinessProfile / AutomationConfig: owned by the bot record
- ClassificationResult / InboundMessageEvent / PaymentEvent: transient,
  scoped to one webhook invocation
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from bizbot.config import settings
from bizbot.errors import ValidationFailure


# ╔══════════ 1. Enums ═══════════════════════════════════════════════════

class BusinessType(Enum):
    BARBERSHOP = "barbershop"
    RESTAURANT = "restaurant"
    RETAIL = "retail"
    CONSULTING = "consulting"
    HEALTH = "health"
    EDUCATION = "education"
    SERVICES = "services"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> "BusinessType":
        """Accept enum values and the Spanish labels used by the signup form."""
        key = (value or "").strip().lower()
        key = _BUSINESS_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationFailure(f"Unknown business type: {value!r}")


_BUSINESS_TYPE_ALIASES = {
    "barberia": "barbershop",
    "restaurante": "restaurant",
    "tienda": "retail",
    "consultoria": "consulting",
    "salud": "health",
    "educacion": "education",
    "servicios": "services",
    "otro": "other",
}


class AutomationType(Enum):
    SCHEDULING = "scheduling"
    SALES = "sales"
    SUPPORT = "support"
    MARKETING = "marketing"

    @classmethod
    def parse(cls, value: str) -> "AutomationType":
        key = (value or "").strip().lower()
        key = _AUTOMATION_TYPE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationFailure(f"Unknown automation type: {value!r}")


_AUTOMATION_TYPE_ALIASES = {
    "citas": "scheduling",
    "ventas": "sales",
    "atencion": "support",
}


class ContactStatus(Enum):
    LEAD = "lead"
    CUSTOMER = "customer"
    INACTIVE = "inactive"


class PaymentEventKind(Enum):
    TRANSACTION_UPDATED = "transaction.updated"
    SUBSCRIPTION_CREATED = "subscription.created"
    SUBSCRIPTION_CHARGE = "subscription.charge"
    OTHER = "other"


# ╔══════════ 2. Business profile & automation config ═══════════════════════

@dataclass(frozen=True)
class BusinessProfile:
    """Immutable input to configuration generation, supplied once per bot."""
    business_type: BusinessType
    description: str
    automation_types: Tuple[AutomationType, ...]
    connect_calendar: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BusinessProfile":
        description = (data.get("description") or "").strip()
        if not description:
            raise ValidationFailure("description is required")

        raw_types = data.get("automation_types") or []
        if isinstance(raw_types, str):
            raw_types = [raw_types]
        parsed = []
        for raw in raw_types:
            automation_type = AutomationType.parse(raw)
            if automation_type not in parsed:
                parsed.append(automation_type)
        if not parsed:
            raise ValidationFailure("at least one automation type is required")

        return cls(
            business_type=BusinessType.parse(data.get("business_type", "")),
            description=description,
            automation_types=tuple(parsed),
            connect_calendar=bool(data.get("connect_calendar", False)),
        )

    @property
    def automation_type_values(self) -> List[str]:
        return [t.value for t in self.automation_types]


@dataclass
class Action:
    """
    Something the compiled graph can dispatch to.

    trigger_words and required_parameters are advisory metadata read by the
    dispatch branch; they are not enforced. webhook_url/body_template are
    optional: when set, the action gets its own ExternalCall node.
    """
    name: str
    description: str = ""
    trigger_words: List[str] = field(default_factory=list)
    required_parameters: List[str] = field(default_factory=list)
    webhook_url: Optional[str] = None
    body_template: Optional[Dict[str, Any]] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Action":
        if not isinstance(data, dict):
            raise ValidationFailure("action must be an object")
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ValidationFailure("action name is required")
        trigger_words = data.get("trigger_words") or []
        params = data.get("required_parameters", data.get("parameters")) or []
        for key, value in (("trigger_words", trigger_words), ("required_parameters", params)):
            if not isinstance(value, (list, tuple)):
                raise ValidationFailure(f"action {name!r} {key} must be a list")
        webhook_url = data.get("webhook_url")
        if webhook_url is not None and not isinstance(webhook_url, str):
            raise ValidationFailure(f"action {name!r} webhook_url must be a string")
        body_template = data.get("body_template")
        if body_template is not None and not isinstance(body_template, dict):
            raise ValidationFailure(f"action {name!r} body_template must be an object")
        return cls(
            name=name.strip(),
            description=str(data.get("description", "")),
            trigger_words=[str(w) for w in trigger_words],
            required_parameters=[str(p) for p in params],
            webhook_url=webhook_url or None,
            body_template=body_template,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "name": self.name,
            "description": self.description,
            "trigger_words": list(self.trigger_words),
            "required_parameters": list(self.required_parameters),
        }
        if self.webhook_url:
            data["webhook_url"] = self.webhook_url
        if self.body_template is not None:
            data["body_template"] = self.body_template
        return data


@dataclass
class AutomationConfig:
    """
    Conversation-handling configuration derived from a BusinessProfile.

    Always structurally complete, whether it came from the LLM or from the
    per-business-type fallback table.
    """
    system_prompt: str
    automation_types: List[str]
    available_actions: List[Action]
    response_templates: Dict[str, str]
    business_info: Dict[str, Any]
    integrations: Dict[str, bool]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AutomationConfig":
        if not isinstance(data, dict):
            raise ValidationFailure("configuration must be an object")
        missing = [key for key in settings.REQUIRED_CONFIG_KEYS if key not in data]
        if missing:
            raise ValidationFailure(f"configuration is missing keys: {missing}")

        system_prompt = data["system_prompt"]
        if not isinstance(system_prompt, str) or not system_prompt.strip():
            raise ValidationFailure("system_prompt must be a non-empty string")
        for key in ("automation_types", "available_actions"):
            if not isinstance(data[key], list):
                raise ValidationFailure(f"{key} must be a list")
        for key in ("response_templates", "business_info", "integrations"):
            if not isinstance(data[key], dict):
                raise ValidationFailure(f"{key} must be an object")

        return cls(
            system_prompt=system_prompt,
            automation_types=[str(t) for t in data["automation_types"]],
            available_actions=[Action.from_dict(a) for a in data["available_actions"]],
            response_templates={str(k): str(v) for k, v in data["response_templates"].items()},
            business_info=dict(data["business_info"]),
            integrations={str(k): bool(v) for k, v in data["integrations"].items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "system_prompt": self.system_prompt,
            "automation_types": list(self.automation_types),
            "available_actions": [a.to_dict() for a in self.available_actions],
            "response_templates": dict(self.response_templates),
            "business_info": dict(self.business_info),
            "integrations": dict(self.integrations),
        }


# ╔══════════ 3. Classification ═══════════════════════════════════════════

@dataclass
class Entity:
    type: str
    value: str
    span: Optional[Tuple[int, int]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "value": self.value,
                "span": list(self.span) if self.span else None}


@dataclass
class ClassificationResult:
    """
    Structured result from intent classification.

    Always fully populated so that dispatch never branches on partial data.
    Confidence is advisory; it is clamped to [0, 1] but not calibrated.
    """
    intent: str = "general"
    confidence: float = 0.5
    entities: List[Entity] = field(default_factory=list)
    suggested_action: str = "continue_conversation"

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, float(self.confidence)))

    @classmethod
    def fallback(cls) -> "ClassificationResult":
        return cls(intent="general", confidence=0.5, entities=[],
                   suggested_action="continue_conversation")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent,
            "confidence": self.confidence,
            "entities": [e.to_dict() for e in self.entities],
            "suggested_action": self.suggested_action,
        }


# ╔══════════ 4. Inbound events ═══════════════════════════════════════════

@dataclass
class InboundMessageEvent:
    """One inbound messaging-channel delivery. Never persisted directly."""
    sender: str
    body: str
    timestamp: str
    message_id: str
    type: str = "text"

    @property
    def is_text(self) -> bool:
        return self.type == "text"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "InboundMessageEvent":
        """
        Normalise the channel payload.

        Accepts the flat shape ({sender, message, type, timestamp, id}) as well
        as the Cloud API shape ({from, text: {body}, ...}).
        """
        if not isinstance(payload, dict):
            raise ValidationFailure("message payload must be an object")

        sender = payload.get("sender") or payload.get("from") or payload.get("wa_id")
        if not sender:
            raise ValidationFailure("sender is required")

        message_type = payload.get("type") or "text"
        body = payload.get("message")
        if body is None and isinstance(payload.get("text"), dict):
            body = payload["text"].get("body")
        body = body if isinstance(body, str) else ""

        if message_type == "text" and not body.strip():
            raise ValidationFailure("text messages require a message body")

        return cls(
            sender=str(sender),
            body=body,
            timestamp=str(payload.get("timestamp") or ""),
            message_id=str(payload.get("id") or payload.get("message_id") or ""),
            type=str(message_type),
        )


@dataclass
class PaymentEvent:
    """Gateway webhook event. Only built after the signature has been checked."""
    kind: PaymentEventKind
    name: str
    payload: Dict[str, Any]

    @classmethod
    def from_body(cls, body: Dict[str, Any]) -> "PaymentEvent":
        if not isinstance(body, dict):
            raise ValidationFailure("payment payload must be an object")
        name = str(body.get("event") or "")
        try:
            kind = PaymentEventKind(name)
        except ValueError:
            kind = PaymentEventKind.OTHER
        data = body.get("data")
        return cls(kind=kind, name=name, payload=data if isinstance(data, dict) else {})
