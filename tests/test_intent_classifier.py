# --------------------------- tests/test_intent_classifier.py ----------------------------
"""
Bizbot · Intent Classifier Test Suite

OVERVIEW:
Classification must be total: a label from the fixed enumeration and a
confidence in [0, 1] for every message, and exactly the documented fallback
whenever the model errors or answers with something unusable.
"""

import json

import pytest

from conftest import ScriptedLLM
from bizbot.config import settings
from bizbot.models import ClassificationResult
from bizbot.services.llm.classifier import IntentClassifier

FALLBACK = {"intent": "general", "confidence": 0.5, "entities": [],
            "suggested_action": "continue_conversation"}


def _classify(reply, message="quiero agendar una cita para el viernes", context=None):
    llm = ScriptedLLM(reply)
    return IntentClassifier(llm=llm).classify(message, context), llm


class TestClassification:

    def test_schedule_with_entities(self):
        reply = json.dumps({
            "intent": "schedule",
            "confidence": 0.92,
            "entities": [{"type": "date", "value": "viernes", "span": [31, 38]}],
            "suggested_action": "schedule_appointment",
        })
        result, _ = _classify(f"Resultado:\n{reply}")

        assert result.intent == "schedule"
        assert result.confidence == pytest.approx(0.92)
        assert result.entities[0].value == "viernes"
        assert result.entities[0].span == (31, 38)
        assert result.suggested_action == "schedule_appointment"

    def test_confidence_is_clamped(self):
        result, _ = _classify(json.dumps({"intent": "sale", "confidence": 7}))
        assert result.confidence == 1.0
        result, _ = _classify(json.dumps({"intent": "sale", "confidence": -2}))
        assert result.confidence == 0.0

    def test_optional_fields_default(self):
        result, _ = _classify(json.dumps({"intent": "greeting", "confidence": "0.8"}))
        assert result.entities == []
        assert result.suggested_action == "continue_conversation"

    def test_malformed_entities_are_dropped(self):
        reply = json.dumps({"intent": "inquiry", "confidence": 0.6,
                            "entities": [{"type": "x"}, "junk", {"value": "corte", "position": "a-b"}]})
        result, _ = _classify(reply)
        assert [(e.value, e.span) for e in result.entities] == [("corte", None)]

    def test_prompt_lists_enumeration_actions_and_history(self):
        _, llm = _classify(json.dumps({"intent": "general", "confidence": 0.5}), context={
            "business_type": "barbershop",
            "recent_messages": [{"role": "user", "content": "hola"},
                                {"role": "assistant", "content": "¡Hola!"}],
            "available_actions": ["schedule_appointment", "check_price"],
        })
        prompt = llm.calls[0][-1].content
        for intent in settings.INTENTS:
            assert f"- {intent}:" in prompt
        assert "schedule_appointment, check_price" in prompt
        assert "user: hola | assistant: ¡Hola!" in prompt
        assert "barbershop" in prompt


class TestFallback:

    @pytest.mark.parametrize("reply", [
        RuntimeError("timeout"),
        "no sé",
        json.dumps({"intent": "book_flight", "confidence": 0.9}),
        json.dumps({"intent": "schedule"}),
        json.dumps({"intent": "schedule", "confidence": "alta"}),
        json.dumps({"confidence": 0.9}),
    ])
    def test_exact_fallback(self, reply):
        result, _ = _classify(reply)
        assert result.to_dict() == FALLBACK

    def test_fallback_constructor(self):
        assert ClassificationResult.fallback().to_dict() == FALLBACK

    @pytest.mark.parametrize("message", ["", "🙂", "a" * 5000, "{\"intent\": \"sale\"}"])
    def test_always_in_enumeration(self, message):
        result, _ = _classify("nada útil", message=message)
        assert result.intent in settings.INTENTS
        assert 0.0 <= result.confidence <= 1.0
