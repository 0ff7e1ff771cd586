# --------------------------- tests/test_message_pipeline.py ----------------------------
"""
Bizbot · WhatsApp Message Pipeline Test Suite

OVERVIEW:
Runs inbound webhook payloads through the LangGraph pipeline with an
in-memory store and mocked LLM / channel collaborators.

BUSINESS LOGIC UNDER TEST:
- Token mismatch is the only hard rejection besides malformed payloads
- Non-text messages and unknown/paused bots are acknowledged, not routed
- Delivery and persistence failures never change the 200 acknowledgment
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from conftest import ScriptedLLM
from bizbot.agents.messaging.graph import MessagePipeline, select_action, verify_subscription
from bizbot.errors import ExternalServiceFailure
from bizbot.models import Action, ClassificationResult
from bizbot.services.llm.classifier import IntentClassifier
from bizbot.services.llm.config_generator import DEFAULT_RESPONSE_TEMPLATES

SCHEDULING_MESSAGE = {
    "sender": "573001112233",
    "message": "quiero agendar una cita para el viernes",
    "type": "text",
    "timestamp": "1717000000",
    "id": "wamid.1",
}

SCHEDULE_REPLY = json.dumps({
    "intent": "schedule",
    "confidence": 0.93,
    "entities": [{"type": "date", "value": "viernes"}],
    "suggested_action": "schedule_appointment",
})


@pytest.fixture
def classifier():
    return IntentClassifier(llm=ScriptedLLM(SCHEDULE_REPLY))


@pytest.fixture
def responder():
    responder = MagicMock()
    responder.generate.return_value = "¡Claro! ¿A qué hora del viernes te queda bien?"
    return responder


@pytest.fixture
def messenger():
    return MagicMock()


@pytest.fixture
def http():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def pipeline(store, classifier, responder, messenger, http):
    return MessagePipeline(store=store, classifier=classifier, responder=responder,
                           messenger=messenger, http=http)


# ===============================================================================
# HAPPY PATH
# ===============================================================================

class TestSchedulingScenario:

    def test_reaches_acknowledged(self, pipeline, store, active_bot, messenger, responder):
        status, body = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        assert status == 200
        assert body["success"] is True
        messenger.send_text.assert_called_once_with(
            "573001112233", "¡Claro! ¿A qué hora del viernes te queda bien?")

        saved = store.conversations[-1]
        assert saved["intent"] == "schedule"
        assert saved["action"] == "schedule_appointment"
        assert saved["message"] == SCHEDULING_MESSAGE["message"]
        assert saved["bot_id"] == "bot-1"

        system_prompt = responder.generate.call_args.args[0]
        assert system_prompt == active_bot["config_json"]["system_prompt"]

    def test_new_contact_is_a_lead(self, pipeline, store, active_bot):
        pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        contact = next(iter(store.contacts.values()))
        assert contact["phone"] == "573001112233"
        assert contact["status"] == "lead"
        assert store.conversations[-1]["contact_id"] == contact["id"]

    def test_existing_contact_is_touched(self, pipeline, store, active_bot):
        store.contacts["c-1"] = {"id": "c-1", "bot_id": "bot-1", "phone": "573001112233",
                                 "status": "customer"}
        pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        assert len(store.contacts) == 1
        assert store.contacts["c-1"]["status"] == "customer"
        assert "last_interaction" in store.contacts["c-1"]

    def test_bot_resolved_by_recipient_number(self, pipeline, store, active_bot, messenger):
        status, _ = pipeline.handle({**SCHEDULING_MESSAGE, "to": "573009998877"})
        assert status == 200
        messenger.send_text.assert_called_once()

    def test_cloud_api_payload_shape(self, pipeline, active_bot, messenger):
        payload = {"from": "573001112233", "type": "text",
                   "text": {"body": "hola"}, "id": "wamid.2"}
        status, _ = pipeline.handle(payload, bot_id="bot-1")
        assert status == 200
        assert messenger.send_text.call_args.args[0] == "573001112233"

    def test_history_is_passed_oldest_first(self, pipeline, store, active_bot, responder):
        for i in range(3):
            store.conversations.append({"bot_id": "bot-1", "phone": "573001112233",
                                        "message": f"m{i}", "response": f"r{i}"})
        pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        history = responder.generate.call_args.args[2]
        assert [t["content"] for t in history] == ["m0", "r0", "m1", "r1", "m2", "r2"]


# ===============================================================================
# GATES
# ===============================================================================

class TestRejections:

    def test_wrong_token_is_401(self, pipeline, store, active_bot, messenger):
        status, body = pipeline.handle(SCHEDULING_MESSAGE, headers={"X-Hub-Verify-Token": "nope"},
                                       bot_id="bot-1", verify_token="expected")
        assert status == 401
        assert body["success"] is False
        messenger.send_text.assert_not_called()
        assert store.mutations == []

    def test_non_ascii_token_is_401(self, pipeline, store, active_bot, messenger):
        status, _ = pipeline.handle(SCHEDULING_MESSAGE, headers={"X-Hub-Verify-Token": "contraseña"},
                                    bot_id="bot-1", verify_token="expected")
        assert status == 401
        messenger.send_text.assert_not_called()
        assert store.mutations == []

    def test_matching_token_passes(self, pipeline, active_bot):
        status, _ = pipeline.handle(SCHEDULING_MESSAGE, headers={"x-hub-verify-token": "expected"},
                                    bot_id="bot-1", verify_token="expected")
        assert status == 200

    @pytest.mark.parametrize("payload", [
        {"message": "hola", "type": "text"},
        {"sender": "573001112233", "message": "   ", "type": "text"},
        {"sender": "573001112233", "type": "text"},
    ])
    def test_malformed_payload_is_400(self, pipeline, store, active_bot, payload):
        status, body = pipeline.handle(payload, bot_id="bot-1")
        assert status == 400
        assert body["success"] is False
        assert store.mutations == []


class TestAcknowledgedWithoutRouting:

    def test_non_text_message(self, pipeline, store, active_bot, messenger, responder):
        status, body = pipeline.handle({"sender": "573001112233", "type": "image", "id": "wamid.3"},
                                       bot_id="bot-1")
        assert status == 200
        assert body["success"] is True
        assert "image" in body["message"]
        responder.generate.assert_not_called()
        messenger.send_text.assert_not_called()
        assert store.conversations == []

    def test_unknown_bot(self, pipeline, store, messenger):
        status, body = pipeline.handle(SCHEDULING_MESSAGE, bot_id="missing")
        assert (status, body["success"]) == (200, True)
        messenger.send_text.assert_not_called()

    def test_paused_bot(self, pipeline, store, active_bot, messenger):
        active_bot["status"] = "paused"
        status, _ = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")
        assert status == 200
        messenger.send_text.assert_not_called()

    def test_store_down_while_loading_bot(self, pipeline, store, active_bot, messenger):
        store.fail_on.add("get_bot")
        status, _ = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")
        assert status == 200
        messenger.send_text.assert_not_called()


# ===============================================================================
# DEGRADATION
# ===============================================================================

class TestDegradation:

    def test_delivery_failure_still_persists_and_acks(self, pipeline, store, active_bot, messenger):
        messenger.send_text.side_effect = ExternalServiceFailure("WhatsApp send failed: 500")
        status, body = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        assert (status, body["success"]) == (200, True)
        assert len(store.conversations) == 1

    def test_persistence_failure_still_acks(self, pipeline, store, active_bot, messenger):
        store.fail_on.add("save_conversation")
        status, body = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        assert (status, body["success"]) == (200, True)
        messenger.send_text.assert_called_once()

    def test_classifier_unreachable_falls_back(self, store, active_bot, responder, messenger, http):
        pipeline = MessagePipeline(store, IntentClassifier(llm=ScriptedLLM(RuntimeError("down"))),
                                   responder, messenger, http)
        status, _ = pipeline.handle({**SCHEDULING_MESSAGE, "message": "buenas tardes"}, bot_id="bot-1")

        assert status == 200
        assert store.conversations[-1]["intent"] == "general"
        assert store.conversations[-1]["action"] == "default"

    def test_reply_failure_uses_error_template(self, pipeline, active_bot, responder, messenger):
        responder.generate.side_effect = ExternalServiceFailure("LLM completion failed")
        pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")
        messenger.send_text.assert_called_once_with("573001112233", DEFAULT_RESPONSE_TEMPLATES["error"])

    def test_contact_failure_continues(self, pipeline, store, active_bot, messenger):
        store.fail_on.add("get_contact")
        status, _ = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        assert status == 200
        messenger.send_text.assert_called_once()
        assert store.conversations[-1]["contact_id"] is None


# ===============================================================================
# ACTION DISPATCH
# ===============================================================================

class TestDispatch:

    ACTIONS = [
        Action(name="schedule_appointment", trigger_words=["cita", "agendar"]),
        Action(name="check_price", trigger_words=["precio"]),
    ]

    def test_suggested_action_wins(self):
        result = ClassificationResult(intent="inquiry", suggested_action="check_price")
        assert select_action(self.ACTIONS, result, "hola") == "check_price"

    def test_trigger_words_in_lowercased_text(self):
        assert select_action(self.ACTIONS, ClassificationResult(), "¿Cuál es el PRECIO?") == "check_price"

    def test_configured_order_breaks_ties(self):
        assert select_action(self.ACTIONS, ClassificationResult(), "precio de la cita") == "schedule_appointment"

    def test_default_branch(self):
        assert select_action(self.ACTIONS, ClassificationResult(), "gracias") == "default"

    def test_action_webhook_called_with_rendered_body(self, store, active_bot, classifier,
                                                      responder, messenger, http):
        config = dict(active_bot["config_json"])
        config["available_actions"] = [{
            "name": "schedule_appointment",
            "trigger_words": ["cita"],
            "webhook_url": "https://calendar.example.co/book",
            "body_template": {"phone": "{{ parse_message.sender }}",
                              "note": "Intent {{ process_message.intent }}"},
        }]
        active_bot["config_json"] = config
        pipeline = MessagePipeline(store, classifier, responder, messenger, http)

        status, _ = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")

        assert status == 200
        http.post.assert_called_once()
        assert http.post.call_args.args[0] == "https://calendar.example.co/book"
        assert http.post.call_args.kwargs["json"] == {"phone": "573001112233", "note": "Intent schedule"}

    def test_action_webhook_reads_inbound_payload(self, store, active_bot, classifier,
                                                  responder, messenger, http):
        config = dict(active_bot["config_json"])
        config["available_actions"] = [{
            "name": "schedule_appointment",
            "trigger_words": ["cita"],
            "webhook_url": "https://calendar.example.co/book",
            "body_template": {"raw": "{{ inbound_message.body }}",
                              "headers": "{{ inbound_message.headers }}"},
        }]
        active_bot["config_json"] = config
        pipeline = MessagePipeline(store, classifier, responder, messenger, http)

        status, _ = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1", verify_token="secret",
                                    headers={"X-Hub-Verify-Token": "secret", "X-Request-Id": "r-1"})

        assert status == 200
        sent = http.post.call_args.kwargs["json"]
        assert sent["raw"] == SCHEDULING_MESSAGE
        assert sent["headers"] == {"x-request-id": "r-1"}

    def test_action_webhook_failure_is_not_fatal(self, store, active_bot, classifier,
                                                 responder, messenger, http):
        config = dict(active_bot["config_json"])
        config["available_actions"] = [{"name": "schedule_appointment", "trigger_words": ["cita"],
                                        "webhook_url": "https://calendar.example.co/book"}]
        active_bot["config_json"] = config
        http.post.side_effect = requests.exceptions.ConnectionError("refused")
        pipeline = MessagePipeline(store, classifier, responder, messenger, http)

        status, _ = pipeline.handle(SCHEDULING_MESSAGE, bot_id="bot-1")
        assert status == 200
        messenger.send_text.assert_called_once()


# ===============================================================================
# VERIFICATION HANDSHAKE
# ===============================================================================

class TestVerificationHandshake:

    def test_challenge_echoed(self):
        assert verify_subscription("subscribe", "tok", "42", "tok") == (200, "42")

    def test_wrong_token(self):
        assert verify_subscription("subscribe", "bad", "42", "tok")[0] == 403

    def test_non_ascii_token(self):
        assert verify_subscription("subscribe", "tókén", "42", "tok")[0] == 403

    def test_wrong_mode(self):
        assert verify_subscription("unsubscribe", "tok", "42", "tok")[0] == 403

    def test_missing_parameters(self):
        assert verify_subscription(None, None, "42", "tok")[0] == 400
