# --------------------------- tests/test_payments.py ----------------------------
"""
Bizbot · Wompi Payment Webhook Test Suite

OVERVIEW:
Signature verification over the raw body, subscription reconciliation for
approved transactions, and fault isolation of event handlers.
"""

import json

import pytest

from bizbot.agents.payments.handlers import PaymentWebhookHandler
from bizbot.models import PaymentEventKind
from bizbot.services.payments.wompi import compute_signature, verify_signature

SECRET = "test-wompi-secret"


def _body(status="APPROVED", email="a@b.co", tx_id="tx1", event="transaction.updated") -> bytes:
    return json.dumps({
        "event": event,
        "data": {"transaction": {"status": status, "customer_email": email, "id": tx_id}},
    }).encode("utf-8")


@pytest.fixture
def customer(store):
    store.users["user-1"] = {"id": "user-1", "email": "a@b.co", "subscription_status": "trial"}
    return store.users["user-1"]


@pytest.fixture
def handler(store):
    return PaymentWebhookHandler(store, secret=SECRET)


class TestSignature:

    def test_roundtrip(self):
        body = _body()
        assert verify_signature(body, compute_signature(body, SECRET), SECRET)

    def test_str_and_bytes_agree(self):
        assert compute_signature(_body(), SECRET) == compute_signature(_body().decode("utf-8"), SECRET)

    @pytest.mark.parametrize("signature", [None, "", "bm90LXRoZS1zaWduYXR1cmU=", "firmá"])
    def test_bad_signatures(self, signature):
        assert not verify_signature(_body(), signature, SECRET)

    def test_missing_secret_never_verifies(self, monkeypatch):
        from bizbot.config import settings
        monkeypatch.setattr(settings, "WOMPI_SECRET", None)
        body = _body()
        assert not verify_signature(body, compute_signature(body, "anything"))


class TestReconciliation:

    def test_approved_activates_subscription(self, handler, store, customer):
        body = _body()
        status, response = handler.handle(body, compute_signature(body, SECRET))

        assert status == 200
        assert response["success"] is True
        assert customer["subscription_status"] == "active"
        assert customer["wompi_subscription_id"] == "tx1"

    def test_declined_is_a_no_op(self, handler, store, customer):
        body = _body(status="DECLINED")
        status, _ = handler.handle(body, compute_signature(body, SECRET))

        assert status == 200
        assert store.mutations == []
        assert customer["subscription_status"] == "trial"

    def test_unknown_user_is_a_no_op(self, handler, store, customer):
        body = _body(email="otro@b.co")
        status, _ = handler.handle(body, compute_signature(body, SECRET))
        assert status == 200
        assert store.mutations == []

    def test_tampered_body_rejected_without_mutation(self, handler, store, customer):
        original = _body(status="DECLINED")
        signature = compute_signature(original, SECRET)
        tampered = _body(status="APPROVED")

        status, response = handler.handle(tampered, signature)

        assert status == 401
        assert response["success"] is False
        assert store.mutations == []
        assert customer["subscription_status"] == "trial"

    def test_non_ascii_signature_rejected(self, handler, store, customer):
        status, response = handler.handle(_body(), "firmá-inválida")

        assert status == 401
        assert response["success"] is False
        assert store.mutations == []

    @pytest.mark.parametrize("event", ["subscription.created", "subscription.charge",
                                       "nequi_token.updated", ""])
    def test_other_events_acknowledged(self, handler, store, event):
        body = json.dumps({"event": event, "data": {"id": "x"}}).encode()
        status, response = handler.handle(body, compute_signature(body, SECRET))
        assert (status, response["success"]) == (200, True)
        assert store.mutations == []

    def test_unknown_kind_maps_to_other(self, handler):
        body = json.dumps({"event": "nequi_token.updated", "data": {}}).encode()
        event = handler.process(body, compute_signature(body, SECRET))
        assert event.kind is PaymentEventKind.OTHER

    def test_store_failure_is_isolated(self, handler, store, customer):
        store.fail_on.add("update_user")
        body = _body()
        status, response = handler.handle(body, compute_signature(body, SECRET))
        assert (status, response["success"]) == (200, True)

    def test_signed_garbage_is_400(self, handler):
        body = b"not json"
        status, _ = handler.handle(body, compute_signature(body, SECRET))
        assert status == 400
