# --------------------------- bizbot/agents/payments/handlers.py ----------------------------
"""
Bizbot · Payment Gateway Webhook

OVERVIEW:
Turns signed Wompi notifications into subscription-state changes on the
owning user account.

WORKFLOW:
1. Verify the HMAC signature over the raw body (before any parsing)
2. Parse the body into a PaymentEvent
3. Dispatch on the event kind; unknown kinds are logged and ignored

BUSINESS LOGIC:
- transaction.updated + APPROVED → user.subscription_status = "active",
  user.wompi_subscription_id = transaction id
- transaction.updated + DECLINED → warning only, no state change
- subscription.created / subscription.charge → logged
- A failing handler never turns into a gateway retry storm: the error is
  logged and the webhook is still acknowledged
"""

# ─── Standard-library imports ───────────────────────────────────────────
import json
import logging
from typing import Any, Callable, Dict, Optional, Tuple, Union

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.errors import AuthenticationFailure, ExternalServiceFailure, ValidationFailure
from bizbot.models import PaymentEvent, PaymentEventKind
from bizbot.services.payments.wompi import verify_signature

logger = logging.getLogger(__name__)


class PaymentWebhookHandler:
    """
    KEY METHODS:
    - process(): verify + parse + dispatch, raising on auth/shape failures
    - handle(): process() mapped onto an HTTP (status, body) pair
    """

    def __init__(self, store, secret: Optional[str] = None):
        self.store = store
        self.secret = secret
        self.handlers: Dict[PaymentEventKind, Callable[[PaymentEvent], None]] = {
            PaymentEventKind.TRANSACTION_UPDATED: self.on_transaction_updated,
            PaymentEventKind.SUBSCRIPTION_CREATED: self.on_subscription_created,
            PaymentEventKind.SUBSCRIPTION_CHARGE: self.on_subscription_charge,
        }

    def process(self, raw_body: Union[bytes, str], signature: Optional[str]) -> PaymentEvent:
        if not verify_signature(raw_body, signature, self.secret):
            raise AuthenticationFailure("Invalid signature")

        try:
            body = json.loads(raw_body)
        except (TypeError, ValueError) as e:
            raise ValidationFailure(f"Invalid JSON payload: {e}")
        event = PaymentEvent.from_body(body)

        logger.info(f"Wompi webhook received: {event.name or '<missing>'}")
        handler = self.handlers.get(event.kind)
        if handler is None:
            logger.info(f"Unhandled Wompi event: {event.name}")
            return event

        try:
            handler(event)
        except ExternalServiceFailure as e:
            logger.error(f"Handling Wompi event {event.name} failed: {e}")
        except Exception:
            logger.exception(f"Unexpected error handling Wompi event {event.name}")
        return event

    def handle(self, raw_body: Union[bytes, str],
               signature: Optional[str]) -> Tuple[int, Dict[str, Any]]:
        try:
            self.process(raw_body, signature)
        except AuthenticationFailure as e:
            logger.warning(f"Rejected Wompi webhook: {e}")
            return 401, {"success": False, "message": str(e)}
        except ValidationFailure as e:
            logger.warning(f"Rejected Wompi webhook: {e}")
            return 400, {"success": False, "message": str(e)}
        return 200, {"success": True, "message": "Webhook processed successfully"}

    # ─── Event handlers ─────────────────────────────────────────────────
    def on_transaction_updated(self, event: PaymentEvent) -> None:
        transaction = event.payload.get("transaction") or {}
        status = transaction.get("status")
        transaction_id = transaction.get("id")

        if status == "APPROVED":
            email = transaction.get("customer_email")
            if not email:
                logger.warning(f"Approved transaction {transaction_id} has no customer email")
                return
            user = self.store.get_user_by_email(email)
            if not user:
                logger.warning(f"No user found for approved transaction {transaction_id} ({email})")
                return
            self.store.update_user(user["id"], {
                "subscription_status": "active",
                "wompi_subscription_id": transaction_id,
            })
            logger.info(f"Subscription activated for user {user['id']} (transaction {transaction_id})")
        elif status == "DECLINED":
            logger.warning(f"Payment declined: {transaction_id}")
        else:
            logger.info(f"Transaction {transaction_id} updated with status {status}")

    def on_subscription_created(self, event: PaymentEvent) -> None:
        subscription = event.payload.get("subscription") or event.payload
        logger.info(f"Subscription created: {subscription.get('id')}")

    def on_subscription_charge(self, event: PaymentEvent) -> None:
        charge = event.payload.get("charge") or event.payload
        logger.info(f"Subscription charge: {charge.get('id')}")
