"""Payment Channel Pipeline Module"""
from .handlers import PaymentWebhookHandler

__all__ = ["PaymentWebhookHandler"]
