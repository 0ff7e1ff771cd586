"""Message Channel Pipeline Module"""
from .graph import MessagePipeline, MessageState, select_action, verify_subscription

__all__ = ["MessagePipeline", "MessageState", "select_action", "verify_subscription"]
