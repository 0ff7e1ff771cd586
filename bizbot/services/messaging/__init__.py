"""Messaging Services Module"""
from .whatsapp import WhatsAppClient, messages_url

__all__ = ["WhatsAppClient", "messages_url"]
