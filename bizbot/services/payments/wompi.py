"""Wompi webhook signature verification."""

import base64
import hashlib
import hmac
import logging
from typing import Optional, Union

from bizbot.config import settings
from bizbot.utils.security import tokens_match

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-wompi-signature"


def compute_signature(raw_body: Union[bytes, str], secret: str) -> str:
    """Base64 HMAC-SHA256 of the raw request body keyed by the shared secret."""
    if isinstance(raw_body, str):
        raw_body = raw_body.encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_signature(raw_body: Union[bytes, str], signature: Optional[str],
                     secret: Optional[str] = None) -> bool:
    """
    Constant-time comparison of the provided signature header.

    A missing secret or header never verifies.
    """
    secret = secret if secret is not None else settings.WOMPI_SECRET
    if not secret:
        logger.error("WOMPI_SECRET is not configured; rejecting payment webhook")
        return False
    if not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return tokens_match(signature.strip(), expected)
