"""Constant-time comparison for webhook tokens and signatures."""

import hmac
from typing import Optional


def tokens_match(presented: Optional[str], expected: Optional[str]) -> bool:
    """
    Compare as UTF-8 bytes so non-ASCII input is a mismatch, not a TypeError.

    Missing values never match.
    """
    if not presented or not expected:
        return False
    return hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))
