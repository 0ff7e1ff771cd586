# --------------------------- tests/test_security.py ----------------------------
"""Constant-time token comparison used by every webhook route."""

import pytest

from bizbot.utils.security import tokens_match


class TestTokensMatch:

    def test_equal_tokens(self):
        assert tokens_match("n8n-key", "n8n-key")
        assert tokens_match("contraseña", "contraseña")

    @pytest.mark.parametrize("presented, expected", [
        ("clé", "n8n-key"),
        ("n8n-key", "clé"),
        ("wrong", "n8n-key"),
        ("", "n8n-key"),
        (None, "n8n-key"),
        ("n8n-key", None),
        ("", ""),
    ])
    def test_mismatches_never_raise(self, presented, expected):
        assert tokens_match(presented, expected) is False
