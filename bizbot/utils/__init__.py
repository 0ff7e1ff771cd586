# bizbot/utils/__init__.py
"""
Bizbot - Utilities Package

Common helpers used across the generator, classifier, compiler and webhooks.
"""

from .json_extract import extract_json_object
from .security import tokens_match

__all__ = ['extract_json_object', 'tokens_match']
