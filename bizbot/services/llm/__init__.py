"""LLM Services Module"""
from .classifier import IntentClassifier
from .config_generator import ConfigGenerator, generate_bot_config
from .responder import ReplyGenerator

__all__ = ["IntentClassifier", "ConfigGenerator", "generate_bot_config", "ReplyGenerator"]
