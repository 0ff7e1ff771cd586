"""Reply generation with the bot's own system prompt and recent conversation turns."""

import logging
from typing import Dict, List, Optional

from bizbot.config import settings
from bizbot.errors import ExternalServiceFailure
from bizbot.services.llm.client import build_chat_model, complete

logger = logging.getLogger(__name__)


class ReplyGenerator:
    def __init__(self, llm=None, temperature: float = settings.REPLY_TEMPERATURE):
        self.llm = llm or build_chat_model(temperature, settings.REPLY_MAX_TOKENS)

    def generate(self, system_prompt: str, message: str,
                 history: Optional[List[Dict[str, str]]] = None) -> str:
        """
        Produce the bot's answer to ``message``.

        Only the last HISTORY_WINDOW turns are sent. Raises ExternalServiceFailure
        so the caller can substitute the bot's error template.
        """
        window = (history or [])[-settings.HISTORY_WINDOW:]
        reply = complete(self.llm, system_prompt, message, window).strip()
        if not reply:
            raise ExternalServiceFailure("LLM returned an empty reply")
        return reply
