"""
LLM completion access.

The completion service is DeepSeek, which exposes the OpenAI chat-completions
protocol, so the LangChain OpenAI chat model is pointed at its base URL.
Callers receive a chat model built once and pass it to the classifier,
generator and responder; tests substitute any object with ``invoke()``.
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from typing import Dict, List, Optional

# ─── Third-party imports ────────────────────────────────────────────────
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.config import settings
from bizbot.errors import ExternalServiceFailure

logger = logging.getLogger(__name__)


def build_chat_model(temperature: float, max_tokens: Optional[int] = None) -> ChatOpenAI:
    """Create a non-streaming chat model bound to the configured provider."""
    return ChatOpenAI(
        model=settings.LLM_MODEL,
        temperature=temperature,
        max_tokens=max_tokens,
        api_key=settings.DEEPSEEK_API_KEY,
        base_url=settings.DEEPSEEK_BASE_URL,
        timeout=settings.HTTP_TIMEOUT_SECONDS,
        streaming=False,
    )


def build_messages(system: str, user: str,
                   history: Optional[List[Dict[str, str]]] = None) -> List[BaseMessage]:
    """
    Assemble system instruction, prior turns and the user instruction.

    History items use the chat-completions shape ``{"role", "content"}``.
    """
    messages: List[BaseMessage] = [SystemMessage(content=system)]
    for turn in history or []:
        content = turn.get("content", "")
        if turn.get("role") == "assistant":
            messages.append(AIMessage(content=content))
        else:
            messages.append(HumanMessage(content=content))
    messages.append(HumanMessage(content=user))
    return messages


def complete(llm, system: str, user: str,
             history: Optional[List[Dict[str, str]]] = None) -> str:
    """Run one completion and return the raw text; any failure becomes ExternalServiceFailure."""
    try:
        response = llm.invoke(build_messages(system, user, history))
    except Exception as e:
        raise ExternalServiceFailure(f"LLM completion failed: {e}") from e

    content = getattr(response, "content", response)
    if not isinstance(content, str):
        raise ExternalServiceFailure("LLM completion returned non-text content")
    return content
