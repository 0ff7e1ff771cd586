# --------------------------- tests/conftest.py ----------------------------
"""
Shared fixtures: in-memory store, scripted LLM and canned configurations.

Nothing here touches the network; every collaborator the pipelines need is
either a fake defined below or a MagicMock built in the test module.
"""

import itertools
from typing import Any, Dict, List, Optional

import pytest

from bizbot.errors import ExternalServiceFailure
from bizbot.models import BusinessProfile
from bizbot.services.llm.config_generator import ConfigGenerator


class FakeResponse:
    def __init__(self, content):
        self.content = content


class ScriptedLLM:
    """Chat model stand-in: returns queued replies, raises queued exceptions."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls: List[list] = []

    def invoke(self, messages):
        self.calls.append(messages)
        reply = self.replies.pop(0) if self.replies else ""
        if isinstance(reply, Exception):
            raise reply
        return FakeResponse(reply)


class FakeStore:
    """In-memory replacement for SupabaseStore with the same method surface."""

    def __init__(self):
        self.users: Dict[str, Dict[str, Any]] = {}
        self.bots: Dict[str, Dict[str, Any]] = {}
        self.contacts: Dict[str, Dict[str, Any]] = {}
        self.conversations: List[Dict[str, Any]] = []
        self.mutations: List[tuple] = []
        self.fail_on: set = set()
        self._ids = itertools.count(1)

    def _check(self, operation: str):
        if operation in self.fail_on:
            raise ExternalServiceFailure(f"store failure while {operation}")

    # Users
    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        self._check("get_user_by_email")
        return next((u for u in self.users.values() if u.get("email") == email), None)

    def update_user(self, user_id: str, updates: Dict[str, Any]):
        self._check("update_user")
        self.mutations.append(("update_user", user_id, dict(updates)))
        self.users[user_id].update(updates)
        return self.users[user_id]

    # Bots
    def create_bot(self, bot: Dict[str, Any]) -> Dict[str, Any]:
        self._check("create_bot")
        row = {"id": f"bot-{next(self._ids)}", **bot}
        self.bots[row["id"]] = row
        self.mutations.append(("create_bot", row["id"], dict(bot)))
        return dict(row)

    def get_bot(self, bot_id: str):
        self._check("get_bot")
        bot = self.bots.get(bot_id)
        return dict(bot) if bot else None

    def get_bot_by_whatsapp_number(self, number: str):
        self._check("get_bot_by_whatsapp_number")
        return next((dict(b) for b in self.bots.values() if b.get("whatsapp_number") == number), None)

    def update_bot(self, bot_id: str, updates: Dict[str, Any]):
        self._check("update_bot")
        self.mutations.append(("update_bot", bot_id, dict(updates)))
        self.bots[bot_id].update(updates)
        return dict(self.bots[bot_id])

    # Contacts
    def get_contact(self, bot_id: str, phone: str):
        self._check("get_contact")
        return next((c for c in self.contacts.values()
                     if c["bot_id"] == bot_id and c["phone"] == phone), None)

    def create_contact(self, contact: Dict[str, Any]):
        self._check("create_contact")
        row = {"id": f"contact-{next(self._ids)}", **contact}
        self.contacts[row["id"]] = row
        self.mutations.append(("create_contact", row["id"], dict(contact)))
        return row

    def update_contact(self, contact_id: str, updates: Dict[str, Any]):
        self._check("update_contact")
        self.mutations.append(("update_contact", contact_id, dict(updates)))
        self.contacts[contact_id].update(updates)
        return self.contacts[contact_id]

    # Conversations
    def save_conversation(self, conversation: Dict[str, Any]):
        self._check("save_conversation")
        self.conversations.append(dict(conversation))
        self.mutations.append(("save_conversation", None, dict(conversation)))
        return conversation

    def get_recent_conversations(self, bot_id: str, phone: str, limit: int = 10):
        self._check("get_recent_conversations")
        rows = [c for c in self.conversations if c["bot_id"] == bot_id and c["phone"] == phone]
        return list(reversed(rows))[:limit]


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def barbershop_profile():
    return BusinessProfile.from_dict({
        "business_type": "barbershop",
        "description": "Barbería El Parche en Medellín",
        "automation_types": ["scheduling"],
        "connect_calendar": True,
    })


@pytest.fixture
def barbershop_config(barbershop_profile):
    return ConfigGenerator.build_fallback_config(barbershop_profile)


@pytest.fixture
def active_bot(store, barbershop_config):
    bot = {
        "id": "bot-1",
        "name": "Barbería El Parche",
        "business_type": "barbershop",
        "status": "active",
        "whatsapp_number": "573009998877",
        "config_json": barbershop_config.to_dict(),
    }
    store.bots[bot["id"]] = bot
    return bot
