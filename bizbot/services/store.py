# --------------------------- bizbot/services/store.py ----------------------------
"""
Bizbot · Supabase Record Store

OVERVIEW:
Thin access layer over the Supabase tables the pipelines touch: users,
bots, contacts and conversations. One client is created per process and
injected wherever records are read or written.

BUSINESS LOGIC:
- Lookups return None when no row matches (no exception for "not found")
- Every PostgREST or transport error becomes ExternalServiceFailure so the
  pipelines can decide between fallback and skip
- Atomicity of contact upserts and subscription updates is the store's job;
  no locking happens here

DEPENDENCIES:
- Environment variables: SUPABASE_URL, SUPABASE_SERVICE_KEY (or SUPABASE_ANON_KEY)
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from typing import Any, Callable, Dict, List, Optional

# ─── Third-party imports ────────────────────────────────────────────────
from supabase import Client, create_client

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.config import settings
from bizbot.errors import ExternalServiceFailure

logger = logging.getLogger(__name__)


class SupabaseStore:
    def __init__(self, client: Optional[Client] = None):
        if client is None:
            key = settings.SUPABASE_SERVICE_KEY or settings.SUPABASE_ANON_KEY
            if not settings.SUPABASE_URL or not key:
                raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")
            client = create_client(settings.SUPABASE_URL, key)
        self.supabase: Client = client

    def _run(self, description: str, query: Callable[[], Any]) -> List[Dict[str, Any]]:
        try:
            response = query()
        except Exception as e:
            logger.error(f"Supabase error while {description}: {e}")
            raise ExternalServiceFailure(f"store failure while {description}: {e}") from e
        return response.data or []

    def _first(self, description: str, query: Callable[[], Any]) -> Optional[Dict[str, Any]]:
        rows = self._run(description, query)
        return rows[0] if rows else None

    # ─── Users ──────────────────────────────────────────────────────────
    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return self._first("fetching user by email", lambda: self.supabase.table("users")
                           .select("*").eq("email", email).limit(1).execute())

    def update_user(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._first("updating user", lambda: self.supabase.table("users")
                           .update(updates).eq("id", user_id).execute())

    # ─── Bots ───────────────────────────────────────────────────────────
    def create_bot(self, bot: Dict[str, Any]) -> Dict[str, Any]:
        row = self._first("creating bot", lambda: self.supabase.table("bots")
                          .insert(bot).execute())
        return row or bot

    def get_bot(self, bot_id: str) -> Optional[Dict[str, Any]]:
        return self._first("fetching bot", lambda: self.supabase.table("bots")
                           .select("*").eq("id", bot_id).limit(1).execute())

    def get_bot_by_whatsapp_number(self, number: str) -> Optional[Dict[str, Any]]:
        return self._first("fetching bot by number", lambda: self.supabase.table("bots")
                           .select("*").eq("whatsapp_number", number).limit(1).execute())

    def update_bot(self, bot_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._first("updating bot", lambda: self.supabase.table("bots")
                           .update(updates).eq("id", bot_id).execute())

    # ─── Contacts ───────────────────────────────────────────────────────
    def get_contact(self, bot_id: str, phone: str) -> Optional[Dict[str, Any]]:
        return self._first("fetching contact", lambda: self.supabase.table("contacts")
                           .select("*").eq("bot_id", bot_id).eq("phone", phone)
                           .limit(1).execute())

    def create_contact(self, contact: Dict[str, Any]) -> Dict[str, Any]:
        row = self._first("creating contact", lambda: self.supabase.table("contacts")
                          .insert(contact).execute())
        return row or contact

    def update_contact(self, contact_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self._first("updating contact", lambda: self.supabase.table("contacts")
                           .update(updates).eq("id", contact_id).execute())

    # ─── Conversations ──────────────────────────────────────────────────
    def save_conversation(self, conversation: Dict[str, Any]) -> Dict[str, Any]:
        row = self._first("saving conversation", lambda: self.supabase.table("conversations")
                          .insert(conversation).execute())
        return row or conversation

    def get_recent_conversations(self, bot_id: str, phone: str,
                                 limit: int = settings.HISTORY_WINDOW) -> List[Dict[str, Any]]:
        """Most recent conversation records for one sender, newest first."""
        return self._run("fetching recent conversations", lambda: self.supabase.table("conversations")
                         .select("*").eq("bot_id", bot_id).eq("phone", phone)
                         .order("created_at", desc=True).limit(limit).execute())
