# --------------------------- bizbot/services/bots.py ----------------------------
"""
Bizbot · Bot Provisioning

OVERVIEW:
Runs the create / regenerate / status flows that tie the configuration
generator, graph compiler and workflow engine to one bot record.

WORKFLOW (create):
1. Generate the AutomationConfig (never fails; fallback covers errors)
2. Insert the bot with status "setup" and the config blob
3. Compile → register → store external id → activate

BUSINESS LOGIC:
- The bot record outlives any automation failure: compile and engine
  errors after step 2 are returned as warnings, never rolled back
- Status changes drive the engine: active → activate, paused → deactivate,
  setup → no engine call
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.agents.workflow.compiler import compile_graph
from bizbot.errors import (
    ExternalServiceFailure, GraphCompilationError, ValidationFailure,
)
from bizbot.models import AutomationConfig, BusinessProfile

logger = logging.getLogger(__name__)

BOT_STATUSES = ("setup", "active", "paused")


@dataclass
class ProvisioningResult:
    bot: Dict[str, Any]
    config: AutomationConfig
    workflow_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)


class BotService:
    def __init__(self, store, generator, engine):
        self.store = store
        self.generator = generator
        self.engine = engine

    def create_bot(self, user_id: str, profile: BusinessProfile, name: Optional[str] = None,
                   whatsapp_number: Optional[str] = None) -> ProvisioningResult:
        config = self.generator.generate(profile)
        bot = self.store.create_bot({
            "user_id": user_id,
            "name": name or config.business_info.get("name") or "Mi Negocio",
            "business_type": profile.business_type.value,
            "description": profile.description,
            "automation_types": profile.automation_type_values,
            "config_json": config.to_dict(),
            "whatsapp_number": whatsapp_number,
            "status": "setup",
            "created_at": datetime.now(timezone.utc).isoformat(),
        })
        logger.info(f"Bot {bot.get('id')} created for user {user_id}")

        result = ProvisioningResult(bot=bot, config=config)
        self._provision_graph(result, activate=True)
        return result

    def regenerate_config(self, bot_id: str, profile: BusinessProfile) -> ProvisioningResult:
        """New configuration and graph for an existing bot; replaces the engine workflow."""
        bot = self._require_bot(bot_id)
        config = self.generator.generate(profile)
        self.store.update_bot(bot_id, {
            "business_type": profile.business_type.value,
            "description": profile.description,
            "automation_types": profile.automation_type_values,
            "config_json": config.to_dict(),
        })
        bot = {**bot, "config_json": config.to_dict()}

        result = ProvisioningResult(bot=bot, config=config)
        self._provision_graph(result, activate=bot.get("status") == "active")
        return result

    def set_status(self, bot_id: str, status: str) -> List[str]:
        if status not in BOT_STATUSES:
            raise ValidationFailure(f"Invalid status: {status!r}")
        bot = self._require_bot(bot_id)
        self.store.update_bot(bot_id, {"status": status})
        logger.info(f"Bot {bot_id} status changed to {status}")

        warnings = []
        workflow_id = bot.get("n8n_workflow_id")
        if workflow_id and status != "setup":
            try:
                if status == "active":
                    self.engine.activate(workflow_id)
                else:
                    self.engine.deactivate(workflow_id)
            except ExternalServiceFailure as e:
                logger.error(f"Error updating n8n workflow for bot {bot_id}: {e}")
                warnings.append(f"Workflow state not updated: {e}")
        return warnings

    def delete_graph(self, bot_id: str) -> None:
        bot = self._require_bot(bot_id)
        workflow_id = bot.get("n8n_workflow_id")
        if not workflow_id:
            return
        self.engine.delete(workflow_id)
        self.store.update_bot(bot_id, {"n8n_workflow_id": None, "status": "setup"})

    def list_executions(self, bot_id: str) -> List[Dict[str, Any]]:
        bot = self._require_bot(bot_id)
        workflow_id = bot.get("n8n_workflow_id")
        return self.engine.list_executions(workflow_id) if workflow_id else []

    # ─── Helpers ────────────────────────────────────────────────────────
    def _require_bot(self, bot_id: str) -> Dict[str, Any]:
        bot = self.store.get_bot(bot_id)
        if not bot:
            raise ValidationFailure(f"Bot not found: {bot_id}")
        return bot

    def _provision_graph(self, result: ProvisioningResult, activate: bool) -> None:
        bot = result.bot
        bot_id = bot.get("id")
        try:
            graph = compile_graph(bot_id, result.config, bot_name=bot.get("name"))
            workflow_id = self.engine.replace(bot.get("n8n_workflow_id"), graph)
            if workflow_id != bot.get("n8n_workflow_id"):
                self._record_workflow(bot, workflow_id)
            result.workflow_id = workflow_id
            if activate:
                self.engine.activate(workflow_id)
        except (GraphCompilationError, ExternalServiceFailure) as e:
            # Bot stays in "setup" so the owner can retry automation later
            logger.error(f"Error creating workflow in n8n for bot {bot_id}: {e}")
            result.warnings.append(f"Automation not provisioned: {e}")

    def _record_workflow(self, bot: Dict[str, Any], workflow_id: str) -> None:
        """Store the new workflow id; a workflow the bot cannot point at is deleted."""
        try:
            self.store.update_bot(bot.get("id"), {"n8n_workflow_id": workflow_id})
        except ExternalServiceFailure:
            try:
                self.engine.delete(workflow_id)
            except ExternalServiceFailure as e:
                logger.error(f"Could not delete unrecorded workflow {workflow_id}: {e}")
            raise
        bot["n8n_workflow_id"] = workflow_id
