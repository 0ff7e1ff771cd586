# --------------------------- bizbot/services/workflow/n8n.py ----------------------------
"""
Bizbot · n8n Workflow Lifecycle

OVERVIEW:
Registers and manages a bot's compiled automation graph on the n8n public
API. Every operation makes exactly one engine call (activate/deactivate may
read the workflow back to confirm an idempotent no-op).

ERROR CLASSIFICATION:
- connection error, timeout, 502/503/504 → EngineUnreachableError
- any other 4xx/5xx → EngineRejectedError(status_code)
- 2xx without a JSON body where one is expected → MalformedUpstreamResponse

Callers in the bot-creation flow catch these and turn them into warnings;
this module never decides whether a failure is fatal.
"""

# ─── Standard-library imports ───────────────────────────────────────────
import logging
from typing import Any, Dict, List, Optional

# ─── Third-party imports ────────────────────────────────────────────────
import requests

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.agents.workflow.compiler import to_engine_payload
from bizbot.agents.workflow.graph import AutomationGraph
from bizbot.config import settings
from bizbot.errors import (
    EngineRejectedError, EngineUnreachableError, MalformedUpstreamResponse,
)

logger = logging.getLogger(__name__)

UNREACHABLE_STATUSES = {502, 503, 504}


class N8NWorkflowManager:
    """
    KEY METHODS:
    - register(): create workflow → external id
    - activate() / deactivate(): idempotent state switches
    - update() / replace(): swap the graph under an existing id
    - delete(), get_workflow(), list_executions()
    """

    def __init__(self, base_url: Optional[str] = None, api_key: Optional[str] = None,
                 session: Optional[requests.Session] = None,
                 timeout: Optional[float] = None):
        self.base_url = (base_url or settings.N8N_BASE_URL or "").rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self.session = session or requests.Session()
        self.session.headers.update({
            "X-N8N-API-KEY": api_key or settings.N8N_API_KEY or "",
            "Content-Type": "application/json",
        })

    # ─── Transport ──────────────────────────────────────────────────────
    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise EngineUnreachableError(f"n8n unreachable ({method} {path}): {e}") from e
        except requests.exceptions.RequestException as e:
            raise EngineUnreachableError(f"n8n request failed ({method} {path}): {e}") from e

        if response.status_code in UNREACHABLE_STATUSES:
            raise EngineUnreachableError(
                f"n8n unavailable ({method} {path}): {response.status_code}")
        if response.status_code >= 400:
            raise EngineRejectedError(
                f"n8n rejected {method} {path}: {response.status_code}",
                status_code=response.status_code,
                body=response.text,
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError as e:
            raise MalformedUpstreamResponse(f"n8n returned a non-JSON body: {e}") from e
        if not isinstance(data, dict):
            raise MalformedUpstreamResponse("n8n returned an unexpected body shape")
        return data

    # ─── Lifecycle ──────────────────────────────────────────────────────
    def register(self, graph: AutomationGraph) -> str:
        data = self._json(self._request("POST", "/workflows", json=to_engine_payload(graph)))
        workflow_id = data.get("id")
        if not workflow_id:
            raise MalformedUpstreamResponse("n8n did not return a workflow id")
        logger.info(f"Workflow created in n8n: {workflow_id} (bot {graph.bot_id})")
        return str(workflow_id)

    def activate(self, workflow_id: str) -> None:
        self._set_active(workflow_id, True)

    def deactivate(self, workflow_id: str) -> None:
        self._set_active(workflow_id, False)

    def _set_active(self, workflow_id: str, active: bool) -> None:
        verb = "activate" if active else "deactivate"
        try:
            self._request("POST", f"/workflows/{workflow_id}/{verb}")
        except EngineRejectedError as e:
            # n8n answers 4xx when the workflow is already in the requested state
            if e.status_code is None or e.status_code >= 500:
                raise
            current = self.get_workflow(workflow_id)
            if bool(current.get("active")) != active:
                raise
            logger.info(f"Workflow {workflow_id} already {verb}d")
            return
        logger.info(f"Workflow {workflow_id} {verb}d")

    def update(self, workflow_id: str, graph: AutomationGraph) -> None:
        self._request("PUT", f"/workflows/{workflow_id}", json=to_engine_payload(graph))
        logger.info(f"Workflow {workflow_id} updated (bot {graph.bot_id})")

    def replace(self, workflow_id: Optional[str], graph: AutomationGraph) -> str:
        """
        Put ``graph`` in place of the bot's current workflow.

        Updates in place when possible; when there is no current workflow, or
        the engine cannot update it, registers a new one and removes the old.
        """
        if not workflow_id:
            return self.register(graph)
        try:
            self.update(workflow_id, graph)
            return workflow_id
        except EngineRejectedError as e:
            if e.status_code not in (404, 405):
                raise
            status_code = e.status_code
            logger.warning(f"Workflow {workflow_id} cannot be updated ({status_code}); re-registering")

        new_id = self.register(graph)
        # 404 means the old workflow is already gone
        if status_code == 405:
            try:
                self.delete(workflow_id)
            except (EngineRejectedError, EngineUnreachableError) as cleanup_error:
                logger.error(f"Old workflow {workflow_id} could not be removed: {cleanup_error}")
        return new_id

    def delete(self, workflow_id: str) -> None:
        self._request("DELETE", f"/workflows/{workflow_id}")
        logger.info(f"Workflow {workflow_id} deleted")

    def get_workflow(self, workflow_id: str) -> Dict[str, Any]:
        return self._json(self._request("GET", f"/workflows/{workflow_id}"))

    def list_executions(self, workflow_id: str, limit: int = 20) -> List[Dict[str, Any]]:
        data = self._json(self._request(
            "GET", "/executions", params={"workflowId": workflow_id, "limit": limit}))
        return list(data.get("data") or [])
