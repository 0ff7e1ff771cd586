# --------------------------- tests/test_n8n_manager.py ----------------------------
"""
Bizbot · Workflow Lifecycle Test Suite

OVERVIEW:
Exercises N8NWorkflowManager against a mocked requests.Session: request
shapes, unreachable-vs-rejected error classification, idempotent
activation and the replace fallback.
"""

from unittest.mock import MagicMock, Mock

import pytest
import requests

from bizbot.agents.workflow.compiler import CompilerEndpoints, compile_graph
from bizbot.errors import EngineRejectedError, EngineUnreachableError, MalformedUpstreamResponse
from bizbot.services.workflow.n8n import N8NWorkflowManager

ENDPOINTS = CompilerEndpoints("https://store.example.co", "anon", "https://wa.example.com", "k")


def _response(status_code=200, json_body=None):
    response = Mock()
    response.status_code = status_code
    response.text = "" if json_body is None else str(json_body)
    if json_body is None:
        response.json.side_effect = ValueError("no body")
    else:
        response.json.return_value = json_body
    return response


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def manager(session):
    session.headers = {}
    return N8NWorkflowManager(base_url="https://n8n.example.co/api/v1/", api_key="secret",
                              session=session, timeout=5)


@pytest.fixture
def graph(barbershop_config):
    return compile_graph("bot-1", barbershop_config, bot_name="El Parche", endpoints=ENDPOINTS)


class TestRequests:

    def test_api_key_header(self, manager, session):
        assert session.headers["X-N8N-API-KEY"] == "secret"

    def test_register_posts_engine_payload(self, manager, session, graph):
        session.request.return_value = _response(200, {"id": "wf-1"})

        assert manager.register(graph) == "wf-1"
        method, url = session.request.call_args.args
        assert (method, url) == ("POST", "https://n8n.example.co/api/v1/workflows")
        body = session.request.call_args.kwargs["json"]
        assert body["name"] == "Bot WhatsApp - El Parche"
        assert session.request.call_count == 1

    def test_register_without_id(self, manager, session, graph):
        session.request.return_value = _response(200, {"name": "x"})
        with pytest.raises(MalformedUpstreamResponse):
            manager.register(graph)

    def test_list_executions(self, manager, session):
        session.request.return_value = _response(200, {"data": [{"id": 1}, {"id": 2}]})

        assert manager.list_executions("wf-1") == [{"id": 1}, {"id": 2}]
        assert session.request.call_args.kwargs["params"]["workflowId"] == "wf-1"

    def test_update_and_delete(self, manager, session, graph):
        session.request.return_value = _response(200, {"id": "wf-1"})
        manager.update("wf-1", graph)
        assert session.request.call_args.args == ("PUT", "https://n8n.example.co/api/v1/workflows/wf-1")
        manager.delete("wf-1")
        assert session.request.call_args.args == ("DELETE", "https://n8n.example.co/api/v1/workflows/wf-1")


class TestErrorClassification:

    @pytest.mark.parametrize("exc", [requests.exceptions.ConnectionError("refused"),
                                     requests.exceptions.Timeout("slow")])
    def test_transport_errors_are_unreachable(self, manager, session, graph, exc):
        session.request.side_effect = exc
        with pytest.raises(EngineUnreachableError):
            manager.register(graph)

    @pytest.mark.parametrize("status", [502, 503, 504])
    def test_gateway_statuses_are_unreachable(self, manager, session, graph, status):
        session.request.return_value = _response(status)
        with pytest.raises(EngineUnreachableError):
            manager.register(graph)

    @pytest.mark.parametrize("status", [400, 401, 404, 500])
    def test_other_statuses_are_rejections(self, manager, session, graph, status):
        session.request.return_value = _response(status, {"message": "nope"})
        with pytest.raises(EngineRejectedError) as info:
            manager.register(graph)
        assert info.value.status_code == status


class TestIdempotentActivation:

    def test_activate(self, manager, session):
        session.request.return_value = _response(200, {"active": True})
        manager.activate("wf-1")
        assert session.request.call_args.args == ("POST", "https://n8n.example.co/api/v1/workflows/wf-1/activate")

    def test_activate_already_active(self, manager, session):
        session.request.side_effect = [_response(400, {"message": "already active"}),
                                       _response(200, {"id": "wf-1", "active": True})]
        manager.activate("wf-1")

    def test_deactivate_already_inactive(self, manager, session):
        session.request.side_effect = [_response(400, {"message": "already inactive"}),
                                       _response(200, {"id": "wf-1", "active": False})]
        manager.deactivate("wf-1")

    def test_real_rejection_still_raises(self, manager, session):
        session.request.side_effect = [_response(400, {"message": "invalid"}),
                                       _response(200, {"id": "wf-1", "active": False})]
        with pytest.raises(EngineRejectedError):
            manager.activate("wf-1")


class TestReplace:

    def test_updates_in_place(self, manager, session, graph):
        session.request.return_value = _response(200, {"id": "wf-1"})
        assert manager.replace("wf-1", graph) == "wf-1"
        assert session.request.call_count == 1

    def test_registers_when_there_is_no_workflow(self, manager, session, graph):
        session.request.return_value = _response(200, {"id": "wf-9"})
        assert manager.replace(None, graph) == "wf-9"

    def test_reregisters_when_update_unsupported(self, manager, session, graph):
        session.request.side_effect = [_response(405, {"message": "method not allowed"}),
                                       _response(200, {"id": "wf-2"}),
                                       _response(200, {})]
        assert manager.replace("wf-1", graph) == "wf-2"
        methods = [c.args[0] for c in session.request.call_args_list]
        assert methods == ["PUT", "POST", "DELETE"]

    def test_reregisters_when_workflow_vanished(self, manager, session, graph):
        session.request.side_effect = [_response(404, {"message": "not found"}),
                                       _response(200, {"id": "wf-3"})]
        assert manager.replace("wf-1", graph) == "wf-3"
        assert session.request.call_count == 2
