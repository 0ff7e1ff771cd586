# --------------------------- bizbot/agents/workflow/compiler.py ----------------------------
"""
Bizbot · Automation Graph Compiler

OVERVIEW:
Compiles one bot's AutomationConfig into the automation graph executed by
the workflow engine for every inbound WhatsApp message. Pure and
deterministic: the same (bot_id, config) always yields the same node
names, parameters and wiring. No network calls.

TOPOLOGY (strict data-dependency order):
  inbound_message (Trigger)
       ↓
  parse_message (Transform: sender, text, timestamp, message_id, type)
       ↓
  resolve_contact (ExternalCall: contact by sender + bot_id)
       ↓
  process_message (ExternalCall: intent + reply with the system prompt)
       ↓
  dispatch_action (Branch: one output per Action, plus default)
       ↓              ↘
       ↓          action_<name> (ExternalCall, only for actions with a webhook)
       ↓              ↙
  deliver_reply (ExternalCall: WhatsApp Cloud API)
       ↓
  save_conversation (ExternalCall: bot_id, sender, message, reply, intent)
       ↓
  acknowledge (Terminal: 200 to the webhook caller)

TEMPLATE RULES:
- Request bodies reference upstream output fields as ``{{ node.field }}``
- A reference to a node that is not upstream, or to a field the node does
  not declare, rejects the whole compilation (GraphCompilationError)
- Only plain field references are allowed inside ``{{ }}``

DEPENDENCIES:
- Environment variables (read once into CompilerEndpoints): SUPABASE_URL,
  SUPABASE_ANON_KEY, WHATSAPP_API_KEY, WHATSAPP_PHONE_NUMBER_ID
"""

# ─── Standard-library imports ───────────────────────────────────────────
import argparse
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set, Tuple

# ─── Third-party imports ────────────────────────────────────────────────
from jinja2 import Environment, StrictUndefined

# ─── Local imports ──────────────────────────────────────────────────────
from bizbot.agents.workflow.graph import (
    AutomationGraph, BranchParams, BranchRule, Edge, ExternalCallParams, Node,
    NodeKind, TerminalParams, TransformParams, TriggerParams,
)
from bizbot.config import settings
from bizbot.errors import GraphCompilationError
from bizbot.models import Action, AutomationConfig, BusinessProfile
from bizbot.services.messaging.whatsapp import messages_url

logger = logging.getLogger(__name__)

# ╔══════════ 1. Node names & declared outputs ═══════════════════════════════

TRIGGER = "inbound_message"
PARSE = "parse_message"
CONTACT = "resolve_contact"
PROCESS = "process_message"
DISPATCH = "dispatch_action"
DELIVER = "deliver_reply"
PERSIST = "save_conversation"
ACK = "acknowledge"

NODE_OUTPUTS = {
    TRIGGER: ("body", "headers"),
    PARSE: ("sender", "text", "timestamp", "message_id", "type"),
    CONTACT: ("contact_id", "status"),
    PROCESS: ("intent", "confidence", "entities", "suggested_action", "reply"),
    DISPATCH: ("action",),
    DELIVER: ("delivery_id",),
    PERSIST: ("conversation_id",),
    ACK: (),
}
ACTION_OUTPUTS = ("status", "result")

PARSE_CODE = """
const body = items[0].json.body || {};
return [{
  json: {
    sender: body.sender || body.from || body.wa_id,
    text: body.message || (body.text && body.text.body) || '',
    timestamp: body.timestamp || Date.now(),
    message_id: body.id,
    type: body.type || 'text'
  }
}];
""".strip()

REFERENCE_PATTERN = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")
EXPRESSION_PATTERN = re.compile(r"\{\{(.*?)\}\}|\{%")

_template_env = Environment(undefined=StrictUndefined, autoescape=False)


@dataclass(frozen=True)
class CompilerEndpoints:
    """Collaborator URLs and credentials baked into ExternalCall nodes."""
    supabase_url: str
    supabase_key: str
    whatsapp_url: str
    whatsapp_key: str

    @classmethod
    def from_settings(cls) -> "CompilerEndpoints":
        return cls(
            supabase_url=(settings.SUPABASE_URL or "").rstrip("/"),
            supabase_key=settings.SUPABASE_ANON_KEY or "",
            whatsapp_url=messages_url(),
            whatsapp_key=settings.WHATSAPP_API_KEY or "",
        )

    def function_url(self, name: str) -> str:
        return f"{self.supabase_url}/functions/v1/{name}"

    @property
    def supabase_headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "apikey": self.supabase_key}


# ╔══════════ 2. Template helpers ═══════════════════════════════════════════

def _walk_strings(value: Any):
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _walk_strings(item)
    elif isinstance(value, (list, tuple)):
        for item in value:
            yield from _walk_strings(item)


def template_references(value: Any) -> List[Tuple[str, str]]:
    """
    Return every (node, field) referenced by ``value``.

    Raises GraphCompilationError for template expressions that are not plain
    field references (filters, statements, bare names).
    """
    refs = []
    for text in _walk_strings(value):
        for match in EXPRESSION_PATTERN.finditer(text):
            if not REFERENCE_PATTERN.fullmatch(match.group(0)):
                raise GraphCompilationError(f"unsupported template expression: {match.group(0)!r}")
        refs.extend(REFERENCE_PATTERN.findall(text))
    return refs


def render_template(value: Any, context: Dict[str, Dict[str, Any]]) -> Any:
    """Render a body template against upstream node outputs (runtime side)."""
    if isinstance(value, str):
        match = REFERENCE_PATTERN.fullmatch(value.strip())
        if match:
            # A lone reference keeps the referenced value's type
            node, field_name = match.groups()
            return context[node][field_name]
        return _template_env.from_string(value).render(**context)
    if isinstance(value, dict):
        return {k: render_template(v, context) for k, v in value.items()}
    if isinstance(value, list):
        return [render_template(v, context) for v in value]
    return value


# ╔══════════ 3. Compiler ══════════════════════════════════════════════════

def action_node_name(action: Action) -> str:
    slug = re.sub(r"[^a-z0-9]+", "_", action.name.lower()).strip("_")
    return f"action_{slug or 'unnamed'}"


def default_action_body(bot_id: str, action: Action) -> Tuple[Dict[str, Any], Dict[str, Any]]:
    template = {
        "phone": f"{{{{ {PARSE}.sender }}}}",
        "message": f"{{{{ {PARSE}.text }}}}",
        "intent": f"{{{{ {PROCESS}.intent }}}}",
        "contact_id": f"{{{{ {CONTACT}.contact_id }}}}",
    }
    return template, {"bot_id": bot_id, "action": action.name}


def compile_graph(bot_id: str, config: AutomationConfig, bot_name: Optional[str] = None,
                  endpoints: Optional[CompilerEndpoints] = None) -> AutomationGraph:
    """
    Compile ``config`` into the automation graph for ``bot_id``.

    Raises GraphCompilationError if any node is ill-formed; nothing is
    silently dropped.
    """
    if not bot_id:
        raise GraphCompilationError("bot_id is required")
    endpoints = endpoints or CompilerEndpoints.from_settings()

    seen_actions: Set[str] = set()
    for action in config.available_actions:
        if action.name in seen_actions:
            raise GraphCompilationError(f"duplicate action name: {action.name!r}")
        seen_actions.add(action.name)

    nodes: List[Node] = [
        Node(TRIGGER, NodeKind.TRIGGER,
             TriggerParams(path=f"whatsapp-{bot_id}"), NODE_OUTPUTS[TRIGGER]),
        Node(PARSE, NodeKind.TRANSFORM,
             TransformParams(code=PARSE_CODE), NODE_OUTPUTS[PARSE]),
        Node(CONTACT, NodeKind.EXTERNAL_CALL, ExternalCallParams(
            url=endpoints.function_url("check-contact"),
            headers=endpoints.supabase_headers,
            body_template={"phone": f"{{{{ {PARSE}.sender }}}}"},
            static_body={"bot_id": bot_id},
        ), NODE_OUTPUTS[CONTACT]),
        Node(PROCESS, NodeKind.EXTERNAL_CALL, ExternalCallParams(
            url=endpoints.function_url("process-ai"),
            headers=endpoints.supabase_headers,
            body_template={
                "message": f"{{{{ {PARSE}.text }}}}",
                "phone": f"{{{{ {PARSE}.sender }}}}",
                "contact_id": f"{{{{ {CONTACT}.contact_id }}}}",
            },
            static_body={
                "bot_id": bot_id,
                "system_prompt": config.system_prompt,
                "available_actions": [a.name for a in config.available_actions],
            },
        ), NODE_OUTPUTS[PROCESS]),
    ]

    action_nodes: List[Node] = []
    rules: List[BranchRule] = []
    for action in config.available_actions:
        target = DELIVER
        if action.webhook_url:
            name = action_node_name(action)
            if action.body_template is not None:
                body_template, static_body = action.body_template, {}
            else:
                body_template, static_body = default_action_body(bot_id, action)
            action_nodes.append(Node(name, NodeKind.EXTERNAL_CALL, ExternalCallParams(
                url=action.webhook_url,
                headers={"Content-Type": "application/json"},
                body_template=body_template,
                static_body=static_body,
            ), ACTION_OUTPUTS))
            target = name
        rules.append(BranchRule(action=action.name, target=target,
                                trigger_words=tuple(w.lower() for w in action.trigger_words)))

    nodes.append(Node(DISPATCH, NodeKind.BRANCH, BranchParams(
        intent_field=f"{PROCESS}.intent",
        action_field=f"{PROCESS}.suggested_action",
        text_field=f"{PARSE}.text",
        rules=tuple(rules),
        default_target=DELIVER,
    ), NODE_OUTPUTS[DISPATCH]))
    nodes.extend(action_nodes)
    nodes.extend([
        Node(DELIVER, NodeKind.EXTERNAL_CALL, ExternalCallParams(
            url=endpoints.whatsapp_url,
            headers={"Content-Type": "application/json",
                     "Authorization": f"Bearer {endpoints.whatsapp_key}"},
            body_template={
                "to": f"{{{{ {PARSE}.sender }}}}",
                "text": {"body": f"{{{{ {PROCESS}.reply }}}}"},
            },
            static_body={"messaging_product": "whatsapp", "type": "text"},
        ), NODE_OUTPUTS[DELIVER]),
        Node(PERSIST, NodeKind.EXTERNAL_CALL, ExternalCallParams(
            url=endpoints.function_url("save-conversation"),
            headers=endpoints.supabase_headers,
            body_template={
                "phone": f"{{{{ {PARSE}.sender }}}}",
                "message": f"{{{{ {PARSE}.text }}}}",
                "response": f"{{{{ {PROCESS}.reply }}}}",
                "intent": f"{{{{ {PROCESS}.intent }}}}",
            },
            static_body={"bot_id": bot_id},
        ), NODE_OUTPUTS[PERSIST]),
        Node(ACK, NodeKind.TERMINAL, TerminalParams(
            status_code=200,
            body={"success": True, "message": "Webhook processed"},
        ), NODE_OUTPUTS[ACK]),
    ])

    _validate_nodes(nodes)
    edges = _wire(nodes, rules)

    graph = AutomationGraph(bot_id=bot_id, name=f"Bot WhatsApp - {bot_name or bot_id}",
                            nodes=nodes, edges=edges)
    logger.debug(f"Compiled graph for bot {bot_id}: {len(nodes)} nodes, {len(edges)} edges")
    return graph


def _validate_nodes(nodes: List[Node]) -> None:
    """Enforce unique names and upstream-only template references."""
    seen: Set[str] = set()
    available: Dict[str, Tuple[str, ...]] = {}
    for node in nodes:
        if node.name in seen:
            raise GraphCompilationError(f"duplicate node name: {node.name!r}")
        seen.add(node.name)

        if node.kind is NodeKind.EXTERNAL_CALL:
            scanned = [node.params.url, node.params.headers, node.params.body_template]
            for ref_node, ref_field in template_references(scanned):
                if ref_node not in available:
                    raise GraphCompilationError(
                        f"node {node.name!r} references {ref_node}.{ref_field}, "
                        f"but {ref_node!r} is not upstream")
                if ref_field not in available[ref_node]:
                    raise GraphCompilationError(
                        f"node {node.name!r} references undeclared field {ref_node}.{ref_field}")
        elif node.kind is NodeKind.BRANCH:
            for path in (node.params.intent_field, node.params.action_field, node.params.text_field):
                ref_node, _, ref_field = path.partition(".")
                if ref_field not in available.get(ref_node, ()):
                    raise GraphCompilationError(f"branch {node.name!r} reads undeclared field {path}")
        elif node.kind in (NodeKind.TRIGGER, NodeKind.TRANSFORM, NodeKind.TERMINAL):
            pass
        else:
            raise GraphCompilationError(f"unhandled node kind: {node.kind}")

        # Action nodes sit on alternative branches, so nothing downstream can read them
        if not node.name.startswith("action_"):
            available[node.name] = node.outputs


def _wire(nodes: List[Node], rules: List[BranchRule]) -> List[Edge]:
    names = [n.name for n in nodes]
    edges = [Edge(a, b) for a, b in zip(names[:names.index(DISPATCH)], names[1:names.index(DISPATCH) + 1])]
    for index, rule in enumerate(rules):
        edges.append(Edge(DISPATCH, rule.target, output=index))
    edges.append(Edge(DISPATCH, DELIVER, output=len(rules)))
    for node in nodes:
        if node.name.startswith("action_"):
            edges.append(Edge(node.name, DELIVER))
    edges.append(Edge(DELIVER, PERSIST))
    edges.append(Edge(PERSIST, ACK))
    return edges


# ╔══════════ 4. Engine export (n8n workflow JSON) ═══════════════════════════

ENGINE_NODE_TYPES = {
    NodeKind.TRIGGER: ("n8n-nodes-base.webhook", 1),
    NodeKind.TRANSFORM: ("n8n-nodes-base.function", 1),
    NodeKind.EXTERNAL_CALL: ("n8n-nodes-base.httpRequest", 1),
    NodeKind.BRANCH: ("n8n-nodes-base.switch", 3),
    NodeKind.TERMINAL: ("n8n-nodes-base.respondToWebhook", 1),
}


def _engine_ref(node: str, field_name: str) -> str:
    return f'$node["{node}"].json["{field_name}"]'


def _js_string(text: str) -> str:
    # Braces are escaped so literal text never opens an engine expression
    return json.dumps(text, ensure_ascii=False).replace("{", "\\u007b").replace("}", "\\u007d")


def _js_literal(value: Any) -> str:
    """Render a fixed value as a JavaScript literal; strings are never rewritten."""
    if isinstance(value, dict):
        return "{" + ", ".join(f"{_js_string(str(k))}: {_js_literal(v)}" for k, v in value.items()) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_js_literal(v) for v in value) + "]"
    if isinstance(value, str):
        return _js_string(value)
    return json.dumps(value, ensure_ascii=False)


def _js_value(value: Any) -> str:
    """Render a body template as a JavaScript expression for the engine."""
    if isinstance(value, dict):
        return "{" + ", ".join(f"{_js_string(str(k))}: {_js_value(v)}" for k, v in value.items()) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(_js_value(v) for v in value) + "]"
    if isinstance(value, str) and REFERENCE_PATTERN.search(value):
        parts = []
        pos = 0
        for match in REFERENCE_PATTERN.finditer(value):
            if match.start() > pos:
                parts.append(_js_string(value[pos:match.start()]))
            parts.append(_engine_ref(*match.groups()))
            pos = match.end()
        if pos < len(value):
            parts.append(_js_string(value[pos:]))
        return " + ".join(parts) if len(parts) > 1 else parts[0]
    return _js_literal(value)


def _js_body(params: ExternalCallParams) -> str:
    """Static entries are emitted verbatim; template entries override them."""
    entries = {k: _js_literal(v) for k, v in params.static_body.items()}
    entries.update((k, _js_value(v)) for k, v in params.body_template.items())
    return "{" + ", ".join(f"{_js_string(str(k))}: {v}" for k, v in entries.items()) + "}"


def _branch_expression(params: BranchParams) -> str:
    rules = [{"action": r.action, "words": list(r.trigger_words)} for r in params.rules]
    action_node, _, action_field = params.action_field.partition(".")
    text_node, _, text_field = params.text_field.partition(".")
    return (
        "={{ (function (action, text) { "
        f"const rules = {json.dumps(rules, ensure_ascii=False)}; "
        "for (let i = 0; i < rules.length; i++) { "
        "if (rules[i].action === action || rules[i].words.some(w => text.includes(w))) return i; "
        "} "
        f"return {len(params.rules)}; "
        f"}})({_engine_ref(action_node, action_field)}, "
        f"String({_engine_ref(text_node, text_field)} || '').toLowerCase()) }}}}"
    )


def _engine_parameters(node: Node) -> Dict[str, Any]:
    params = node.params
    if node.kind is NodeKind.TRIGGER:
        return {"httpMethod": params.http_method, "path": params.path,
                "responseMode": "responseNode", "options": {}}
    if node.kind is NodeKind.TRANSFORM:
        return {"functionCode": params.code}
    if node.kind is NodeKind.EXTERNAL_CALL:
        return {
            "requestMethod": params.method,
            "url": params.url,
            "jsonParameters": True,
            "headerParametersJson": json.dumps(params.headers, ensure_ascii=False),
            "bodyParametersJson": f"={{{{ JSON.stringify({_js_body(params)}) }}}}",
            "options": {},
        }
    if node.kind is NodeKind.BRANCH:
        return {"mode": "expression", "numberOutputs": len(params.rules) + 1,
                "output": _branch_expression(params)}
    if node.kind is NodeKind.TERMINAL:
        return {"respondWith": "json",
                "responseBody": json.dumps(params.body, ensure_ascii=False),
                "options": {"responseCode": params.status_code}}
    raise GraphCompilationError(f"unhandled node kind: {node.kind}")


def to_engine_payload(graph: AutomationGraph) -> Dict[str, Any]:
    """Export the graph in the n8n workflow shape accepted by POST /workflows."""
    main_chain = 0
    engine_nodes = []
    for node in graph.nodes:
        node_type, type_version = ENGINE_NODE_TYPES[node.kind]
        if node.name.startswith("action_"):
            position = [250 + 200 * main_chain, 500]
        else:
            position = [250 + 200 * main_chain, 300]
            main_chain += 1
        engine_nodes.append({
            "name": node.name,
            "type": node_type,
            "typeVersion": type_version,
            "position": position,
            "parameters": _engine_parameters(node),
        })

    connections: Dict[str, Dict[str, List[List[Dict[str, Any]]]]] = {}
    for edge in graph.edges:
        outputs = connections.setdefault(edge.source, {"main": []})["main"]
        while len(outputs) <= edge.output:
            outputs.append([])
        outputs[edge.output].append({"node": edge.target, "type": "main", "index": 0})

    return {
        "name": graph.name,
        "nodes": engine_nodes,
        "connections": connections,
        "settings": {"executionOrder": "v1"},
        "staticData": None,
    }


# ╔══════════ 5. Command Line Interface ═══════════════════════════════════════

def main() -> None:
    """
    Print the engine payload for a fallback configuration.

    USAGE:
        python -m bizbot.agents.workflow.compiler --business-type barbershop \\
            --description "Barbería El Parche en Medellín" --automation-types scheduling sales
    """
    from bizbot.services.llm.config_generator import ConfigGenerator

    parser = argparse.ArgumentParser(description="Compile a bot automation graph")
    parser.add_argument("--bot-id", default="preview")
    parser.add_argument("--business-type", required=True)
    parser.add_argument("--description", required=True)
    parser.add_argument("--automation-types", nargs="+", default=["support"])
    parser.add_argument("--calendar", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(level=settings.LOG_LEVEL,
                        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    profile = BusinessProfile.from_dict({
        "business_type": args.business_type,
        "description": args.description,
        "automation_types": args.automation_types,
        "connect_calendar": args.calendar,
    })
    config = ConfigGenerator.build_fallback_config(profile)
    graph = compile_graph(args.bot_id, config)
    print(json.dumps(to_engine_payload(graph), indent=2, ensure_ascii=False))


if __name__ == "__main__":
    main()
