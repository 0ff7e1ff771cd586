# --------------------------- bizbot/agents/workflow/graph.py ----------------------------
"""
Bizbot · Automation Graph Model

OVERVIEW:
The compiled automation graph is a list of typed nodes plus directed edges.
Nodes are a tagged union: every Node carries a NodeKind tag and the
parameter struct for that kind. Consumers (compiler validation, engine
export) switch on the tag and must handle every kind.

NODE KINDS:
- TRIGGER: inbound webhook that starts an execution
- TRANSFORM: in-engine code turning the payload into named fields
- EXTERNAL_CALL: HTTP request whose body may reference upstream fields
- BRANCH: dispatch on classified intent / suggested action
- TERMINAL: acknowledges the webhook caller

Every node declares the fields it ``outputs``; templates downstream may
reference only those.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union


class NodeKind(Enum):
    TRIGGER = "trigger"
    TRANSFORM = "transform"
    EXTERNAL_CALL = "external_call"
    BRANCH = "branch"
    TERMINAL = "terminal"


@dataclass(frozen=True)
class TriggerParams:
    path: str
    http_method: str = "POST"


@dataclass(frozen=True)
class TransformParams:
    code: str
    language: str = "javascript"


@dataclass(frozen=True)
class ExternalCallParams:
    """
    body_template values may contain ``{{ node.field }}`` references;
    static_body values are compile-time literals and are never scanned.
    """
    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body_template: Dict[str, Any] = field(default_factory=dict)
    static_body: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BranchRule:
    action: str
    target: str
    trigger_words: Tuple[str, ...] = ()


@dataclass(frozen=True)
class BranchParams:
    intent_field: str
    action_field: str
    text_field: str
    rules: Tuple[BranchRule, ...]
    default_target: str


@dataclass(frozen=True)
class TerminalParams:
    status_code: int = 200
    body: Dict[str, Any] = field(default_factory=dict)


NodeParams = Union[TriggerParams, TransformParams, ExternalCallParams, BranchParams, TerminalParams]

PARAMS_BY_KIND = {
    NodeKind.TRIGGER: TriggerParams,
    NodeKind.TRANSFORM: TransformParams,
    NodeKind.EXTERNAL_CALL: ExternalCallParams,
    NodeKind.BRANCH: BranchParams,
    NodeKind.TERMINAL: TerminalParams,
}


@dataclass
class Node:
    name: str
    kind: NodeKind
    params: NodeParams
    outputs: Tuple[str, ...] = ()

    def __post_init__(self):
        expected = PARAMS_BY_KIND[self.kind]
        if not isinstance(self.params, expected):
            raise TypeError(f"node {self.name!r} of kind {self.kind.value} "
                            f"needs {expected.__name__}, got {type(self.params).__name__}")


@dataclass(frozen=True)
class Edge:
    source: str
    target: str
    output: int = 0


@dataclass
class AutomationGraph:
    bot_id: str
    name: str
    nodes: List[Node]
    edges: List[Edge]

    @property
    def entry(self) -> Node:
        return self.nodes[0]

    @property
    def terminal(self) -> Node:
        return self.nodes[-1]

    def node(self, name: str) -> Optional[Node]:
        return next((n for n in self.nodes if n.name == name), None)

    def successors(self, name: str) -> List[str]:
        return [e.target for e in self.edges if e.source == name]
