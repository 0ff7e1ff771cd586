"""Automation Graph Module"""
from .graph import AutomationGraph, Edge, Node, NodeKind
from .compiler import compile_graph, to_engine_payload

__all__ = ["AutomationGraph", "Edge", "Node", "NodeKind", "compile_graph", "to_engine_payload"]
