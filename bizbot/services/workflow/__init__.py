"""Workflow Engine Services Module"""
from .n8n import N8NWorkflowManager

__all__ = ["N8NWorkflowManager"]
