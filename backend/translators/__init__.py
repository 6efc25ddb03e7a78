"""
Deterministic Translator Layer

Converts the canonical WorkflowGraph to n8n workflow JSON and back.
All export logic is deterministic and separate from the LLM.
"""

from .n8n_translator import N8nWorkflowTranslator

__all__ = ['N8nWorkflowTranslator']
