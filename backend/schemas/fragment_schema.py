"""
Fragment Schema for Staged Workflow Generation

Defines the plan the model produces when it analyses a request, the raw
fragment it returns for each branch, and the repaired fragment handed to
the assembler. Raw shapes are lenient on purpose: model output is
untrusted and normalised downstream.
"""

from pydantic import BaseModel, Field
from typing import List, Optional, Dict, Any

from schemas.workflow_graph import WorkflowNode, NodeConnections


class BranchPlan(BaseModel):
    """
    One independently generated branch of the overall automation.
    """
    name: str = Field(description="Branch name, also used as the fragment name")
    description: str = Field("", description="What this branch does")
    trigger_condition: Optional[str] = Field(None, description="When this branch activates")
    is_parallel: bool = Field(True, description="Whether the branch runs alongside the others")
    estimated_nodes: Optional[int] = Field(None, description="Rough node count for the branch")


class MergePoint(BaseModel):
    """
    A point where the exits of several branches converge.
    """
    name: str = Field(description="Name of the merge node")
    merges_branches: List[str] = Field(default_factory=list, description="Names of contributing branches")


class WorkflowPlan(BaseModel):
    main_trigger: Optional[Dict[str, Any]] = None
    branches: List[BranchPlan] = Field(default_factory=list)
    merge_points: List[MergePoint] = Field(default_factory=list)
    final_actions: Optional[str] = None


class RawFragment(BaseModel):
    """
    A fragment as the model returned it, after JSON decoding and node
    sanitising but before any connection normalisation.
    """
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: Dict[str, Any] = Field(default_factory=dict)
    start_node: Optional[str] = None
    end_nodes: List[str] = Field(default_factory=list)


class RepairAction(BaseModel):
    """A single edge added by a repair pass, kept for the caller's audit trail."""
    rule: str
    source: str
    target: str
    port: int = 0


class RepairedFragment(BaseModel):
    name: str
    prefix: str
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: Dict[str, NodeConnections] = Field(default_factory=dict)
    entry: Optional[str] = None
    exits: List[str] = Field(default_factory=list)
    unresolved: List[str] = Field(default_factory=list)
    repairs: List[RepairAction] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.nodes


def get_plan_json_schema() -> Dict[str, Any]:
    """
    Get JSON schema for OpenAI function calling to analyse workflow structure.
    """
    return {
        "type": "object",
        "properties": {
            "main_trigger": {
                "type": "object",
                "properties": {
                    "description": {"type": "string"},
                    "type": {"type": "string", "enum": ["webhook", "schedule", "manual"]}
                }
            },
            "branches": {
                "type": "array",
                "description": "Separate flows of the automation",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string", "description": "Branch name"},
                        "description": {"type": "string", "description": "What this branch does"},
                        "trigger_condition": {"type": "string", "description": "When this branch activates"},
                        "is_parallel": {"type": "boolean"},
                        "estimated_nodes": {"type": "integer"}
                    },
                    "required": ["name", "description"]
                }
            },
            "merge_points": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "name": {"type": "string"},
                        "merges_branches": {"type": "array", "items": {"type": "string"}}
                    },
                    "required": ["name", "merges_branches"]
                }
            },
            "final_actions": {"type": "string"}
        },
        "required": ["branches"]
    }


def get_fragment_json_schema() -> Dict[str, Any]:
    """
    Get JSON schema for OpenAI function calling to generate one branch.
    """
    target = {
        "type": "object",
        "properties": {
            "node": {"type": "string"},
            "type": {"type": "string", "enum": ["main"]},
            "index": {"type": "integer"}
        },
        "required": ["node"]
    }
    return {
        "type": "object",
        "properties": {
            "nodes": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "name": {"type": "string", "description": "Unique name, used in connections"},
                        "type": {"type": "string", "description": "n8n node type, e.g. n8n-nodes-base.httpRequest"},
                        "typeVersion": {"type": "number"},
                        "position": {"type": "array", "items": {"type": "number"}},
                        "parameters": {"type": "object"}
                    },
                    "required": ["name", "type"]
                }
            },
            "connections": {
                "type": "object",
                "description": "Source node name -> {main: [[targets on port 0], [targets on port 1]]}",
                "additionalProperties": {
                    "type": "object",
                    "properties": {
                        "main": {"type": "array", "items": {"type": "array", "items": target}}
                    }
                }
            },
            "start_node": {"type": "string"},
            "end_nodes": {"type": "array", "items": {"type": "string"}}
        },
        "required": ["nodes", "connections"]
    }
