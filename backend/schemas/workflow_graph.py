# schemas/workflow_graph.py
from __future__ import annotations
from typing import List, Optional, Dict, Any, Iterator, Set, Tuple
from enum import Enum
from pydantic import BaseModel, Field, ConfigDict, field_validator

MAIN_INPUT = "main"
SUCCESS_PORT = 0
ERROR_PORT = 1

# ---------- Core Enums ----------

class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"

class IssueKind(str, Enum):
    INVALID_NODE_TYPE = "invalid_node_type"
    DISCONNECTED_NODE = "disconnected_node"
    INVALID_CONNECTION = "invalid_connection"
    DUPLICATE_CREDENTIAL = "duplicate_credential"
    NAMING_MISMATCH = "naming_mismatch"
    ANTI_PATTERN = "anti_pattern"
    MALFORMED_FRAGMENT = "malformed_fragment"
    EMPTY_FRAGMENT = "empty_fragment"
    UNRESOLVED_ORPHAN = "unresolved_orphan"
    DUPLICATE_NODE = "duplicate_node"

# ---------- Graph Models ----------

class TargetReference(BaseModel):
    """One edge target: `type` is the input port, `index` the input slot."""
    node: str
    type: str = MAIN_INPUT
    index: int = 0

class NodeConnections(BaseModel):
    # main[port] is the target group for that output port
    main: List[List[TargetReference]] = Field(default_factory=list)

    def group(self, port: int) -> List[TargetReference]:
        while len(self.main) <= port:
            self.main.append([])
        return self.main[port]

class WorkflowNode(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    type: str
    type_version: float = Field(default=1, alias="typeVersion")
    position: List[float] = Field(default_factory=lambda: [0, 0])
    parameters: Dict[str, Any] = Field(default_factory=dict)
    credentials: Optional[Dict[str, Any]] = None

    @field_validator("position")
    @classmethod
    def _two_coordinates(cls, value: List[float]) -> List[float]:
        if len(value) != 2:
            raise ValueError("position must be [x, y]")
        return value

    @property
    def x(self) -> float:
        return self.position[0]

    @property
    def y(self) -> float:
        return self.position[1]

class WorkflowGraph(BaseModel):
    name: str = "Untitled Workflow"
    nodes: List[WorkflowNode] = Field(default_factory=list)
    connections: Dict[str, NodeConnections] = Field(default_factory=dict)
    settings: Dict[str, Any] = Field(default_factory=lambda: {"executionOrder": "v1"})

    def node_by_name(self, name: str) -> Optional[WorkflowNode]:
        return next((n for n in self.nodes if n.name == name), None)

    def node_names(self) -> Set[str]:
        return {n.name for n in self.nodes}

    def add_edge(self, source: str, target: str, port: int = SUCCESS_PORT) -> TargetReference:
        """Append `target` to the target group of `source` on `port`."""
        if source not in self.connections:
            self.connections[source] = NodeConnections()
        ref = TargetReference(node=target)
        self.connections[source].group(port).append(ref)
        return ref

    def iter_edges(self) -> Iterator[Tuple[str, int, TargetReference]]:
        for source, outputs in self.connections.items():
            for port, group in enumerate(outputs.main):
                for ref in group:
                    yield source, port, ref

    def has_incoming(self, name: str) -> bool:
        return any(ref.node == name for _, _, ref in self.iter_edges())

    def has_outgoing(self, name: str) -> bool:
        outputs = self.connections.get(name)
        return bool(outputs and any(outputs.main))

    def successors(self, name: str) -> List[str]:
        outputs = self.connections.get(name)
        if not outputs:
            return []
        return [ref.node for group in outputs.main for ref in group]

# ---------- Validation Report Models ----------

class ValidationIssue(BaseModel):
    node_ref: str
    kind: IssueKind
    severity: Severity
    message: str
    suggestion: Optional[str] = None

class NodeStats(BaseModel):
    total: int = 0
    valid: int = 0
    invalid: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)

class CredentialStats(BaseModel):
    required: List[str] = Field(default_factory=list)
    duplicates: List[str] = Field(default_factory=list)

class ValidationReport(BaseModel):
    is_valid: bool
    issues: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    node_stats: NodeStats = Field(default_factory=NodeStats)
    credential_stats: CredentialStats = Field(default_factory=CredentialStats)

    def issues_of_kind(self, kind: IssueKind) -> List[ValidationIssue]:
        return [i for i in self.issues + self.warnings if i.kind == kind]
