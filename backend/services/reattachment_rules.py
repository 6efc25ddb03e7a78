"""
Reattachment Rules

Each rule proposes where an orphaned node should hang off the graph. The
repairers try their rules in order and take the first proposal, so every
heuristic stays small and can be tested on its own.
"""

import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Set

from schemas.workflow_graph import WorkflowGraph, WorkflowNode, SUCCESS_PORT, ERROR_PORT
from services.node_catalog import is_merge_type


@dataclass
class Attachment:
    rule: str
    sources: List[str]
    port: int = SUCCESS_PORT


@dataclass
class RepairContext:
    """
    What a rule may look at while deciding.

    `anchored` holds the names a new edge may start from: connected nodes
    during fragment repair, reachable nodes during global repair.
    """
    graph: WorkflowGraph
    anchored: Set[str]
    recent: List[str] = field(default_factory=list)
    fragment_of: Dict[str, str] = field(default_factory=dict)
    merge_sources: Dict[str, List[str]] = field(default_factory=dict)

    def descendants(self, name: str) -> Set[str]:
        seen: Set[str] = set()
        stack = list(self.graph.successors(name))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self.graph.successors(current))
        return seen

    def eligible_sources(self, node: WorkflowNode, require_anchor: bool = True) -> List[WorkflowNode]:
        """Nodes, in graph order, that may feed `node` without closing a cycle."""
        blocked = self.descendants(node.name)
        blocked.add(node.name)
        return [
            n for n in self.graph.nodes
            if n.name not in blocked and (not require_anchor or n.name in self.anchored)
        ]


def _name_has(node: WorkflowNode, keywords: Sequence[str]) -> bool:
    lowered = node.name.lower()
    return any(k in lowered for k in keywords)


class ReattachmentRule:
    name = "rule"

    def apply(self, node: WorkflowNode, context: RepairContext) -> Optional[Attachment]:
        raise NotImplementedError

    def claims(self, node: WorkflowNode, context: RepairContext) -> bool:
        """True when no later rule may place `node` if this one finds nothing."""
        return False


# ---------- Fragment-level rules ----------

class ErrorNameRule(ReattachmentRule):
    """Error-sounding nodes hang off the error port of the second-to-last node."""
    name = "error_name"
    keywords = ("error", "exception")

    def apply(self, node, context):
        if not _name_has(node, self.keywords) or len(context.graph.nodes) < 2:
            return None
        candidate = context.graph.nodes[-2]
        allowed = {n.name for n in context.eligible_sources(node, require_anchor=False)}
        if candidate.name not in allowed:
            return None
        return Attachment(rule=self.name, sources=[candidate.name], port=ERROR_PORT)


class CompletionNameRule(ReattachmentRule):
    """Final/complete/send nodes follow the most recently connected node."""
    name = "completion_name"
    keywords = ("final", "complete", "send")

    def apply(self, node, context):
        if not _name_has(node, self.keywords):
            return None
        allowed = {n.name for n in context.eligible_sources(node)}
        for name in reversed(context.recent):
            if name in allowed:
                return Attachment(rule=self.name, sources=[name])
        return None


class NearestLeftRule(ReattachmentRule):
    """Attach to the closest anchored node that sits to the left."""
    name = "nearest_left"

    def apply(self, node, context):
        best: Optional[WorkflowNode] = None
        best_distance = math.inf
        for candidate in context.eligible_sources(node):
            if candidate.x >= node.x:
                continue
            distance = math.hypot(candidate.x - node.x, candidate.y - node.y)
            # strict comparison keeps the earliest node on ties
            if distance < best_distance:
                best, best_distance = candidate, distance
        if best is None:
            return None
        return Attachment(rule=self.name, sources=[best.name])


# ---------- Graph-level rules ----------

class DeclaredMergeRule(ReattachmentRule):
    """Declared merge nodes receive the exits of their contributing fragments."""
    name = "declared_merge"

    def apply(self, node, context):
        declared = context.merge_sources.get(node.name)
        if not declared:
            return None
        allowed = {n.name for n in context.eligible_sources(node)}
        sources = [name for name in declared if name in allowed]
        if not sources:
            return None
        return Attachment(rule=self.name, sources=sources)


class BranchCompletionRule(ReattachmentRule):
    """Merge/final nodes collect every branch-completion node in the graph."""
    name = "branch_completion"
    keywords = ("final", "merge")
    completion_keywords = ("send", "complete", "finish", "create", "done")

    def apply(self, node, context):
        if not (_name_has(node, self.keywords) or is_merge_type(node.type)):
            return None
        sources = [
            n.name for n in context.eligible_sources(node)
            if _name_has(n, self.completion_keywords) and "error" not in n.name.lower()
        ]
        if not sources:
            return None
        return Attachment(rule=self.name, sources=sources)


class FragmentErrorRule(ReattachmentRule):
    """Error handlers attach to the error port of their own fragment's last reachable node."""
    name = "fragment_error"
    keywords = ("error", "handling")

    def apply(self, node, context):
        if not _name_has(node, self.keywords):
            return None
        fragment = context.fragment_of.get(node.name)
        if fragment is None:
            return None
        same_fragment = [
            n for n in context.eligible_sources(node)
            if context.fragment_of.get(n.name) == fragment
        ]
        if not same_fragment:
            return None
        return Attachment(rule=self.name, sources=[same_fragment[-1].name], port=ERROR_PORT)

    def claims(self, node, context):
        # error handlers never leave their own fragment
        return _name_has(node, self.keywords) and node.name in context.fragment_of


FRAGMENT_RULES: List[ReattachmentRule] = [ErrorNameRule(), CompletionNameRule(), NearestLeftRule()]
GLOBAL_RULES: List[ReattachmentRule] = [
    DeclaredMergeRule(),
    BranchCompletionRule(),
    FragmentErrorRule(),
    NearestLeftRule(),
]


def propose_attachment(node: WorkflowNode, context: RepairContext, rules: Sequence[ReattachmentRule]) -> Optional[Attachment]:
    for rule in rules:
        attachment = rule.apply(node, context)
        if attachment is not None:
            return attachment
        if rule.claims(node, context):
            return None
    return None
