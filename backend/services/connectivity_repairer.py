"""
Global Connectivity Repairer

Runs once over the assembled graph. Anything the triggers cannot reach is
reattached with the graph-level rules; nothing is ever removed, so whatever
stays unreachable surfaces in the validator's report.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import List, Optional, Set

from schemas.fragment_schema import RepairAction
from schemas.workflow_graph import WorkflowGraph, ValidationIssue, IssueKind, Severity
from services.graph_assembler import AssembledGraph
from services.node_catalog import is_trigger_type
from services.reattachment_rules import (
    GLOBAL_RULES, ReattachmentRule, RepairContext, propose_attachment
)

logger = logging.getLogger(__name__)


def find_reachable(graph: WorkflowGraph) -> Set[str]:
    """Breadth-first walk from every trigger-type node; dangling targets are skipped."""
    existing = graph.node_names()
    roots = [n.name for n in graph.nodes if is_trigger_type(n.type)]
    reachable: Set[str] = set(roots)
    queue = deque(roots)
    while queue:
        current = queue.popleft()
        for successor in graph.successors(current):
            if successor in existing and successor not in reachable:
                reachable.add(successor)
                queue.append(successor)
    return reachable


@dataclass
class ConnectivityResult:
    graph: WorkflowGraph
    reachable: Set[str] = field(default_factory=set)
    unresolved: List[str] = field(default_factory=list)
    repairs: List[RepairAction] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)


class GlobalConnectivityRepairer:

    def __init__(self, rules: Optional[List[ReattachmentRule]] = None):
        self.rules = rules if rules is not None else GLOBAL_RULES

    def repair(self, assembled: AssembledGraph) -> ConnectivityResult:
        graph = assembled.graph
        result = ConnectivityResult(graph=graph)

        # a node attached in one round can anchor another in the next
        while True:
            reachable = find_reachable(graph)
            orphans = [n for n in graph.nodes if n.name not in reachable]
            if not orphans:
                break

            progressed = False
            for orphan in orphans:
                context = RepairContext(
                    graph=graph,
                    anchored=reachable,
                    fragment_of=assembled.membership,
                    merge_sources=assembled.merge_nodes,
                )
                attachment = propose_attachment(orphan, context, self.rules)
                if attachment is None:
                    continue
                for source in attachment.sources:
                    graph.add_edge(source, orphan.name, attachment.port)
                    result.repairs.append(RepairAction(
                        rule=attachment.rule, source=source, target=orphan.name, port=attachment.port
                    ))
                logger.info(f"Reconnected '{orphan.name}' via {attachment.rule} from {attachment.sources}")
                progressed = True
                # reachability changed; recompute before the next orphan
                break

            if not progressed:
                break

        result.reachable = find_reachable(graph)
        result.unresolved = [n.name for n in graph.nodes if n.name not in result.reachable]
        for name in result.unresolved:
            result.warnings.append(ValidationIssue(
                node_ref=name,
                kind=IssueKind.UNRESOLVED_ORPHAN,
                severity=Severity.WARNING,
                message=f"No reattachment rule matched '{name}'; node kept unreachable",
            ))
        if result.unresolved:
            logger.warning(f"Unreachable after repair: {', '.join(result.unresolved)}")
        return result
