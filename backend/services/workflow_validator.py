"""
Structural Validator

Stateless checks over a finished graph. Each check is independent and only
appends to the report; none of them modify the graph or apply suggestions.
"""

import logging
from collections import Counter
from typing import Dict, List, Optional, Set

from schemas.workflow_graph import (
    WorkflowGraph, ValidationIssue, ValidationReport, IssueKind, Severity,
    NodeStats, CredentialStats
)
from services.connectivity_repairer import find_reachable
from services.node_catalog import (
    is_valid_node_type, is_trigger_type,
    is_merge_type, is_decision_type, is_error_trigger_type, suggest_node_type
)

logger = logging.getLogger(__name__)


class StructuralValidator:
    HIGH_COST_TYPE_LIMITS: Dict[str, int] = {"n8n-nodes-base.mongoDb": 5}
    LARGE_GRAPH_LIMIT = 20
    DECISION_LIMIT = 3
    CREDENTIAL_REUSE_LIMIT = 3

    def validate(self, graph: WorkflowGraph, reachable: Optional[Set[str]] = None) -> ValidationReport:
        """
        Validate `graph`. Pass the reachability set from the connectivity
        repairer to avoid walking the graph twice.
        """
        issues: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        node_stats = self._check_node_types(graph, issues, warnings)
        self._check_duplicates(graph, issues)
        self._check_connections(graph, issues)
        self._check_disconnected(graph, reachable if reachable is not None else find_reachable(graph), issues)
        self._check_anti_patterns(graph, warnings)
        credential_stats = self._check_credentials(graph, warnings)

        report = ValidationReport(
            is_valid=not issues,
            issues=issues,
            warnings=warnings,
            node_stats=node_stats,
            credential_stats=credential_stats,
        )
        logger.info(
            f"Validated '{graph.name}': {len(issues)} errors, {len(warnings)} warnings, "
            f"{node_stats.valid}/{node_stats.total} valid node types"
        )
        return report

    def _check_node_types(self, graph: WorkflowGraph, issues, warnings) -> NodeStats:
        stats = NodeStats(total=len(graph.nodes))
        by_type: Counter = Counter()

        for node in graph.nodes:
            by_type[node.type] += 1

            if is_valid_node_type(node.type):
                stats.valid += 1
            else:
                stats.invalid += 1
                suggestion = suggest_node_type(node.type, node.name)
                message = (
                    f"Invalid node type: '{node.type}'" if node.type
                    else "Node has no type specified"
                )
                issues.append(ValidationIssue(
                    node_ref=node.name,
                    kind=IssueKind.INVALID_NODE_TYPE,
                    severity=Severity.ERROR,
                    message=message,
                    suggestion=f"Use {suggestion} instead" if suggestion else None,
                ))

            # names promising email but typed as something else
            name_lower = node.name.lower()
            type_lower = node.type.lower()
            if ("email" in name_lower or "send" in name_lower) and "email" not in type_lower and "send" not in type_lower:
                warnings.append(ValidationIssue(
                    node_ref=node.name,
                    kind=IssueKind.NAMING_MISMATCH,
                    severity=Severity.WARNING,
                    message=f"Node name suggests email functionality but type is '{node.type}'",
                    suggestion="Consider using n8n-nodes-base.emailSend",
                ))

        stats.by_type = dict(by_type)
        return stats

    def _check_duplicates(self, graph: WorkflowGraph, issues) -> None:
        # edges reference names, so a repeated name makes them ambiguous
        names = Counter(n.name for n in graph.nodes)
        for name, count in names.items():
            if count > 1:
                issues.append(ValidationIssue(
                    node_ref=name,
                    kind=IssueKind.DUPLICATE_NODE,
                    severity=Severity.ERROR,
                    message=f"Node name '{name}' is used by {count} nodes",
                    suggestion="Give every node a unique name",
                ))
        ids = Counter(n.id for n in graph.nodes)
        for node_id, count in ids.items():
            if count > 1:
                issues.append(ValidationIssue(
                    node_ref=node_id,
                    kind=IssueKind.DUPLICATE_NODE,
                    severity=Severity.ERROR,
                    message=f"Node id '{node_id}' is used by {count} nodes",
                ))

    def _check_connections(self, graph: WorkflowGraph, issues) -> None:
        names = graph.node_names()
        for source, port, ref in graph.iter_edges():
            if source not in names:
                issues.append(ValidationIssue(
                    node_ref=source,
                    kind=IssueKind.INVALID_CONNECTION,
                    severity=Severity.ERROR,
                    message=f"Connection source '{source}' does not exist",
                ))
            if ref.node not in names:
                issues.append(ValidationIssue(
                    node_ref=source,
                    kind=IssueKind.INVALID_CONNECTION,
                    severity=Severity.ERROR,
                    message=f"Connection from '{source}' (port {port}) targets missing node '{ref.node}'",
                ))
                continue
            target = graph.node_by_name(ref.node)
            if is_trigger_type(target.type):
                issues.append(ValidationIssue(
                    node_ref=ref.node,
                    kind=IssueKind.INVALID_CONNECTION,
                    severity=Severity.ERROR,
                    message=f"Trigger node '{ref.node}' cannot receive a connection from '{source}'",
                ))

    def _check_disconnected(self, graph: WorkflowGraph, reachable: Set[str], issues) -> None:
        for node in graph.nodes:
            if is_trigger_type(node.type):
                # triggers only need somewhere to go
                if not graph.has_outgoing(node.name):
                    issues.append(ValidationIssue(
                        node_ref=node.name,
                        kind=IssueKind.DISCONNECTED_NODE,
                        severity=Severity.ERROR,
                        message=f"Trigger '{node.name}' has no outgoing connections",
                    ))
            elif node.name not in reachable:
                issues.append(ValidationIssue(
                    node_ref=node.name,
                    kind=IssueKind.DISCONNECTED_NODE,
                    severity=Severity.ERROR,
                    message=f"Node '{node.name}' is not reachable from any trigger",
                ))

    def _check_anti_patterns(self, graph: WorkflowGraph, warnings) -> None:
        counts = Counter(n.type for n in graph.nodes)

        for node_type, limit in self.HIGH_COST_TYPE_LIMITS.items():
            if counts[node_type] > limit:
                warnings.append(ValidationIssue(
                    node_ref=node_type,
                    kind=IssueKind.ANTI_PATTERN,
                    severity=Severity.WARNING,
                    message=f"Excessive {node_type} nodes ({counts[node_type]})",
                    suggestion="Consider batching operations",
                ))

        if len(graph.nodes) > self.LARGE_GRAPH_LIMIT and not any(is_error_trigger_type(t) for t in counts):
            warnings.append(ValidationIssue(
                node_ref=graph.name,
                kind=IssueKind.ANTI_PATTERN,
                severity=Severity.WARNING,
                message=f"Complex workflow ({len(graph.nodes)} nodes) without error handling",
                suggestion="Add an n8n-nodes-base.errorTrigger node",
            ))

        decisions = sum(c for t, c in counts.items() if is_decision_type(t))
        merges = sum(c for t, c in counts.items() if is_merge_type(t))
        if decisions > self.DECISION_LIMIT and merges == 0:
            warnings.append(ValidationIssue(
                node_ref=graph.name,
                kind=IssueKind.ANTI_PATTERN,
                severity=Severity.WARNING,
                message=f"{decisions} branching nodes without any merge node",
                suggestion="Merge parallel branches with n8n-nodes-base.merge",
            ))

    def _check_credentials(self, graph: WorkflowGraph, warnings) -> CredentialStats:
        usage: Counter = Counter()
        for node in graph.nodes:
            for credential_type in (node.credentials or {}):
                usage[credential_type] += 1

        stats = CredentialStats(required=sorted(usage))
        for credential_type, count in usage.items():
            if count > self.CREDENTIAL_REUSE_LIMIT:
                stats.duplicates.append(credential_type)
                warnings.append(ValidationIssue(
                    node_ref=credential_type,
                    kind=IssueKind.DUPLICATE_CREDENTIAL,
                    severity=Severity.WARNING,
                    message=f"Credential '{credential_type}' used by {count} nodes",
                    suggestion="Consider consolidating these operations",
                ))
        return stats
