"""
Graph Assembler

Combines repaired fragments into one workflow graph: a synthetic webhook
trigger, each fragment laid out on its own row, and one merge node per
declared merge point. Merge nodes are created unwired; the global repairer
connects them.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from schemas.fragment_schema import RepairedFragment, MergePoint
from schemas.workflow_graph import (
    WorkflowGraph, WorkflowNode, NodeConnections, ValidationIssue, IssueKind, Severity
)
from services.node_catalog import MERGE_TYPE, is_trigger_type

logger = logging.getLogger(__name__)

TRIGGER_ID = "main_trigger"
TRIGGER_NAME = "Main Trigger"
TRIGGER_TYPE = "n8n-nodes-base.webhook"

# ---------- Layout ----------
TRIGGER_X = 250
FRAGMENT_BASE_X = 450
FRAGMENT_BASE_Y = 100
COLUMN_WIDTH = 200
ROW_HEIGHT = 400
MERGE_ROW_HEIGHT = 200


class GraphAssemblyError(Exception):
    """Raised when assembly would break a graph invariant"""
    pass


@dataclass
class AssembledGraph:
    graph: WorkflowGraph
    trigger_name: str
    # node name -> fragment name; synthetic nodes are absent
    membership: Dict[str, str] = field(default_factory=dict)
    fragments: List[RepairedFragment] = field(default_factory=list)
    merge_nodes: Dict[str, List[str]] = field(default_factory=dict)
    warnings: List[ValidationIssue] = field(default_factory=list)


class GraphAssembler:
    """
    Deterministic assembler. Given the same fragments in the same order it
    produces the same graph, positions included.
    """

    def assemble(
        self,
        fragments: List[RepairedFragment],
        merge_points: Optional[List[MergePoint]] = None,
        name: str = "Generated Workflow",
    ) -> AssembledGraph:
        graph = WorkflowGraph(name=name)
        trigger = self._create_trigger()
        graph.nodes.append(trigger)

        assembled = AssembledGraph(graph=graph, trigger_name=trigger.name)
        taken = {trigger.name}
        taken_ids = {trigger.id}
        taken_prefixes: Set[str] = set()
        row = 0
        entries: List[str] = []

        for fragment in fragments:
            if fragment.is_empty:
                logger.warning(f"Skipping empty fragment '{fragment.name}'")
                assembled.warnings.append(ValidationIssue(
                    node_ref=fragment.name,
                    kind=IssueKind.EMPTY_FRAGMENT,
                    severity=Severity.WARNING,
                    message=f"Fragment '{fragment.name}' produced no nodes and was skipped",
                ))
                continue

            fragment = self._resolve_collisions(fragment.model_copy(deep=True), taken)
            fragment = self._resolve_id_collisions(fragment, row, taken_prefixes, taken_ids)
            self._layout_fragment(fragment, row)
            row += 1

            for node in fragment.nodes:
                graph.nodes.append(node)
                taken.add(node.name)
                taken_ids.add(node.id)
                assembled.membership[node.name] = fragment.name
            for source, outputs in fragment.connections.items():
                # dangling sources may repeat across fragments; keep both edge sets
                merged = graph.connections.setdefault(source, NodeConnections())
                for port, group in enumerate(outputs.main):
                    merged.group(port).extend(group)
            assembled.fragments.append(fragment)

            if fragment.entry and not is_trigger_type(self._type_of(fragment, fragment.entry)):
                entries.append(fragment.entry)

        for entry in entries:
            graph.add_edge(trigger.name, entry)

        self._add_merge_nodes(assembled, merge_points or [], taken, taken_ids)
        self._assert_unique_nodes(graph)

        logger.info(
            f"Assembled '{name}': {len(assembled.fragments)} fragments, "
            f"{len(graph.nodes)} nodes, {len(assembled.merge_nodes)} merge nodes"
        )
        return assembled

    def _create_trigger(self) -> WorkflowNode:
        return WorkflowNode(
            id=TRIGGER_ID,
            name=TRIGGER_NAME,
            type=TRIGGER_TYPE,
            type_version=1.1,
            position=[TRIGGER_X, FRAGMENT_BASE_Y],
            parameters={"httpMethod": "POST", "path": "workflow-trigger"},
        )

    def _type_of(self, fragment: RepairedFragment, name: str) -> Optional[str]:
        node = next((n for n in fragment.nodes if n.name == name), None)
        return node.type if node else None

    def _resolve_collisions(self, fragment: RepairedFragment, taken) -> RepairedFragment:
        """Rename nodes whose name is already in the graph and rewrite this fragment's references."""
        mapping: Dict[str, str] = {}
        local = {n.name for n in fragment.nodes}
        for node in fragment.nodes:
            if node.name not in taken:
                continue
            candidate = f"{node.name} ({fragment.name})"
            counter = 2
            while candidate in taken or candidate in local or candidate in mapping.values():
                candidate = f"{node.name} ({fragment.name} {counter})"
                counter += 1
            mapping[node.name] = candidate

        if not mapping:
            return fragment

        logger.info(f"Fragment '{fragment.name}': renamed colliding nodes {mapping}")

        def rename(value: str) -> str:
            return mapping.get(value, value)

        nodes = [n.model_copy(update={"name": rename(n.name)}) for n in fragment.nodes]
        connections: Dict[str, NodeConnections] = {}
        for source, outputs in fragment.connections.items():
            connections[rename(source)] = NodeConnections(main=[
                [ref.model_copy(update={"node": rename(ref.node)}) for ref in group]
                for group in outputs.main
            ])
        return fragment.model_copy(update={
            "nodes": nodes,
            "connections": connections,
            "entry": rename(fragment.entry) if fragment.entry else None,
            "exits": [rename(e) for e in fragment.exits],
            "unresolved": [rename(u) for u in fragment.unresolved],
        })

    def _resolve_id_collisions(self, fragment: RepairedFragment, row: int, taken_prefixes: Set[str], taken_ids: Set[str]) -> RepairedFragment:
        """
        Give the fragment a prefix no earlier fragment used, then suffix any
        id that still clashes. Edges reference names, so only ids change.
        """
        prefix = fragment.prefix
        if prefix in taken_prefixes:
            candidate = f"{prefix}_{row}"
            counter = row + 1
            while candidate in taken_prefixes:
                candidate = f"{prefix}_{counter}"
                counter += 1
            logger.info(f"Fragment '{fragment.name}': prefix '{prefix}' already used, switching to '{candidate}'")
            prefix = candidate
        taken_prefixes.add(prefix)

        local: Set[str] = set()
        nodes: List[WorkflowNode] = []
        for node in fragment.nodes:
            node_id = node.id
            if prefix != fragment.prefix and node_id.startswith(f"{fragment.prefix}_"):
                node_id = f"{prefix}_{node_id[len(fragment.prefix) + 1:]}"
            base_id = node_id
            counter = 2
            while node_id in taken_ids or node_id in local:
                node_id = f"{base_id}_{counter}"
                counter += 1
            local.add(node_id)
            nodes.append(node if node_id == node.id else node.model_copy(update={"id": node_id}))

        return fragment.model_copy(update={"prefix": prefix, "nodes": nodes})

    def _layout_fragment(self, fragment: RepairedFragment, row: int) -> None:
        """
        Place the fragment on its own row. Columns follow the original x
        order, so left-to-right intent survives while overlap is impossible.
        """
        order = sorted(range(len(fragment.nodes)), key=lambda i: (fragment.nodes[i].x, i))
        y = FRAGMENT_BASE_Y + row * ROW_HEIGHT
        for column, index in enumerate(order):
            fragment.nodes[index].position = [FRAGMENT_BASE_X + column * COLUMN_WIDTH, y]

    def _add_merge_nodes(self, assembled: AssembledGraph, merge_points: List[MergePoint], taken, taken_ids) -> None:
        widest = max((len(f.nodes) for f in assembled.fragments), default=0)
        x = FRAGMENT_BASE_X + widest * COLUMN_WIDTH
        exits_by_fragment = {f.name: f.exits for f in assembled.fragments}

        for i, point in enumerate(merge_points):
            name = point.name
            counter = 2
            while name in taken:
                name = f"{point.name} {counter}"
                counter += 1
            taken.add(name)
            node_id = f"merge_{i}"
            counter = 2
            while node_id in taken_ids:
                node_id = f"merge_{i}_{counter}"
                counter += 1
            taken_ids.add(node_id)

            assembled.graph.nodes.append(WorkflowNode(
                id=node_id,
                name=name,
                type=MERGE_TYPE,
                type_version=3,
                position=[x, FRAGMENT_BASE_Y + i * MERGE_ROW_HEIGHT],
                parameters={"mode": "multiplex"},
            ))

            sources: List[str] = []
            for branch in point.merges_branches:
                if branch not in exits_by_fragment:
                    logger.warning(f"Merge point '{point.name}' references unknown fragment '{branch}'")
                    continue
                sources.extend(e for e in exits_by_fragment[branch] if e not in sources)
            assembled.merge_nodes[name] = sources

    def _assert_unique_nodes(self, graph: WorkflowGraph) -> None:
        names: Set[str] = set()
        ids: Set[str] = set()
        for node in graph.nodes:
            if node.name in names:
                raise GraphAssemblyError(f"Duplicate node name after assembly: '{node.name}'")
            if node.id in ids:
                raise GraphAssemblyError(f"Duplicate node id after assembly: '{node.id}'")
            names.add(node.name)
            ids.add(node.id)
