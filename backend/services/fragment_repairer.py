"""
Fragment Repairer

Makes a single generated fragment internally consistent before assembly:
ids are prefixed, names deduplicated, parameters completed, connections
normalised and resolved to node names, orphans reattached, and the entry
and exit nodes inferred.
"""

import logging
import re
from typing import Dict, List, Optional, Set

from schemas.fragment_schema import RawFragment, RepairedFragment, RepairAction
from schemas.workflow_graph import WorkflowGraph, WorkflowNode, NodeConnections
from services.connection_normalizer import normalize_connections
from services.node_catalog import complete_parameters, is_trigger_type
from services.reattachment_rules import (
    FRAGMENT_RULES, ReattachmentRule, RepairContext, propose_attachment
)

logger = logging.getLogger(__name__)


def fragment_prefix(name: str) -> str:
    """Lower-cased fragment name with non-alphanumerics replaced by `_`."""
    return re.sub(r"[^a-z0-9]", "_", name.lower())


class FragmentRepairer:
    """
    Repairs one fragment at a time. Stateless apart from the rule list, so a
    single instance can be shared.
    """

    def __init__(self, rules: Optional[List[ReattachmentRule]] = None):
        self.rules = rules if rules is not None else FRAGMENT_RULES

    def repair(self, fragment: RawFragment, name: str) -> RepairedFragment:
        prefix = fragment_prefix(name)
        if not fragment.nodes:
            return RepairedFragment(name=name, prefix=prefix)

        nodes, renamed = self._prepare_nodes(fragment.nodes, prefix)
        graph = WorkflowGraph(name=name, nodes=nodes)
        graph.connections = self._resolve_connections(fragment.connections, renamed, graph)

        repairs: List[RepairAction] = []
        if len(nodes) >= 2 and not any(True for _ in graph.iter_edges()):
            repairs.extend(self._link_linearly(graph))
            logger.info(f"Fragment '{name}': no connections, linked {len(nodes)} nodes in order")

        unresolved = self._reattach_orphans(graph, repairs)

        entry = self._infer_entry(graph, fragment.start_node, renamed)
        exits = self._infer_exits(graph, fragment.end_nodes, renamed)

        if unresolved:
            logger.warning(f"Fragment '{name}': could not reattach {', '.join(unresolved)}")

        return RepairedFragment(
            name=name,
            prefix=prefix,
            nodes=graph.nodes,
            connections=graph.connections,
            entry=entry,
            exits=exits,
            unresolved=unresolved,
            repairs=repairs,
        )

    # ---------- Node preparation ----------

    def _prepare_nodes(self, raw_nodes: List[WorkflowNode], prefix: str):
        """
        Copy nodes with prefixed ids, unique names and completed parameters.

        Returns the nodes and a map from every original id/name to the final
        name, used to rewrite references.
        """
        nodes: List[WorkflowNode] = []
        renamed: Dict[str, str] = {}
        seen_names: Set[str] = set()
        seen_ids: Set[str] = set()

        for raw in raw_nodes:
            name = raw.name
            counter = 2
            while name in seen_names:
                name = f"{raw.name} {counter}"
                counter += 1
            seen_names.add(name)

            # first occurrence wins for references
            renamed.setdefault(raw.name, name)
            renamed.setdefault(raw.id, name)

            base_id = raw.id if raw.id.startswith(f"{prefix}_") else f"{prefix}_{raw.id}"
            node_id = base_id
            counter = 2
            while node_id in seen_ids:
                node_id = f"{base_id}_{counter}"
                counter += 1
            seen_ids.add(node_id)

            nodes.append(raw.model_copy(update={
                "id": node_id,
                "name": name,
                "position": list(raw.position),
                "parameters": complete_parameters(raw.type, raw.parameters),
            }, deep=True))

        return nodes, renamed

    def _resolve_connections(self, raw_connections, renamed: Dict[str, str], graph: WorkflowGraph) -> Dict[str, NodeConnections]:
        normalization = normalize_connections(raw_connections)
        for reason in normalization.rejected:
            logger.debug(f"Fragment '{graph.name}': {reason}")

        # names take precedence over ids when both match
        by_name = {n.name: n.name for n in graph.nodes}

        def resolve(ref: str) -> str:
            if ref in by_name:
                return ref
            return renamed.get(ref, ref)

        resolved: Dict[str, NodeConnections] = {}
        for source, outputs in normalization.connections.items():
            source_name = resolve(source)
            target = resolved.setdefault(source_name, NodeConnections())
            for port, group in enumerate(outputs.main):
                port_group = target.group(port)
                for ref in group:
                    port_group.append(ref.model_copy(update={"node": resolve(ref.node)}))
        return resolved

    # ---------- Connectivity ----------

    def _link_linearly(self, graph: WorkflowGraph) -> List[RepairAction]:
        """Chain nodes in array order; a trigger starts a new chain instead of receiving an edge."""
        actions = []
        for current, following in zip(graph.nodes, graph.nodes[1:]):
            if is_trigger_type(following.type):
                continue
            graph.add_edge(current.name, following.name)
            actions.append(RepairAction(rule="linear_chain", source=current.name, target=following.name))
        return actions

    def _connected_names(self, graph: WorkflowGraph) -> List[str]:
        """Names touched by any edge, in edge-map order."""
        ordered: List[str] = []
        for source, _, ref in graph.iter_edges():
            for name in (source, ref.node):
                if name not in ordered:
                    ordered.append(name)
        return ordered

    def _reattach_orphans(self, graph: WorkflowGraph, repairs: List[RepairAction]) -> List[str]:
        connected = self._connected_names(graph)
        existing = graph.node_names()
        recent = [name for name in connected if name in existing]

        if len(graph.nodes) < 2:
            return []
        orphans = [
            n for n in graph.nodes
            if n.name not in connected and not is_trigger_type(n.type)
        ]
        orphans.sort(key=lambda n: n.x + n.y)

        unresolved: List[str] = []
        for orphan in orphans:
            context = RepairContext(graph=graph, anchored=set(recent), recent=recent)
            attachment = propose_attachment(orphan, context, self.rules)
            if attachment is None:
                unresolved.append(orphan.name)
                continue
            for source in attachment.sources:
                graph.add_edge(source, orphan.name, attachment.port)
                repairs.append(RepairAction(
                    rule=attachment.rule, source=source, target=orphan.name, port=attachment.port
                ))
                if source not in recent:
                    recent.append(source)
            recent.append(orphan.name)
            logger.debug(f"Reattached '{orphan.name}' via {attachment.rule} from {attachment.sources}")
        return unresolved

    # ---------- Entry / exit inference ----------

    def _infer_entry(self, graph: WorkflowGraph, declared: Optional[str], renamed: Dict[str, str]) -> Optional[str]:
        if declared:
            name = declared if graph.node_by_name(declared) else renamed.get(declared)
            if name and graph.node_by_name(name):
                return name

        candidates = [n for n in graph.nodes if not graph.has_incoming(n.name)]
        if not candidates:
            return graph.nodes[0].name if graph.nodes else None
        # min() returns the first minimum, so ties keep array order
        return min(candidates, key=lambda n: n.x).name

    def _infer_exits(self, graph: WorkflowGraph, declared: List[str], renamed: Dict[str, str]) -> List[str]:
        if declared:
            exits = []
            for ref in declared:
                name = ref if graph.node_by_name(ref) else renamed.get(ref)
                if name and graph.node_by_name(name) and name not in exits:
                    exits.append(name)
            if exits:
                return exits

        exits = [n.name for n in graph.nodes if not graph.has_outgoing(n.name)]
        if exits:
            return exits
        # every node has an outgoing edge; take the rightmost as the exit
        return [max(graph.nodes, key=lambda n: n.x).name] if graph.nodes else []
