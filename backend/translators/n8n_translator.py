"""
n8n Workflow Translator

Converts the canonical WorkflowGraph to n8n workflow JSON and back.
Connections are always emitted in the two-level form and never inline on
nodes.
"""

import logging
from typing import Dict, List, Any

from pydantic import ValidationError

from schemas.workflow_graph import WorkflowGraph, WorkflowNode
from services.connection_normalizer import normalize_connections, connections_to_dict
from services.fragment_parser import sanitize_node

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {"executionOrder": "v1"}


class N8nWorkflowTranslator:
    """
    Deterministic translator between WorkflowGraph and n8n workflow JSON.
    """

    def translate(self, graph: WorkflowGraph) -> Dict[str, Any]:
        """
        Convert a WorkflowGraph to n8n import format.

        Args:
            graph: Assembled and repaired graph

        Returns:
            Dict with name, nodes, connections and settings
        """
        nodes = [self._convert_node(node) for node in graph.nodes]

        return {
            "name": graph.name,
            "nodes": nodes,
            "connections": connections_to_dict(graph.connections),
            "settings": dict(graph.settings or DEFAULT_SETTINGS),
        }

    def _convert_node(self, node: WorkflowNode) -> Dict[str, Any]:
        data = node.model_dump(by_alias=True)
        if data.get("credentials") is None:
            data.pop("credentials", None)
        # n8n stores whole-number versions as ints
        if float(data["typeVersion"]).is_integer():
            data["typeVersion"] = int(data["typeVersion"])
        return data

    def from_workflow_json(self, data: Dict[str, Any]) -> WorkflowGraph:
        """
        Build a WorkflowGraph from externally supplied workflow JSON.

        Nodes that cannot be read are skipped and logged; connection shapes
        are normalised but dangling references are kept for the validator.
        """
        nodes: List[WorkflowNode] = []
        connections = data.get("connections")
        if not isinstance(connections, dict):
            if connections is not None:
                logger.warning(f"Ignoring connections that are not an object: {connections!r}")
            connections = {}
        connections = dict(connections)

        raw_nodes = data.get("nodes")
        if not isinstance(raw_nodes, list):
            if raw_nodes is not None:
                logger.warning(f"Ignoring nodes that are not a list: {raw_nodes!r}")
            raw_nodes = []

        for index, raw_node in enumerate(raw_nodes):
            if not isinstance(raw_node, dict):
                logger.warning(f"Ignoring non-object node at index {index}")
                continue
            cleaned, inline_main = sanitize_node(raw_node, index)
            if cleaned is None:
                logger.warning(f"Ignoring node at index {index}: no name or id")
                continue
            try:
                node = WorkflowNode.model_validate(cleaned)
            except ValidationError as e:
                logger.warning(f"Ignoring node '{cleaned.get('name')}': {e.errors()[0]['msg']}")
                continue
            if inline_main is not None:
                connections.setdefault(node.name, {"main": inline_main})
            nodes.append(node)

        normalization = normalize_connections(connections)
        for reason in normalization.rejected:
            logger.warning(f"Dropped connection entry: {reason}")

        name = data.get("name")
        settings = data.get("settings")
        return WorkflowGraph(
            name=name if isinstance(name, str) and name else "Untitled Workflow",
            nodes=nodes,
            connections=normalization.connections,
            settings=settings if isinstance(settings, dict) and settings else dict(DEFAULT_SETTINGS),
        )
