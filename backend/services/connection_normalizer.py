"""
Connection Normalizer

Collapses the connection shapes a model produces into the canonical
two-level form: source -> {"main": [[TargetReference, ...] per port]}.

Accepted target shapes:
- bare string:              "Send Email"
- partial object:           {"node": "Send Email"}  (type/index missing)
- canonical object:         {"node": "Send Email", "type": "main", "index": 0}

Accepted group shapes under "main":
- list of groups:           [[t, t], [t]]           (canonical)
- flat list of targets:     [t, t]                  (wrapped as port 0)
- a single target:          t                       (wrapped as port 0)

Pure functions only; references to unknown node names are kept so the
validator can report them.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

from schemas.workflow_graph import MAIN_INPUT, NodeConnections, TargetReference

RawTarget = Union[str, Dict[str, Any], TargetReference]


@dataclass
class ConnectionNormalization:
    connections: Dict[str, NodeConnections] = field(default_factory=dict)
    rejected: List[str] = field(default_factory=list)


def is_canonical_target(raw: Any) -> bool:
    if isinstance(raw, TargetReference):
        return True
    return (
        isinstance(raw, dict)
        and isinstance(raw.get("node"), str)
        and isinstance(raw.get("type"), str)
        and isinstance(raw.get("index"), int)
    )


def normalize_target(raw: RawTarget) -> Optional[TargetReference]:
    """Map one raw target onto a TargetReference, or None if it names no node."""
    if isinstance(raw, TargetReference):
        return raw
    if is_canonical_target(raw):
        return TargetReference(node=raw["node"], type=raw["type"], index=raw["index"]) if raw["node"] else None
    if isinstance(raw, str):
        return TargetReference(node=raw) if raw else None
    if isinstance(raw, dict):
        node = raw.get("node")
        if not isinstance(node, str) or not node:
            return None
        input_type = raw.get("type")
        index = raw.get("index")
        return TargetReference(
            node=node,
            type=input_type if isinstance(input_type, str) and input_type else MAIN_INPUT,
            index=index if isinstance(index, int) and not isinstance(index, bool) else 0,
        )
    return None


def _is_target_like(raw: Any) -> bool:
    return isinstance(raw, (str, TargetReference)) or (isinstance(raw, dict) and "node" in raw)


def _split_groups(main: Any) -> List[Any]:
    """Return the per-port groups of a raw "main" value."""
    if main is None:
        return []
    if not isinstance(main, list):
        return [[main]]
    if main and all(_is_target_like(item) for item in main):
        # single-array format: main: [t, t] means port 0 targets
        return [main]
    return [group if isinstance(group, list) else ([] if group is None else [group]) for group in main]


def normalize_node_connections(raw: Any, rejected: Optional[List[str]] = None, source: str = "") -> NodeConnections:
    if isinstance(raw, NodeConnections):
        return NodeConnections(main=[list(group) for group in raw.main])

    main = raw.get("main") if isinstance(raw, dict) else raw
    groups: List[List[TargetReference]] = []
    for group in _split_groups(main):
        normalized_group: List[TargetReference] = []
        for item in group:
            ref = normalize_target(item)
            if ref is None:
                if rejected is not None:
                    rejected.append(f"{source}: unusable connection target {item!r}")
                continue
            normalized_group.append(ref)
        groups.append(normalized_group)
    return NodeConnections(main=groups)


def normalize_connections(raw: Any) -> ConnectionNormalization:
    """
    Normalize a whole connection map.

    Sources whose value carries nothing usable are dropped and listed in
    `rejected`; everything else keeps its order.
    """
    result = ConnectionNormalization()
    if not isinstance(raw, dict):
        if raw:
            result.rejected.append(f"connections must be an object, got {type(raw).__name__}")
        return result

    for source, targets in raw.items():
        if not isinstance(source, str) or not source:
            result.rejected.append(f"invalid connection source {source!r}")
            continue
        if targets is None or (isinstance(targets, dict) and "main" not in targets):
            result.rejected.append(f"{source}: no 'main' outputs")
            continue
        result.connections[source] = normalize_node_connections(targets, result.rejected, source)
    return result


def connections_to_dict(connections: Dict[str, NodeConnections]) -> Dict[str, Any]:
    """Wire form of a canonical connection map."""
    return {source: outputs.model_dump() for source, outputs in connections.items()}
