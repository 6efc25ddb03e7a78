"""
Fragment Parser

Turns untrusted model output for one branch into a RawFragment. Anything
unusable degrades to an empty fragment with a warning; nothing here raises
past `parse_fragment`.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError

from schemas.fragment_schema import RawFragment
from schemas.workflow_graph import WorkflowNode, ValidationIssue, IssueKind, Severity

logger = logging.getLogger(__name__)

ALLOWED_NODE_PROPERTIES = {
    "id", "name", "type", "typeVersion", "position", "parameters",
    "credentials", "disabled", "continueOnFail", "retryOnFail",
    "maxTries", "waitBetweenTries", "alwaysOutputData", "executeOnce",
}
CODE_PROPERTIES = ("functionCode", "jsCode", "pythonCode", "expression")
DEFAULT_POSITION = [100, 100]

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


class FragmentParseError(Exception):
    """Raised when model output cannot be read as a fragment"""
    pass


def _decode(raw: Any) -> Dict[str, Any]:
    if isinstance(raw, RawFragment):
        return raw.model_dump(by_alias=True)
    if isinstance(raw, dict):
        return raw
    if raw is None:
        raise FragmentParseError("no output returned")
    if not isinstance(raw, str):
        raise FragmentParseError(f"unsupported output type {type(raw).__name__}")

    text = raw.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()
    elif not text.startswith("{"):
        # tolerate chatter around a single JSON object
        start, end = text.find("{"), text.rfind("}")
        if start != -1 and end > start:
            text = text[start:end + 1]

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise FragmentParseError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise FragmentParseError("fragment must be a JSON object")
    return data


def _coerce_position(value: Any) -> List[float]:
    if isinstance(value, dict) and "x" in value and "y" in value:
        value = [value["x"], value["y"]]
    if isinstance(value, (list, tuple)) and len(value) == 2:
        try:
            return [float(value[0]), float(value[1])]
        except (TypeError, ValueError):
            pass
    return list(DEFAULT_POSITION)


def sanitize_node(raw_node: Dict[str, Any], index: int) -> Tuple[Optional[Dict[str, Any]], Optional[Any]]:
    """
    Clean one raw node dict.

    Returns the cleaned node (None if unusable) and any inline connection
    data that was found on it.
    """
    node = dict(raw_node)
    inline_main = node.pop("main", None)

    name = node.get("name") if isinstance(node.get("name"), str) else None
    node_id = node.get("id") if isinstance(node.get("id"), (str, int)) else None
    if not name and node_id is None:
        return None, None
    node["name"] = name or str(node_id)
    node["id"] = str(node_id) if node_id is not None else re.sub(r"[^a-z0-9]+", "_", node["name"].lower()).strip("_") or f"node_{index}"

    parameters = node.get("parameters")
    if not isinstance(parameters, dict):
        parameters = {}
    for prop in CODE_PROPERTIES:
        if prop in node:
            value = node.pop(prop)
            existing = parameters.get(prop)
            if not existing or (isinstance(value, str) and len(value) > len(existing or "")):
                parameters[prop] = value
    node["parameters"] = parameters

    for key in list(node.keys()):
        if key not in ALLOWED_NODE_PROPERTIES:
            logger.debug(f"Removing unexpected root property '{key}' from node {node['name']}")
            node.pop(key)

    node["position"] = _coerce_position(node.get("position"))
    if not isinstance(node.get("type"), str):
        node["type"] = ""
    if not isinstance(node.get("typeVersion"), (int, float)) or isinstance(node.get("typeVersion"), bool):
        node["typeVersion"] = 1
    if node.get("credentials") is not None and not isinstance(node["credentials"], dict):
        node.pop("credentials")

    return node, inline_main


def parse_fragment(raw: Any, fragment_name: str = "fragment") -> Tuple[RawFragment, List[ValidationIssue]]:
    """
    Parse model output for one branch.

    Malformed output yields an empty RawFragment and a warning describing
    why; the caller decides whether to continue.
    """
    warnings: List[ValidationIssue] = []

    def warn(message: str) -> None:
        warnings.append(ValidationIssue(
            node_ref=fragment_name,
            kind=IssueKind.MALFORMED_FRAGMENT,
            severity=Severity.WARNING,
            message=message,
        ))

    try:
        data = _decode(raw)
    except FragmentParseError as e:
        logger.warning(f"Fragment '{fragment_name}' could not be parsed: {e}")
        warn(f"Fragment '{fragment_name}' discarded: {e}")
        return RawFragment(), warnings

    raw_nodes = data.get("nodes")
    if not isinstance(raw_nodes, list):
        warn(f"Fragment '{fragment_name}' has no 'nodes' list")
        return RawFragment(), warnings

    connections = data.get("connections")
    if not isinstance(connections, dict):
        if connections is not None:
            warn(f"Fragment '{fragment_name}' connections are not an object; ignoring them")
        connections = {}
    connections = dict(connections)

    nodes: List[WorkflowNode] = []
    for index, raw_node in enumerate(raw_nodes):
        if not isinstance(raw_node, dict):
            warn(f"Skipping non-object node at index {index}")
            continue
        cleaned, inline_main = sanitize_node(raw_node, index)
        if cleaned is None:
            warn(f"Skipping node at index {index}: no name or id")
            continue
        try:
            node = WorkflowNode.model_validate(cleaned)
        except ValidationError as e:
            warn(f"Skipping node '{cleaned.get('name')}': {e.errors()[0]['msg']}")
            continue
        if inline_main is not None:
            logger.warning(f"Node \"{node.name}\" has a \"main\" property - moving to connections object")
            connections.setdefault(node.name, {"main": inline_main})
        nodes.append(node)

    start_node = data.get("start_node") if isinstance(data.get("start_node"), str) else None
    end_nodes = [n for n in data.get("end_nodes") or [] if isinstance(n, str)] if isinstance(data.get("end_nodes"), list) else []

    return RawFragment(nodes=nodes, connections=connections, start_node=start_node, end_nodes=end_nodes), warnings
