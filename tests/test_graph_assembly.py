"""End-to-end assembly tests over the synchronous pipeline."""

import json

import pytest

from schemas.fragment_schema import MergePoint, RepairedFragment
from schemas.workflow_graph import IssueKind, NodeConnections, TargetReference, WorkflowNode
from services.connectivity_repairer import find_reachable
from services.graph_assembler import GraphAssembler, GraphAssemblyError, TRIGGER_NAME
from services.node_catalog import is_trigger_type
from services.workflow_synthesizer import WorkflowSynthesizer


FETCH_FRAGMENT = {
    "nodes": [
        {"id": "fetch", "name": "Fetch", "type": "n8n-nodes-base.httpRequest", "typeVersion": 4,
         "position": [100, 0], "parameters": {"url": "https://example.com/orders"}},
        {"id": "transform", "name": "Transform", "type": "n8n-nodes-base.set", "position": [300, 0]},
    ],
    "connections": {"Fetch": {"main": [[{"node": "Transform", "type": "main", "index": 0}]]}},
}

VALIDATE_FRAGMENT = {
    "nodes": [
        {"id": "validate", "name": "Validate", "type": "n8n-nodes-base.code", "position": [100, 0]},
        {"id": "notify", "name": "Notify", "type": "n8n-nodes-base.slack", "position": [300, 0]},
    ],
    "connections": {"Validate": {"main": [["Notify"]]}},
}


@pytest.fixture
def synthesizer():
    # the LLM is never called by the synchronous pipeline
    return WorkflowSynthesizer(llm_service=object())


def test_two_fragments_end_to_end(synthesizer):
    result = synthesizer.synthesize_from_fragments(
        [("Fetch Data", json.dumps(FETCH_FRAGMENT)), ("Validation", VALIDATE_FRAGMENT)],
        name="Orders",
    )
    graph = result.graph

    assert len(graph.nodes) == 5
    assert graph.nodes[0].name == TRIGGER_NAME
    assert graph.connections[TRIGGER_NAME].main == [
        [TargetReference(node="Fetch"), TargetReference(node="Validate")]
    ]
    assert result.report.issues == []
    assert result.report.is_valid
    assert result.success

    workflow = result.workflow
    assert workflow["name"] == "Orders"
    assert workflow["connections"]["Validate"] == {"main": [[{"node": "Notify", "type": "main", "index": 0}]]}
    assert all("main" not in node for node in workflow["nodes"])


def test_empty_fragment_is_skipped_with_warning(synthesizer):
    result = synthesizer.synthesize_from_fragments(
        [("Empty", '{"nodes": [], "connections": {}}'), ("Fetch Data", FETCH_FRAGMENT)]
    )
    assert len(result.graph.nodes) == 3
    assert [d.kind for d in result.diagnostics] == [IssueKind.EMPTY_FRAGMENT]
    assert result.success


def test_malformed_fragment_does_not_stop_synthesis(synthesizer):
    result = synthesizer.synthesize_from_fragments(
        [("Broken", "I could not build this branch"), ("Fetch Data", FETCH_FRAGMENT)]
    )
    kinds = [d.kind for d in result.diagnostics]
    assert IssueKind.MALFORMED_FRAGMENT in kinds
    assert IssueKind.EMPTY_FRAGMENT in kinds
    assert len(result.graph.nodes) == 3


def _edges_into_triggers(graph):
    return [
        (source, ref.node) for source, _, ref in graph.iter_edges()
        if graph.node_by_name(ref.node) is not None and is_trigger_type(graph.node_by_name(ref.node).type)
    ]


def test_no_node_is_lost_and_names_stay_unique(synthesizer):
    lonely = {
        "nodes": [
            {"name": "Fetch", "type": "n8n-nodes-base.httpRequest", "position": [100, 0]},
            {"name": "Fetch", "type": "n8n-nodes-base.set", "position": [300, 0]},
            {"name": "Orphan", "type": "n8n-nodes-base.set", "position": [0, 500]},
        ],
        "connections": {"Fetch": {"main": [["Nowhere"]]}},
    }
    fragments = [
        ("Fetch Data", FETCH_FRAGMENT), ("Second", FETCH_FRAGMENT), ("Third", lonely),
        # same id prefix as "Fetch Data"
        ("fetch-data", VALIDATE_FRAGMENT),
    ]
    result = synthesizer.synthesize_from_fragments(fragments)

    names = [n.name for n in result.graph.nodes]
    ids = [n.id for n in result.graph.nodes]
    assert len(names) == len(set(names))
    assert len(ids) == len(set(ids))
    assert len(names) >= 2 + 2 + 3 + 2
    assert "Orphan" in names
    assert _edges_into_triggers(result.graph) == []
    assert result.report.issues_of_kind(IssueKind.DUPLICATE_NODE) == []


def test_fragments_sharing_a_prefix_get_distinct_ids(synthesizer):
    result = synthesizer.synthesize_from_fragments([("Branch A", FETCH_FRAGMENT), ("branch-a", VALIDATE_FRAGMENT)])
    assert [n.id for n in result.graph.nodes] == [
        "main_trigger", "branch_a_fetch", "branch_a_transform", "branch_a_1_validate", "branch_a_1_notify",
    ]
    assert result.report.is_valid


def test_repair_never_feeds_a_trigger(synthesizer):
    fragment = {
        "nodes": [
            {"name": "Fetch", "type": "n8n-nodes-base.httpRequest", "position": [100, 0]},
            {"name": "On Failure", "type": "n8n-nodes-base.errorTrigger", "position": [300, 0]},
            {"name": "Log", "type": "n8n-nodes-base.set", "position": [500, 0]},
        ],
        "connections": {},
    }
    result = synthesizer.synthesize_from_fragments([("Errors", fragment), ("Fetch Data", FETCH_FRAGMENT)])

    assert _edges_into_triggers(result.graph) == []
    assert result.graph.successors("On Failure") == ["Log"]
    assert result.report.issues == []
    assert result.report.is_valid


def test_reachability_is_reported(synthesizer):
    fragment = {
        "nodes": [
            {"name": "Fetch", "type": "n8n-nodes-base.httpRequest", "position": [100, 0]},
            {"name": "Transform", "type": "n8n-nodes-base.set", "position": [300, 0]},
            {"name": "Stray", "type": "n8n-nodes-base.set", "position": [-500, 0]},
        ],
        "connections": {"Fetch": {"main": [["Transform"]]}},
    }
    result = synthesizer.synthesize_from_fragments([("Data", fragment), ("Fetch Data", FETCH_FRAGMENT)])
    disconnected = {i.node_ref for i in result.report.issues_of_kind(IssueKind.DISCONNECTED_NODE)}
    reachable = find_reachable(result.graph)

    for node in result.graph.nodes:
        assert node.name in reachable or node.name in disconnected
    # the leftmost node without inbound edges became the fragment entry
    assert "Stray" in result.graph.successors(TRIGGER_NAME)


def test_declared_merge_point_is_wired_from_fragment_exits(synthesizer):
    result = synthesizer.synthesize_from_fragments(
        [("Fetch Data", FETCH_FRAGMENT), ("Validation", VALIDATE_FRAGMENT)],
        merge_points=[MergePoint(name="Combine Results", merges_branches=["Fetch Data", "Validation"])],
    )
    graph = result.graph

    assert graph.node_by_name("Combine Results").type == "n8n-nodes-base.merge"
    assert graph.successors("Transform") == ["Combine Results"]
    assert graph.successors("Notify") == ["Combine Results"]
    assert {r.rule for r in result.repairs} == {"declared_merge"}
    assert result.report.is_valid


class TestGraphAssembler:

    def _fragment(self, name, node_names):
        nodes = [
            WorkflowNode(id=f"{name}_{i}", name=n, type="n8n-nodes-base.set", position=[i * 200, 0])
            for i, n in enumerate(node_names)
        ]
        connections = {
            a: NodeConnections(main=[[TargetReference(node=b)]])
            for a, b in zip(node_names, node_names[1:])
        }
        return RepairedFragment(
            name=name, prefix=name.lower(), nodes=nodes, connections=connections,
            entry=node_names[0], exits=[node_names[-1]],
        )

    def test_colliding_names_are_renamed_per_fragment(self):
        assembled = GraphAssembler().assemble([
            self._fragment("First", ["Fetch", "Transform"]),
            self._fragment("Second", ["Fetch", "Transform"]),
        ])
        graph = assembled.graph

        assert graph.node_by_name("Fetch (Second)") is not None
        assert graph.successors("Fetch (Second)") == ["Transform (Second)"]
        assert graph.successors("Fetch") == ["Transform"]
        assert assembled.membership["Fetch (Second)"] == "Second"

    def test_fragments_with_clashing_ids_are_suffixed(self):
        assembled = GraphAssembler().assemble([
            self._fragment("A", ["One", "Two"]),
            self._fragment("A", ["Three", "Four"]),
        ])
        ids = [n.id for n in assembled.graph.nodes]
        assert len(ids) == len(set(ids))
        assert ids[-2:] == ["A_0_2", "A_1_2"]

    def test_layout_never_overlaps(self):
        assembled = GraphAssembler().assemble(
            [self._fragment("A", ["One", "Two", "Three"]), self._fragment("B", ["Four", "Five"])],
            merge_points=[MergePoint(name="Join", merges_branches=["A", "B"])],
        )
        positions = [tuple(n.position) for n in assembled.graph.nodes]
        assert len(positions) == len(set(positions))

    def test_trigger_fans_out_to_every_entry_in_one_group(self):
        assembled = GraphAssembler().assemble(
            [self._fragment("A", ["One", "Two"]), self._fragment("B", ["Three"])]
        )
        trigger = assembled.graph.connections[assembled.trigger_name]
        assert len(trigger.main) == 1
        assert [ref.node for ref in trigger.main[0]] == ["One", "Three"]

    def test_merge_nodes_start_unwired(self):
        assembled = GraphAssembler().assemble(
            [self._fragment("A", ["One", "Two"]), self._fragment("B", ["Three"])],
            merge_points=[MergePoint(name="Join", merges_branches=["A", "B", "Missing"])],
        )
        assert assembled.merge_nodes == {"Join": ["Two", "Three"]}
        assert not assembled.graph.has_incoming("Join")

    def test_input_fragments_are_not_mutated(self):
        fragment = self._fragment("A", ["One", "Two"])
        GraphAssembler().assemble([fragment])
        assert fragment.nodes[0].position == [0, 0]

    def test_duplicate_names_inside_one_fragment_are_fatal(self):
        fragment = self._fragment("A", ["One", "Two"])
        fragment.nodes.append(fragment.nodes[0].model_copy())
        with pytest.raises(GraphAssemblyError):
            GraphAssembler().assemble([fragment])
