"""Tests for single-fragment repair: chaining, reattachment, entry and exit inference."""

from schemas.fragment_schema import RawFragment
from schemas.workflow_graph import TargetReference, WorkflowNode, ERROR_PORT
from services.fragment_repairer import FragmentRepairer, fragment_prefix


def _node(name, x, y=0, node_type="n8n-nodes-base.set", node_id=None):
    return WorkflowNode(id=node_id or name.lower().replace(" ", "_"), name=name, type=node_type, position=[x, y])


def _edge(target, index=0):
    return {"node": target, "type": "main", "index": index}


repairer = FragmentRepairer()


class TestLinearChain:

    def test_three_nodes_without_edges_form_a_chain(self):
        fragment = RawFragment(nodes=[_node("Step One", 100), _node("Step Two", 300), _node("Step Three", 500)])
        repaired = repairer.repair(fragment, "Chain")

        assert repaired.connections["Step One"].main == [[TargetReference(node="Step Two")]]
        assert repaired.connections["Step Two"].main == [[TargetReference(node="Step Three")]]
        assert "Step Three" not in repaired.connections
        assert repaired.entry == "Step One"
        assert repaired.exits == ["Step Three"]
        assert [r.rule for r in repaired.repairs] == ["linear_chain", "linear_chain"]

    def test_trigger_starts_a_new_chain(self):
        fragment = RawFragment(nodes=[
            _node("Fetch", 100),
            _node("On Failure", 300, node_type="n8n-nodes-base.errorTrigger"),
            _node("Log", 500),
        ])
        repaired = repairer.repair(fragment, "Mixed")

        assert "Fetch" not in repaired.connections
        assert repaired.connections["On Failure"].main == [[TargetReference(node="Log")]]
        assert [(r.source, r.target) for r in repaired.repairs] == [("On Failure", "Log")]
        assert repaired.entry == "Fetch"

    def test_single_node_fragment(self):
        repaired = repairer.repair(RawFragment(nodes=[_node("Only", 100)]), "Solo")
        assert repaired.connections == {}
        assert repaired.entry == "Only"
        assert repaired.exits == ["Only"]
        assert repaired.unresolved == []

    def test_empty_fragment(self):
        repaired = repairer.repair(RawFragment(), "Nothing")
        assert repaired.is_empty
        assert repaired.entry is None


class TestEntryAndExits:

    def test_entry_is_lowest_x_without_incoming(self):
        fragment = RawFragment(
            nodes=[_node("A", 100), _node("B", 50), _node("C", 300)],
            connections={"A": {"main": [[_edge("C")]]}, "B": {"main": [[_edge("C")]]}},
        )
        assert repairer.repair(fragment, "Entry").entry == "B"

    def test_entry_tie_keeps_array_order(self):
        fragment = RawFragment(
            nodes=[_node("First", 100), _node("Second", 100), _node("Join", 300)],
            connections={"First": {"main": [[_edge("Join")]]}, "Second": {"main": [[_edge("Join")]]}},
        )
        assert repairer.repair(fragment, "Tie").entry == "First"

    def test_declared_start_and_end_nodes_win(self):
        fragment = RawFragment(
            nodes=[_node("A", 100), _node("B", 50), _node("C", 300)],
            connections={"A": {"main": [[_edge("C")]]}, "B": {"main": [[_edge("C")]]}},
            start_node="A",
            end_nodes=["C", "Unknown"],
        )
        repaired = repairer.repair(fragment, "Declared")
        assert repaired.entry == "A"
        assert repaired.exits == ["C"]

    def test_cycle_uses_rightmost_node_as_exit(self):
        fragment = RawFragment(
            nodes=[_node("Poll", 100), _node("Check", 300)],
            connections={"Poll": {"main": [[_edge("Check")]]}, "Check": {"main": [[_edge("Poll")]]}},
        )
        assert repairer.repair(fragment, "Loop").exits == ["Check"]


class TestNamingAndReferences:

    def test_ids_are_prefixed(self):
        fragment = RawFragment(nodes=[_node("Fetch", 100, node_id="fetch")])
        repaired = repairer.repair(fragment, "Data Sync")
        assert fragment_prefix("Data Sync") == "data_sync"
        assert repaired.nodes[0].id == "data_sync_fetch"

    def test_duplicate_names_are_suffixed(self):
        fragment = RawFragment(nodes=[
            _node("Set", 100, node_id="s1"), _node("Set", 300, node_id="s2"), _node("Set", 500, node_id="s3"),
        ])
        repaired = repairer.repair(fragment, "Dupes")
        assert [n.name for n in repaired.nodes] == ["Set", "Set 2", "Set 3"]

    def test_duplicate_ids_are_suffixed(self):
        fragment = RawFragment(nodes=[
            _node("Fetch", 100, node_id="1"), _node("Store", 300, node_id="1"), _node("Notify", 500, node_id="1"),
        ])
        repaired = repairer.repair(fragment, "A")
        assert [n.id for n in repaired.nodes] == ["a_1", "a_1_2", "a_1_3"]

    def test_id_references_resolve_to_names(self):
        fragment = RawFragment(
            nodes=[_node("Fetch", 100, node_id="n1"), _node("Store", 300, node_id="n2")],
            connections={"n1": {"main": [[_edge("n2")]]}},
        )
        repaired = repairer.repair(fragment, "Ids")
        assert repaired.connections["Fetch"].main[0][0].node == "Store"

    def test_parameters_are_completed(self):
        fragment = RawFragment(nodes=[_node("Call API", 100, node_type="n8n-nodes-base.httpRequest")])
        repaired = repairer.repair(fragment, "Params")
        assert repaired.nodes[0].parameters["method"] == "GET"

    def test_input_fragment_is_not_mutated(self):
        fragment = RawFragment(nodes=[_node("A", 100, node_id="a"), _node("B", 300, node_id="b")])
        repairer.repair(fragment, "Pure")
        assert [n.id for n in fragment.nodes] == ["a", "b"]
        assert fragment.connections == {}


class TestOrphanReattachment:

    def test_error_node_hangs_off_second_to_last_error_port(self):
        fragment = RawFragment(
            nodes=[_node("Fetch", 100), _node("Transform", 300), _node("Handle Error", 500, 200)],
            connections={"Fetch": {"main": [[_edge("Transform")]]}},
        )
        repaired = repairer.repair(fragment, "Errors")
        assert repaired.connections["Transform"].main[ERROR_PORT] == [TargetReference(node="Handle Error")]
        assert repaired.connections["Transform"].main[0] == []
        assert repaired.repairs[-1].rule == "error_name"
        assert repaired.repairs[-1].port == ERROR_PORT

    def test_completion_node_follows_most_recent_node(self):
        # sits left of everything, so only the name rule can place it
        fragment = RawFragment(
            nodes=[_node("Fetch", 100), _node("Transform", 300), _node("Send Report", 50, 400)],
            connections={"Fetch": {"main": [[_edge("Transform")]]}},
        )
        repaired = repairer.repair(fragment, "Completion")
        assert repaired.connections["Transform"].main[0] == [TargetReference(node="Send Report")]
        assert repaired.unresolved == []

    def test_plain_orphan_attaches_to_nearest_left_node(self):
        fragment = RawFragment(
            nodes=[_node("Fetch", 100), _node("Transform", 300), _node("Archive", 150, 50)],
            connections={"Fetch": {"main": [[_edge("Transform")]]}},
        )
        repaired = repairer.repair(fragment, "Nearest")
        assert [ref.node for ref in repaired.connections["Fetch"].main[0]] == ["Transform", "Archive"]
        assert repaired.repairs[-1].rule == "nearest_left"

    def test_orphan_with_nothing_to_its_left_is_reported(self):
        fragment = RawFragment(
            nodes=[_node("Fetch", 100), _node("Transform", 300), _node("Archive", 0)],
            connections={"Fetch": {"main": [[_edge("Transform")]]}},
        )
        repaired = repairer.repair(fragment, "Stuck")
        assert repaired.unresolved == ["Archive"]
        # kept, never dropped
        assert "Archive" in [n.name for n in repaired.nodes]

    def test_trigger_nodes_are_not_reattached(self):
        fragment = RawFragment(
            nodes=[
                _node("Fetch", 100), _node("Transform", 300),
                _node("On Error", 500, node_type="n8n-nodes-base.errorTrigger"),
            ],
            connections={"Fetch": {"main": [[_edge("Transform")]]}},
        )
        repaired = repairer.repair(fragment, "Triggers")
        assert repaired.unresolved == []
        assert not any(ref.node == "On Error" for outputs in repaired.connections.values() for group in outputs.main for ref in group)
