"""Tests for connection map normalisation."""

from schemas.workflow_graph import TargetReference
from services.connection_normalizer import (
    connections_to_dict,
    is_canonical_target,
    normalize_connections,
    normalize_target,
)


class TestNormalizeTarget:

    def test_bare_string_gets_defaults(self):
        assert normalize_target("Send Email") == TargetReference(node="Send Email", type="main", index=0)

    def test_partial_object_keeps_given_index(self):
        ref = normalize_target({"node": "Merge", "index": 1})
        assert ref == TargetReference(node="Merge", type="main", index=1)

    def test_object_without_node_is_unusable(self):
        assert normalize_target({"type": "main", "index": 0}) is None
        assert normalize_target("") is None
        assert normalize_target(42) is None

    def test_canonical_detection(self):
        assert is_canonical_target({"node": "A", "type": "main", "index": 0})
        assert not is_canonical_target({"node": "A"})
        assert not is_canonical_target("A")


class TestNormalizeConnections:

    def test_canonical_map_is_unchanged(self):
        raw = {
            "Check Status": {
                "main": [
                    [{"node": "Update Record", "type": "main", "index": 0}],
                    [{"node": "Log Failure", "type": "main", "index": 0}],
                ]
            },
            "Update Record": {
                "main": [[
                    {"node": "Notify", "type": "main", "index": 0},
                    {"node": "Archive", "type": "main", "index": 1},
                ]]
            },
        }
        first = connections_to_dict(normalize_connections(raw).connections)
        assert first == raw
        # normalising the output again is a no-op
        assert connections_to_dict(normalize_connections(first).connections) == raw

    def test_string_targets_in_groups(self):
        result = normalize_connections({"A": {"main": [["B", "C"]]}})
        assert result.connections["A"].main == [[TargetReference(node="B"), TargetReference(node="C")]]

    def test_single_array_format_becomes_port_zero(self):
        result = normalize_connections({"A": {"main": ["B", {"node": "C"}]}})
        assert len(result.connections["A"].main) == 1
        assert [ref.node for ref in result.connections["A"].main[0]] == ["B", "C"]

    def test_error_port_group_is_preserved(self):
        result = normalize_connections({"A": {"main": [["B"], ["Handle Error"]]}})
        assert result.connections["A"].main[1] == [TargetReference(node="Handle Error")]

    def test_dangling_reference_is_kept(self):
        result = normalize_connections({"A": {"main": [["Does Not Exist"]]}})
        assert result.connections["A"].main[0][0].node == "Does Not Exist"
        assert result.rejected == []

    def test_source_without_main_is_rejected(self):
        result = normalize_connections({"A": {"outputs": []}, "B": {"main": [["C"]]}})
        assert "A" not in result.connections
        assert "B" in result.connections
        assert len(result.rejected) == 1

    def test_unusable_target_is_reported(self):
        result = normalize_connections({"A": {"main": [[{"index": 0}, "B"]]}})
        assert result.connections["A"].main[0] == [TargetReference(node="B")]
        assert len(result.rejected) == 1

    def test_non_dict_input(self):
        result = normalize_connections(["A", "B"])
        assert result.connections == {}
        assert result.rejected
