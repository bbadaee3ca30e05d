from __future__ import annotations

import pytest

from src.core.errors import ConfigurationError
from src.graph import (
    NULL_CHANGE,
    ChangeGraph,
    EdgeKind,
    PartStatus,
    Production,
    ProductionContext,
)
from src.registry import Orientation, PartRegistry
from src.state import IDLE, State
from src.taxonomy import Change, ChangeCatalog


@pytest.fixture
def catalog():
    return ChangeCatalog(
        Change(name=name, masculine=("Finger",), feminine=("String",))
        for name in ("Press", "Pluck", "HammerOn", "PullOff", "Release")
    )


@pytest.fixture
def parts():
    registry = PartRegistry()
    finger = registry.create_part("Finger", Orientation.LEFT, 1, ranges=(2, 5))
    string = registry.create_part("String", 1, ranges=(6,))
    return registry, finger, string


def test_successors_split_by_edge_kind(catalog):
    graph = ChangeGraph.from_config(
        catalog,
        [
            {"from": "Null", "to": ["Press", "Pluck"]},
            {"from": "Press", "to": "HammerOn"},
            {"from": "HammerOn", "to": "PullOff"},
            {"from": "PullOff", "to": "HammerOn", "kind": "conditional", "requires": "HammerOn"},
            {"from": ["HammerOn", "PullOff"], "to": "Pluck", "kind": "FALLBACK"},
        ],
    )
    assert [e.target for e in graph.successors(NULL_CHANGE)] == ["Press", "Pluck"]
    assert graph.successors("PullOff", "Press") == []
    assert graph.successor("PullOff", "HammerOn", "HammerOn").kind is EdgeKind.CONDITIONAL
    assert graph.successor("PullOff", "Press", "HammerOn") is None
    assert [e.target for e in graph.fallbacks("HammerOn")] == ["Pluck"]
    assert graph.successor("HammerOn", NULL_CHANGE, "Pluck") is None
    assert graph.reachable() == {"Press", "Pluck", "HammerOn", "PullOff"}
    assert NULL_CHANGE in graph.vertices()


def test_edges_carry_productions(catalog):
    graph = ChangeGraph.from_config(
        catalog,
        [{"from": "Null", "to": "Press", "production": {"rule": "requires_state", "part": "feminine", "states": ["Idle"]}}],
    )
    (edge,) = graph.edges_from(NULL_CHANGE)
    assert edge.production.names == ("requires_state",)


@pytest.mark.parametrize(
    "row",
    [
        {"from": "Null", "to": "Strum"},
        {"from": "Press", "to": "Null"},
        {"from": "Press", "to": "Pluck", "kind": "conditional"},
        {"from": "Press", "to": "Pluck", "requires": "Press"},
        {"from": "Null", "to": "Pluck", "kind": "fallback"},
        {"from": "Press", "to": "Pluck", "kind": "sideways"},
        {"from": "Press"},
        {"from": "Press", "to": "Pluck", "production": "telepathy"},
        {"from": "Press", "to": "Pluck", "production": 42},
    ],
)
def test_malformed_edges_are_rejected(catalog, row):
    with pytest.raises(ConfigurationError):
        ChangeGraph.from_config(catalog, [row])


def test_duplicate_edge_is_rejected(catalog):
    with pytest.raises(ConfigurationError):
        ChangeGraph.from_config(catalog, [{"from": "Null", "to": "Press"}, {"from": "Null", "to": "Press"}])


def test_frozen_graph_is_read_only(catalog):
    graph = ChangeGraph(catalog).freeze()
    assert graph.frozen
    with pytest.raises(ConfigurationError):
        graph.add_edge(NULL_CHANGE, "Press")


class TestProductions:
    def _context(self, statuses):
        return ProductionContext(status_of=lambda part: statuses.get(part.uid, PartStatus(IDLE)))

    def test_default_production_binds_parts(self, parts):
        _registry, finger, string = parts
        context = self._context({}).for_edge("Press", EdgeKind.NEXT, NULL_CHANGE)
        interaction = Production()(context, finger, string)
        assert interaction is not None
        assert interaction.parts() == (finger, string)
        assert interaction.describe() == "Press(Finger(LEFT, 1) -> String(1))"

    def test_state_rules(self, parts):
        _registry, finger, string = parts
        production = Production.from_config(
            [
                {"rule": "requires_state", "part": "feminine", "states": ["Pressed"]},
                {"rule": "forbids_state", "part": "masculine", "states": "Holding"},
            ]
        )
        pressed = {string.uid: PartStatus(State("Pressed"), "Press")}
        assert production(self._context(pressed), finger, string) is not None
        assert production(self._context({}), finger, string) is None
        holding = dict(pressed)
        holding[finger.uid] = PartStatus(State("Holding"), "Press")
        assert production(self._context(holding), finger, string) is None

    def test_value_rules(self, parts):
        registry, finger, string = parts
        right = registry.create_part("Finger", Orientation.RIGHT, 1)
        left_only = Production.from_config(
            {"rule": "requires_value", "part": "masculine", "position": 0, "values": ["LEFT"]}
        )
        assert left_only(self._context({}), finger, string) is not None
        assert left_only(self._context({}), right, string) is None
        same = Production.from_config({"rule": "same_order", "masculine": 1, "feminine": 0})
        assert same(self._context({}), finger, string) is not None
        other = registry.create_part("String", 2)
        assert same(self._context({}), finger, other) is None

    def test_distinct_parts(self, parts):
        _registry, finger, _string = parts
        production = Production.from_config("distinct_parts")
        assert production(self._context({}), finger, finger) is None

    def test_bad_side_is_configuration_error(self, parts):
        _registry, finger, string = parts
        production = Production.from_config({"rule": "requires_state", "part": "neither", "states": []})
        with pytest.raises(ConfigurationError):
            production(self._context({}), finger, string)
