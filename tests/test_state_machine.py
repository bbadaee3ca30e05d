from __future__ import annotations

import unittest

from src.core.errors import ConfigurationError
from src.graph import ChangeGraph, EdgeKind
from src.registry import PartKind, PartKindTable
from src.state import IDLE, State, StateMachine, machine_for, reachable_states, validate_totality
from src.taxonomy import Change, ChangeCatalog


def _string_machine(**overrides) -> StateMachine:
    row = {
        "initial": "Idle",
        "transitions": {
            "Idle": {"Press": "Pressed", "Pluck": "Sounding", "Release": "Idle"},
            "Pressed": {"Pluck": "PressedSounding", "Release": "Idle", "HammerOn": "HammeredOn"},
            "PressedSounding": {"Release": "Sounding", "Pluck": "PressedSounding"},
            "Sounding": {"Press": "PressedSounding", "Pluck": "Sounding", "Release": "Idle"},
        },
        "settle": {"HammeredOn": "PressedSounding"},
    }
    row.update(overrides)
    return StateMachine.from_config("String", row)


def _graph(edges) -> ChangeGraph:
    catalog = ChangeCatalog(
        Change(name=name, masculine=("Finger",), feminine=("String",))
        for name in ("Press", "Pluck", "HammerOn", "Release")
    )
    graph = ChangeGraph(catalog)
    for source, target, kind, requires in edges:
        graph.add_edge(source, target, kind, requires=requires)
    return graph.freeze()


def _kinds() -> PartKindTable:
    return PartKindTable([PartKind("Finger"), PartKind("String")])


class StateMachineTests(unittest.TestCase):
    def test_apply_follows_transition_table(self) -> None:
        machine = _string_machine()
        self.assertEqual(machine.apply(IDLE, "Press"), State("Pressed"))
        self.assertEqual(machine.apply(State("Pressed"), "Pluck"), State("PressedSounding"))

    def test_undefined_pair_is_a_configuration_error(self) -> None:
        machine = _string_machine()
        self.assertFalse(machine.defines(State("PressedSounding"), "Press"))
        with self.assertRaises(ConfigurationError):
            machine.apply(State("PressedSounding"), "Press")

    def test_settle_folds_instantaneous_states(self) -> None:
        machine = _string_machine()
        hammered = machine.apply(State("Pressed"), "HammerOn")
        self.assertEqual(hammered, State("HammeredOn"))
        self.assertTrue(machine.is_instantaneous(hammered))
        self.assertEqual(machine.settle(hammered), State("PressedSounding"))
        self.assertEqual(machine.settle(State("Pressed")), State("Pressed"))

    def test_settle_cycle_is_rejected(self) -> None:
        with self.assertRaises(ConfigurationError):
            _string_machine(settle={"A": "B", "B": "A"})

    def test_malformed_transition_row(self) -> None:
        with self.assertRaises(ConfigurationError):
            StateMachine.from_config("String", {"transitions": {"Idle": "Pressed"}})

    def test_stateless_machine_accepts_everything(self) -> None:
        machine = StateMachine.for_stateless("Hand")
        self.assertTrue(machine.defines(IDLE, "Anything"))
        self.assertIs(machine.apply(IDLE, "Anything"), IDLE)

    def test_states_lists_every_named_state(self) -> None:
        self.assertEqual(
            _string_machine().states,
            {"Idle", "Pressed", "PressedSounding", "Sounding", "HammeredOn"},
        )

    def test_machine_for_walks_base_kinds(self) -> None:
        kinds = PartKindTable([PartKind("String", abstract=True), PartKind("NylonString", base="String")])
        machines = {"String": _string_machine()}
        self.assertIs(machine_for(machines, kinds, "NylonString"), machines["String"])
        self.assertTrue(machine_for(machines, kinds, "Finger").stateless)

    def test_state_round_trip_with_data(self) -> None:
        state = State("Pressed", (("fret", 3),))
        self.assertEqual(State.from_dict(state.to_dict()), state)

    def test_reachable_states(self) -> None:
        names = [s.name for s in reachable_states(_string_machine(), ["Press", "HammerOn"])]
        self.assertEqual(names, ["Idle", "Pressed", "PressedSounding"])


class TotalityTests(unittest.TestCase):
    def test_complete_table_passes(self) -> None:
        graph = _graph(
            [
                ("Null", "Press", EdgeKind.NEXT, None),
                ("Null", "Pluck", EdgeKind.NEXT, None),
                ("Press", "Pluck", EdgeKind.NEXT, None),
                ("Press", "Release", EdgeKind.NEXT, None),
                ("Pluck", "Release", EdgeKind.NEXT, None),
                ("Release", "Press", EdgeKind.NEXT, None),
            ]
        )
        checked = validate_totality(graph, {"String": _string_machine()}, _kinds())
        self.assertGreater(checked, 0)

    def test_missing_transition_is_reported(self) -> None:
        graph = _graph(
            [
                ("Null", "Press", EdgeKind.NEXT, None),
                ("Press", "Pluck", EdgeKind.NEXT, None),
                ("Pluck", "Press", EdgeKind.NEXT, None),
            ]
        )
        with self.assertRaises(ConfigurationError) as ctx:
            validate_totality(graph, {"String": _string_machine()}, _kinds())
        self.assertIn("PressedSounding", str(ctx.exception))

    def test_fallback_targets_are_checked_from_every_state(self) -> None:
        machine = _string_machine(
            transitions={
                "Idle": {"Press": "Pressed"},
                "Pressed": {"HammerOn": "HammeredOn", "Release": "Idle"},
                "PressedSounding": {"Release": "Idle"},
            }
        )
        graph = _graph(
            [
                ("Null", "Press", EdgeKind.NEXT, None),
                ("Press", "HammerOn", EdgeKind.NEXT, None),
                ("HammerOn", "Release", EdgeKind.NEXT, None),
                ("Release", "Press", EdgeKind.NEXT, None),
                ("HammerOn", "Pluck", EdgeKind.FALLBACK, None),
            ]
        )
        with self.assertRaises(ConfigurationError) as ctx:
            validate_totality(graph, {"String": machine}, _kinds())
        self.assertIn("Pluck", str(ctx.exception))

    def test_stateless_kinds_are_skipped(self) -> None:
        graph = _graph([("Null", "Press", EdgeKind.NEXT, None)])
        self.assertEqual(validate_totality(graph, {}, _kinds()), 0)
