from __future__ import annotations

import unittest

from src.core.errors import CheckpointError
from src.graph import (
    EdgeKind,
    Instruction,
    Interaction,
    PartStatus,
    PerformanceGraph,
    Snapshot,
    StatusView,
    remap,
)
from src.graph.performance_graph import GraphView
from src.registry import Orientation, PartRegistry
from src.state import IDLE, State


def _initial(uid: int) -> PartStatus:
    return PartStatus(IDLE)


class PerformanceGraphTests(unittest.TestCase):
    def setUp(self) -> None:
        self.registry = PartRegistry()
        self.finger = self.registry.create_part("Finger", Orientation.LEFT, 1, ranges=(2, 5))
        self.string = self.registry.create_part("String", 1, ranges=(6,))
        self.graph = PerformanceGraph()

    def _instruction(self, index: int, change: str = "Press") -> Instruction:
        return Instruction(index, (Interaction(change, self.finger, self.string),))

    def _pressed(self, index: int) -> Snapshot:
        return Snapshot.capture(
            index,
            float(index),
            {
                self.finger.uid: PartStatus(State("Holding"), "Press"),
                self.string.uid: PartStatus(State("Pressed"), "Press"),
            },
            _initial,
        )

    def test_root_vertex(self) -> None:
        self.assertEqual(self.graph.root, 0)
        self.assertEqual(len(self.graph), 1)
        self.assertEqual(self.graph.snapshot(self.graph.root).instance_index, PerformanceGraph.ROOT_INDEX)

    def test_capture_drops_initial_statuses(self) -> None:
        snapshot = Snapshot.capture(
            0,
            0.0,
            {self.string.uid: PartStatus(State("Pressed"), "Press"), self.finger.uid: PartStatus(IDLE)},
            _initial,
        )
        self.assertEqual([uid for uid, _status in snapshot.statuses], [self.string.uid])

    def test_equal_snapshots_share_one_vertex(self) -> None:
        first = self.graph.intern(self._pressed(0))
        second = self.graph.intern(self._pressed(0))
        self.assertEqual(first, second)
        self.assertNotEqual(first, self.graph.intern(self._pressed(1)))
        self.assertEqual(len(self.graph), 3)

    def test_connect_is_idempotent(self) -> None:
        target = self.graph.intern(self._pressed(0))
        self.graph.connect(self.graph.root, target, self._instruction(0))
        self.graph.connect(self.graph.root, target, self._instruction(0))
        self.assertEqual(self.graph.edge_count, 1)
        self.assertEqual(self.graph.leaves(), [target])
        self.assertEqual(self.graph.layer(0), [target])

    def test_path_to_follows_in_edges(self) -> None:
        first = self.graph.intern(self._pressed(0))
        second = self.graph.intern(self._pressed(1))
        self.graph.connect(self.graph.root, first, self._instruction(0))
        self.graph.connect(first, second, self._instruction(1, "Pluck"))
        path = self.graph.path_to(second)
        self.assertEqual([edge.instruction.change_names() for edge in path], [("Press",), ("Pluck",)])

    def test_stage_commit_assigns_real_handles(self) -> None:
        stage = self.graph.stage()
        provisional = stage.intern(self._pressed(0))
        self.assertLess(provisional, 0)
        stage.connect(stage.root, provisional, self._instruction(0))
        self.assertEqual(len(self.graph), 1)
        self.assertEqual(stage.touched_parts(), {self.finger.uid, self.string.uid})
        mapping = stage.commit()
        self.assertEqual(len(self.graph), 2)
        self.assertEqual(remap([provisional, self.graph.root], mapping), [1, 0])
        self.assertEqual(self.graph.edge_count, 1)
        with self.assertRaises(RuntimeError):
            stage.intern(self._pressed(1))

    def test_stage_reuses_committed_vertices(self) -> None:
        existing = self.graph.intern(self._pressed(0))
        stage = self.graph.stage()
        self.assertEqual(stage.intern(self._pressed(0)), existing)
        self.assertEqual(stage.staged_handles(), [])

    def test_discarded_stage_leaves_no_trace(self) -> None:
        stage = self.graph.stage()
        handle = stage.intern(self._pressed(0))
        stage.connect(stage.root, handle, self._instruction(0))
        stage.discard()
        self.assertEqual(len(self.graph), 1)
        self.assertEqual(self.graph.edge_count, 0)

    def test_nested_stages_commit_outward(self) -> None:
        outer = self.graph.stage()
        first = outer.intern(self._pressed(0))
        outer.connect(outer.root, first, self._instruction(0))
        inner = outer.stage()
        second = inner.intern(self._pressed(1))
        inner.connect(first, second, self._instruction(1, "Pluck"))
        self.assertEqual([e.target for e in inner.out_edges(first)], [second])
        mapping = inner.commit()
        self.assertIn(mapping[second], outer.staged_handles())
        self.assertEqual(len(self.graph), 1)
        outer.commit()
        self.assertEqual(len(self.graph), 3)
        self.assertEqual(self.graph.edge_count, 2)

    def test_payload_round_trip(self) -> None:
        first = self.graph.intern(self._pressed(0))
        self.graph.connect(self.graph.root, first, self._instruction(0))
        restored = PerformanceGraph.from_dict(self.graph.to_dict(), self.registry)
        self.assertEqual(restored.to_dict(), self.graph.to_dict())
        self.assertIs(restored.out_edges(0)[0].instruction.interactions[0].feminine, self.string)

    def test_malformed_payloads(self) -> None:
        with self.assertRaises(CheckpointError):
            PerformanceGraph.from_dict({"vertices": []}, self.registry)
        payload = self.graph.to_dict()
        payload["edges"] = [{"source": 0, "target": 5, "instruction": self._instruction(0).to_dict()}]
        with self.assertRaises(CheckpointError):
            PerformanceGraph.from_dict(payload, self.registry)
        payload = self.graph.to_dict()
        payload["vertices"] = payload["vertices"] * 2
        with self.assertRaises(CheckpointError):
            PerformanceGraph.from_dict(payload, self.registry)

    def test_graph_and_stages_share_the_abstract_view(self) -> None:
        with self.assertRaises(TypeError):
            GraphView()
        stage = self.graph.stage()
        self.assertIsInstance(self.graph, GraphView)
        self.assertIsInstance(stage, GraphView)
        self.assertIsInstance(stage.stage(), GraphView)


class StatusViewTests(unittest.TestCase):
    def test_copy_on_write(self) -> None:
        base = {1: PartStatus(State("Pressed"), "Press")}
        view = StatusView(base, _initial)
        fork = view.fork()
        fork.set(1, PartStatus(IDLE, "Release", "Press"))
        self.assertEqual(view.get(1).state, State("Pressed"))
        self.assertEqual(fork.get(1).change, "Release")
        self.assertEqual(fork.get(2), PartStatus(IDLE))
        self.assertEqual(fork.touched, {1})
        self.assertEqual(base[1].change, "Press")
        self.assertEqual(fork.merged()[1].previous, "Press")

    def test_interaction_payload_uses_part_uids(self) -> None:
        registry = PartRegistry()
        finger = registry.create_part("Finger", Orientation.RIGHT, 2, ranges=(2, 5))
        string = registry.create_part("String", 3, ranges=(6,))
        interaction = Interaction("Pluck", finger, string, EdgeKind.FALLBACK, "HammerOn")
        payload = interaction.to_dict()
        self.assertEqual(payload["masculine"], finger.uid)
        self.assertEqual(Interaction.from_dict(payload, registry), interaction)
