from __future__ import annotations

import logging
import threading
import unittest

import pytest

from planner_fixtures import make_settings, mini_guitar_config
from src.core.errors import PhraseTimeoutError, PlanningCancelled, UnperformableInstanceException
from src.graph import EdgeKind
from src.instruments import build_instrument
from src.planner import (
    CancellationToken,
    Deadline,
    Element,
    Instance,
    PartQuery,
    Phrase,
    Planner,
    PlanningContext,
    Score,
    Section,
    plan,
)
from src.preference import Preference
from src.registry import Orientation
from src.state import State
from src.taxonomy import Effect


def _string(number: int) -> PartQuery:
    return PartQuery("String", (number,))


def _finger(orientation: Orientation, order: int) -> PartQuery:
    return PartQuery("Finger", (orientation, order))


def press(string: int, index: int) -> Instance:
    return Instance(index, float(index), (Element("Press", feminine=_string(string)),))


def pluck(string: int, index: int, finger: PartQuery | None = None) -> Instance:
    return Instance(index, float(index), (Element("Pluck", masculine=finger, feminine=_string(string)),))


def _assert_merge_invariant(graph) -> None:
    keys = [graph.snapshot(handle).key for handle in graph.handles()]
    assert len(keys) == len(set(keys))


class ScenarioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.instrument = build_instrument(mini_guitar_config())
        self.settings = make_settings()

    def test_press_then_pluck(self) -> None:
        string = self.instrument.registry.find_part("String", 1)
        seen = []

        def observer(event):
            seen.append((event.instance_index, string.state))

        planner = Planner(self.instrument, self.settings, observer=observer)
        graph = planner.plan(Score.from_instances([press(1, 0), pluck(1, 1)]))

        self.assertEqual(seen, [(0, State("Pressed")), (1, State("Sounding"))])
        self.assertEqual(len(graph.layer(0)), 1)
        self.assertEqual(len(graph.layer(1)), 2)
        best = planner.frontier[0]
        path = graph.path_to(best)
        self.assertEqual(len(path), 2)
        self.assertEqual(path[0].instruction.describe(), "Press(Finger(LEFT, 1) -> NylonString(1))")
        self.assertEqual(path[1].instruction.change_names(), ("Pluck",))
        self.assertEqual(path[1].instruction.interactions[0].masculine.values[0], Orientation.RIGHT)
        _assert_merge_invariant(graph)

    def test_unknown_change_is_unperformable(self) -> None:
        score = Score.from_instances([Instance(0, 0.0, (Element("Strum"),))])
        with self.assertRaises(UnperformableInstanceException) as ctx:
            Planner(self.instrument, self.settings).plan(score)
        error = ctx.exception
        self.assertIn("Strum is not registered", error.reason)
        self.assertEqual(error.instance_index, 0)
        self.assertEqual(error.phrase, "score-phrase")
        self.assertEqual(error.to_payload()["error_type"], "UnperformableInstanceException")

    def test_parallel_disjoint_phrases_are_deterministic(self) -> None:
        def duet() -> Score:
            fretting = Phrase("fretting", [press(1, 0)])
            picking = Phrase("picking", [pluck(2, 0, _finger(Orientation.RIGHT, 2))])
            return Score("duet", [Section("together", [fretting, picking], parallel=True)])

        threads = []

        def observer(event):
            threads.append(threading.current_thread().name)

        payloads = []
        for _run in range(3):
            instrument = build_instrument(mini_guitar_config())
            graph = Planner(instrument, make_settings(workers=2), observer=observer).plan(duet())
            payloads.append(graph.to_dict())
            self.assertEqual(len(graph), 3)
            self.assertEqual(graph.edge_count, 2)
            (leaf,) = graph.leaves()
            self.assertEqual(len(graph.snapshot(leaf).statuses), 4)
            self.assertEqual(
                [edge.instruction.change_names() for edge in graph.path_to(leaf)],
                [("Press",), ("Pluck",)],
            )
            _assert_merge_invariant(graph)
        self.assertEqual(payloads[0], payloads[1])
        self.assertEqual(payloads[1], payloads[2])
        self.assertTrue(all(name.startswith("planner-") for name in threads))

    def test_parallel_overlap_is_replanned_sequentially(self) -> None:
        score = Score(
            "overlap",
            [
                Section(
                    "together",
                    [Phrase("press", [press(1, 0)]), Phrase("pluck", [pluck(1, 1, _finger(Orientation.RIGHT, 1))])],
                    parallel=True,
                )
            ],
        )
        graph = Planner(self.instrument, make_settings(workers=2)).plan(score)
        self.assertEqual(len(graph), 3)
        (leaf,) = graph.leaves()
        string = self.instrument.registry.find_part("String", 1)
        status = graph.snapshot(leaf).status_map()[string.uid]
        self.assertEqual(status.state, State("Sounding"))
        self.assertEqual(status.previous, "Press")

    def test_parallel_merge_publishes_part_states(self) -> None:
        duet = Section(
            "together",
            [Phrase("fretting", [press(1, 0)]), Phrase("picking", [pluck(2, 0, _finger(Orientation.RIGHT, 2))])],
            parallel=True,
        )
        Planner(self.instrument, make_settings(workers=2)).plan(Score("duet", [duet]))
        registry = self.instrument.registry
        self.assertEqual(registry.find_part("String", 1).state, State("Pressed"))
        self.assertEqual(registry.find_part("String", 2).state, State("Sounding"))
        self.assertEqual(registry.find_part("Finger", Orientation.LEFT, 1).state, State("Holding"))
        self.assertEqual(registry.find_part("Finger", Orientation.RIGHT, 2).state, State("Idle"))


class PlannerBehaviourTests(unittest.TestCase):
    def setUp(self) -> None:
        self.instrument = build_instrument(mini_guitar_config())
        self.settings = make_settings()

    def _plan(self, score, **kwargs):
        planner = Planner(self.instrument, kwargs.pop("settings", self.settings), **kwargs)
        return planner, planner.plan(score)

    def test_fallback_stands_in_for_unrealizable_change(self) -> None:
        score = Score.from_instances([Instance(0, 0.0, (Element("HammerOn", feminine=_string(1)),))])
        _planner, graph = self._plan(score)
        edges = graph.out_edges(graph.root)
        self.assertEqual(len(edges), 2)
        interaction = edges[0].instruction.interactions[0]
        self.assertEqual(interaction.change, "Pluck")
        self.assertEqual(interaction.edge_kind, EdgeKind.FALLBACK)
        self.assertEqual(interaction.source, "HammerOn")

    def test_tagged_element_selects_matching_change(self) -> None:
        release = Instance(1, 1.0, (Element(effects=(Effect.REDUCTIVE,), feminine=_string(1)),))
        planner, graph = self._plan(Score.from_instances([press(1, 0), release]))
        path = graph.path_to(planner.frontier[0])
        self.assertEqual(path[-1].instruction.change_names(), ("Release",))
        self.assertEqual(self.instrument.registry.find_part("String", 1).state, State("Idle"))

    def test_element_without_demand_is_unperformable(self) -> None:
        with self.assertRaises(UnperformableInstanceException):
            self._plan(Score.from_instances([Instance(0, 0.0, (Element(),))]))

    def test_instance_elements_need_distinct_parts(self) -> None:
        both = Instance(0, 0.0, (Element("Press", feminine=_string(1)), Element("Press", feminine=_string(2))))
        with self.assertRaises(UnperformableInstanceException) as ctx:
            self._plan(Score.from_instances([both]))
        self.assertEqual(ctx.exception.reason, "no feasible binding")

        chord = Instance(0, 0.0, (Element("Press", feminine=_string(1)), Element("Pluck", feminine=_string(2))))
        _planner, graph = self._plan(Score.from_instances([chord]))
        instructions = [edge.instruction for edge in graph.out_edges(graph.root)]
        self.assertEqual(len(instructions), 2)
        self.assertTrue(all(len(i.interactions) == 2 for i in instructions))

    def test_branching_bound(self) -> None:
        planner, graph = self._plan(
            Score.from_instances([press(1, 0), pluck(1, 1)]), settings=make_settings(max_branching=1)
        )
        self.assertEqual(len(graph.layer(1)), 1)
        self.assertEqual(len(planner.frontier), 1)

    def test_backtracking_drops_phrase_preferences(self) -> None:
        strict = Preference.from_config(
            {
                "name": "left-hand-only",
                "kind": "part",
                "operation": "avoid",
                "scope": "phrase",
                "params": {"part": "Finger", "values": ["RIGHT"], "hard": True},
            }
        )
        score = Score("s", [Phrase("strict", [pluck(1, 0)], [strict])])
        with self.assertLogs("src.planner.planner", level="INFO") as logs:
            _planner, graph = self._plan(score)
        self.assertTrue(any("phrase_backtrack phrase=strict" in line for line in logs.output))
        self.assertEqual(len(graph.layer(0)), 2)

        inherited = Score("s", [Phrase("strict", [pluck(1, 0)])], [strict])
        with self.assertRaises(UnperformableInstanceException) as ctx:
            self._plan(inherited)
        self.assertEqual(ctx.exception.reason, "no admissible instruction")
        self.assertEqual(ctx.exception.phrase, "strict")

    def test_optional_phrase_is_pruned(self) -> None:
        score = Score(
            "s",
            [
                Phrase("flourish", [Instance(0, 0.0, (Element("Strum"),))], optional=True),
                Phrase("main", [press(1, 1)]),
            ],
        )
        planner, graph = self._plan(score)
        self.assertEqual(len(graph), 2)
        self.assertEqual(planner.session.done, ["0.0", "0.1"])

    def test_pruned_phrase_leaves_part_states_untouched(self) -> None:
        strum = Instance(2, 2.0, (Element("Strum", feminine=_string(2)),))
        score = Score(
            "song",
            [Phrase("main", [press(1, 0)]), Phrase("flourish", [press(2, 1), strum], optional=True)],
        )
        self._plan(score)
        registry = self.instrument.registry
        self.assertEqual(registry.find_part("String", 1).state, State("Pressed"))
        self.assertEqual(registry.find_part("String", 2).state, State("Idle"))

    def test_guard_invalidates_phrase(self) -> None:
        guard = Preference.from_config(
            {"name": "tiny", "kind": "guard", "operation": "max_vertices", "scope": "phrase", "params": {"limit": 1}}
        )
        score = Score("s", [Phrase("long", [press(1, 0), pluck(1, 1), pluck(1, 2)])], [guard])
        with self.assertRaises(UnperformableInstanceException) as ctx:
            self._plan(score)
        self.assertIn("invalidated by preference tiny", ctx.exception.reason)

    def test_cancelled_token_stops_planning(self) -> None:
        token = CancellationToken()
        token.cancel("shutdown")
        with self.assertRaises(PlanningCancelled) as ctx:
            self._plan(Score.from_instances([press(1, 0)]), token=token)
        self.assertEqual(ctx.exception.reason, "shutdown")

    def test_cancel_from_observer_stops_at_next_boundary(self) -> None:
        token = CancellationToken()
        events = []

        def observer(event):
            events.append(event.instance_index)
            token.cancel("user stop")

        with self.assertRaises(PlanningCancelled):
            self._plan(Score.from_instances([press(1, 0), pluck(1, 1)]), token=token, observer=observer)
        self.assertEqual(events, [0])


def _scripted_deadlines(expiring: int):
    """Deadlines whose first ``expiring`` instances time out at their first check."""
    created = []

    def deadline(self, phrase):
        created.append(phrase)
        ticks = iter(range(1000))
        seconds = 0.5 if len(created) <= expiring else None
        return Deadline(phrase, seconds, clock=lambda: next(ticks))

    return deadline, created


def test_timeout_is_retried(monkeypatch, mini_guitar):
    deadline, created = _scripted_deadlines(1)
    monkeypatch.setattr(PlanningContext, "deadline", deadline)
    phrase = Phrase("slow", iter([press(1, 0), pluck(1, 1)]))
    graph = Planner(mini_guitar, make_settings(worker_retries=1)).plan(Score("s", [phrase]))
    assert created == ["slow", "slow"]
    assert len(graph.layer(1)) == 2
    assert phrase.consumed == 2


def test_timeouts_escalate_after_retries(monkeypatch, mini_guitar):
    deadline, _created = _scripted_deadlines(5)
    monkeypatch.setattr(PlanningContext, "deadline", deadline)
    with pytest.raises(UnperformableInstanceException) as exc_info:
        Planner(mini_guitar, make_settings(worker_retries=1)).plan(Score.from_instances([press(1, 0)]))
    assert "timed out 2 times" in exc_info.value.reason
    assert exc_info.value.phrase == "score-phrase"


def test_deadline_and_token_primitives():
    Deadline("open", None).check()
    ticks = iter([0.0, 0.5, 2.0])
    deadline = Deadline("tight", 1.0, clock=lambda: next(ticks))
    deadline.check()
    with pytest.raises(PhraseTimeoutError):
        deadline.check()

    parent = CancellationToken()
    child = parent.child()
    assert not child.cancelled
    parent.cancel("stop")
    assert child.cancelled
    assert child.reason == "stop"
    with pytest.raises(PlanningCancelled):
        child.raise_if_cancelled()


def test_plan_accepts_instrument_id():
    score = Score.from_instances([press(1, 0), pluck(1, 1)])
    graph = plan("guitar", score, make_settings())
    assert len(graph.layer(0)) == 5
    assert 0 < len(graph.layer(1)) <= 8
    _assert_merge_invariant(graph)


def test_planner_logs_session_lifecycle(caplog, mini_guitar, settings):
    caplog.set_level(logging.INFO, logger="src.planner")
    Planner(mini_guitar, settings, session_id="abc123").plan(Score.from_instances([press(1, 0)]))
    messages = [record.getMessage() for record in caplog.records]
    assert any(m.startswith("planning_session_start session=abc123") for m in messages)
    assert any(m.startswith("phrase_committed phrase=score-phrase") for m in messages)


def test_debug_settings_log_surviving_instructions(caplog, mini_guitar):
    caplog.set_level(logging.INFO, logger="src.planner")
    Planner(mini_guitar, make_settings(planner_debug=True)).plan(Score.from_instances([press(1, 0)]))
    messages = [record.getMessage() for record in caplog.records]
    assert any(
        m.startswith("asm_candidates phrase=score-phrase instance=0") and "Press(Finger(LEFT, 1)" in m
        for m in messages
    )
