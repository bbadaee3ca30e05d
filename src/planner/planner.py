"""Recursive planner over the score nesting (score > section > phrase).

Each phrase is explored into a private graph stage and committed only when it
completes. A failed phrase is retried with its ancestors' preferences alone,
then reported to its parent, which prunes it when optional. Children of a
parallel section are explored by worker threads from the section's entry
vertex and merged back by the calling thread in child order.
"""

from __future__ import annotations

import uuid
from concurrent.futures import Future, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple, Union

from src.core.config import Settings
from src.core.errors import PhraseTimeoutError, PlanningCancelled, UnperformableInstanceException
from src.core.logging_utils import clear_log_context, current_log_context, get_logger, set_log_context
from src.graph.performance_graph import GraphStage, PerformanceGraph, GraphView
from src.graph.records import Snapshot
from src.instruments.instrument import Instrument
from src.instruments.loader import load_instrument
from src.planner.asm import (
    IterationEvent,
    PhraseExplorer,
    PhraseResult,
    compose_paths,
    entry_paths,
    publish_snapshot,
    remap_path,
    touched_parts,
)
from src.planner.checkpoint import (
    Checkpoint,
    capture_part_states,
    default_checkpoint_path,
    load_checkpoint,
    restore_part_states,
    save_checkpoint,
)
from src.planner.context import CancellationToken, PlanningContext
from src.preference.engine import PreferenceEngine
from src.preference.model import PhrasePath, Preference, PreferenceContext, Scope
from src.planner.score import Node, Phrase, Section
from src.state.machine import State

logger = get_logger(__name__)


@dataclass
class PlanningSession:
    """Mutable state of one ``Planner.plan`` call."""
    context: PlanningContext
    graph: PerformanceGraph
    done: List[str] = field(default_factory=list)
    frontier: List[int] = field(default_factory=list)

    def is_done(self, node_id: str) -> bool:
        return any(node_id == item or node_id.startswith(item + ".") for item in self.done)

    def complete(self, node_id: str) -> None:
        if node_id not in self.done:
            self.done.append(node_id)


class Planner:
    def __init__(
        self,
        instrument: Instrument,
        settings: Optional[Settings] = None,
        *,
        engine: Optional[PreferenceEngine] = None,
        token: Optional[CancellationToken] = None,
        observer: Optional[Callable[[IterationEvent], None]] = None,
        checkpoint_path: Optional[Path] = None,
        session_id: Optional[str] = None,
    ) -> None:
        self.instrument = instrument
        self.settings = settings or Settings.from_env()
        self.engine = engine or PreferenceEngine(self.settings.max_branching)
        self.token = token or CancellationToken()
        self.observer = observer
        self.checkpoint_path = checkpoint_path
        self.session_id = session_id
        self.session: Optional[PlanningSession] = None

    @property
    def frontier(self) -> List[int]:
        return list(self.session.frontier) if self.session is not None else []

    def plan(self, score: Section, resume: Union[Checkpoint, Path, str, None] = None) -> PerformanceGraph:
        """Plan ``score`` and return the performance graph.

        Raises UnperformableInstanceException when a required part of the score
        has no admissible instruction.
        """
        context = PlanningContext(
            self.instrument,
            self.settings,
            engine=self.engine,
            token=self.token,
            session_id=self.session_id,
        )
        with context:
            if resume is not None:
                checkpoint = resume if isinstance(resume, Checkpoint) else load_checkpoint(Path(resume), self.instrument)
                checkpoint.restore_part_states(self.instrument)
                session = PlanningSession(context, checkpoint.graph, list(checkpoint.cursor), list(checkpoint.frontier))
                logger.info(
                    "planning_resumed session=%s completed=%s frontier=%s",
                    context.session_id,
                    len(session.done),
                    len(session.frontier),
                )
            else:
                graph = PerformanceGraph()
                session = PlanningSession(context, graph, [], [graph.root])
            self.session = session
            result = self._run_node(
                session,
                score,
                "0",
                session.graph,
                session.frontier,
                tuple(self.instrument.preferences),
                in_worker=False,
            )
            session.frontier = result.frontier
            logger.info(
                "planning_complete session=%s vertices=%s edges=%s frontier=%s",
                context.session_id,
                len(session.graph),
                session.graph.edge_count,
                len(session.frontier),
            )
        return session.graph

    # -- recursion ------------------------------------------------------------------

    def _run_node(
        self,
        session: PlanningSession,
        node: Node,
        node_id: str,
        base: GraphView,
        frontier: Sequence[int],
        inherited: Tuple[Preference, ...],
        *,
        in_worker: bool,
    ) -> PhraseResult:
        if isinstance(node, Phrase):
            return self._run_phrase(session, node, node_id, base, frontier, inherited, in_worker=in_worker)
        preferences = inherited + node.preferences
        if node.parallel and len(node.children) > 1:
            if in_worker or len(frontier) != 1 or self.settings.workers < 2:
                logger.debug(
                    "parallel_section_sequential section=%s frontier=%s in_worker=%s",
                    node.name,
                    len(frontier),
                    in_worker,
                )
            else:
                return self._run_parallel(session, node, node_id, base, frontier[0], preferences)
        return self._run_sequential(session, node, node_id, base, frontier, preferences, in_worker=in_worker)

    def _run_sequential(
        self,
        session: PlanningSession,
        section: Section,
        node_id: str,
        base: GraphView,
        frontier: Sequence[int],
        preferences: Tuple[Preference, ...],
        *,
        in_worker: bool,
    ) -> PhraseResult:
        current = list(frontier)
        paths = entry_paths(current)
        touched: Set[int] = set()
        consumed = 0
        for position, child in enumerate(section.children):
            child_id = f"{node_id}.{position}"
            try:
                result = self._run_node(session, child, child_id, base, current, preferences, in_worker=in_worker)
            except UnperformableInstanceException as exc:
                if not child.optional:
                    raise
                logger.warning(
                    "optional_child_pruned section=%s child=%s reason=%s",
                    section.name,
                    child.name,
                    exc,
                )
                if not in_worker:
                    session.complete(child_id)
                    self._checkpoint(session)
                continue
            paths = compose_paths(paths, result.paths)
            current = result.frontier
            touched |= result.touched
            consumed += result.instances
        return PhraseResult(current, {h: paths[h] for h in current}, touched, consumed)

    def _run_phrase(
        self,
        session: PlanningSession,
        phrase: Phrase,
        node_id: str,
        base: GraphView,
        frontier: Sequence[int],
        inherited: Tuple[Preference, ...],
        *,
        in_worker: bool,
    ) -> PhraseResult:
        if session.is_done(node_id):
            logger.debug("phrase_skipped phrase=%s node=%s", phrase.name, node_id)
            return PhraseResult(list(frontier), entry_paths(frontier))
        context = session.context
        attempts = [inherited + phrase.preferences]
        if phrase.preferences:
            attempts.append(inherited)
        failure: Optional[UnperformableInstanceException] = None
        set_log_context(phrase_id=phrase.name)
        saved = None if in_worker else capture_part_states(self.instrument)
        for attempt_index, preferences in enumerate(attempts):
            if attempt_index:
                logger.info("phrase_backtrack phrase=%s reason=%s", phrase.name, failure)
            timeouts = 0
            while True:
                stage = base.stage()
                token = context.token.child()
                explorer = PhraseExplorer(
                    context,
                    phrase,
                    stage,
                    frontier,
                    preferences,
                    token=token,
                    deadline=context.deadline(phrase.name),
                    publish_states=not in_worker,
                    observer=self.observer,
                )
                try:
                    result = explorer.run()
                except PhraseTimeoutError as exc:
                    self._abandon(stage, saved)
                    timeouts += 1
                    if timeouts > self.settings.worker_retries:
                        failure = UnperformableInstanceException(
                            reason=f"exploration timed out {timeouts} times",
                            phrase=phrase.name,
                            causes=[str(exc)],
                        )
                        break
                    logger.warning("phrase_timeout_retry phrase=%s attempt=%s", phrase.name, timeouts)
                    continue
                except PlanningCancelled as exc:
                    self._abandon(stage, saved)
                    if context.token.cancelled:
                        raise
                    failure = UnperformableInstanceException(reason=exc.reason, phrase=phrase.name)
                    break
                except UnperformableInstanceException as exc:
                    self._abandon(stage, saved)
                    failure = exc.scoped_to(phrase.name)
                    break
                return self._commit_phrase(session, phrase, node_id, stage, result, preferences, in_worker=in_worker)
        assert failure is not None
        logger.warning("phrase_failed phrase=%s reason=%s", phrase.name, failure)
        raise failure

    def _commit_phrase(
        self,
        session: PlanningSession,
        phrase: Phrase,
        node_id: str,
        stage: GraphStage,
        result: PhraseResult,
        preferences: Tuple[Preference, ...],
        *,
        in_worker: bool,
    ) -> PhraseResult:
        mapping = stage.commit()
        paths = [remap_path(result.paths[handle], mapping) for handle in result.frontier]
        ranked = session.context.engine.retroactive(
            paths,
            preferences,
            PreferenceContext(
                scope=Scope.PHRASE,
                max_branching=self.settings.max_branching,
                phrase=phrase.name,
            ),
        )
        frontier = [path.handle for path in ranked]
        committed = PhraseResult(
            frontier,
            {path.handle: path for path in ranked},
            touched_parts(ranked),
            result.instances,
        )
        logger.info(
            "phrase_committed phrase=%s instances=%s vertices=%s frontier=%s",
            phrase.name,
            result.instances,
            len(mapping),
            len(frontier),
        )
        if not in_worker:
            if frontier:
                publish_snapshot(self.instrument, stage.parent.snapshot(frontier[0]))
            session.complete(node_id)
            session.frontier = frontier
            self._checkpoint(session)
        return committed

    def _abandon(self, stage: GraphStage, saved: Optional[Dict[int, State]]) -> None:
        """Drop a failed attempt: its stage and the part states it published."""
        stage.discard()
        if saved is not None:
            restore_part_states(self.instrument, saved)

    # -- parallel sections ------------------------------------------------------------

    def _run_parallel(
        self,
        session: PlanningSession,
        section: Section,
        node_id: str,
        base: GraphView,
        entry: int,
        preferences: Tuple[Preference, ...],
    ) -> PhraseResult:
        context = session.context
        log_context = current_log_context()
        pending: List[Tuple[int, Node, GraphStage, Future]] = []
        for position, child in enumerate(section.children):
            child_id = f"{node_id}.{position}"
            if session.is_done(child_id):
                continue
            stage = base.stage()
            future = context.executor.submit(
                self._explore_child, session, child, child_id, stage, entry, preferences, log_context, position
            )
            pending.append((position, child, stage, future))
        for future in as_completed([item[3] for item in pending]):
            if future.exception() is None:
                logger.debug("parallel_child_done section=%s", section.name)

        results: List[Tuple[int, Node, GraphStage, PhraseResult]] = []
        for position, child, stage, future in pending:
            error = future.exception()
            if error is None:
                results.append((position, child, stage, future.result()))
                continue
            if isinstance(error, UnperformableInstanceException) and child.optional:
                logger.warning(
                    "optional_child_pruned section=%s child=%s reason=%s", section.name, child.name, error
                )
                session.complete(f"{node_id}.{position}")
                continue
            raise error

        seen: Set[int] = set()
        for _position, child, _stage, result in results:
            if seen & result.touched:
                logger.info(
                    "parallel_overlap section=%s child=%s parts=%s; replanning sequentially",
                    section.name,
                    child.name,
                    sorted(seen & result.touched),
                )
                return self._run_sequential(session, section, node_id, base, [entry], preferences, in_worker=False)
            seen |= result.touched

        merged = self._merge(session, base, entry, results)
        if merged.frontier:
            publish_snapshot(self.instrument, base.snapshot(merged.frontier[0]))
        session.complete(node_id)
        session.frontier = merged.frontier
        self._checkpoint(session)
        return merged

    def _explore_child(
        self,
        session: PlanningSession,
        child: Node,
        child_id: str,
        stage: GraphStage,
        entry: int,
        preferences: Tuple[Preference, ...],
        log_context: Dict[str, str],
        position: int,
    ) -> PhraseResult:
        set_log_context(
            session_id=log_context.get("session_id"),
            phrase_id=child.name,
            worker_id=f"worker-{position}",
        )
        try:
            return self._run_node(session, child, child_id, stage, [entry], preferences, in_worker=True)
        finally:
            clear_log_context()

    def _merge(
        self,
        session: PlanningSession,
        base: GraphView,
        entry: int,
        results: List[Tuple[int, Node, GraphStage, PhraseResult]],
    ) -> PhraseResult:
        """Replay each child's surviving paths after the children merged before it."""
        merge_stage = base.stage()
        frontier = [entry]
        paths: Dict[int, PhrasePath] = entry_paths(frontier)
        touched: Set[int] = set()
        consumed = 0
        bound = self.settings.max_branching
        for _position, child, stage, result in results:
            combos = [
                (start, result.paths[handle]) for start in frontier for handle in result.frontier
            ]
            combos.sort(key=lambda pair: -(paths[pair[0]].score + pair[1].score))
            next_frontier: List[int] = []
            next_paths: Dict[int, PhrasePath] = {}
            for start, path in combos:
                end, edges = self._replay(merge_stage, start, path, stage, result.touched)
                if end in next_paths:
                    continue
                head = paths[start]
                next_paths[end] = PhrasePath(end, head.edges + edges, head.score + path.score)
                next_frontier.append(end)
                if len(next_frontier) >= bound:
                    break
            frontier, paths = next_frontier, next_paths
            touched |= result.touched
            consumed += result.instances
            logger.debug("parallel_child_merged child=%s frontier=%s", child.name, len(frontier))
        mapping = merge_stage.commit()
        merged_paths = {mapping.get(h, h): remap_path(paths[h], mapping) for h in frontier}
        return PhraseResult([mapping.get(h, h) for h in frontier], merged_paths, touched, consumed)

    def _replay(
        self,
        target: GraphStage,
        start: int,
        path: PhrasePath,
        source: GraphStage,
        touched: Set[int],
    ):
        initial = self.instrument.initial_status
        statuses = target.snapshot(start).status_map()
        current = start
        edges = []
        for edge in path.edges:
            reached = source.snapshot(edge.target)
            child_statuses = reached.status_map()
            merged = dict(statuses)
            for uid in touched:
                if uid in child_statuses:
                    merged[uid] = child_statuses[uid]
                else:
                    merged.pop(uid, None)
            snapshot = Snapshot.capture(reached.instance_index, reached.time, merged, initial)
            handle = target.intern(snapshot)
            edges.append(target.connect(current, handle, edge.instruction))
            current = handle
            statuses = snapshot.status_map()
        return current, tuple(edges)

    # -- checkpoints ------------------------------------------------------------------

    def _checkpoint(self, session: PlanningSession) -> None:
        if self.checkpoint_path is None:
            return
        save_checkpoint(
            self.checkpoint_path,
            Checkpoint(
                session.graph,
                list(session.frontier),
                list(session.done),
                capture_part_states(self.instrument),
                session.context.session_id,
            ),
            self.instrument,
        )


def plan(
    instrument: Union[Instrument, str],
    score: Section,
    settings: Optional[Settings] = None,
    *,
    checkpoint: bool = False,
    **kwargs,
) -> PerformanceGraph:
    """Plan ``score`` for an instrument object or a configured instrument ID.

    With ``checkpoint=True`` and no explicit ``checkpoint_path`` the session is
    checkpointed to ``<checkpoint_dir>/<session_id>.json``.
    """
    settings = settings or Settings.from_env()
    if isinstance(instrument, str):
        instrument = load_instrument(instrument, settings.instruments_dir)
    if checkpoint and kwargs.get("checkpoint_path") is None:
        session_id = kwargs.get("session_id") or uuid.uuid4().hex[:12]
        kwargs["session_id"] = session_id
        kwargs["checkpoint_path"] = default_checkpoint_path(settings, session_id)
    return Planner(instrument, settings, **kwargs).plan(score)
