"""The imagine -> realize -> adjust -> filter loop over one phrase."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set, Tuple

from src.core.errors import PlanningCancelled, UnperformableInstanceException
from src.core.logging_utils import get_logger, summarize_payload
from src.graph.performance_graph import GraphEdge, GraphStage, StatusView
from src.graph.productions import ProductionContext
from src.graph.records import EdgeKind, Instruction, Interaction, PartStatus, Snapshot
from src.instruments.instrument import Instrument
from src.preference.model import Candidate, Connective, PhrasePath, Preference, PreferenceContext, Scope
from src.planner.context import CancellationToken, Deadline, PlanningContext
from src.planner.score import Element, Instance, Phrase
from src.registry.parts import Part
from src.taxonomy.changes import Change

logger = get_logger(__name__)


class PlannerPhase(str, Enum):
    IMAGINING = "imagining"
    REALIZING = "realizing"
    ADJUSTING = "adjusting"
    FILTERING = "filtering"
    DONE = "done"
    FAILED = "failed"


@dataclass(frozen=True)
class IterationEvent:
    """Reported to observers after an instance has been committed to the stage."""
    phrase: str
    instance_index: int
    frontier: Tuple[int, ...]
    best: Optional[int]
    candidates: int


@dataclass
class PhraseResult:
    frontier: List[int]
    paths: Dict[int, PhrasePath]
    touched: Set[int] = field(default_factory=set)
    instances: int = 0


def entry_paths(frontier: Iterable[int]) -> Dict[int, PhrasePath]:
    return {handle: PhrasePath(handle, (), 0.0) for handle in frontier}


def path_start(path: PhrasePath) -> int:
    return path.edges[0].source if path.edges else path.handle


def compose_paths(prefix: Mapping[int, PhrasePath], suffix: Mapping[int, PhrasePath]) -> Dict[int, PhrasePath]:
    """Extend ``prefix`` paths with ``suffix`` paths starting where they end."""
    composed: Dict[int, PhrasePath] = {}
    for handle, path in suffix.items():
        head = prefix.get(path_start(path))
        if head is None:
            composed[handle] = path
        else:
            composed[handle] = PhrasePath(handle, head.edges + path.edges, head.score + path.score)
    return composed


def remap_path(path: PhrasePath, mapping: Mapping[int, int]) -> PhrasePath:
    edges = tuple(
        GraphEdge(mapping.get(e.source, e.source), mapping.get(e.target, e.target), e.instruction)
        for e in path.edges
    )
    return PhrasePath(mapping.get(path.handle, path.handle), edges, path.score)


def touched_parts(paths: Iterable[PhrasePath]) -> Set[int]:
    touched: Set[int] = set()
    for path in paths:
        for edge in path.edges:
            touched.update(part.uid for part in edge.instruction.parts())
    return touched


def publish_snapshot(instrument: Instrument, snapshot: Snapshot) -> None:
    """Record the statuses of a vertex as the parts' current state."""
    view = StatusView(snapshot.status_map(), instrument.initial_status)
    for part in instrument.registry.parts():
        part.state = view.get(part.uid).state


class PhraseExplorer:
    """Grows a graph stage through the instances of one phrase.

    The frontier is the set of vertices that survived filtering at the previous
    instance; it never holds more than the branching bound.
    """

    def __init__(
        self,
        context: PlanningContext,
        phrase: Phrase,
        stage: GraphStage,
        frontier: Sequence[int],
        preferences: Sequence[Preference],
        *,
        token: CancellationToken,
        deadline: Deadline,
        paths: Optional[Mapping[int, PhrasePath]] = None,
        publish_states: bool = False,
        observer: Optional[Callable[[IterationEvent], None]] = None,
    ) -> None:
        self.context = context
        self.instrument = context.instrument
        self.phrase = phrase
        self.stage = stage
        self.frontier: List[int] = list(frontier)
        self.preferences = list(preferences)
        self.token = token
        self.deadline = deadline
        self.paths: Dict[int, PhrasePath] = dict(paths) if paths is not None else entry_paths(frontier)
        self.publish_states = publish_states
        self.observer = observer
        self.phase = PlannerPhase.IMAGINING
        self._vertices = 0

    # -- loop ---------------------------------------------------------------------

    def run(self) -> PhraseResult:
        consumed = 0
        try:
            for instance in self.phrase.instances():
                self._check_boundary(instance)
                consumed += 1
                self._step(instance)
        except UnperformableInstanceException:
            self.phase = PlannerPhase.FAILED
            raise
        except PlanningCancelled:
            self.phase = PlannerPhase.FAILED
            raise
        self.phase = PlannerPhase.DONE
        paths = {handle: self.paths[handle] for handle in self.frontier}
        return PhraseResult(self.frontier, paths, touched_parts(paths.values()), consumed)

    def _check_boundary(self, instance: Instance) -> None:
        self.token.raise_if_cancelled()
        self.deadline.check()
        guard = self.context.engine.invalidated(
            self.preferences,
            PreferenceContext(
                scope=Scope.PHRASE,
                max_branching=self.context.settings.max_branching,
                vertex_count=self._vertices,
                instance_index=instance.index,
                phrase=self.phrase.name,
            ),
        )
        if guard is not None:
            self.token.cancel(f"invalidated by preference {guard.name}")
            self.token.raise_if_cancelled()

    def _step(self, instance: Instance) -> None:
        preferences = self.preferences + list(instance.preferences)

        self.phase = PlannerPhase.IMAGINING
        options = [self._imagine(instance, element) for element in instance.elements]

        self.phase = PlannerPhase.REALIZING
        realized: List[Tuple[int, Instruction]] = []
        causes: List[str] = []
        for source in self.frontier:
            view = self._view(source)
            per_element = []
            for element, changes in zip(instance.elements, options):
                interactions = self._realize(instance, element, changes, view)
                if not interactions:
                    causes.append(f"{element.describe()} has no feasible binding from vertex {source}")
                    break
                per_element.append(interactions)
            else:
                for instruction in self._instructions(instance, per_element):
                    realized.append((source, instruction))
                    if len(realized) >= self.context.settings.max_candidates:
                        break
            if len(realized) >= self.context.settings.max_candidates:
                break

        self.phase = PlannerPhase.ADJUSTING
        connective = Connective(instance.index, [self._adjust(source, instruction) for source, instruction in realized])

        self.phase = PlannerPhase.FILTERING
        filtered = self.context.engine.filter(
            connective,
            preferences,
            PreferenceContext(
                scope=Scope.NOTE,
                max_branching=self.context.settings.max_branching,
                vertex_count=self._vertices,
                instance_index=instance.index,
                phrase=self.phrase.name,
            ),
        )
        if not filtered.candidates:
            self.phase = PlannerPhase.FAILED
            reason = "no admissible instruction" if connective.candidates else "no feasible binding"
            raise UnperformableInstanceException(
                reason=reason,
                instance_index=instance.index,
                time=instance.time,
                causes=sorted(set(causes))[:10],
            )
        self._commit(instance, filtered.candidates)
        logger.debug(
            "asm_iteration phrase=%s instance=%s realized=%s kept=%s frontier=%s",
            self.phrase.name,
            instance.index,
            len(realized),
            len(filtered.candidates),
            summarize_payload(self.frontier),
        )
        if self.context.settings.planner_debug:
            logger.info(
                "asm_candidates phrase=%s instance=%s instructions=%s",
                self.phrase.name,
                instance.index,
                summarize_payload([candidate.instruction.describe() for candidate in filtered.candidates]),
            )

    # -- phases ---------------------------------------------------------------------

    def _imagine(self, instance: Instance, element: Element) -> List[Change]:
        catalog = self.instrument.catalog
        if element.change is not None:
            if element.change not in catalog:
                raise UnperformableInstanceException(
                    reason=f"change {element.change} is not registered for instrument {self.instrument.name}",
                    instance_index=instance.index,
                    time=instance.time,
                )
            return [catalog.get(element.change)]
        if not element.effects and not element.actions:
            raise UnperformableInstanceException(
                reason="element demands neither a change nor tags",
                instance_index=instance.index,
                time=instance.time,
            )
        changes = catalog.matching(effects=element.effects, actions=element.actions)
        if not changes:
            raise UnperformableInstanceException(
                reason=f"no change of {self.instrument.name} carries {element.describe()}",
                instance_index=instance.index,
                time=instance.time,
            )
        return changes

    def _view(self, handle: int) -> StatusView:
        return StatusView(self.stage.snapshot(handle).status_map(), self.instrument.initial_status)

    def _bindings(self, element: Element, change: Change) -> Tuple[List[Part], List[Part]]:
        masculine = self.instrument.parts_for(change.masculine)
        feminine = self.instrument.parts_for(change.feminine)
        if element.masculine is not None:
            allowed = set(element.masculine.resolve(self.instrument))
            masculine = [p for p in masculine if p in allowed]
        if element.feminine is not None:
            allowed = set(element.feminine.resolve(self.instrument))
            feminine = [p for p in feminine if p in allowed]
        return masculine, feminine

    def _realize(
        self,
        instance: Instance,
        element: Element,
        changes: Sequence[Change],
        view: StatusView,
    ) -> List[Interaction]:
        graph = self.instrument.change_graph
        base_context = ProductionContext(lambda part: view.get(part.uid), instance.index, data=element.data)
        interactions: List[Interaction] = []
        for change in changes:
            masculine, feminine = self._bindings(element, change)
            for m, f in itertools.product(masculine, feminine):
                if m == f:
                    continue
                m_status, f_status = view.get(m.uid), view.get(f.uid)
                f_edge = graph.successor(f_status.change, f_status.previous, change.name)
                m_edge = graph.successor(m_status.change, m_status.previous, change.name)
                if f_edge is None or m_edge is None:
                    continue
                context = base_context.for_edge(change.name, f_edge.kind, f_edge.source)
                interaction = f_edge.production(context, m, f)
                if interaction is None:
                    continue
                if m_edge is not f_edge and m_edge.production(context, m, f) is None:
                    continue
                interactions.append(interaction)
        if interactions:
            return interactions
        for change in changes:
            for fallback in graph.fallbacks(change.name):
                substitute = graph.change(fallback.target)
                masculine, feminine = self._bindings(element, substitute)
                context = base_context.for_edge(substitute.name, EdgeKind.FALLBACK, change.name)
                for m, f in itertools.product(masculine, feminine):
                    if m == f:
                        continue
                    interaction = fallback.production(context, m, f)
                    if interaction is not None:
                        interactions.append(interaction)
        return interactions

    def _instructions(self, instance: Instance, per_element: List[List[Interaction]]) -> Iterable[Instruction]:
        for combination in itertools.product(*per_element):
            used: Set[Part] = set()
            clash = False
            for interaction in combination:
                if interaction.masculine in used or interaction.feminine in used:
                    clash = True
                    break
                used.update(interaction.parts())
            if not clash:
                yield Instruction(instance.index, tuple(combination))

    def _adjust(self, source: int, instruction: Instruction) -> Candidate:
        view = self._view(source)
        before: Dict[int, PartStatus] = {}
        for interaction in instruction.interactions:
            for part in interaction.parts():
                status = view.get(part.uid)
                before.setdefault(part.uid, status)
                machine = self.instrument.machine(part)
                view.set(part.uid, status.advance(machine.apply(status.state, interaction.change), interaction.change))
        # Fold instantaneous states once every interaction of the instant is applied.
        for uid in sorted(before):
            status = view.get(uid)
            settled = self.instrument.machine(self.instrument.registry.by_uid(uid)).settle(status.state)
            if settled != status.state:
                view.set(uid, PartStatus(settled, status.change, status.previous))
        transitions = tuple((uid, before[uid], view.get(uid)) for uid in sorted(before))
        return Candidate(source, instruction, view.merged(), transitions)

    def _commit(self, instance: Instance, survivors: Sequence[Candidate]) -> None:
        frontier: List[int] = []
        paths: Dict[int, PhrasePath] = {}
        for candidate in survivors:
            snapshot = Snapshot.capture(
                instance.index, instance.time, candidate.statuses, self.instrument.initial_status
            )
            target = self.stage.intern(snapshot)
            edge = self.stage.connect(candidate.source, target, candidate.instruction)
            if target not in paths:
                head = self.paths[candidate.source]
                paths[target] = PhrasePath(target, head.edges + (edge,), head.score + candidate.score)
                frontier.append(target)
        self._vertices += len(frontier)
        self.frontier = frontier
        self.paths = paths
        if self.publish_states:
            self._publish(frontier[0])
        if self.observer is not None:
            self.observer(
                IterationEvent(self.phrase.name, instance.index, tuple(frontier), frontier[0], len(survivors))
            )

    def _publish(self, handle: int) -> None:
        publish_snapshot(self.instrument, self.stage.snapshot(handle))
