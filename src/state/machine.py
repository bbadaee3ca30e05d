"""Part states and per-kind transition tables."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from src.core.errors import ConfigurationError
from src.core.logging_utils import get_logger

if TYPE_CHECKING:
    from src.graph.change_graph import ChangeGraph
    from src.registry.kinds import PartKindTable

logger = get_logger(__name__)


@dataclass(frozen=True, order=True)
class State:
    """A part condition such as Idle, Pressed or Muted."""
    name: str
    data: Tuple[Tuple[str, Any], ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": self.name}
        if self.data:
            payload["data"] = {key: value for key, value in self.data}
        return payload

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "State":
        data = payload.get("data") or {}
        return cls(str(payload["name"]), tuple(sorted(data.items())))

    def __str__(self) -> str:
        return self.name


IDLE = State("Idle")


class StateMachine:
    """Pure transition function ``(state, change name) -> state`` for one part kind.

    ``settle`` maps instantaneous states to the lasting state they fall back to
    once the iteration that produced them is over (a hammer-on leaves the
    string pressed).
    """

    def __init__(
        self,
        kind: str,
        initial: State = IDLE,
        transitions: Optional[Mapping[Tuple[str, str], str]] = None,
        settle: Optional[Mapping[str, str]] = None,
        *,
        stateless: bool = False,
    ) -> None:
        self.kind = kind
        self.initial = initial
        self.stateless = stateless
        self._transitions: Dict[Tuple[str, str], str] = dict(transitions or {})
        self._settle: Dict[str, str] = dict(settle or {})
        self._check_settle()

    @classmethod
    def for_stateless(cls, kind: str) -> "StateMachine":
        return cls(kind, IDLE, stateless=True)

    def _check_settle(self) -> None:
        for start in self._settle:
            seen = [start]
            current = self._settle.get(start)
            while current is not None:
                if current in seen:
                    raise ConfigurationError(
                        f"{self.kind} state folding cycles: {' -> '.join(seen + [current])}"
                    )
                seen.append(current)
                current = self._settle.get(current)

    @property
    def states(self) -> Set[str]:
        names = {self.initial.name}
        for (source, _change), target in self._transitions.items():
            names.add(source)
            names.add(target)
        names.update(self._settle)
        names.update(self._settle.values())
        return names

    def defines(self, state: State, change_name: str) -> bool:
        return self.stateless or (state.name, change_name) in self._transitions

    def apply(self, state: State, change_name: str) -> State:
        if self.stateless:
            return state
        try:
            target = self._transitions[(state.name, change_name)]
        except KeyError:
            raise ConfigurationError(
                f"{self.kind} has no transition for {change_name} in state {state.name}."
            ) from None
        return State(target)

    def settle(self, state: State) -> State:
        name = state.name
        if name not in self._settle:
            return state
        while name in self._settle:
            name = self._settle[name]
        return State(name)

    def is_instantaneous(self, state: State) -> bool:
        return state.name in self._settle

    @classmethod
    def from_config(cls, kind: str, row: Mapping[str, Any]) -> "StateMachine":
        """Build from ``{initial, transitions: {state: {change: next}}, settle}``."""
        transitions: Dict[Tuple[str, str], str] = {}
        for source, table in (row.get("transitions") or {}).items():
            if not isinstance(table, Mapping):
                raise ConfigurationError(f"Transitions of {kind}.{source} must be a mapping.")
            for change_name, target in table.items():
                transitions[(str(source), str(change_name))] = str(target)
        return cls(
            kind,
            State(str(row.get("initial", IDLE.name))),
            transitions,
            {str(k): str(v) for k, v in (row.get("settle") or {}).items()},
        )


def machine_for(
    machines: Mapping[str, StateMachine],
    kinds: Optional["PartKindTable"],
    kind: str,
) -> StateMachine:
    """Return the machine declared for ``kind`` or its nearest base kind."""
    lineage: Iterable[str] = kinds.lineage(kind) if kinds is not None and kind in kinds else (kind,)
    for name in lineage:
        machine = machines.get(name)
        if machine is not None:
            return machine
    return StateMachine.for_stateless(kind)


def validate_totality(
    change_graph: "ChangeGraph",
    machines: Mapping[str, StateMachine],
    kinds: "PartKindTable",
) -> int:
    """Walk every (state, change) pair the change graph can reach for each kind.

    Returns the number of pairs checked; raises ConfigurationError on the first
    pair the kind's machine does not define.
    """
    checked = 0
    fallback_targets: List[str] = []
    for edge in change_graph.edges():
        if edge.kind.value == "fallback" and edge.target not in fallback_targets:
            fallback_targets.append(edge.target)
    for part_kind in kinds:
        machine = machine_for(machines, kinds, part_kind.name)
        if machine.stateless:
            continue
        lineage = set(kinds.lineage(part_kind.name))
        start = (machine.initial, change_graph.NULL)
        seen = {start}
        queue = deque([start])
        while queue:
            state, last = queue.popleft()
            targets = [edge.target for edge in change_graph.successors(last)]
            for edge in change_graph.edges_from(last):
                if edge.kind.value == "conditional" and edge.target not in targets:
                    targets.append(edge.target)
            # Fallback changes may stand in for a demand from any state.
            targets.extend(t for t in fallback_targets if t not in targets)
            for target in targets:
                change = change_graph.change(target)
                if not lineage.intersection(change.masculine + change.feminine):
                    continue
                checked += 1
                if not machine.defines(state, change.name):
                    raise ConfigurationError(
                        f"{part_kind.name} has no transition for {change.name} in state "
                        f"{state.name} (reachable after {last})."
                    )
                following = (machine.settle(machine.apply(state, change.name)), change.name)
                if following not in seen:
                    seen.add(following)
                    queue.append(following)
    logger.debug("state_totality_checked pairs=%s kinds=%s", checked, len(kinds))
    return checked


def reachable_states(machine: StateMachine, change_names: Iterable[str]) -> List[State]:
    """Return the settled states reachable from the initial state via ``change_names``."""
    names = list(change_names)
    seen = [machine.initial]
    queue = deque([machine.initial])
    while queue:
        state = queue.popleft()
        for name in names:
            if not machine.defines(state, name):
                continue
            following = machine.settle(machine.apply(state, name))
            if following not in seen:
                seen.append(following)
                queue.append(following)
    return seen
