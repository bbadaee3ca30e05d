"""An instrument bootstrapped from configuration: parts, changes and wiring."""

from __future__ import annotations

from typing import Dict, List, Mapping, Sequence

from src.graph.change_graph import ChangeGraph
from src.graph.records import NULL_CHANGE, PartStatus
from src.preference.model import Preference
from src.registry.kinds import PartKindTable
from src.registry.parts import Part, PartRegistry
from src.state.machine import StateMachine, machine_for
from src.taxonomy.changes import Change, ChangeCatalog


class Instrument:
    """Everything the planner needs to know about one instrument and its performer."""

    def __init__(
        self,
        name: str,
        kinds: PartKindTable,
        registry: PartRegistry,
        catalog: ChangeCatalog,
        change_graph: ChangeGraph,
        machines: Mapping[str, StateMachine],
        preferences: Sequence[Preference] = (),
    ) -> None:
        self.name = name
        self.kinds = kinds
        self.registry = registry
        self.catalog = catalog
        self.change_graph = change_graph
        self.machines: Dict[str, StateMachine] = dict(machines)
        self.preferences: List[Preference] = list(preferences)
        self._machine_cache: Dict[str, StateMachine] = {}
        self._initial_cache: Dict[int, PartStatus] = {}
        registry.instrument = self

    def machine(self, part: Part) -> StateMachine:
        cached = self._machine_cache.get(part.kind)
        if cached is None:
            cached = machine_for(self.machines, self.kinds, part.kind)
            self._machine_cache[part.kind] = cached
        return cached

    def initial_status(self, uid: int) -> PartStatus:
        status = self._initial_cache.get(uid)
        if status is None:
            part = self.registry.by_uid(uid)
            status = PartStatus(self.machine(part).initial, NULL_CHANGE, NULL_CHANGE)
            self._initial_cache[uid] = status
        return status

    def change(self, name: str) -> Change:
        return self.catalog.get(name)

    def parts_for(self, kinds: Sequence[str]) -> List[Part]:
        """Parts of any of ``kinds`` (or kinds implementing them), in creation order."""
        seen = set()
        result = []
        for kind in kinds:
            for part in self.registry.parts_of(kind):
                if part.uid not in seen:
                    seen.add(part.uid)
                    result.append(part)
        result.sort(key=lambda p: p.uid)
        return result

    def reset_states(self) -> None:
        self.registry.reset_states(lambda part: self.machine(part).initial)

    def fingerprint(self) -> str:
        return f"{self.name}:{self.registry.fingerprint()}"

    def describe(self, uid: int) -> str:
        return self.registry.by_uid(uid).key.label()

    def __repr__(self) -> str:
        return (
            f"<Instrument {self.name} parts={len(self.registry)} changes={len(self.catalog)} "
            f"edges={len(self.change_graph.edges())}>"
        )
