"""Value records shared by the change graph, the planner and checkpoints."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, FrozenSet, Mapping, Tuple

from src.state.machine import State

if TYPE_CHECKING:
    from src.registry.parts import Part, PartRegistry

NULL_CHANGE = "Null"


class EdgeKind(str, Enum):
    NEXT = "next"
    FALLBACK = "fallback"
    CONDITIONAL = "conditional"


@dataclass(frozen=True, order=True)
class PartStatus:
    """Planning record of one part: its state and the last two changes applied."""
    state: State
    change: str = NULL_CHANGE
    previous: str = NULL_CHANGE

    def advance(self, state: State, change: str) -> "PartStatus":
        return PartStatus(state, change, self.change)

    def to_dict(self) -> Dict[str, Any]:
        return {"state": self.state.to_dict(), "change": self.change, "previous": self.previous}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "PartStatus":
        return cls(
            State.from_dict(payload["state"]),
            str(payload.get("change", NULL_CHANGE)),
            str(payload.get("previous", NULL_CHANGE)),
        )


StatusEntries = Tuple[Tuple[int, PartStatus], ...]


@dataclass(frozen=True)
class Snapshot:
    """Aggregate part statuses right after an instance was performed.

    Only parts whose status differs from their initial status are listed,
    ordered by part uid, so equal aggregate states always compare equal.
    """
    instance_index: int
    time: float
    statuses: StatusEntries = ()

    @property
    def key(self) -> Tuple[int, StatusEntries]:
        return (self.instance_index, self.statuses)

    def status_map(self) -> Dict[int, PartStatus]:
        return dict(self.statuses)

    @classmethod
    def capture(
        cls,
        instance_index: int,
        time: float,
        statuses: Mapping[int, PartStatus],
        initial: Callable[[int], PartStatus],
    ) -> "Snapshot":
        entries = tuple(
            (uid, status) for uid, status in sorted(statuses.items()) if status != initial(uid)
        )
        return cls(instance_index, float(time), entries)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_index": self.instance_index,
            "time": self.time,
            "statuses": [[uid, status.to_dict()] for uid, status in self.statuses],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "Snapshot":
        return cls(
            int(payload["instance_index"]),
            float(payload["time"]),
            tuple((int(uid), PartStatus.from_dict(status)) for uid, status in payload.get("statuses", [])),
        )


@dataclass(frozen=True)
class Interaction:
    """A change bound to one masculine and one feminine part."""
    change: str
    masculine: "Part"
    feminine: "Part"
    edge_kind: EdgeKind = EdgeKind.NEXT
    source: str = NULL_CHANGE

    def parts(self) -> Tuple["Part", "Part"]:
        return (self.masculine, self.feminine)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "change": self.change,
            "masculine": self.masculine.uid,
            "feminine": self.feminine.uid,
            "edge_kind": self.edge_kind.value,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], registry: "PartRegistry") -> "Interaction":
        return cls(
            change=str(payload["change"]),
            masculine=registry.by_uid(int(payload["masculine"])),
            feminine=registry.by_uid(int(payload["feminine"])),
            edge_kind=EdgeKind(payload.get("edge_kind", EdgeKind.NEXT.value)),
            source=str(payload.get("source", NULL_CHANGE)),
        )

    def describe(self) -> str:
        return f"{self.change}({self.masculine.key.label()} -> {self.feminine.key.label()})"


@dataclass(frozen=True)
class Instruction:
    """The interactions chosen to satisfy one instance."""
    instance_index: int
    interactions: Tuple[Interaction, ...] = field(default_factory=tuple)

    def parts(self) -> FrozenSet["Part"]:
        touched = set()
        for interaction in self.interactions:
            touched.update(interaction.parts())
        return frozenset(touched)

    def change_names(self) -> Tuple[str, ...]:
        return tuple(interaction.change for interaction in self.interactions)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instance_index": self.instance_index,
            "interactions": [interaction.to_dict() for interaction in self.interactions],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], registry: "PartRegistry") -> "Instruction":
        return cls(
            int(payload["instance_index"]),
            tuple(Interaction.from_dict(item, registry) for item in payload.get("interactions", [])),
        )

    def describe(self) -> str:
        return "; ".join(interaction.describe() for interaction in self.interactions)

