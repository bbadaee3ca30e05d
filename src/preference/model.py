"""Preference records and the candidate bundles they rank."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from src.core.errors import ConfigurationError
from src.graph.performance_graph import GraphEdge
from src.graph.records import Instruction, PartStatus


class Scope(IntEnum):
    """Recursion depth a preference belongs to, outermost first."""

    SCORE = 0
    SECTION = 1
    PHRASE = 2
    NOTE = 3

    @classmethod
    def parse(cls, value: Any) -> "Scope":
        if isinstance(value, Scope):
            return value
        try:
            return cls[str(value).upper()]
        except KeyError:
            raise ConfigurationError(f"Unknown preference scope: {value!r}") from None


@dataclass(frozen=True)
class Preference:
    name: str
    scope: Scope
    kind: str
    operation: str
    params: Tuple[Tuple[str, Any], ...] = ()
    weight: float = 1.0

    def param(self, name: str, default: Any = None) -> Any:
        for key, value in self.params:
            if key == name:
                return value
        return default

    @property
    def key(self) -> Tuple[str, str]:
        return (self.kind, self.operation)

    @property
    def retroactive(self) -> bool:
        from src.preference.operations import operation_spec

        return operation_spec(self).retroactive

    @property
    def guard(self) -> bool:
        from src.preference.operations import operation_spec

        return operation_spec(self).guard

    @classmethod
    def from_config(cls, row: Mapping[str, Any], default_scope: Scope = Scope.NOTE) -> "Preference":
        try:
            kind = str(row["kind"])
            operation = str(row["operation"])
        except KeyError as exc:
            raise ConfigurationError(f"Preference row missing {exc.args[0]!r}: {dict(row)}") from None
        params = row.get("params") or {}
        if not isinstance(params, Mapping):
            raise ConfigurationError(f"Preference params must be a mapping: {params!r}")
        return cls(
            name=str(row.get("name", f"{kind}.{operation}")),
            scope=Scope.parse(row.get("scope", default_scope)),
            kind=kind,
            operation=operation,
            params=tuple(sorted((str(k), _freeze(v)) for k, v in params.items())),
            weight=float(row.get("weight", 1.0)),
        )


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


@dataclass
class Candidate:
    """A prospective edge: an instruction taken from ``source`` and its outcome."""
    source: int
    instruction: Instruction
    statuses: Dict[int, PartStatus]
    transitions: Tuple[Tuple[int, PartStatus, PartStatus], ...] = ()
    score: float = 0.0

    @property
    def moved(self) -> int:
        return sum(1 for _uid, before, after in self.transitions if before.state != after.state)


@dataclass
class Connective:
    """Ordered bundle of candidates competing for one instance."""
    instance_index: int
    candidates: List[Candidate] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.candidates)

    def __iter__(self):
        return iter(self.candidates)


@dataclass
class PhrasePath:
    """A completed path through one phrase, ending at ``handle``."""
    handle: int
    edges: Tuple[GraphEdge, ...]
    score: float = 0.0


@dataclass
class PreferenceContext:
    scope: Scope = Scope.NOTE
    max_branching: int = 8
    vertex_count: int = 0
    instance_index: int = -1
    phrase: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)
