"""Static part-kind tables and constructor parameter types."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from src.core.errors import ConfigurationError


class Orientation(Enum):
    """Body-part orientation relative to the performer."""

    LEFT = "LEFT"
    RIGHT = "RIGHT"


# Parameter type names accepted in instrument configuration files.
PARAMETER_TYPES: Dict[str, type] = {
    "int": int,
    "str": str,
    "float": float,
    "bool": bool,
    "Orientation": Orientation,
}


def parameter_type(name: str | type) -> type:
    """Return the Python type for a configured parameter type name."""
    if isinstance(name, type):
        return name
    try:
        return PARAMETER_TYPES[name]
    except KeyError:
        raise ConfigurationError(f"Unknown part parameter type: {name!r}") from None


def coerce_value(value: Any, value_type: type) -> Any:
    """Convert a configuration scalar into the declared parameter type."""
    if isinstance(value, value_type) and not (value_type is int and isinstance(value, bool)):
        return value
    if issubclass(value_type, Enum):
        try:
            return value_type[str(value)]
        except KeyError:
            raise ConfigurationError(
                f"{value!r} is not a valid {value_type.__name__}."
            ) from None
    try:
        return value_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"{value!r} cannot be converted to {value_type.__name__}."
        ) from exc


@dataclass(frozen=True)
class PartKind:
    """One row of an anatomical or instrument part table."""
    name: str
    group: Optional[str] = None
    cardinality: int = 1
    base: Optional[str] = None
    abstract: bool = False
    initial_state: str = "Idle"


class PartKindTable:
    """Lookup over part-kind rows with base-kind ancestry."""

    def __init__(self, kinds: Iterable[PartKind] = ()) -> None:
        self._kinds: Dict[str, PartKind] = {}
        for kind in kinds:
            self.add(kind)

    def add(self, kind: PartKind) -> None:
        if kind.name in self._kinds:
            raise ConfigurationError(f"Duplicate part kind: {kind.name}")
        if kind.cardinality < 1:
            raise ConfigurationError(f"Part kind {kind.name} must have a positive cardinality.")
        self._kinds[kind.name] = kind

    def __contains__(self, name: object) -> bool:
        return name in self._kinds

    def __iter__(self) -> Iterator[PartKind]:
        return iter(self._kinds.values())

    def __len__(self) -> int:
        return len(self._kinds)

    def get(self, name: str) -> PartKind:
        try:
            return self._kinds[name]
        except KeyError:
            raise ConfigurationError(f"Unknown part kind: {name}") from None

    def lineage(self, name: str) -> Tuple[str, ...]:
        """Return the kind followed by its base kinds, nearest first."""
        chain: List[str] = []
        current: Optional[str] = name
        while current is not None:
            if current in chain:
                raise ConfigurationError(f"Cyclic base kinds at {current}")
            chain.append(current)
            row = self._kinds.get(current)
            current = row.base if row is not None else None
        return tuple(chain)

    def is_kind(self, name: str, ancestor: str) -> bool:
        """Return True when ``name`` is ``ancestor`` or implements it."""
        return ancestor in self.lineage(name)

    def members(self, group: str) -> List[PartKind]:
        """Return the kinds contained by a part group."""
        return [kind for kind in self._kinds.values() if kind.group == group]

    def validate(self) -> None:
        """Check that groups and base kinds refer to declared rows."""
        for kind in self._kinds.values():
            if kind.group is not None and kind.group not in self._kinds:
                raise ConfigurationError(f"Part kind {kind.name} names unknown group {kind.group}")
            if kind.base is not None and kind.base not in self._kinds:
                raise ConfigurationError(f"Part kind {kind.name} names unknown base {kind.base}")
            self.lineage(kind.name)

    @classmethod
    def from_config(cls, rows: Iterable[Mapping[str, Any]]) -> "PartKindTable":
        table = cls()
        for row in rows:
            if "kind" not in row:
                raise ConfigurationError(f"Part row without a kind: {dict(row)}")
            table.add(
                PartKind(
                    name=str(row["kind"]),
                    group=row.get("group"),
                    cardinality=int(row.get("cardinality", 1)),
                    base=row.get("base"),
                    abstract=bool(row.get("abstract", False)),
                    initial_state=str(row.get("initial_state", "Idle")),
                )
            )
        table.validate()
        return table
