"""Declarative change templates and the per-instrument change catalog."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Tuple

from src.core.errors import ConfigurationError
from src.taxonomy.tags import Action, Effect, Reaction, close_tags, parse_tags


@dataclass(frozen=True)
class Change:
    """Immutable interaction template.

    ``masculine`` lists the part kinds that perform the change and ``feminine``
    the kinds it is performed on. Tag sets are stored closed under their
    lattice, so a change declared ``Copitched`` is also ``Pitched`` and
    ``Melodic``.
    """
    name: str
    description: str = ""
    masculine: Tuple[str, ...] = ()
    feminine: Tuple[str, ...] = ()
    effects: FrozenSet[Effect] = frozenset()
    actions: FrozenSet[Action] = frozenset()
    reactions: FrozenSet[Reaction] = frozenset()
    associations: Tuple[str, ...] = ()
    coordination: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ConfigurationError("Change templates need a name.")
        if not self.masculine or not self.feminine:
            raise ConfigurationError(
                f"Change {self.name} must declare masculine and feminine part kinds."
            )
        object.__setattr__(self, "masculine", tuple(self.masculine))
        object.__setattr__(self, "feminine", tuple(self.feminine))
        object.__setattr__(self, "associations", tuple(self.associations))
        object.__setattr__(self, "effects", close_tags(self.effects))
        object.__setattr__(self, "actions", close_tags(self.actions))
        object.__setattr__(self, "reactions", close_tags(self.reactions))

    def is_a(self, tag: Any) -> bool:
        if isinstance(tag, Effect):
            return tag in self.effects
        if isinstance(tag, Action):
            return tag in self.actions
        if isinstance(tag, Reaction):
            return tag in self.reactions
        return False

    def tags(self) -> FrozenSet[Any]:
        return self.effects | self.actions | self.reactions

    @classmethod
    def from_config(cls, row: Mapping[str, Any]) -> "Change":
        if "name" not in row:
            raise ConfigurationError(f"Change row without a name: {dict(row)}")
        return cls(
            name=str(row["name"]),
            description=str(row.get("description", "")),
            masculine=tuple(_as_list(row.get("masculine"))),
            feminine=tuple(_as_list(row.get("feminine"))),
            effects=parse_tags(Effect, _as_list(row.get("effects"))),
            actions=parse_tags(Action, _as_list(row.get("actions"))),
            reactions=parse_tags(Reaction, _as_list(row.get("reactions"))),
            associations=tuple(_as_list(row.get("associations"))),
            coordination=row.get("coordination"),
        )


def _as_list(value: Any) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


@dataclass(frozen=True)
class Classification:
    """A named group of change names."""
    name: str
    targets: Tuple[str, ...] = field(default_factory=tuple)

    def __contains__(self, change_name: object) -> bool:
        return change_name in self.targets


class ChangeCatalog:
    """The change vocabulary of one instrument."""

    def __init__(self, changes: Iterable[Change] = ()) -> None:
        self._changes: Dict[str, Change] = {}
        self._classifications: Dict[str, Classification] = {}
        for change in changes:
            self.register(change)

    def register(self, change: Change) -> Change:
        if change.name in self._changes:
            raise ConfigurationError(f"Change {change.name} is already registered.")
        self._changes[change.name] = change
        return change

    def get(self, name: str) -> Change:
        try:
            return self._changes[name]
        except KeyError:
            raise ConfigurationError(f"Change {name} is not registered for this instrument.") from None

    def __contains__(self, name: object) -> bool:
        return name in self._changes

    def __iter__(self) -> Iterator[Change]:
        return iter(self._changes.values())

    def __len__(self) -> int:
        return len(self._changes)

    def names(self) -> List[str]:
        return list(self._changes)

    def matching(
        self,
        *,
        effects: Iterable[Effect] = (),
        actions: Iterable[Action] = (),
        reactions: Iterable[Reaction] = (),
    ) -> List[Change]:
        """Return changes carrying every requested tag, in registration order."""
        wanted = list(effects) + list(actions) + list(reactions)
        return [change for change in self._changes.values() if all(change.is_a(tag) for tag in wanted)]

    def classify(self, name: str, targets: Iterable[str]) -> Classification:
        targets = tuple(targets)
        unknown = [target for target in targets if target not in self._changes]
        if unknown:
            raise ConfigurationError(f"Classification {name} names unknown changes: {unknown}")
        if name in self._classifications:
            raise ConfigurationError(f"Classification {name} is already registered.")
        classification = Classification(name, targets)
        self._classifications[name] = classification
        return classification

    def classification(self, name: str) -> Classification:
        try:
            return self._classifications[name]
        except KeyError:
            raise ConfigurationError(f"Unknown classification: {name}") from None

    def classifications_of(self, change_name: str) -> List[Classification]:
        return [c for c in self._classifications.values() if change_name in c]
