"""Action, Effect and Reaction tag lattices.

Each tag names its parent explicitly; ``is_a`` walks that chain instead of
relying on identity, so ``Effect.COPITCHED.is_a(Effect.MELODIC)`` holds.
"""

from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Iterable, Optional, Tuple, Type, TypeVar

from src.core.errors import ConfigurationError


class _Tag(Enum):
    def __init__(self, label: str, parent: Optional[str]) -> None:
        self.label = label
        self._parent_name = parent

    @property
    def parent(self) -> Optional["_Tag"]:
        if self._parent_name is None:
            return None
        return type(self)[self._parent_name]

    def ancestors(self) -> Tuple["_Tag", ...]:
        """Return the declared ancestors, nearest first."""
        chain = []
        current = self.parent
        while current is not None:
            chain.append(current)
            current = current.parent
        return tuple(chain)

    def is_a(self, other: "_Tag") -> bool:
        if type(other) is not type(self):
            return False
        return other is self or other in self.ancestors()

    @classmethod
    def parse(cls, name: str):
        """Accept either the member name (``PITCHED``) or its label (``Pitched``)."""
        key = str(name).strip()
        if key.upper() in cls.__members__:
            return cls[key.upper()]
        for member in cls:
            if member.label == key:
                return member
        raise ConfigurationError(f"Unknown {cls.__name__} tag: {name!r}")

    def __repr__(self) -> str:
        return f"{type(self).__name__}.{self.name}"


class Action(_Tag):
    """How a change is carried out by the masculine part."""

    INSTANTANEOUS = ("Instantaneous", None)
    CONTINUOUS = ("Continuous", None)
    REPETITIVE = ("Repetitive", "CONTINUOUS")
    UNILATERAL = ("Unilateral", None)
    VARIATIONAL = ("Variational", None)
    BILATERAL = ("Bilateral", "VARIATIONAL")
    DIRECTIONAL = ("Directional", "VARIATIONAL")
    GRADUAL = ("Gradual", "VARIATIONAL")
    ACCELERATIONAL = ("Accelerational", "VARIATIONAL")
    NONACCELERATIONAL = ("NonAccelerational", "VARIATIONAL")
    POSITIONAL = ("Positional", None)
    NONPHYSICAL = ("NonPhysical", None)
    UNDEFINED = ("Undefined", None)


class Effect(_Tag):
    """What a change produces on the instrument."""

    UNITARY = ("Unitary", None)
    SECONDARY = ("Secondary", None)
    TERTIARY = ("Tertiary", None)
    PRODUCTIVE = ("Productive", None)
    REDUCTIVE = ("Reductive", None)
    MELODIC = ("Melodic", None)
    PITCHED = ("Pitched", "MELODIC")
    COPITCHED = ("Copitched", "PITCHED")
    GLIDE = ("Glide", "PITCHED")
    UNDETERMINED = ("Undetermined", "PITCHED")
    UNPITCHED = ("Unpitched", "MELODIC")
    SUBTLE = ("Subtle", "UNPITCHED")
    REPETITIVE = ("Repetitive", None)
    ALTERNATIVE = ("Alternative", "REPETITIVE")
    VIBRATIONAL = ("Vibrational", "REPETITIVE")
    TONAL = ("Tonal", None)
    NONPHYSICAL = ("NonPhysical", None)
    UNDEFINED = ("Undefined", None)


class Reaction(_Tag):
    """How the instrument responds after the change."""

    INSTANTANEOUS = ("Instantaneous", None)
    CONTINUOUS = ("Continuous", None)
    SUSTAINED = ("Sustained", "CONTINUOUS")
    REPETITIVE = ("Repetitive", "SUSTAINED")
    LASTING = ("Lasting", "CONTINUOUS")
    DECAYING = ("Decaying", "CONTINUOUS")
    NONPHYSICAL = ("NonPhysical", None)
    UNDEFINED = ("Undefined", None)


TagT = TypeVar("TagT", bound=_Tag)


def close_tags(tags: Iterable[TagT]) -> FrozenSet[TagT]:
    """Return ``tags`` together with every ancestor of every tag."""
    closed = set()
    for tag in tags:
        closed.add(tag)
        closed.update(tag.ancestors())
    return frozenset(closed)


def parse_tags(tag_type: Type[TagT], names: Iterable[str]) -> FrozenSet[TagT]:
    return frozenset(tag_type.parse(name) for name in names)
