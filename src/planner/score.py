"""Score-side inputs to the planner: instances, demands and their nesting."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from src.preference.model import Preference
from src.taxonomy.tags import Action, Effect

if TYPE_CHECKING:
    from src.instruments.instrument import Instrument
    from src.registry.parts import Part


@dataclass(frozen=True)
class PartQuery:
    """Restricts a demand to parts of ``kind`` matching positional values or predicates."""
    kind: str
    values: Tuple[Any, ...] = ()

    def resolve(self, instrument: "Instrument") -> List["Part"]:
        if not self.values:
            return instrument.parts_for([self.kind])
        return instrument.registry.find_parts(self.kind, *self.values)


@dataclass(frozen=True, eq=False)
class Element:
    """One demand of an instance.

    Either names a change explicitly or asks for any change carrying the given
    effect/action tags.
    """
    change: Optional[str] = None
    effects: Tuple[Effect, ...] = ()
    actions: Tuple[Action, ...] = ()
    masculine: Optional[PartQuery] = None
    feminine: Optional[PartQuery] = None
    data: Mapping[str, Any] = field(default_factory=dict)

    def describe(self) -> str:
        if self.change:
            return self.change
        tags = [tag.label for tag in self.effects + self.actions]
        return "any(" + ",".join(tags) + ")"


@dataclass(frozen=True, eq=False)
class Instance:
    index: int
    time: float
    elements: Tuple[Element, ...] = ()
    preferences: Tuple[Preference, ...] = ()


class Phrase:
    """A run of instances explored as one transactional unit.

    The instance source is consumed lazily and only once; consumed instances are
    buffered so a retried phrase replays them.
    """

    def __init__(
        self,
        name: str,
        instances: Iterable[Instance],
        preferences: Sequence[Preference] = (),
        *,
        optional: bool = False,
    ) -> None:
        self.name = name
        self.preferences: Tuple[Preference, ...] = tuple(preferences)
        self.optional = optional
        self._source: Iterator[Instance] = iter(instances)
        self._buffer: List[Instance] = []
        self._exhausted = False
        self._lock = threading.Lock()

    def instances(self) -> Iterator[Instance]:
        position = 0
        while True:
            with self._lock:
                if position < len(self._buffer):
                    instance = self._buffer[position]
                elif self._exhausted:
                    return
                else:
                    try:
                        instance = next(self._source)
                    except StopIteration:
                        self._exhausted = True
                        return
                    self._buffer.append(instance)
            position += 1
            yield instance

    @property
    def consumed(self) -> int:
        return len(self._buffer)

    def __repr__(self) -> str:
        return f"<Phrase {self.name} optional={self.optional}>"


class Section:
    """A group of phrases or nested sections.

    ``parallel`` children share no temporal or part-state dependency and may be
    explored concurrently.
    """

    def __init__(
        self,
        name: str,
        children: Sequence[Union["Section", Phrase]],
        preferences: Sequence[Preference] = (),
        *,
        parallel: bool = False,
        optional: bool = False,
    ) -> None:
        self.name = name
        self.children: List[Union[Section, Phrase]] = list(children)
        self.preferences: Tuple[Preference, ...] = tuple(preferences)
        self.parallel = parallel
        self.optional = optional

    def __repr__(self) -> str:
        return f"<Section {self.name} children={len(self.children)} parallel={self.parallel}>"


class Score(Section):
    """The outermost section."""

    def __init__(
        self,
        name: str,
        children: Sequence[Union[Section, Phrase]],
        preferences: Sequence[Preference] = (),
    ) -> None:
        super().__init__(name, children, preferences)

    @classmethod
    def from_instances(
        cls,
        instances: Iterable[Instance],
        *,
        name: str = "score",
        preferences: Sequence[Preference] = (),
    ) -> "Score":
        """Wrap a flat interpreter stream as a single-phrase score."""
        return cls(name, [Phrase(f"{name}-phrase", instances)], preferences)


Node = Union[Section, Phrase]
