"""Parameterized part identity registry.

Parts are created once per instrument through ``PartRegistry.create_part`` and
looked up afterwards by the same constructor parameters. Each (kind, parameter
types) pair gets a ``PartSignature`` the first time it is used; the signature
keeps a mixed-radix index over the first-seen order of each parameter value, so
a lookup with concrete values is a single dictionary hit. Range vectors are
only estimates: when a value falls outside its declared range the part is kept
in an exact overflow map instead, and every primary hit is confirmed against
the actual parameter tuple.
"""

from __future__ import annotations

import hashlib
import threading
from dataclasses import dataclass
from functools import cmp_to_key
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import numpy as np

from src.core.errors import AmbiguousResultError, ConfigurationError
from src.core.logging_utils import get_logger
from src.registry.kinds import PartKindTable, parameter_type
from src.registry.parameters import Parameter, is_predicate

logger = get_logger(__name__)

PartFactory = Callable[["PartKey", Any], "Part"]


@dataclass(frozen=True)
class PartKey:
    """Identity of a part: kind, constructor signature and parameter tuple."""
    kind: str
    signature: Tuple[str, ...]
    values: Tuple[Any, ...]

    def label(self) -> str:
        if not self.values:
            return self.kind
        rendered = ", ".join(getattr(v, "name", None) or repr(v) for v in self.values)
        return f"{self.kind}({rendered})"


class Part:
    """A physical component of an instrument or of the performer's body."""

    def __init__(self, key: PartKey, instrument: Any = None) -> None:
        self.key = key
        self.instrument = instrument
        self.uid = -1
        self.state: Any = None

    @property
    def kind(self) -> str:
        return self.key.kind

    @property
    def values(self) -> Tuple[Any, ...]:
        return self.key.values

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Part):
            return NotImplemented
        return self.key == other.key

    def __hash__(self) -> int:
        return hash(self.key)

    def __repr__(self) -> str:
        return f"<Part {self.key.label()} uid={self.uid} state={self.state!r}>"


def _default_factory(key: PartKey, instrument: Any) -> Part:
    return Part(key, instrument)


class PartSignature:
    """A registered constructor description for one part kind."""

    def __init__(
        self,
        kind: str,
        parameter_types: Tuple[type, ...],
        factory: PartFactory,
    ) -> None:
        self.kind = kind
        self.parameter_types = parameter_types
        self.factory = factory
        self.ranges: Optional[Tuple[int, ...]] = None
        self._ordinals: List[Dict[Any, int]] = [{} for _ in parameter_types]
        self._primary: Dict[int, Part] = {}
        self._overflow: Dict[Tuple[Any, ...], Part] = {}
        self._parts: List[Part] = []

    @property
    def type_names(self) -> Tuple[str, ...]:
        return tuple(t.__name__ for t in self.parameter_types)

    @property
    def arity(self) -> int:
        return len(self.parameter_types)

    @property
    def parts(self) -> List[Part]:
        """Parts created through this signature, in creation order."""
        return list(self._parts)

    @property
    def overflow_count(self) -> int:
        return len(self._overflow)

    def set_ranges(self, ranges: Sequence[int]) -> None:
        ranges = tuple(int(r) for r in ranges)
        if len(ranges) != self.arity:
            raise ConfigurationError(
                f"{self.kind}{self.type_names} takes {self.arity} parameters, "
                f"got {len(ranges)} ranges."
            )
        if any(r <= 0 for r in ranges):
            raise ConfigurationError(f"Parameter ranges for {self.kind} must be positive: {ranges}")
        if self.ranges is not None and self.ranges != ranges:
            raise ConfigurationError(
                f"{self.kind}{self.type_names} is already registered with ranges {self.ranges}."
            )
        self.ranges = ranges

    def verify(self, values: Sequence[Any]) -> None:
        """Check a creation call against the registered range vector and types."""
        if self.ranges is None and self.arity > 0:
            raise ConfigurationError(
                f"Parameter ranges have not been set for {self.kind}{self.type_names}."
            )
        if len(values) != self.arity:
            raise ConfigurationError(
                f"The parameter ranges for {self.kind}{self.type_names} expect "
                f"{self.arity} values, got {len(values)}."
            )
        for value, expected in zip(values, self.parameter_types):
            if isinstance(value, bool) and expected is not bool:
                raise ConfigurationError(f"{value!r} is not a {expected.__name__} for {self.kind}.")
            if not isinstance(value, expected):
                raise ConfigurationError(f"{value!r} is not a {expected.__name__} for {self.kind}.")

    def ordinal(self, position: int, value: Any) -> Optional[int]:
        return self._ordinals[position].get(value)

    def ordinal_count(self, position: int) -> int:
        return len(self._ordinals[position])

    def _radix_key(self, ordinals: Sequence[int]) -> Optional[int]:
        if self.arity == 0:
            return 0
        assert self.ranges is not None
        if any(o >= r for o, r in zip(ordinals, self.ranges)):
            return None
        try:
            return int(np.ravel_multi_index(tuple(ordinals), self.ranges))
        except ValueError:
            # Range product too large for a flat index.
            return None

    def lookup(self, values: Tuple[Any, ...]) -> Optional[Part]:
        ordinals = []
        for position, value in enumerate(values):
            ordinal = self.ordinal(position, value)
            if ordinal is None:
                return None
            ordinals.append(ordinal)
        key = self._radix_key(ordinals)
        if key is not None:
            part = self._primary.get(key)
            if part is not None and part.values == values:
                return part
        return self._overflow.get(values)

    def store(self, part: Part) -> None:
        ordinals = []
        for position, value in enumerate(part.values):
            table = self._ordinals[position]
            if value not in table:
                table[value] = len(table)
            ordinals.append(table[value])
        key = self._radix_key(ordinals)
        if key is None or key in self._primary:
            if key is None:
                logger.debug(
                    "part_range_exceeded kind=%s values=%s ranges=%s",
                    self.kind,
                    part.key.label(),
                    self.ranges,
                )
            self._overflow[part.values] = part
        else:
            self._primary[key] = part
        self._parts.append(part)

    def matches(self, part: Part, criteria: Sequence[Any]) -> bool:
        for position, criterion in enumerate(criteria):
            value = part.values[position]
            if isinstance(criterion, Parameter):
                ordinal = self.ordinal(position, value)
                if ordinal is None or not criterion.test(value, ordinal, self.ordinal_count(position)):
                    return False
            elif value != criterion:
                return False
        return True


class PartRegistry:
    """Factory and lookup store for the parts of one instrument."""

    def __init__(
        self,
        instrument: Any = None,
        *,
        kinds: Optional[PartKindTable] = None,
        concrete_kinds: Optional[Dict[str, str]] = None,
    ) -> None:
        self.instrument = instrument
        self.kinds = kinds
        self._concrete: Dict[str, str] = dict(concrete_kinds or {})
        self._factories: Dict[str, Dict[Tuple[type, ...], PartFactory]] = {}
        self._signatures: Dict[str, Dict[Tuple[type, ...], PartSignature]] = {}
        self._parts: List[Part] = []
        self._lock = threading.Lock()

    # -- concrete kind resolution -------------------------------------------------

    def set_concrete_kind(self, abstract_kind: str, concrete_kind: str) -> None:
        self._concrete[abstract_kind] = concrete_kind

    def resolve_concrete_kind(self, kind: str) -> str:
        """Return the concrete kind the instrument uses for ``kind``."""
        seen = [kind]
        while kind in self._concrete:
            kind = self._concrete[kind]
            if kind in seen:
                raise ConfigurationError(f"Cyclic concrete kind mapping: {' -> '.join(seen + [kind])}")
            seen.append(kind)
        return kind

    # -- constructors ---------------------------------------------------------------

    def register_constructor(
        self,
        kind: str,
        parameter_types: Sequence[type | str] = (),
        factory: Optional[PartFactory] = None,
    ) -> None:
        """Register the factory used to instantiate ``kind`` for a parameter signature."""
        types = tuple(parameter_type(t) for t in parameter_types)
        table = self._factories.setdefault(kind, {})
        if types in table:
            raise ConfigurationError(f"Constructor {kind}{tuple(t.__name__ for t in types)} already registered.")
        table[types] = factory or _default_factory

    def signatures(self, kind: str) -> List[PartSignature]:
        return list(self._signatures.get(self.resolve_concrete_kind(kind), {}).values())

    def _select_signature(
        self,
        kind: str,
        parameter_types: Optional[Tuple[type, ...]],
        values: Sequence[Any],
        *,
        create: bool,
    ) -> Optional[PartSignature]:
        registered = self._signatures.get(kind, {})
        if parameter_types is not None:
            signature = registered.get(parameter_types)
            if signature is not None or not create:
                return signature
            return self._register_signature(kind, parameter_types)
        if len(registered) == 1:
            return next(iter(registered.values()))
        if len(registered) > 1:
            raise ConfigurationError(
                f"{kind} has {len(registered)} constructor signatures; select one with a signature."
            )
        if not create:
            return None
        factories = self._factories.get(kind, {})
        if len(factories) == 1:
            return self._register_signature(kind, next(iter(factories)))
        if len(factories) > 1:
            raise ConfigurationError(
                f"{kind} has {len(factories)} constructors and none was selected."
            )
        # No declared constructor: infer the signature from the first values.
        return self._register_signature(kind, tuple(type(v) for v in values))

    def _register_signature(self, kind: str, parameter_types: Tuple[type, ...]) -> PartSignature:
        factories = self._factories.get(kind, {})
        if factories and parameter_types not in factories:
            names = tuple(t.__name__ for t in parameter_types)
            raise ConfigurationError(f"{kind} has no constructor taking {names}.")
        if self.kinds is not None and kind in self.kinds and self.kinds.get(kind).abstract:
            raise ConfigurationError(f"{kind} is abstract and has no concrete part kind.")
        signature = PartSignature(kind, parameter_types, factories.get(parameter_types, _default_factory))
        self._signatures.setdefault(kind, {})[parameter_types] = signature
        logger.debug("part_signature_registered kind=%s types=%s", kind, signature.type_names)
        return signature

    # -- creation -------------------------------------------------------------------

    def create_part(
        self,
        kind: str,
        *values: Any,
        signature: Optional[Sequence[type | str]] = None,
        ranges: Optional[Sequence[int]] = None,
    ) -> Part:
        """Return the part for ``values``, instantiating it on first use."""
        concrete = self.resolve_concrete_kind(kind)
        types = tuple(parameter_type(t) for t in signature) if signature is not None else None
        with self._lock:
            part_signature = self._select_signature(concrete, types, values, create=True)
            assert part_signature is not None
            if ranges is not None:
                part_signature.set_ranges(ranges)
            elif part_signature.arity == 0 and part_signature.ranges is None:
                part_signature.set_ranges(())
            values = tuple(values)
            part_signature.verify(values)
            existing = part_signature.lookup(values)
            if existing is not None:
                return existing
            key = PartKey(concrete, part_signature.type_names, values)
            part = part_signature.factory(key, self.instrument)
            if not isinstance(part, Part) or part.key != key:
                raise ConfigurationError(f"Factory for {concrete} returned a part with another identity.")
            part.uid = len(self._parts)
            part_signature.store(part)
            self._parts.append(part)
            return part

    def creator(self, kind: str) -> "PartCreator":
        return PartCreator(self, kind)

    # -- lookup ---------------------------------------------------------------------

    def _candidates(
        self,
        kind: str,
        criteria: Sequence[Any],
        signature: Optional[Sequence[type | str]],
    ) -> List[Part]:
        concrete = self.resolve_concrete_kind(kind)
        types = tuple(parameter_type(t) for t in signature) if signature is not None else None
        part_signature = self._select_signature(concrete, types, criteria, create=False)
        if part_signature is None:
            return []
        criteria = tuple(criteria)
        if len(criteria) > part_signature.arity:
            raise ConfigurationError(
                f"{concrete}{part_signature.type_names} takes {part_signature.arity} values, "
                f"got {len(criteria)}."
            )
        if len(criteria) == part_signature.arity and not any(is_predicate(c) for c in criteria):
            part = part_signature.lookup(criteria)
            return [part] if part is not None else []
        return [part for part in part_signature.parts if part_signature.matches(part, criteria)]

    def find_part(
        self,
        kind: str,
        *criteria: Any,
        signature: Optional[Sequence[type | str]] = None,
    ) -> Optional[Part]:
        """Return the unique part matching ``criteria``, or None."""
        matches = self._candidates(kind, criteria, signature)
        if len(matches) > 1:
            raise AmbiguousResultError(kind, matches)
        return matches[0] if matches else None

    def find_parts(
        self,
        kind: str,
        *criteria: Any,
        signature: Optional[Sequence[type | str]] = None,
        comparator: Optional[Callable[[Part, Part], int]] = None,
    ) -> List[Part]:
        """Return every part matching ``criteria`` in creation order."""
        matches = self._candidates(kind, criteria, signature)
        if comparator is not None:
            matches = sorted(matches, key=cmp_to_key(comparator))
        return matches

    def finder(self, kind: str) -> "PartFinder":
        return PartFinder(self, kind)

    def list_finder(self, kind: str) -> "PartListFinder":
        return PartListFinder(self, kind)

    # -- whole-registry views -------------------------------------------------------

    def parts(self) -> List[Part]:
        return list(self._parts)

    def parts_of(self, kind: str) -> List[Part]:
        """Return all parts of ``kind`` (or implementing it) across signatures."""
        concrete = self.resolve_concrete_kind(kind)
        result = []
        for part in self._parts:
            if part.kind == concrete or part.kind == kind:
                result.append(part)
            elif self.kinds is not None and part.kind in self.kinds and self.kinds.is_kind(part.kind, kind):
                result.append(part)
        return result

    def by_uid(self, uid: int) -> Part:
        try:
            return self._parts[uid]
        except IndexError:
            raise KeyError(uid) from None

    def __len__(self) -> int:
        return len(self._parts)

    def __iter__(self):
        return iter(list(self._parts))

    def fingerprint(self) -> str:
        """Return a digest of every part identity in creation order."""
        digest = hashlib.sha256()
        for part in self._parts:
            digest.update(f"{part.uid}:{part.key.label()}:{','.join(part.key.signature)}\n".encode("utf-8"))
        return digest.hexdigest()[:16]

    def reset_states(self, initial_state: Callable[[Part], Any]) -> None:
        for part in self._parts:
            part.state = initial_state(part)


class _SignatureWorker:
    def __init__(self, registry: PartRegistry, kind: str) -> None:
        self._registry = registry
        self._kind = kind
        self._signature: Optional[Tuple[type | str, ...]] = None

    def with_constructor(self, *parameter_types: type | str):
        self._signature = tuple(parameter_types)
        return self


class PartCreator(_SignatureWorker):
    """Chained creation: ``creator(kind).with_constructor(...).with_parameter_ranges(...).with_values(...)``."""

    def __init__(self, registry: PartRegistry, kind: str) -> None:
        super().__init__(registry, kind)
        self._ranges: Optional[Tuple[int, ...]] = None
        self.created: List[Part] = []

    def with_parameter_ranges(self, *ranges: int) -> "PartCreator":
        self._ranges = tuple(ranges)
        return self

    def with_values(self, *values: Any) -> "PartCreator":
        part = self._registry.create_part(
            self._kind, *values, signature=self._signature, ranges=self._ranges
        )
        self.created.append(part)
        return self

    @property
    def part(self) -> Part:
        if not self.created:
            self.with_values()
        return self.created[-1]


class PartFinder(_SignatureWorker):
    """Chained unique lookup: ``finder(kind).with_values(...)``."""

    def with_values(self, *criteria: Any) -> Optional[Part]:
        return self._registry.find_part(self._kind, *criteria, signature=self._signature)


class PartListFinder(_SignatureWorker):
    """Chained list lookup with an optional comparator."""

    def __init__(self, registry: PartRegistry, kind: str) -> None:
        super().__init__(registry, kind)
        self._comparator: Optional[Callable[[Part, Part], int]] = None

    def with_comparator(self, comparator: Callable[[Part, Part], int]) -> "PartListFinder":
        self._comparator = comparator
        return self

    def with_values(self, *criteria: Any) -> List[Part]:
        return self._registry.find_parts(
            self._kind, *criteria, signature=self._signature, comparator=self._comparator
        )

