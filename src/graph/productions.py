"""Production rules carried by change-graph edges.

A production decides whether a candidate part binding may realize the edge's
target change. Rules are plain functions registered by name in
``PRODUCTIONS``; an edge combines one or more of them.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

from src.core.errors import ConfigurationError
from src.graph.records import EdgeKind, Interaction, NULL_CHANGE, PartStatus

if TYPE_CHECKING:
    from src.registry.parts import Part


@dataclass(frozen=True)
class ProductionContext:
    """What a production may look at while deciding on a binding."""
    status_of: Callable[["Part"], PartStatus]
    instance_index: int = -1
    change: str = NULL_CHANGE
    edge_kind: EdgeKind = EdgeKind.NEXT
    source: str = NULL_CHANGE
    data: Mapping[str, Any] = field(default_factory=dict)

    def for_edge(self, change: str, edge_kind: EdgeKind, source: str) -> "ProductionContext":
        return replace(self, change=change, edge_kind=edge_kind, source=source)


RuleFn = Callable[[ProductionContext, "Part", "Part", Mapping[str, Any]], bool]

PRODUCTIONS: Dict[str, RuleFn] = {}


def register_production(name: str) -> Callable[[RuleFn], RuleFn]:
    def decorator(fn: RuleFn) -> RuleFn:
        if name in PRODUCTIONS:
            raise ConfigurationError(f"Production rule {name} is already registered.")
        PRODUCTIONS[name] = fn
        return fn

    return decorator


def _side(params: Mapping[str, Any], masculine: "Part", feminine: "Part") -> "Part":
    side = params.get("part", "feminine")
    if side == "masculine":
        return masculine
    if side == "feminine":
        return feminine
    raise ConfigurationError(f"Production part must be masculine or feminine, got {side!r}")


def _names(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(str(item) for item in value)


@register_production("always")
def _always(context, masculine, feminine, params) -> bool:
    return True


@register_production("requires_state")
def _requires_state(context, masculine, feminine, params) -> bool:
    part = _side(params, masculine, feminine)
    return context.status_of(part).state.name in _names(params.get("states"))


@register_production("forbids_state")
def _forbids_state(context, masculine, feminine, params) -> bool:
    part = _side(params, masculine, feminine)
    return context.status_of(part).state.name not in _names(params.get("states"))


@register_production("same_order")
def _same_order(context, masculine, feminine, params) -> bool:
    """Both parts carry the same value at the configured parameter positions."""
    m_pos = int(params.get("masculine", 0))
    f_pos = int(params.get("feminine", 0))
    if m_pos >= len(masculine.values) or f_pos >= len(feminine.values):
        return False
    return masculine.values[m_pos] == feminine.values[f_pos]


@register_production("requires_value")
def _requires_value(context, masculine, feminine, params) -> bool:
    """The chosen part's parameter at ``position`` is one of ``values``."""
    part = _side(params, masculine, feminine)
    position = int(params.get("position", 0))
    if position >= len(part.values):
        return False
    value = part.values[position]
    return getattr(value, "name", value) in tuple(params.get("values") or ())


@register_production("distinct_parts")
def _distinct_parts(context, masculine, feminine, params) -> bool:
    return masculine != feminine


@dataclass(frozen=True)
class Production:
    """Conjunction of named rules; yields an Interaction when all accept."""
    rules: Tuple[Tuple[str, Tuple[Tuple[str, Any], ...]], ...] = (("always", ()),)

    def __post_init__(self) -> None:
        for name, _params in self.rules:
            if name not in PRODUCTIONS:
                raise ConfigurationError(f"Unknown production rule: {name}")

    def __call__(self, context: ProductionContext, masculine: "Part", feminine: "Part") -> Optional[Interaction]:
        for name, params in self.rules:
            if not PRODUCTIONS[name](context, masculine, feminine, dict(params)):
                return None
        return Interaction(
            change=context.change,
            masculine=masculine,
            feminine=feminine,
            edge_kind=context.edge_kind,
            source=context.source,
        )

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(name for name, _params in self.rules)

    @classmethod
    def from_config(cls, value: Any) -> "Production":
        """Accept ``None``, a rule name, a mapping with ``rule``, or a list of those."""
        if value is None:
            return cls()
        items: Sequence[Any] = value if isinstance(value, list) else [value]
        rules = []
        for item in items:
            if isinstance(item, str):
                rules.append((item, ()))
            elif isinstance(item, Mapping) and "rule" in item:
                params = {k: _freeze(v) for k, v in item.items() if k != "rule"}
                rules.append((str(item["rule"]), tuple(sorted(params.items()))))
            else:
                raise ConfigurationError(f"Malformed production: {item!r}")
        return cls(tuple(rules))


def _freeze(value: Any) -> Any:
    if isinstance(value, list):
        return tuple(value)
    return value


ALWAYS = Production()
