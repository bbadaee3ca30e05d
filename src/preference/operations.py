"""Function table of preference behaviours keyed by (kind, operation).

Three families share the table:

* filters take the candidate list of one instance and return the survivors,
  adjusting ``Candidate.score`` along the way;
* guards report whether planning below their scope has become pointless;
* retroactive operations rank the completed paths of a phrase.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Tuple

from src.core.errors import ConfigurationError
from src.preference.model import Candidate, PhrasePath, Preference, PreferenceContext


@dataclass(frozen=True)
class OperationSpec:
    fn: Callable[..., Any]
    retroactive: bool = False
    guard: bool = False


PREFERENCE_OPERATIONS: Dict[Tuple[str, str], OperationSpec] = {}


def register_operation(kind: str, operation: str, *, retroactive: bool = False, guard: bool = False):
    def decorator(fn):
        key = (kind, operation)
        if key in PREFERENCE_OPERATIONS:
            raise ConfigurationError(f"Preference operation {kind}.{operation} is already registered.")
        PREFERENCE_OPERATIONS[key] = OperationSpec(fn, retroactive=retroactive, guard=guard)
        return fn

    return decorator


def operation_spec(preference: Preference) -> OperationSpec:
    try:
        return PREFERENCE_OPERATIONS[preference.key]
    except KeyError:
        raise ConfigurationError(
            f"Unknown preference operation {preference.kind}.{preference.operation} ({preference.name})"
        ) from None


def _uses_part(candidate: Candidate, kind: Any, values: Any) -> bool:
    wanted = tuple(values) if values is not None else None
    for part in candidate.instruction.parts():
        if kind is not None and part.kind != kind:
            continue
        if wanted is not None and tuple(_plain(v) for v in part.values[: len(wanted)]) != wanted:
            continue
        return True
    return False


def _plain(value: Any) -> Any:
    return getattr(value, "name", value)


def _names(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


@register_operation("limit", "top_k")
def _limit_top_k(candidates: List[Candidate], preference: Preference, context: PreferenceContext):
    k = int(preference.param("k", context.max_branching))
    ranked = sorted(range(len(candidates)), key=lambda i: (-candidates[i].score, i))
    keep = set(ranked[: max(k, 0)])
    return [c for i, c in enumerate(candidates) if i in keep]


def _part_rule(candidates, preference, sign: float):
    kind = preference.param("part")
    values = preference.param("values")
    hard = bool(preference.param("hard", False))
    survivors = []
    for candidate in candidates:
        if _uses_part(candidate, kind, values):
            if hard and sign < 0:
                continue
            candidate.score += sign * preference.weight
        survivors.append(candidate)
    return survivors


@register_operation("part", "avoid")
def _part_avoid(candidates, preference, context):
    return _part_rule(candidates, preference, -1.0)


@register_operation("part", "prefer")
def _part_prefer(candidates, preference, context):
    return _part_rule(candidates, preference, 1.0)


def _change_rule(candidates, preference, sign: float):
    names = set(_names(preference.param("changes")))
    edge_kinds = set(_names(preference.param("edge_kinds")))
    hard = bool(preference.param("hard", False))
    survivors = []
    for candidate in candidates:
        hits = sum(
            1
            for interaction in candidate.instruction.interactions
            if interaction.change in names or interaction.edge_kind.value in edge_kinds
        )
        if hits and hard and sign < 0:
            continue
        candidate.score += sign * preference.weight * hits
        survivors.append(candidate)
    return survivors


@register_operation("change", "prefer")
def _change_prefer(candidates, preference, context):
    return _change_rule(candidates, preference, 1.0)


@register_operation("change", "avoid")
def _change_avoid(candidates, preference, context):
    return _change_rule(candidates, preference, -1.0)


@register_operation("motion", "economy")
def _motion_economy(candidates, preference, context):
    for candidate in candidates:
        candidate.score -= preference.weight * candidate.moved
    return candidates


@register_operation("guard", "max_vertices", guard=True)
def _guard_max_vertices(preference: Preference, context: PreferenceContext) -> bool:
    limit = int(preference.param("limit", 0))
    return limit > 0 and context.vertex_count > limit


@register_operation("phrase", "consistency", retroactive=True)
def _phrase_consistency(paths: List[PhrasePath], preference: Preference, context: PreferenceContext):
    """Favour paths that keep using the same masculine parts."""
    for path in paths:
        performers = {
            interaction.masculine
            for edge in path.edges
            for interaction in edge.instruction.interactions
        }
        path.score -= preference.weight * len(performers)
    return paths


@register_operation("phrase", "top_paths", retroactive=True)
def _phrase_top_paths(paths: List[PhrasePath], preference: Preference, context: PreferenceContext):
    k = int(preference.param("k", context.max_branching))
    ranked = sorted(range(len(paths)), key=lambda i: (-paths[i].score, i))
    keep = set(ranked[: max(k, 1)])
    return [p for i, p in enumerate(paths) if i in keep]
