"""Applies scoped preferences to candidate bundles and completed phrases."""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

import numpy as np

from src.core.logging_utils import get_logger
from src.preference.model import Connective, PhrasePath, Preference, PreferenceContext
from src.preference.operations import operation_spec

logger = get_logger(__name__)


def _ordered(preferences: Iterable[Preference]) -> List[Preference]:
    # Stable: declaration order is kept within a scope.
    return sorted(preferences, key=lambda p: int(p.scope))


def validate_preferences(preferences: Iterable[Preference]) -> None:
    for preference in preferences:
        operation_spec(preference)


class PreferenceEngine:
    def __init__(self, max_branching: int = 8) -> None:
        self.max_branching = max_branching

    def filter(
        self,
        connective: Connective,
        preferences: Sequence[Preference],
        context: PreferenceContext,
    ) -> Connective:
        """Apply filter preferences outer scope first, then rank and truncate."""
        candidates = list(connective.candidates)
        for preference in _ordered(preferences):
            spec = operation_spec(preference)
            if spec.retroactive or spec.guard or preference.scope > context.scope:
                continue
            before = len(candidates)
            candidates = list(spec.fn(candidates, preference, context))
            if len(candidates) != before:
                logger.debug(
                    "preference_filtered name=%s instance=%s kept=%s dropped=%s",
                    preference.name,
                    connective.instance_index,
                    len(candidates),
                    before - len(candidates),
                )
        return Connective(connective.instance_index, self._rank(candidates, context))

    def _rank(self, candidates, context: PreferenceContext):
        if not candidates:
            return []
        bound = min(self.max_branching, context.max_branching)
        scores = np.array([candidate.score for candidate in candidates], dtype=float)
        order = np.argsort(-scores, kind="stable")
        return [candidates[int(i)] for i in order[:bound]]

    def retroactive(
        self,
        paths: Sequence[PhrasePath],
        preferences: Sequence[Preference],
        context: PreferenceContext,
    ) -> List[PhrasePath]:
        """Re-score the completed paths of a phrase and keep the best ones."""
        ranked = list(paths)
        for preference in _ordered(preferences):
            spec = operation_spec(preference)
            if not spec.retroactive:
                continue
            ranked = list(spec.fn(ranked, preference, context))
        if not ranked:
            return []
        scores = np.array([path.score for path in ranked], dtype=float)
        order = np.argsort(-scores, kind="stable")
        bound = min(self.max_branching, context.max_branching)
        return [ranked[int(i)] for i in order[:bound]]

    def invalidated(
        self,
        preferences: Sequence[Preference],
        context: PreferenceContext,
    ) -> Optional[Preference]:
        """Return the first guard that reports the current exploration invalid."""
        for preference in _ordered(preferences):
            spec = operation_spec(preference)
            if spec.guard and spec.fn(preference, context):
                logger.info(
                    "preference_guard_fired name=%s phrase=%s vertices=%s",
                    preference.name,
                    context.phrase,
                    context.vertex_count,
                )
                return preference
        return None
