"""Shared error types for instrument bootstrap and action selection."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence


class PlannerError(Exception):
    """Base exception for planner and bootstrap failures."""


class ConfigurationError(PlannerError, ValueError):
    """Raised for malformed part signatures, ranges, transitions or rule tables."""


class AmbiguousResultError(PlannerError, LookupError):
    """Raised when a lookup that requires a unique part matched several."""

    def __init__(self, kind: str, matches: Sequence[Any]) -> None:
        super().__init__(f"Lookup for '{kind}' matched {len(matches)} parts, expected one.")
        self.kind = kind
        self.matches = list(matches)


class CheckpointError(PlannerError):
    """Raised when a checkpoint is malformed or belongs to another bootstrap."""


class PlanningCancelled(PlannerError):
    """Raised at an iteration boundary after cooperative cancellation."""

    def __init__(self, reason: str = "cancelled") -> None:
        super().__init__(reason)
        self.reason = reason


class PhraseTimeoutError(PlanningCancelled):
    """Raised when phrase exploration passes its deadline."""

    def __init__(self, phrase: str, timeout_seconds: float) -> None:
        super().__init__(f"phrase '{phrase}' exceeded {timeout_seconds:.3f}s")
        self.phrase = phrase
        self.timeout_seconds = timeout_seconds


@dataclass(eq=False)
class UnperformableInstanceException(PlannerError):
    """Raised when no admissible instruction exists for an instance."""

    reason: str
    instance_index: Optional[int] = None
    time: Optional[float] = None
    phrase: Optional[str] = None
    causes: List[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        super().__init__(str(self))

    def scoped_to(self, phrase: str) -> "UnperformableInstanceException":
        """Return a copy attributed to the given phrase when none is set yet."""
        if self.phrase is not None:
            return self
        return UnperformableInstanceException(
            reason=self.reason,
            instance_index=self.instance_index,
            time=self.time,
            phrase=phrase,
            causes=list(self.causes),
        )

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "error_type": "UnperformableInstanceException",
            "reason": self.reason,
        }
        if self.instance_index is not None:
            payload["instance_index"] = int(self.instance_index)
        if self.time is not None:
            payload["time"] = float(self.time)
        if self.phrase is not None:
            payload["phrase"] = self.phrase
        if self.causes:
            payload["causes"] = list(self.causes)
        return payload

    def __str__(self) -> str:
        where = []
        if self.phrase is not None:
            where.append(f"phrase={self.phrase}")
        if self.instance_index is not None:
            where.append(f"instance={self.instance_index}")
        if self.time is not None:
            where.append(f"time={self.time}")
        suffix = f" ({' '.join(where)})" if where else ""
        return f"{self.reason}{suffix}"
