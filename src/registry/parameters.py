"""Positional predicates for part lookups.

A predicate passed to ``find_part``/``find_parts`` in place of a concrete value
is tested against the part's parameter at the same position. Index predicates
look at the order in which distinct values first appeared at that position
during part creation; value predicates look at the value itself.
"""

from __future__ import annotations

from typing import Any, Callable, Collection


class Parameter:
    """Base class for lookup predicates over one constructor parameter."""

    def __init__(self, fn: Callable[[Any, int, int], bool], label: str = "parameter") -> None:
        self._fn = fn
        self._label = label

    def test(self, value: Any, ordinal: int, count: int) -> bool:
        """Return True when the parameter qualifies.

        ``ordinal`` is the first-seen order of ``value`` at this position and
        ``count`` the number of distinct values seen there so far.
        """
        return bool(self._fn(value, ordinal, count))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._label}>"


class Index(Parameter):
    """Predicate over the creation order of a parameter value."""

    def __init__(self, fn: Callable[[int], bool], label: str = "index") -> None:
        super().__init__(lambda _value, ordinal, _count: fn(ordinal), label)


class Value(Parameter):
    """Predicate over the parameter value itself."""

    def __init__(self, fn: Callable[[Any], bool], label: str = "value") -> None:
        super().__init__(lambda value, _ordinal, _count: fn(value), label)


class _Last(Parameter):
    def __init__(self) -> None:
        super().__init__(lambda _value, ordinal, count: ordinal == count - 1, "last")


def in_(*values: Any) -> Value:
    """Match parameter values among ``values`` (or a single collection)."""
    pool = _pool(values)
    return Value(lambda v: v in pool, f"in {pool!r}")


def nin(*values: Any) -> Value:
    """Match parameter values not among ``values`` (or a single collection)."""
    pool = _pool(values)
    return Value(lambda v: v not in pool, f"nin {pool!r}")


def _pool(values: tuple) -> Collection[Any]:
    if len(values) == 1 and isinstance(values[0], (list, tuple, set, frozenset)):
        return tuple(values[0])
    return tuple(values)


ANY = Index(lambda _i: True, "any")
FIRST = Index(lambda i: i == 0, "first")
SECOND = Index(lambda i: i == 1, "second")
THIRD = Index(lambda i: i == 2, "third")
FOURTH = Index(lambda i: i == 3, "fourth")
FIFTH = Index(lambda i: i == 4, "fifth")
SIXTH = Index(lambda i: i == 5, "sixth")
SEVENTH = Index(lambda i: i == 6, "seventh")
EIGHTH = Index(lambda i: i == 7, "eighth")
NINTH = Index(lambda i: i == 8, "ninth")
TENTH = Index(lambda i: i == 9, "tenth")
ELEVENTH = Index(lambda i: i == 10, "eleventh")
TWELFTH = Index(lambda i: i == 11, "twelfth")
LAST = _Last()


def is_predicate(value: Any) -> bool:
    return isinstance(value, Parameter)
