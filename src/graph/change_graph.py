"""Static graph of change templates for one instrument."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from src.core.errors import ConfigurationError
from src.core.logging_utils import get_logger
from src.graph.productions import ALWAYS, Production
from src.graph.records import EdgeKind, NULL_CHANGE
from src.taxonomy.changes import Change, ChangeCatalog

logger = get_logger(__name__)


@dataclass(frozen=True)
class ChangeEdge:
    """Typed relation between two changes.

    NEXT: ``target`` may follow ``source`` on a part.
    FALLBACK: ``target`` stands in for ``source`` when ``source`` cannot be realized.
    CONDITIONAL: like NEXT, but only when ``requires`` was the part's change before ``source``.
    """
    source: str
    target: str
    kind: EdgeKind = EdgeKind.NEXT
    production: Production = ALWAYS
    requires: Optional[str] = None


class ChangeGraph:
    NULL = NULL_CHANGE

    def __init__(self, catalog: ChangeCatalog) -> None:
        self.catalog = catalog
        self._out: Dict[str, List[ChangeEdge]] = {self.NULL: []}
        for change in catalog:
            self._out.setdefault(change.name, [])
        self._frozen = False

    def _check_vertex(self, name: str) -> None:
        if name != self.NULL and name not in self.catalog:
            raise ConfigurationError(f"Change graph refers to unknown change {name}")

    def add_edge(
        self,
        source: str,
        target: str,
        kind: EdgeKind = EdgeKind.NEXT,
        production: Optional[Production] = None,
        requires: Optional[str] = None,
    ) -> ChangeEdge:
        if self._frozen:
            raise ConfigurationError("The change graph is read-only after bootstrap.")
        self._check_vertex(source)
        self._check_vertex(target)
        if target == self.NULL:
            raise ConfigurationError("No edge may lead into the Null change.")
        if kind is EdgeKind.CONDITIONAL:
            if requires is None:
                raise ConfigurationError(f"Conditional edge {source} -> {target} needs 'requires'.")
            self._check_vertex(requires)
        elif requires is not None:
            raise ConfigurationError(f"Only conditional edges take 'requires' ({source} -> {target}).")
        if kind is EdgeKind.FALLBACK and source == self.NULL:
            raise ConfigurationError(f"Fallback edge to {target} needs a source change.")
        edge = ChangeEdge(source, target, kind, production or ALWAYS, requires)
        if edge in self._out[source]:
            raise ConfigurationError(f"Duplicate change edge {source} -> {target} ({kind.value}).")
        self._out[source].append(edge)
        return edge

    def freeze(self) -> "ChangeGraph":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def change(self, name: str) -> Change:
        return self.catalog.get(name)

    def vertices(self) -> List[str]:
        return list(self._out)

    def edges(self) -> List[ChangeEdge]:
        return [edge for edges in self._out.values() for edge in edges]

    def edges_from(self, source: str) -> List[ChangeEdge]:
        return list(self._out.get(source, ()))

    def successors(self, active: str, previous: str = NULL_CHANGE) -> List[ChangeEdge]:
        """Edges a part whose last change is ``active`` (and before it ``previous``) may take."""
        admissible = []
        for edge in self._out.get(active, ()):
            if edge.kind is EdgeKind.NEXT:
                admissible.append(edge)
            elif edge.kind is EdgeKind.CONDITIONAL and edge.requires == previous:
                admissible.append(edge)
        return admissible

    def successor(self, active: str, previous: str, target: str) -> Optional[ChangeEdge]:
        for edge in self.successors(active, previous):
            if edge.target == target:
                return edge
        return None

    def fallbacks(self, change: str) -> List[ChangeEdge]:
        return [edge for edge in self._out.get(change, ()) if edge.kind is EdgeKind.FALLBACK]

    def reachable(self, change: str = NULL_CHANGE) -> Set[str]:
        """Changes reachable from ``change`` over any edge kind."""
        seen: Set[str] = set()
        queue = deque([change])
        while queue:
            current = queue.popleft()
            for edge in self._out.get(current, ()):
                if edge.target not in seen:
                    seen.add(edge.target)
                    queue.append(edge.target)
        return seen

    @classmethod
    def from_config(cls, catalog: ChangeCatalog, rows: Iterable[Mapping[str, Any]]) -> "ChangeGraph":
        """Build from rows ``{from, to, kind?, production?, requires?}``.

        ``from`` and ``to`` each take a change name or a list of names; a row
        adds one edge per (source, target) pair.
        """
        graph = cls(catalog)
        for row in rows:
            try:
                sources = row.get("from", NULL_CHANGE)
                targets = row["to"]
            except KeyError:
                raise ConfigurationError(f"Change edge row without 'to': {dict(row)}") from None
            try:
                kind = EdgeKind(str(row.get("kind", EdgeKind.NEXT.value)).lower())
            except ValueError:
                raise ConfigurationError(f"Unknown change edge kind: {row.get('kind')!r}") from None
            production = Production.from_config(row.get("production"))
            for source in [sources] if isinstance(sources, str) else sources:
                for target in [targets] if isinstance(targets, str) else targets:
                    graph.add_edge(str(source), str(target), kind, production, row.get("requires"))
        logger.debug(
            "change_graph_built vertices=%s edges=%s", len(graph.vertices()), len(graph.edges())
        )
        return graph
