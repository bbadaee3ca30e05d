"""Dynamic graph of snapshots (vertices) and instructions (edges).

Vertices live in an arena and are referenced by integer handle. A snapshot is
interned by its ``(instance_index, statuses)`` key, so equal aggregate states at
the same instance always resolve to the same vertex. ``GraphStage`` collects
the vertices and edges of one phrase under provisional (negative) handles and
folds them into its parent on ``commit``.
"""

from __future__ import annotations

import itertools
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from src.core.errors import CheckpointError
from src.graph.records import Instruction, PartStatus, Snapshot, StatusEntries

if TYPE_CHECKING:
    from src.registry.parts import PartRegistry

SnapshotKey = Tuple[int, StatusEntries]


@dataclass(frozen=True)
class GraphEdge:
    source: int
    target: int
    instruction: Instruction


class StatusView:
    """Copy-on-write view of part statuses over a read-only base mapping."""

    def __init__(
        self,
        base: Mapping[int, PartStatus],
        initial: Callable[[int], PartStatus],
        overlay: Optional[Dict[int, PartStatus]] = None,
    ) -> None:
        self._base = base
        self._initial = initial
        self._overlay: Dict[int, PartStatus] = dict(overlay or {})

    def get(self, uid: int) -> PartStatus:
        if uid in self._overlay:
            return self._overlay[uid]
        if uid in self._base:
            return self._base[uid]
        return self._initial(uid)

    def set(self, uid: int, status: PartStatus) -> None:
        self._overlay[uid] = status

    def fork(self) -> "StatusView":
        return StatusView(self._base, self._initial, self._overlay)

    @property
    def touched(self) -> Set[int]:
        return set(self._overlay)

    def merged(self) -> Dict[int, PartStatus]:
        combined = dict(self._base)
        combined.update(self._overlay)
        return combined


class GraphView(ABC):
    """Read and write surface shared by the graph and its stages."""

    @abstractmethod
    def lookup(self, key: SnapshotKey) -> Optional[int]:
        raise NotImplementedError

    @abstractmethod
    def snapshot(self, handle: int) -> Snapshot:
        raise NotImplementedError

    @abstractmethod
    def out_edges(self, handle: int) -> List[GraphEdge]:
        raise NotImplementedError

    @abstractmethod
    def in_edges(self, handle: int) -> List[GraphEdge]:
        raise NotImplementedError

    @abstractmethod
    def intern(self, snapshot: Snapshot) -> int:
        raise NotImplementedError

    @abstractmethod
    def connect(self, source: int, target: int, instruction: Instruction) -> GraphEdge:
        raise NotImplementedError

    @abstractmethod
    def root_graph(self) -> "PerformanceGraph":
        raise NotImplementedError

    def stage(self) -> "GraphStage":
        return GraphStage(self)

    def path_to(self, handle: int) -> List[GraphEdge]:
        """Return one path of edges from the root to ``handle`` (first in-edges)."""
        path: List[GraphEdge] = []
        seen = {handle}
        current = handle
        while True:
            incoming = self.in_edges(current)
            if not incoming:
                break
            edge = incoming[0]
            if edge.source in seen:
                break
            seen.add(edge.source)
            path.append(edge)
            current = edge.source
        path.reverse()
        return path


class PerformanceGraph(GraphView):
    ROOT_INDEX = -1

    def __init__(self) -> None:
        self._snapshots: List[Snapshot] = []
        self._index: Dict[SnapshotKey, int] = {}
        self._out: Dict[int, List[GraphEdge]] = {}
        self._in: Dict[int, List[GraphEdge]] = {}
        self._lock = threading.Lock()
        self._provisional = itertools.count(-1, -1)
        self.root = self.intern(Snapshot(self.ROOT_INDEX, 0.0, ()))

    def root_graph(self) -> "PerformanceGraph":
        return self

    def allocate_provisional(self) -> int:
        with self._lock:
            return next(self._provisional)

    def lookup(self, key: SnapshotKey) -> Optional[int]:
        return self._index.get(key)

    def intern(self, snapshot: Snapshot) -> int:
        handle = self._index.get(snapshot.key)
        if handle is not None:
            return handle
        handle = len(self._snapshots)
        self._snapshots.append(snapshot)
        self._index[snapshot.key] = handle
        self._out[handle] = []
        self._in[handle] = []
        return handle

    def connect(self, source: int, target: int, instruction: Instruction) -> GraphEdge:
        edge = GraphEdge(source, target, instruction)
        outgoing = self._out[source]
        if edge not in outgoing:
            outgoing.append(edge)
            self._in[target].append(edge)
        return edge

    def snapshot(self, handle: int) -> Snapshot:
        return self._snapshots[handle]

    def out_edges(self, handle: int) -> List[GraphEdge]:
        return list(self._out.get(handle, ()))

    def in_edges(self, handle: int) -> List[GraphEdge]:
        return list(self._in.get(handle, ()))

    def handles(self) -> range:
        return range(len(self._snapshots))

    def __len__(self) -> int:
        return len(self._snapshots)

    @property
    def edge_count(self) -> int:
        return sum(len(edges) for edges in self._out.values())

    def edges(self) -> List[GraphEdge]:
        return [edge for handle in self.handles() for edge in self._out[handle]]

    def layer(self, instance_index: int) -> List[int]:
        return [h for h, snap in enumerate(self._snapshots) if snap.instance_index == instance_index]

    def leaves(self) -> List[int]:
        return [h for h in self.handles() if not self._out[h]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "vertices": [snapshot.to_dict() for snapshot in self._snapshots],
            "edges": [
                {"source": e.source, "target": e.target, "instruction": e.instruction.to_dict()}
                for e in self.edges()
            ],
        }

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any], registry: "PartRegistry") -> "PerformanceGraph":
        graph = cls()
        vertices = payload.get("vertices") or []
        if not vertices:
            raise CheckpointError("Graph payload has no vertices.")
        for position, item in enumerate(vertices):
            snapshot = Snapshot.from_dict(item)
            if graph.intern(snapshot) != position:
                raise CheckpointError(f"Graph payload vertex {position} is a duplicate or out of order.")
        for item in payload.get("edges") or []:
            source, target = int(item["source"]), int(item["target"])
            if not (0 <= source < len(graph) and 0 <= target < len(graph)):
                raise CheckpointError(f"Graph payload edge {source} -> {target} is out of range.")
            graph.connect(source, target, Instruction.from_dict(item["instruction"], registry))
        return graph


class GraphStage(GraphView):
    """Uncommitted vertices and edges layered over a parent graph or stage."""

    def __init__(self, parent: GraphView) -> None:
        self.parent = parent
        self._root = parent.root_graph()
        self._snapshots: Dict[int, Snapshot] = {}
        self._order: List[int] = []
        self._index: Dict[SnapshotKey, int] = {}
        self._edges: List[GraphEdge] = []
        self._out: Dict[int, List[GraphEdge]] = {}
        self._in: Dict[int, List[GraphEdge]] = {}
        self.closed = False

    @property
    def root(self) -> int:
        return self._root.root

    def root_graph(self) -> PerformanceGraph:
        return self._root

    def lookup(self, key: SnapshotKey) -> Optional[int]:
        handle = self._index.get(key)
        if handle is not None:
            return handle
        return self.parent.lookup(key)

    def intern(self, snapshot: Snapshot) -> int:
        self._check_open()
        handle = self.lookup(snapshot.key)
        if handle is not None:
            return handle
        handle = self._root.allocate_provisional()
        self._snapshots[handle] = snapshot
        self._index[snapshot.key] = handle
        self._order.append(handle)
        return handle

    def connect(self, source: int, target: int, instruction: Instruction) -> GraphEdge:
        self._check_open()
        edge = GraphEdge(source, target, instruction)
        if edge in self._out.get(source, ()) or edge in self.parent.out_edges(source):
            return edge
        self._edges.append(edge)
        self._out.setdefault(source, []).append(edge)
        self._in.setdefault(target, []).append(edge)
        return edge

    def snapshot(self, handle: int) -> Snapshot:
        if handle in self._snapshots:
            return self._snapshots[handle]
        return self.parent.snapshot(handle)

    def out_edges(self, handle: int) -> List[GraphEdge]:
        inherited = [] if handle in self._snapshots else self.parent.out_edges(handle)
        return inherited + list(self._out.get(handle, ()))

    def in_edges(self, handle: int) -> List[GraphEdge]:
        inherited = [] if handle in self._snapshots else self.parent.in_edges(handle)
        return inherited + list(self._in.get(handle, ()))

    def staged_handles(self) -> List[int]:
        return list(self._order)

    @property
    def staged_edge_count(self) -> int:
        return len(self._edges)

    def touched_parts(self) -> Set[int]:
        touched: Set[int] = set()
        for edge in self._edges:
            touched.update(part.uid for part in edge.instruction.parts())
        return touched

    def commit(self) -> Dict[int, int]:
        """Fold staged content into the parent; returns provisional -> parent handles."""
        self._check_open()
        mapping: Dict[int, int] = {}
        for handle in self._order:
            mapping[handle] = self.parent.intern(self._snapshots[handle])
        for edge in self._edges:
            self.parent.connect(
                mapping.get(edge.source, edge.source),
                mapping.get(edge.target, edge.target),
                edge.instruction,
            )
        self.closed = True
        return mapping

    def discard(self) -> None:
        self._snapshots.clear()
        self._order.clear()
        self._index.clear()
        self._edges.clear()
        self._out.clear()
        self._in.clear()
        self.closed = True

    def _check_open(self) -> None:
        if self.closed:
            raise RuntimeError("Graph stage is already committed or discarded.")


def remap(handles: Iterable[int], mapping: Mapping[int, int]) -> List[int]:
    """Translate handles through a commit mapping, dropping duplicates."""
    result: List[int] = []
    for handle in handles:
        mapped = mapping.get(handle, handle)
        if mapped not in result:
            result.append(mapped)
    return result
