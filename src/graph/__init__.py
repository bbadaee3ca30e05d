"""Change graph, performance graph and the records they carry."""

from src.graph.change_graph import ChangeEdge, ChangeGraph
from src.graph.performance_graph import GraphEdge, GraphStage, PerformanceGraph, StatusView, remap
from src.graph.productions import PRODUCTIONS, Production, ProductionContext, register_production
from src.graph.records import (
    NULL_CHANGE,
    EdgeKind,
    Instruction,
    Interaction,
    PartStatus,
    Snapshot,
)

__all__ = [
    "NULL_CHANGE",
    "PRODUCTIONS",
    "ChangeEdge",
    "ChangeGraph",
    "EdgeKind",
    "GraphEdge",
    "GraphStage",
    "Instruction",
    "Interaction",
    "PartStatus",
    "PerformanceGraph",
    "Production",
    "ProductionContext",
    "Snapshot",
    "StatusView",
    "register_production",
    "remap",
]
