"""Action-selection planner: score model, exploration loop and sessions."""

from src.planner.asm import IterationEvent, PhraseExplorer, PhraseResult, PlannerPhase
from src.planner.checkpoint import Checkpoint, default_checkpoint_path, load_checkpoint, save_checkpoint
from src.planner.context import CancellationToken, Deadline, PlanningContext
from src.planner.planner import Planner, PlanningSession, plan
from src.planner.score import Element, Instance, PartQuery, Phrase, Score, Section

__all__ = [
    "CancellationToken",
    "Checkpoint",
    "Deadline",
    "Element",
    "Instance",
    "IterationEvent",
    "PartQuery",
    "Phrase",
    "PhraseExplorer",
    "PhraseResult",
    "Planner",
    "PlannerPhase",
    "PlanningContext",
    "PlanningSession",
    "Score",
    "Section",
    "default_checkpoint_path",
    "load_checkpoint",
    "plan",
    "save_checkpoint",
]
