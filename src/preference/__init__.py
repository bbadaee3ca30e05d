"""Scoped preferences bounding the planner's branching."""

from src.preference.engine import PreferenceEngine, validate_preferences
from src.preference.model import Candidate, Connective, PhrasePath, Preference, PreferenceContext, Scope
from src.preference.operations import PREFERENCE_OPERATIONS, OperationSpec, operation_spec, register_operation

__all__ = [
    "PREFERENCE_OPERATIONS",
    "Candidate",
    "Connective",
    "OperationSpec",
    "PhrasePath",
    "Preference",
    "PreferenceContext",
    "PreferenceEngine",
    "Scope",
    "operation_spec",
    "register_operation",
    "validate_preferences",
]
