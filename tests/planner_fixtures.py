from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict

from src.core.config import Settings


_MINI_GUITAR: Dict[str, Any] = {
    "name": "mini-guitar",
    "parts": [
        {"kind": "Finger", "cardinality": 3},
        {"kind": "String", "abstract": True},
        {"kind": "NylonString", "base": "String", "cardinality": 2},
    ],
    "concrete_kinds": {"String": "NylonString"},
    "constructors": [
        {
            "kind": "Finger",
            "parameters": ["Orientation", "int"],
            "ranges": [2, 5],
            "values": [["LEFT", 1], ["RIGHT", 1], ["RIGHT", 2]],
        },
        {"kind": "String", "parameters": ["int"], "ranges": [2], "values": [[1], [2]]},
    ],
    "changes": [
        {
            "name": "Press",
            "masculine": ["Finger"],
            "feminine": ["String"],
            "effects": ["Productive", "Pitched"],
            "actions": ["Continuous", "Positional"],
            "reactions": ["Sustained"],
        },
        {
            "name": "Pluck",
            "masculine": ["Finger"],
            "feminine": ["String"],
            "effects": ["Productive", "Pitched"],
            "actions": ["Instantaneous"],
            "reactions": ["Decaying"],
        },
        {
            "name": "HammerOn",
            "masculine": ["Finger"],
            "feminine": ["String"],
            "effects": ["Productive", "Pitched"],
            "actions": ["Instantaneous", "Positional"],
            "reactions": ["Decaying"],
        },
        {
            "name": "Release",
            "masculine": ["Finger"],
            "feminine": ["String"],
            "effects": ["Reductive"],
            "actions": ["Instantaneous"],
            "reactions": ["Instantaneous"],
        },
    ],
    "classifications": {"Sounding": ["Pluck", "HammerOn"]},
    "change_graph": [
        {
            "from": ["Null", "Press", "Pluck", "HammerOn", "Release"],
            "to": "Press",
            "production": [{"rule": "requires_value", "part": "masculine", "position": 0, "values": ["LEFT"]}],
        },
        {
            "from": ["Null", "Press", "Pluck", "HammerOn", "Release"],
            "to": "Pluck",
            "production": [
                {"rule": "requires_value", "part": "masculine", "position": 0, "values": ["RIGHT"]},
                {"rule": "forbids_state", "part": "masculine", "states": ["Holding"]},
            ],
        },
        {
            "from": ["Press", "Pluck"],
            "to": "HammerOn",
            "production": [{"rule": "requires_state", "part": "feminine", "states": ["Pressed", "Sounding"]}],
        },
        {
            "from": ["Press", "Pluck", "HammerOn"],
            "to": "Release",
            "production": [{"rule": "requires_state", "part": "masculine", "states": ["Holding"]}],
        },
        {
            "from": "HammerOn",
            "to": "Pluck",
            "kind": "fallback",
            "production": [{"rule": "requires_value", "part": "masculine", "position": 0, "values": ["RIGHT"]}],
        },
    ],
    "state_machines": {
        "Finger": {
            "initial": "Idle",
            "transitions": {
                "Idle": {"Press": "Holding", "Pluck": "Idle", "HammerOn": "Holding", "Release": "Idle"},
                "Holding": {"Press": "Holding", "Pluck": "Holding", "HammerOn": "Holding", "Release": "Idle"},
            },
        },
        "String": {
            "initial": "Idle",
            "transitions": {
                "Idle": {"Press": "Pressed", "Pluck": "Sounding", "HammerOn": "HammeredOn", "Release": "Idle"},
                "Pressed": {"Press": "Pressed", "Pluck": "Sounding", "HammerOn": "HammeredOn", "Release": "Idle"},
                "Sounding": {"Press": "Pressed", "Pluck": "Sounding", "HammerOn": "HammeredOn", "Release": "Idle"},
            },
            "settle": {"HammeredOn": "Sounding"},
        },
    },
}


def mini_guitar_config() -> Dict[str, Any]:
    return copy.deepcopy(_MINI_GUITAR)


def make_settings(**overrides: Any) -> Settings:
    root = Path(__file__).resolve().parents[1]
    values: Dict[str, Any] = {
        "project_root": root,
        "instruments_dir": root / "config" / "instruments",
        "checkpoint_dir": root / "data" / "checkpoints",
        "max_branching": 8,
        "max_candidates": 256,
        "workers": 2,
        "phrase_timeout_seconds": 0.0,
        "worker_retries": 1,
        "planner_debug": False,
        "app_env": "test",
    }
    values.update(overrides)
    return Settings(**values)
