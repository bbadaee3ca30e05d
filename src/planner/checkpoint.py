"""Planning-session checkpoints: graph, part states, frontier and cursor."""

from __future__ import annotations

import json
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from src.core.config import Settings
from src.core.errors import CheckpointError
from src.core.logging_utils import get_logger
from src.graph.performance_graph import PerformanceGraph
from src.instruments.instrument import Instrument
from src.state.machine import State

logger = get_logger(__name__)

CHECKPOINT_VERSION = 1


@dataclass
class Checkpoint:
    graph: PerformanceGraph
    frontier: List[int]
    cursor: List[str]
    part_states: Dict[int, State] = field(default_factory=dict)
    session_id: Optional[str] = None

    def to_payload(self, instrument: Instrument) -> Dict[str, Any]:
        return {
            "version": CHECKPOINT_VERSION,
            "instrument": instrument.name,
            "fingerprint": instrument.fingerprint(),
            "session_id": self.session_id,
            "saved_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
            "graph": self.graph.to_dict(),
            "frontier": list(self.frontier),
            "cursor": list(self.cursor),
            "part_states": {str(uid): state.to_dict() for uid, state in sorted(self.part_states.items())},
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], instrument: Instrument) -> "Checkpoint":
        if not isinstance(payload, Mapping):
            raise CheckpointError("Checkpoint payload must be a mapping.")
        if payload.get("version") != CHECKPOINT_VERSION:
            raise CheckpointError(f"Unsupported checkpoint version: {payload.get('version')!r}")
        if payload.get("fingerprint") != instrument.fingerprint():
            raise CheckpointError(
                f"Checkpoint was written for another bootstrap of {payload.get('instrument')!r}."
            )
        try:
            graph = PerformanceGraph.from_dict(payload["graph"], instrument.registry)
            frontier = [int(handle) for handle in payload["frontier"]]
            cursor = [str(item) for item in payload.get("cursor", [])]
            part_states = {
                int(uid): State.from_dict(state) for uid, state in (payload.get("part_states") or {}).items()
            }
        except (KeyError, TypeError, ValueError) as exc:
            raise CheckpointError(f"Malformed checkpoint: {exc}") from exc
        if not frontier or any(not 0 <= handle < len(graph) for handle in frontier):
            raise CheckpointError("Checkpoint frontier refers to unknown vertices.")
        return cls(graph, frontier, cursor, part_states, payload.get("session_id"))

    def restore_part_states(self, instrument: Instrument) -> None:
        restore_part_states(instrument, self.part_states)


def default_checkpoint_path(settings: Settings, session_id: str) -> Path:
    return settings.checkpoint_dir / f"{session_id}.json"


def capture_part_states(instrument: Instrument) -> Dict[int, State]:
    return {part.uid: part.state for part in instrument.registry.parts() if part.state is not None}


def restore_part_states(instrument: Instrument, states: Mapping[int, State]) -> None:
    for uid, state in states.items():
        instrument.registry.by_uid(uid).state = state


def save_checkpoint(path: Path, checkpoint: Checkpoint, instrument: Instrument) -> Path:
    """Write the checkpoint as JSON atomically (temp file + replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = checkpoint.to_payload(instrument)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=str(path.parent),
        delete=False,
        suffix=".json",
    ) as tmp:
        tmp_name = tmp.name
        try:
            json.dump(payload, tmp)
            tmp.flush()
            os.fsync(tmp.fileno())
        except BaseException:
            tmp.close()
            os.unlink(tmp_name)
            raise
    os.replace(tmp_name, path)
    logger.info(
        "checkpoint_saved path=%s vertices=%s cursor=%s",
        path,
        len(checkpoint.graph),
        len(checkpoint.cursor),
    )
    return path


def load_checkpoint(path: Path, instrument: Instrument) -> Checkpoint:
    path = Path(path)
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise
    except (OSError, json.JSONDecodeError) as exc:
        raise CheckpointError(f"Cannot read checkpoint {path}: {exc}") from exc
    checkpoint = Checkpoint.from_payload(payload, instrument)
    logger.info("checkpoint_loaded path=%s vertices=%s", path, len(checkpoint.graph))
    return checkpoint
