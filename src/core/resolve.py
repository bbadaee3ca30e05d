from __future__ import annotations

from pathlib import Path
from typing import Optional


PROJECT_ROOT = Path(__file__).resolve().parents[2]
INSTRUMENTS_ROOT = PROJECT_ROOT / "config" / "instruments"


def resolve_project_path(path_value: str) -> Path:
    if not path_value:
        raise ValueError("Path is required.")
    path = Path(path_value)
    if path.is_absolute():
        raise ValueError("Absolute paths are not allowed.")
    resolved = (PROJECT_ROOT / path).resolve()
    if resolved != PROJECT_ROOT and PROJECT_ROOT not in resolved.parents:
        raise ValueError("Path escapes project root.")
    return resolved


def resolve_instrument_config(name_or_path: str | Path, root: Optional[Path] = None) -> Path:
    """Resolve an instrument ID (``guitar``) or a YAML path to a config file."""
    candidate = Path(name_or_path)
    if candidate.suffix in {".yaml", ".yml"}:
        if not candidate.exists():
            raise FileNotFoundError(f"Instrument config not found: {candidate}")
        return candidate.resolve()
    instrument_id = str(name_or_path)
    if not instrument_id:
        raise ValueError("instrument is required.")
    if "/" in instrument_id or "\\" in instrument_id:
        raise ValueError("instrument must be an ID (file stem).")
    base = (root or INSTRUMENTS_ROOT).resolve()
    config_path = (base / f"{instrument_id}.yaml").resolve()
    if base not in config_path.parents:
        raise ValueError("instrument ID resolves outside the instruments root.")
    if not config_path.exists():
        raise FileNotFoundError(f"Instrument not found: {instrument_id}")
    return config_path
