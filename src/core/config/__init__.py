from __future__ import annotations

"""Planner settings loader from environment variables."""

from dataclasses import dataclass
from pathlib import Path
import os

from src.core.resolve import PROJECT_ROOT, resolve_project_path


def _env_int(name: str, default: int) -> int:
    """Read an int env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    """Read a float env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return float(value)


def _env_bool(name: str, default: bool) -> bool:
    """Read a boolean env var with a default."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return value.lower() in {"1", "true", "yes"}


def _app_env() -> str:
    """Return the application environment name."""
    return os.getenv("APP_ENV") or os.getenv("ENV") or "dev"


def _project_dir(name: str, default: str) -> Path:
    """Resolve a directory env var that must stay within the project root."""
    value = os.getenv(name) or default
    try:
        return resolve_project_path(value)
    except ValueError as exc:
        raise ValueError(f"{name}: {exc}") from exc


@dataclass(frozen=True)
class Settings:
    """Configuration values parsed from the environment."""
    project_root: Path
    instruments_dir: Path
    checkpoint_dir: Path
    max_branching: int
    max_candidates: int
    workers: int
    phrase_timeout_seconds: float
    worker_retries: int
    planner_debug: bool
    app_env: str

    @property
    def phrase_timeout(self) -> float | None:
        """Return the per-phrase deadline in seconds, or None when disabled."""
        if self.phrase_timeout_seconds <= 0:
            return None
        return self.phrase_timeout_seconds

    @classmethod
    def from_env(cls) -> "Settings":
        """Construct settings from environment variables."""
        instruments_dir = _project_dir("PLANNER_INSTRUMENTS_DIR", "config/instruments")
        checkpoint_dir = _project_dir("PLANNER_CHECKPOINT_DIR", "data/checkpoints")
        max_branching = _env_int("PLANNER_MAX_BRANCHING", 8)
        if max_branching < 1:
            raise ValueError("PLANNER_MAX_BRANCHING must be at least 1.")
        max_candidates = _env_int("PLANNER_MAX_CANDIDATES", 256)
        if max_candidates < 1:
            raise ValueError("PLANNER_MAX_CANDIDATES must be at least 1.")
        workers = max(1, _env_int("PLANNER_WORKERS", 4))
        phrase_timeout_seconds = _env_float("PLANNER_PHRASE_TIMEOUT_SECONDS", 30.0)
        worker_retries = max(0, _env_int("PLANNER_WORKER_RETRIES", 1))
        planner_debug = _env_bool("PLANNER_DEBUG", False)
        app_env = _app_env()
        return cls(
            project_root=PROJECT_ROOT,
            instruments_dir=instruments_dir,
            checkpoint_dir=checkpoint_dir,
            max_branching=max_branching,
            max_candidates=max_candidates,
            workers=workers,
            phrase_timeout_seconds=phrase_timeout_seconds,
            worker_retries=worker_retries,
            planner_debug=planner_debug,
            app_env=app_env,
        )
