"""Instrument bootstrap from YAML configuration."""

from __future__ import annotations

import itertools
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import yaml

from src.core.errors import ConfigurationError
from src.core.logging_utils import get_logger
from src.core.resolve import resolve_instrument_config
from src.graph.change_graph import ChangeGraph
from src.instruments.instrument import Instrument
from src.preference.engine import validate_preferences
from src.preference.model import Preference, Scope
from src.registry.kinds import PartKindTable, coerce_value, parameter_type
from src.registry.parts import PartRegistry
from src.state.machine import StateMachine, validate_totality
from src.taxonomy.changes import Change, ChangeCatalog

logger = get_logger(__name__)

_INSTRUMENT_CACHE: Dict[Path, Instrument] = {}
_CACHE_LOCK = threading.Lock()


def _section(config: Mapping[str, Any], name: str, expected: type, default: Any) -> Any:
    value = config.get(name)
    if value is None:
        return default
    if not isinstance(value, expected):
        raise ConfigurationError(f"Instrument section '{name}' must be a {expected.__name__}.")
    return value


def _expand(axis: Any) -> List[Any]:
    """A product axis is a list of values or an inclusive ``{start, stop}`` span."""
    if isinstance(axis, Mapping):
        try:
            return list(range(int(axis["start"]), int(axis["stop"]) + 1))
        except KeyError as exc:
            raise ConfigurationError(f"Span axis missing {exc.args[0]!r}: {dict(axis)}") from None
    if not isinstance(axis, list):
        raise ConfigurationError(f"Product axis must be a list or a span: {axis!r}")
    return axis


def _create_parts(registry: PartRegistry, rows: List[Mapping[str, Any]]) -> None:
    for row in rows:
        kind = row.get("kind")
        if not kind:
            raise ConfigurationError(f"Constructor row without a kind: {dict(row)}")
        types = [parameter_type(name) for name in row.get("parameters") or []]
        ranges = row.get("ranges")
        creator = registry.creator(str(kind)).with_constructor(*types)
        if ranges is not None:
            creator = creator.with_parameter_ranges(*ranges)
        if "product" in row:
            value_rows = list(itertools.product(*(_expand(axis) for axis in row["product"])))
        else:
            value_rows = row.get("values") or ([()] if not types else [])
        for values in value_rows:
            values = values if isinstance(values, (list, tuple)) else [values]
            if len(values) != len(types):
                raise ConfigurationError(
                    f"{kind} takes {len(types)} parameters, got {list(values)}."
                )
            creator.with_values(*(coerce_value(v, t) for v, t in zip(values, types)))


def build_instrument(config: Mapping[str, Any], *, validate: bool = True) -> Instrument:
    """Build a validated instrument from a configuration mapping."""
    if not isinstance(config, Mapping):
        raise ConfigurationError("Instrument configuration must be a mapping.")
    name = str(config.get("name") or "instrument")
    kinds = PartKindTable.from_config(_section(config, "parts", list, []))
    concrete = {str(k): str(v) for k, v in _section(config, "concrete_kinds", dict, {}).items()}
    for abstract_kind, concrete_kind in concrete.items():
        if abstract_kind not in kinds or concrete_kind not in kinds:
            raise ConfigurationError(f"Concrete kind mapping {abstract_kind} -> {concrete_kind} names unknown kinds.")
        if not kinds.is_kind(concrete_kind, abstract_kind):
            raise ConfigurationError(f"{concrete_kind} does not implement {abstract_kind}.")
    registry = PartRegistry(kinds=kinds, concrete_kinds=concrete)
    _create_parts(registry, _section(config, "constructors", list, []))

    catalog = ChangeCatalog(Change.from_config(row) for row in _section(config, "changes", list, []))
    for change in catalog:
        for kind in change.masculine + change.feminine:
            if kind not in kinds:
                raise ConfigurationError(f"Change {change.name} names unknown part kind {kind}.")
    for label, targets in _section(config, "classifications", dict, {}).items():
        catalog.classify(str(label), targets)

    change_graph = ChangeGraph.from_config(catalog, _section(config, "change_graph", list, []))
    change_graph.freeze()

    machines = {
        str(kind): StateMachine.from_config(str(kind), row or {})
        for kind, row in _section(config, "state_machines", dict, {}).items()
    }
    for kind in machines:
        if kind not in kinds:
            raise ConfigurationError(f"State machine declared for unknown part kind {kind}.")

    preferences = [
        Preference.from_config(row, Scope.SCORE)
        for row in _section(config, "preferences", list, [])
    ]
    validate_preferences(preferences)

    instrument = Instrument(name, kinds, registry, catalog, change_graph, machines, preferences)
    if validate:
        validate_totality(change_graph, machines, kinds)
    instrument.reset_states()
    logger.info(
        "instrument_built name=%s parts=%s changes=%s edges=%s",
        name,
        len(registry),
        len(catalog),
        len(change_graph.edges()),
    )
    return instrument


def load_instrument(name_or_path: str | Path, root: Optional[Path] = None) -> Instrument:
    """Load and cache an instrument by ID or YAML path."""
    path = resolve_instrument_config(name_or_path, root)
    with _CACHE_LOCK:
        cached = _INSTRUMENT_CACHE.get(path)
        if cached is not None:
            return cached
        config = yaml.safe_load(path.read_text(encoding="utf8"))
        if not isinstance(config, dict):
            raise ConfigurationError(f"Instrument config {path} must hold a mapping.")
        config.setdefault("name", path.stem)
        instrument = build_instrument(config)
        _INSTRUMENT_CACHE[path] = instrument
        logger.debug("instrument_cached path=%s", path)
        return instrument


def clear_instrument_cache() -> None:
    with _CACHE_LOCK:
        _INSTRUMENT_CACHE.clear()
