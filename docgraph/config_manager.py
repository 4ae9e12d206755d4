"""Settings manager for the document graph using a TOML file."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields
from typing import Any, Dict

import toml

from . import config
from .config import CONFIG_FILE

logger = logging.getLogger(__name__)

SECTION = "graph"


@dataclass(frozen=True)
class GraphSettings:
    """Tunable graph-view constants persisted under ``[graph]``."""

    max_nodes: int = config.DEFAULT_MAX_NODES
    load_more_increment: int = config.LOAD_MORE_INCREMENT
    debounce_seconds: float = config.REBUILD_DEBOUNCE_SECONDS
    neighbor_depth: int = config.DEFAULT_NEIGHBOR_DEPTH
    show_external_links: bool = config.DEFAULT_SHOW_EXTERNAL_LINKS

    def validate(self) -> None:
        if self.max_nodes < 1:
            raise ValueError("max_nodes must be at least 1")
        if self.load_more_increment < 1:
            raise ValueError("load_more_increment must be at least 1")
        if self.debounce_seconds < 0:
            raise ValueError("debounce_seconds must not be negative")
        if not 0 <= self.neighbor_depth <= config.MAX_NEIGHBOR_DEPTH:
            raise ValueError(
                f"neighbor_depth must be between 0 and {config.MAX_NEIGHBOR_DEPTH}"
            )


SETTING_KEYS = tuple(f.name for f in fields(GraphSettings))


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r", encoding="utf-8") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Ignoring unreadable config %s: %s", CONFIG_FILE, exc)
        return {}


def _save_full_config(payload: Dict[str, Any]) -> None:
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    with open(CONFIG_FILE, "w", encoding="utf-8") as f:
        toml.dump(payload, f)


def load_graph_settings() -> GraphSettings:
    """Load ``[graph]`` settings, falling back to defaults per key.

    Unknown keys are ignored; a section that fails validation is replaced
    by the defaults as a whole.
    """
    section = load_full_config().get(SECTION, {})
    known = {key: value for key, value in section.items() if key in SETTING_KEYS}
    try:
        settings = GraphSettings(**known)
        settings.validate()
    except (TypeError, ValueError) as exc:
        logger.warning("Invalid [graph] settings, using defaults: %s", exc)
        return GraphSettings()
    return settings


def save_graph_settings(settings: GraphSettings) -> None:
    """Persist *settings*, preserving other sections of the file."""
    settings.validate()
    payload = load_full_config()
    payload[SECTION] = asdict(settings)
    _save_full_config(payload)


def update_graph_setting(key: str, raw_value: str) -> GraphSettings:
    """Coerce *raw_value* to the type of *key*, save and return the new settings."""
    if key not in SETTING_KEYS:
        raise KeyError(f"Unknown setting '{key}'. Choose from: {', '.join(SETTING_KEYS)}")

    current = asdict(load_graph_settings())
    current[key] = _coerce(raw_value, type(current[key]))
    settings = GraphSettings(**current)
    save_graph_settings(settings)
    return settings


def reset_graph_settings() -> GraphSettings:
    payload = load_full_config()
    if payload.pop(SECTION, None) is not None:
        _save_full_config(payload)
    return GraphSettings()


def _coerce(raw_value: str, target: type) -> Any:
    if target is bool:
        lowered = raw_value.strip().lower()
        if lowered in {"1", "true", "yes", "on"}:
            return True
        if lowered in {"0", "false", "no", "off"}:
            return False
        raise ValueError(f"Expected a boolean, got '{raw_value}'")
    return target(raw_value)
