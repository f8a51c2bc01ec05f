"""YAML configuration loader.

Optional alternative to EAMES_* env vars. Example:

    engine:
      max_in_flight_tasks: 3
      max_reflect_cycles: 2
      tool_call_timeout_seconds: 60
      confirm_before_iterating: true

    defaults:
      model: claude-sonnet
      permission_mode: acceptEdits
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .config import EngineConfig
from .models import PermissionMode
from .permissions import parse_mode

logger = logging.getLogger(__name__)

# Short names accepted in ``defaults.model``.
MODEL_ALIASES: dict[str, str] = {
    "claude-opus": "claude-opus-4-20250514",
    "claude-sonnet": "claude-sonnet-4-5-20250929",
    "claude-haiku": "claude-3-5-haiku-20241022",
}

_CALLBACK_FIELDS = {"permission_callback", "user_question_callback"}


@dataclass
class DefaultsConfig:
    model: str | None = None
    permission_mode: PermissionMode | None = None


@dataclass
class EamesConfig:
    """Complete parsed YAML configuration."""
    engine: EngineConfig
    defaults: DefaultsConfig


def resolve_model_alias(name: str) -> str:
    return MODEL_ALIASES.get(name, name)


def _parse_permission_mode(value: Any) -> PermissionMode | None:
    if value is None:
        return None
    try:
        return parse_mode(str(value))
    except ValueError:
        logger.warning("Unknown permission_mode %r in config; ignoring", value)
        return None


def _coerce(current: Any, value: Any) -> Any:
    if isinstance(current, bool):
        if isinstance(value, str):
            return value.strip().lower() in {"1", "true", "yes", "on"}
        return bool(value)
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def load_yaml_config(path: str | Path) -> EamesConfig:
    """Load an ``eames.yaml`` file into an EngineConfig plus defaults."""
    path = Path(path)
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping")

    logger.info(
        "Parsed YAML config %s, sections: %s",
        path.name, ", ".join(sorted(raw)) or "(empty)",
    )

    engine = EngineConfig()
    engine_raw = raw.get("engine") or {}
    known = {f.name for f in fields(EngineConfig)} - _CALLBACK_FIELDS
    for key, value in engine_raw.items():
        if key not in known:
            logger.warning("load_yaml_config: unknown engine option %r ignored", key)
            continue
        if key == "permission_mode":
            mode = _parse_permission_mode(value)
            if mode is not None:
                engine.permission_mode = mode
            continue
        setattr(engine, key, _coerce(getattr(engine, key), value))

    defaults_raw = raw.get("defaults") or {}
    defaults = DefaultsConfig(
        model=resolve_model_alias(defaults_raw["model"]) if defaults_raw.get("model") else None,
        permission_mode=_parse_permission_mode(defaults_raw.get("permission_mode")),
    )
    if defaults.model:
        engine.model = defaults.model
    if defaults.permission_mode is not None:
        engine.permission_mode = defaults.permission_mode

    return EamesConfig(engine=engine, defaults=defaults)
