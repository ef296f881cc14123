"""Engine configuration loading and validation.

Configuration comes from an optional YAML/JSON file plus ``CXXMACRO_*``
environment overrides (a ``.env`` file is honored via python-dotenv).
Non-strict loading logs problems and falls back to defaults; strict loading
raises ``ConfigValidationError``.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from dotenv import load_dotenv

from core.proposal_contract import SafetyTier, parse_safety_tier

logger = logging.getLogger(__name__)

ENV_PREFIX = "CXXMACRO_"


class ConfigValidationError(RuntimeError):
    """Raised when strict configuration validation fails."""


class ClassConstantStyle(str, Enum):
    """Override for the ClassScopedConstant / EnumHackCandidate tie-break."""

    AUTO = "auto"
    STATIC_CONST_IN_CLASS = "static_const_in_class"
    ENUM_HACK = "enum_hack"


class FunctionNaming(str, Enum):
    """Naming policy for functions synthesized from function-like macros."""

    PRESERVE = "preserve"
    CAMEL_CASE = "camel_case"


@dataclass(frozen=True)
class EngineConfig:
    """Options recognized by the classification and rewrite engine."""

    prefer_string_type: bool = False
    class_constant_style: ClassConstantStyle = ClassConstantStyle.AUTO
    min_confidence_to_emit: SafetyTier = SafetyTier.MEDIUM
    function_naming: FunctionNaming = FunctionNaming.PRESERVE
    follow_includes: bool = True
    include_dirs: tuple[str, ...] = field(default_factory=tuple)
    companion_source_suffix: str = ".cpp"
    max_workers: int = 4


# Accept the camelCase option names used by editor integrations.
_KEY_ALIASES: dict[str, str] = {
    "preferStringType": "prefer_string_type",
    "classConstantStyle": "class_constant_style",
    "minConfidenceToEmit": "min_confidence_to_emit",
    "functionNaming": "function_naming",
    "followIncludes": "follow_includes",
    "includeDirs": "include_dirs",
    "companionSourceSuffix": "companion_source_suffix",
    "maxWorkers": "max_workers",
}

_ENUM_ALIASES: dict[str, str] = {
    "staticconstinclass": ClassConstantStyle.STATIC_CONST_IN_CLASS.value,
    "enumhack": ClassConstantStyle.ENUM_HACK.value,
    "camelcase": FunctionNaming.CAMEL_CASE.value,
}


def _env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def resolve_strict_config_validation(default: bool = False) -> bool:
    """Resolve strict validation mode from ``STRICT_CONFIG_VALIDATION`` env."""
    return _env_flag("STRICT_CONFIG_VALIDATION", default=default)


def _reject(msg: str, strict: bool) -> None:
    if strict:
        raise ConfigValidationError(msg)
    logger.warning("%s; using default", msg)


def _coerce_bool(raw: Any) -> Optional[bool]:
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return None


def _coerce_enum(enum_type: type[Enum], raw: Any) -> Optional[Enum]:
    text = str(raw).strip()
    candidates = [text, text.lower(), _ENUM_ALIASES.get(text.lower().replace("_", ""), "")]
    for candidate in candidates:
        try:
            return enum_type(candidate)
        except ValueError:
            continue
    return None


def load_config_payload(path: str, strict: bool = False) -> dict[str, Any]:
    """Load a YAML or JSON configuration file.

    In non-strict mode this returns an empty dict on read/parse failures.
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        msg = f"Engine config file not found: {path}"
        if strict:
            raise ConfigValidationError(msg) from exc
        logger.warning("%s; continuing with defaults", msg)
        return {}

    try:
        if config_path.suffix.lower() == ".json":
            payload = json.loads(text)
        else:
            payload = yaml.safe_load(text)
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        msg = f"Failed to parse engine config at {path}: {exc}"
        if strict:
            raise ConfigValidationError(msg) from exc
        logger.warning("%s; continuing with defaults", msg)
        return {}

    if payload is None:
        return {}
    if not isinstance(payload, dict):
        msg = f"Unexpected engine config payload type: {type(payload).__name__}"
        if strict:
            raise ConfigValidationError(msg)
        logger.warning("%s; continuing with defaults", msg)
        return {}
    return payload


def parse_engine_config(
    payload: Mapping[str, Any],
    strict: bool = False,
    base: Optional[EngineConfig] = None,
) -> EngineConfig:
    """Build an ``EngineConfig`` from a mapping of option names to values.

    Unknown keys and invalid values are rejected (strict) or ignored with a
    warning (non-strict).
    """
    config = base or EngineConfig()
    updates: dict[str, Any] = {}

    for raw_key, raw_value in payload.items():
        key = _KEY_ALIASES.get(str(raw_key), str(raw_key))
        if key in {"prefer_string_type", "follow_includes"}:
            value = _coerce_bool(raw_value)
            if value is None:
                _reject(f"{raw_key} must be a boolean, got {raw_value!r}", strict)
                continue
            updates[key] = value
        elif key == "class_constant_style":
            style = _coerce_enum(ClassConstantStyle, raw_value)
            if style is None:
                _reject(f"Unknown classConstantStyle {raw_value!r}", strict)
                continue
            updates[key] = style
        elif key == "function_naming":
            naming = _coerce_enum(FunctionNaming, raw_value)
            if naming is None:
                _reject(f"Unknown functionNaming {raw_value!r}", strict)
                continue
            updates[key] = naming
        elif key == "min_confidence_to_emit":
            try:
                updates[key] = parse_safety_tier(raw_value)
            except ValueError:
                _reject(f"Unknown minConfidenceToEmit {raw_value!r}", strict)
        elif key == "include_dirs":
            if isinstance(raw_value, str):
                items = [part for part in raw_value.split(os.pathsep) if part]
            elif isinstance(raw_value, (list, tuple)):
                items = [str(part) for part in raw_value if str(part).strip()]
            else:
                _reject("includeDirs must be a list or path-separated string", strict)
                continue
            updates[key] = tuple(items)
        elif key == "companion_source_suffix":
            suffix = str(raw_value).strip()
            if not suffix.startswith("."):
                _reject(f"companionSourceSuffix must start with '.', got {raw_value!r}", strict)
                continue
            updates[key] = suffix
        elif key == "max_workers":
            try:
                workers = int(raw_value)
            except (TypeError, ValueError):
                _reject(f"maxWorkers must be an integer, got {raw_value!r}", strict)
                continue
            if workers < 1:
                _reject(f"maxWorkers must be >= 1, got {workers}", strict)
                continue
            updates[key] = workers
        else:
            _reject(f"Unknown engine config key {raw_key!r}", strict)

    return replace(config, **updates)


def resolve_env_overrides(environ: Optional[Mapping[str, str]] = None) -> dict[str, str]:
    """Collect ``CXXMACRO_*`` overrides, loading ``.env`` first.

    ``CXXMACRO_MIN_CONFIDENCE_TO_EMIT=high`` maps to ``min_confidence_to_emit``.
    """
    if environ is None:
        load_dotenv()
        environ = os.environ
    overrides: dict[str, str] = {}
    for name, value in environ.items():
        if name.startswith(ENV_PREFIX) and len(name) > len(ENV_PREFIX):
            overrides[name[len(ENV_PREFIX):].lower()] = value
    return overrides


def load_engine_config(
    path: Optional[str] = None,
    strict: Optional[bool] = None,
    environ: Optional[Mapping[str, str]] = None,
    use_env: bool = True,
) -> EngineConfig:
    """Load engine configuration from file and environment.

    Args:
        path: Optional YAML/JSON config file.
        strict: Raise on invalid input. Defaults to ``STRICT_CONFIG_VALIDATION``.
        environ: Environment mapping used instead of ``os.environ``.
        use_env: Whether ``CXXMACRO_*`` overrides are applied.

    Returns:
        The resolved EngineConfig.
    """
    if strict is None:
        strict = resolve_strict_config_validation(default=False)

    config = EngineConfig()
    if path is not None:
        config = parse_engine_config(load_config_payload(path, strict=strict), strict=strict)

    if use_env:
        overrides = resolve_env_overrides(environ)
        if overrides:
            logger.info("Applying %d engine config override(s) from environment", len(overrides))
            config = parse_engine_config(overrides, strict=strict, base=config)

    logger.debug("Resolved engine config: %s", config)
    return config
