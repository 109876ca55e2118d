"""
storekeeper: store config loader.

File: src/storekeeper/config/loader.py

Purpose
- Load an effective ``StoreConfig`` from a TOML or YAML file, environment
  variables, and explicit dotted-key overrides.

Functional requirements
- Precedence: overrides > env (``STOREKEEPER_``) > file > defaults.
- TOML via ``tomllib``; ``.yaml``/``.yml`` via PyYAML ``safe_load``.
- Relative paths are resolved against the config file's directory.
"""

from __future__ import annotations

import os
import tomllib
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Literal

import yaml

from storekeeper.config.schema import StoreConfig, config_from_mapping, config_to_dict
from storekeeper.errors import ConfigurationError, ConfigurationIssue

ENV_PREFIX: Final[str] = "STOREKEEPER_"
MEMORY_FILENAME: Final[str] = ":memory:"

PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("filename",),
    ("migrations", "directory"),
    ("backup", "directory"),
)

_YAML_SUFFIXES: Final[frozenset[str]] = frozenset({".yaml", ".yml"})
_BOOLEAN_TRUE: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_BOOLEAN_FALSE: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

_ValueType = Literal["str", "int", "float", "bool"]


@dataclass(frozen=True, slots=True)
class _Binding:
    path: tuple[str, ...]
    value_type: _ValueType


def load_config(
    config_path: str | Path | None = None,
    *,
    overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> StoreConfig:
    """Load the effective store config.

    Without a file, ``filename`` must come from the environment or overrides.
    """

    env_map = dict(os.environ if environ is None else environ)
    base_dir = Path.cwd()
    payload: dict[str, Any] = _defaults_payload()

    if config_path is not None:
        resolved = Path(config_path).expanduser().resolve()
        base_dir = resolved.parent
        _merge_into(payload, load_config_file(resolved))

    for binding_name, binding in sorted(_build_bindings().items()):
        raw = env_map.get(binding_name)
        if raw is None:
            continue
        _set_nested(payload, binding.path, _coerce_env(raw, binding, binding_name))

    for key in sorted(overrides or {}):
        path = tuple(part for part in key.split(".") if part)
        if not path:
            raise _load_error(key, "invalid override key")
        _set_nested(payload, path, (overrides or {})[key])

    if payload.get("filename") in (None, ""):
        raise _load_error("filename", "missing required field")
    return config_from_mapping(normalize_paths(payload, base_dir=base_dir))


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Parse a TOML or YAML file into a plain mapping, chosen by suffix."""

    resolved = Path(path)
    if not resolved.exists():
        raise _load_error(str(resolved), "config file not found")
    try:
        if resolved.suffix.lower() in _YAML_SUFFIXES:
            with resolved.open("r", encoding="utf-8") as handle:
                parsed = yaml.safe_load(handle)
            if parsed is None:
                parsed = {}
        else:
            with resolved.open("rb") as handle:
                parsed = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise _load_error(str(resolved), f"invalid TOML: {exc}") from exc
    except yaml.YAMLError as exc:
        raise _load_error(str(resolved), f"invalid YAML: {exc}") from exc
    except OSError as exc:
        raise _load_error(str(resolved), f"unable to read config file: {exc}") from exc

    if not isinstance(parsed, dict):
        raise _load_error(str(resolved), "config root must be an object")
    # Allow the settings to live under a [store] table.
    store = parsed.get("store")
    if isinstance(store, dict) and len(parsed) == 1:
        return store
    return parsed


def normalize_paths(payload: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path fields relative to ``base_dir``."""

    materialized: dict[str, Any] = {}
    _merge_into(materialized, payload)
    for field_path in PATH_FIELDS:
        value = _get_nested(materialized, field_path)
        if not isinstance(value, str) or not value or value == MEMORY_FILENAME:
            continue
        _set_nested(materialized, field_path, _normalize_one_path(value, base_dir))
    return materialized


def env_names() -> tuple[str, ...]:
    """Every environment variable ``load_config`` consults."""

    return tuple(sorted(_build_bindings()))


def _defaults_payload() -> dict[str, Any]:
    payload = config_to_dict(StoreConfig(filename=""))
    payload.pop("filename")
    return payload


def _build_bindings() -> dict[str, _Binding]:
    bindings: dict[str, _Binding] = {
        _env_name_for_path(("filename",)): _Binding(("filename",), "str"),
    }
    for path, value in _iter_scalar_paths(_defaults_payload()):
        kind = _kind_for_value(value)
        if kind is not None:
            bindings[_env_name_for_path(path)] = _Binding(path=path, value_type=kind)
    return bindings


def _iter_scalar_paths(
    payload: Mapping[str, object],
    prefix: tuple[str, ...] = (),
) -> list[tuple[tuple[str, ...], object]]:
    pairs: list[tuple[tuple[str, ...], object]] = []
    for key in sorted(payload):
        value = payload[key]
        path = (*prefix, key)
        if isinstance(value, Mapping):
            pairs.extend(_iter_scalar_paths(value, path))
        else:
            pairs.append((path, value))
    return pairs


def _kind_for_value(value: object) -> _ValueType | None:
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, int):
        return "int"
    if isinstance(value, float):
        return "float"
    if isinstance(value, str):
        return "str"
    return None


def _coerce_env(raw: str, binding: _Binding, env_name: str) -> object:
    value = raw.strip()
    dotted = ".".join(binding.path)
    if binding.value_type == "str":
        return value
    if binding.value_type == "int":
        try:
            return int(value)
        except ValueError as exc:
            raise _load_error(dotted, f"{env_name} must be an integer") from exc
    if binding.value_type == "float":
        try:
            return float(value)
        except ValueError as exc:
            raise _load_error(dotted, f"{env_name} must be a number") from exc

    lowered = value.lower()
    if lowered in _BOOLEAN_TRUE:
        return True
    if lowered in _BOOLEAN_FALSE:
        return False
    raise _load_error(dotted, f"{env_name} must be a boolean (true/false/1/0/yes/no/on/off)")


def _merge_into(target: dict[str, Any], source: Mapping[str, object]) -> None:
    for key in sorted(source, key=str):
        value = source[key]
        if isinstance(value, Mapping):
            child = target.get(key)
            if not isinstance(child, dict):
                child = {}
                target[key] = child
            _merge_into(child, value)
        else:
            target[key] = value


def _set_nested(target: dict[str, Any], path: tuple[str, ...], value: object) -> None:
    cursor = target
    for part in path[:-1]:
        next_node = cursor.get(part)
        if not isinstance(next_node, dict):
            next_node = {}
            cursor[part] = next_node
        cursor = next_node
    cursor[path[-1]] = value


def _get_nested(payload: Mapping[str, object], path: tuple[str, ...]) -> object | None:
    cursor: object = payload
    for part in path:
        if not isinstance(cursor, Mapping) or part not in cursor:
            return None
        cursor = cursor[part]
    return cursor


def _normalize_one_path(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(str(candidate))).as_posix()


def _env_name_for_path(path: tuple[str, ...]) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in path)


def _load_error(path: str, message: str) -> ConfigurationError:
    issue = ConfigurationIssue(path, message)
    return ConfigurationError("unable to load store configuration", [issue])


__all__ = [
    "ENV_PREFIX",
    "PATH_FIELDS",
    "env_names",
    "load_config",
    "load_config_file",
    "normalize_paths",
]
