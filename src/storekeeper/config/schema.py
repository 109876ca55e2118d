"""
storekeeper: configuration schema and validation.

File: src/storekeeper/config/schema.py

Purpose
- Define the immutable store configuration, its defaults, and strict
  validation rules.

Functional requirements
- Validate mapping payloads (parsed TOML/YAML, env and dotted overrides) and
  report every problem as a structured ``(path, message)`` issue.
- Reject unknown keys instead of silently ignoring them.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

from storekeeper import constants
from storekeeper.errors import ConfigurationError, ConfigurationIssue


@dataclass(frozen=True, slots=True)
class OpenOptions:
    read_only: bool = False
    must_exist: bool = False
    busy_timeout_ms: int = constants.DEFAULT_BUSY_TIMEOUT_MS
    cache_size: int = constants.DEFAULT_CACHE_SIZE_PAGES
    statement_cache_size: int = constants.DEFAULT_STATEMENT_CACHE_SIZE
    foreign_keys: bool = True


@dataclass(frozen=True, slots=True)
class MigrationSettings:
    directory: str = constants.DEFAULT_MIGRATIONS_DIRECTORY
    table_name: str = constants.DEFAULT_MIGRATIONS_TABLE


@dataclass(frozen=True, slots=True)
class BackupSettings:
    enabled: bool = False
    directory: str = constants.DEFAULT_BACKUP_DIRECTORY
    interval_minutes: float = constants.DEFAULT_BACKUP_INTERVAL_MINUTES
    max_backups: int = constants.DEFAULT_MAX_BACKUPS
    pattern: str = constants.DEFAULT_BACKUP_PATTERN


@dataclass(frozen=True, slots=True)
class StoreConfig:
    """Immutable configuration for one ``StoreManager``.

    ``filename`` may be ``":memory:"`` for a private in-memory store.
    """

    filename: str
    options: OpenOptions = field(default_factory=OpenOptions)
    migrations: MigrationSettings = field(default_factory=MigrationSettings)
    backup: BackupSettings = field(default_factory=BackupSettings)

    @property
    def is_memory(self) -> bool:
        return self.filename == ":memory:"

    @property
    def path(self) -> Path:
        return Path(self.filename)

    @property
    def backup_directory(self) -> Path:
        """Backup directory; relative paths hang off the store file's directory."""

        directory = Path(self.backup.directory)
        if directory.is_absolute() or self.is_memory:
            return directory
        return self.path.parent / directory


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigurationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigurationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigurationIssue, ...]:
        return tuple(self._items)

    @property
    def has_issues(self) -> bool:
        return bool(self._items)


_SECTIONS: dict[str, type[Any]] = {
    "options": OpenOptions,
    "migrations": MigrationSettings,
    "backup": BackupSettings,
}


def default_config(filename: str) -> StoreConfig:
    """Built-in defaults: read-write, migrations tracked in ``_migrations``, backups off."""

    return assert_valid_config(StoreConfig(filename=filename))


def config_to_dict(config: StoreConfig) -> dict[str, Any]:
    return asdict(config)


def config_from_mapping(payload: Mapping[str, object]) -> StoreConfig:
    """Build and validate a ``StoreConfig`` from a nested mapping."""

    issues = _IssueCollector()
    if not isinstance(payload, Mapping):
        raise ConfigurationError(
            "invalid store configuration",
            [ConfigurationIssue("<root>", f"expected object, got {type(payload).__name__}")],
        )

    _reject_unknown_keys(payload, {"filename", *_SECTIONS}, "", issues)
    filename = payload.get("filename")
    if filename is None:
        issues.add("filename", "missing required field")

    sections: dict[str, object] = {}
    for name, section_type in _SECTIONS.items():
        raw = payload.get(name, {})
        if not isinstance(raw, Mapping):
            issues.add(name, f"expected object, got {type(raw).__name__}")
            continue
        allowed = set(section_type.__dataclass_fields__)
        _reject_unknown_keys(raw, allowed, name, issues)
        known = {key: value for key, value in raw.items() if key in allowed}
        sections[name] = section_type(**known)

    if issues.has_issues:
        raise ConfigurationError("invalid store configuration", issues.items())
    config = StoreConfig(filename=filename, **sections)  # type: ignore[arg-type]
    return assert_valid_config(config)


def validate_config(config: StoreConfig) -> tuple[ConfigurationIssue, ...]:
    """Return every problem with ``config``; empty when valid."""

    issues = _IssueCollector()
    if not isinstance(config, StoreConfig):
        issues.add("<root>", f"expected StoreConfig, got {type(config).__name__}")
        return issues.items()

    _check_text(config.filename, "filename", issues)

    options = config.options
    _check_bool(options.read_only, "options.read_only", issues)
    _check_bool(options.must_exist, "options.must_exist", issues)
    _check_bool(options.foreign_keys, "options.foreign_keys", issues)
    _check_int(options.busy_timeout_ms, "options.busy_timeout_ms", issues, minimum=0)
    # Negative cache_size is SQLite's "-KiB" form; only zero and non-integers are rejected.
    if _check_int(options.cache_size, "options.cache_size", issues) and options.cache_size == 0:
        issues.add("options.cache_size", "must not be 0")
    _check_int(options.statement_cache_size, "options.statement_cache_size", issues, minimum=0)
    if config.is_memory and options.read_only:
        issues.add("options.read_only", "an in-memory store cannot be opened read-only")

    migrations = config.migrations
    _check_text(migrations.directory, "migrations.directory", issues)
    _check_text(migrations.table_name, "migrations.table_name", issues)

    backup = config.backup
    _check_bool(backup.enabled, "backup.enabled", issues)
    _check_text(backup.directory, "backup.directory", issues)
    _check_text(backup.pattern, "backup.pattern", issues)
    _check_int(backup.max_backups, "backup.max_backups", issues, minimum=1)
    interval = backup.interval_minutes
    if isinstance(interval, bool) or not isinstance(interval, (int, float)):
        issues.add("backup.interval_minutes", f"expected number, got {type(interval).__name__}")
    elif not math.isfinite(interval) or interval <= 0:
        issues.add("backup.interval_minutes", "must be a finite number > 0")
    if backup.enabled and config.is_memory:
        issues.add("backup.enabled", "periodic backups require a file-backed store")

    return issues.items()


def assert_valid_config(config: StoreConfig) -> StoreConfig:
    """Raise ``ConfigurationError`` listing every issue, else return ``config``."""

    issues = validate_config(config)
    if issues:
        raise ConfigurationError("invalid store configuration", issues)
    return config


def _check_text(value: object, path: str, issues: _IssueCollector) -> bool:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return False
    if not value.strip():
        issues.add(path, "must not be empty")
        return False
    if "\x00" in value:
        issues.add(path, "must not contain NUL bytes")
        return False
    return True


def _check_bool(value: object, path: str, issues: _IssueCollector) -> bool:
    if isinstance(value, bool):
        return True
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return False


def _check_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> bool:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return False
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return False
    return True


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload, key=str):
        if key not in allowed:
            issues.add(_join(path, str(key)), "unknown field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


__all__ = [
    "BackupSettings",
    "MigrationSettings",
    "OpenOptions",
    "StoreConfig",
    "assert_valid_config",
    "config_from_mapping",
    "config_to_dict",
    "default_config",
    "validate_config",
]
