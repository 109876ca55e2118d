"""Store configuration: schema, validation, and file/env loading."""

from storekeeper.config.loader import ENV_PREFIX, load_config, load_config_file
from storekeeper.config.schema import (
    BackupSettings,
    MigrationSettings,
    OpenOptions,
    StoreConfig,
    assert_valid_config,
    config_from_mapping,
    default_config,
    validate_config,
)

__all__ = [
    "ENV_PREFIX",
    "BackupSettings",
    "MigrationSettings",
    "OpenOptions",
    "StoreConfig",
    "assert_valid_config",
    "config_from_mapping",
    "default_config",
    "load_config",
    "load_config_file",
    "validate_config",
]
