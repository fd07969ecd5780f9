"""Configuration system for backup-courier.

This module provides TOML-based configuration loading, validation,
and schema definitions for the watcher and reassembly services.
"""

from .loader import ConfigError, find_config_file, load_config
from .schema import (
    Config,
    GlobalConfig,
    LedgerConfig,
    ReassemblyConfig,
    TransferConfig,
    WatchConfig,
)

__all__ = [
    "GlobalConfig",
    "WatchConfig",
    "TransferConfig",
    "LedgerConfig",
    "ReassemblyConfig",
    "Config",
    "load_config",
    "find_config_file",
    "ConfigError",
]
