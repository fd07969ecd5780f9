"""TOML configuration loading and validation.

Handles config file discovery, parsing, and validation with helpful error messages.
"""

import os
import tomllib
from pathlib import Path
from typing import Any

from ..__util__ import parse_size
from .schema import (
    DEFAULT_PART_SIZE,
    Config,
    GlobalConfig,
    LedgerConfig,
    ReassemblyConfig,
    TransferConfig,
    WatchConfig,
)


class ConfigError(Exception):
    """Configuration loading or validation error."""

    pass


# Config file search paths in priority order
CONFIG_PATHS = [
    Path.home() / ".config" / "backup-courier" / "config.toml",
    Path("/etc/backup-courier/config.toml"),
]

API_KEY_ENV = "BACKUP_COURIER_API_KEY"


def find_config_file(explicit_path: str | None = None) -> Path | None:
    """Find configuration file.

    Args:
        explicit_path: Explicitly specified config path (highest priority)

    Returns:
        Path to config file, or None if not found
    """
    if explicit_path:
        path = Path(explicit_path)
        if path.exists():
            return path
        raise ConfigError(f"Config file not found: {explicit_path}")

    for path in CONFIG_PATHS:
        if path.exists():
            return path

    return None


def _parse_global(data: dict[str, Any]) -> GlobalConfig:
    """Parse global configuration from dict."""
    return GlobalConfig(
        temp_dir=data.get("temp_dir", "/var/tmp/backup-courier"),
        log_file=data.get("log_file"),
        transaction_log=data.get("transaction_log"),
        quiet=data.get("quiet", False),
        verbose=data.get("verbose", False),
    )


def _parse_watch(data: dict[str, Any]) -> WatchConfig:
    """Parse watcher configuration from dict."""
    extensions = data.get("extensions", [".zip", ".daf"])
    if isinstance(extensions, str):
        extensions = [extensions]
    if not isinstance(extensions, list) or not all(
        isinstance(e, str) for e in extensions
    ):
        raise ConfigError("watch.extensions must be a list of strings")

    return WatchConfig(
        root=data.get("root", "/var/wordpress_backups"),
        extensions=extensions,
        poll_interval=float(data.get("poll_interval", 30.0)),
        max_attempts=int(data.get("max_attempts", 20)),
        workers=int(data.get("workers", 4)),
    )


def _parse_transfer(data: dict[str, Any]) -> TransferConfig:
    """Parse transfer configuration from dict."""
    try:
        part_size = parse_size(data.get("part_size", DEFAULT_PART_SIZE))
    except ValueError as e:
        raise ConfigError(f"transfer.part_size: {e}")

    return TransferConfig(
        part_size=part_size,
        upload_workers=int(data.get("upload_workers", 3)),
        shutdown_grace=float(data.get("shutdown_grace", 60.0)),
    )


def _parse_ledger(data: dict[str, Any]) -> LedgerConfig:
    """Parse ledger configuration from dict."""
    return LedgerConfig(
        api_url=data.get("api_url", "https://api.clickup.com/api/v2").rstrip("/"),
        api_key=os.environ.get(API_KEY_ENV) or data.get("api_key"),
        auth_scheme=data.get("auth_scheme", ""),
        list_id=data.get("list_id"),
        link_field_id=data.get("link_field_id"),
        timeout=float(data.get("timeout", 90.0)),
        in_progress_status=data.get("in_progress_status", "in progress"),
        complete_status=data.get("complete_status", "complete"),
    )


def _parse_reassembly(data: dict[str, Any]) -> ReassemblyConfig:
    """Parse reassembly configuration from dict."""
    return ReassemblyConfig(
        base_url=data.get("base_url", "http://localhost/temp").rstrip("/"),
        ttl=int(data.get("ttl", 3600)),
        post_comment=data.get("post_comment", True),
    )


def _validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of warnings.

    Raises:
        ConfigError: For values the services cannot run with
    """
    warnings = []

    if config.transfer.part_size <= 0:
        raise ConfigError("transfer.part_size must be greater than zero")
    if config.transfer.upload_workers < 1:
        raise ConfigError("transfer.upload_workers must be at least 1")
    if config.watch.workers < 1:
        raise ConfigError("watch.workers must be at least 1")
    if config.watch.max_attempts < 1:
        raise ConfigError("watch.max_attempts must be at least 1")
    if config.watch.poll_interval < 0:
        raise ConfigError("watch.poll_interval cannot be negative")
    if config.reassembly.ttl <= 0:
        raise ConfigError("reassembly.ttl must be greater than zero")

    if not config.watch.extensions:
        warnings.append("No backup extensions configured, nothing will be picked up")

    if not config.ledger.api_key:
        warnings.append(f"No ledger API key configured (set ledger.api_key or {API_KEY_ENV})")
    if not config.ledger.list_id:
        warnings.append("No ledger list_id configured, backup tasks cannot be created")
    if not config.ledger.link_field_id:
        warnings.append("No ledger link_field_id configured, backup tasks cannot be linked")

    if not Path(config.watch.root).is_dir():
        warnings.append(f"Watch root '{config.watch.root}' does not exist")

    return warnings


def load_config(path: Path | str) -> tuple[Config, list[str]]:
    """Load and validate configuration from TOML file.

    Args:
        path: Path to configuration file

    Returns:
        Tuple of (Config object, list of warnings)

    Raises:
        ConfigError: If config is invalid or cannot be parsed
    """
    path = Path(path)

    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except tomllib.TOMLDecodeError as e:
        raise ConfigError(f"Invalid TOML syntax: {e}")
    except OSError as e:
        raise ConfigError(f"Cannot read config file: {e}")

    try:
        config = Config(
            global_config=_parse_global(data.get("global", {})),
            watch=_parse_watch(data.get("watch", {})),
            transfer=_parse_transfer(data.get("transfer", {})),
            ledger=_parse_ledger(data.get("ledger", {})),
            reassembly=_parse_reassembly(data.get("reassembly", {})),
        )
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid configuration value: {e}")

    # Validate and collect warnings
    warnings = _validate_config(config)

    return config, warnings


def generate_example_config() -> str:
    """Generate example configuration file content."""
    return """# backup-courier configuration
# See documentation for full options

[global]
temp_dir = "/var/tmp/backup-courier"
# log_file = "/var/log/backup-courier.log"
# transaction_log = "/var/log/backup-courier/transactions.jsonl"

[watch]
root = "/var/wordpress_backups"
extensions = [".zip", ".daf"]
poll_interval = 30      # Seconds between size checks
max_attempts = 20       # Give up if the size keeps changing
workers = 4             # Backups processed concurrently

[transfer]
part_size = "900M"      # Larger files are split into parts of this size
upload_workers = 3      # Parts uploaded concurrently
shutdown_grace = 60

[ledger]
api_url = "https://api.clickup.com/api/v2"
# api_key = "pk_..."    # Or set BACKUP_COURIER_API_KEY
list_id = ""
link_field_id = ""
timeout = 90

[reassembly]
base_url = "https://files.example.com/temp"
ttl = 3600              # Reassembled archives are deleted after an hour
post_comment = true
"""
