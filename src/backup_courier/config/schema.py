"""Configuration schema definitions using dataclasses.

Defines the structure for TOML configuration with sensible defaults.
"""

from dataclasses import dataclass, field
from typing import Optional

DEFAULT_PART_SIZE = 900 * 1024 * 1024


@dataclass
class WatchConfig:
    """Backup directory watcher configuration.

    Attributes:
        root: Root of the backup tree to watch
        extensions: File suffixes recognized as backup archives
        poll_interval: Seconds between size samples while waiting for stability
        max_attempts: Maximum number of size re-checks before giving up
        workers: Max concurrent candidates being processed
    """

    root: str = "/var/wordpress_backups"
    extensions: list[str] = field(default_factory=lambda: [".zip", ".daf"])
    poll_interval: float = 30.0
    max_attempts: int = 20
    workers: int = 4


@dataclass
class TransferConfig:
    """Chunked transfer configuration.

    Attributes:
        part_size: Per-part ceiling in bytes; larger files are split
        upload_workers: Max concurrent part uploads
        shutdown_grace: Seconds to wait for in-flight work on shutdown
    """

    part_size: int = DEFAULT_PART_SIZE
    upload_workers: int = 3
    shutdown_grace: float = 60.0


@dataclass
class LedgerConfig:
    """Remote task ledger configuration.

    Attributes:
        api_url: Base URL of the ledger API
        api_key: API token sent with every call
        auth_scheme: Optional scheme placed before the token (e.g. "Bearer")
        list_id: List new backup tasks are created in
        link_field_id: Relationship field linking backups to their parent task
        timeout: Connect/read timeout in seconds for every call
        in_progress_status: Status given to newly created tasks
        complete_status: Status set once all parts are attached
    """

    api_url: str = "https://api.clickup.com/api/v2"
    api_key: Optional[str] = None
    auth_scheme: str = ""
    list_id: Optional[str] = None
    link_field_id: Optional[str] = None
    timeout: float = 90.0
    in_progress_status: str = "in progress"
    complete_status: str = "complete"


@dataclass
class ReassemblyConfig:
    """Ephemeral reassembly configuration.

    Attributes:
        base_url: Public URL the temp directory is served under
        ttl: Seconds before a reassembly directory is deleted
        post_comment: Post the download link as a comment on the task
    """

    base_url: str = "http://localhost/temp"
    ttl: int = 3600
    post_comment: bool = True


@dataclass
class GlobalConfig:
    """Global configuration settings.

    Attributes:
        temp_dir: Parent of all split and reassembly working directories
        log_file: Path to log file (None for no file logging)
        transaction_log: Path to the JSON-lines transaction journal
        quiet: Suppress non-essential output
        verbose: Enable verbose output
    """

    temp_dir: str = "/var/tmp/backup-courier"
    log_file: Optional[str] = None
    transaction_log: Optional[str] = None
    quiet: bool = False
    verbose: bool = False


@dataclass
class Config:
    """Root configuration object."""

    global_config: GlobalConfig = field(default_factory=GlobalConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)
    transfer: TransferConfig = field(default_factory=TransferConfig)
    ledger: LedgerConfig = field(default_factory=LedgerConfig)
    reassembly: ReassemblyConfig = field(default_factory=ReassemblyConfig)

    def normalized_extensions(self) -> tuple[str, ...]:
        """Extensions lower-cased and dot-prefixed."""
        return tuple(
            (ext if ext.startswith(".") else f".{ext}").lower()
            for ext in self.watch.extensions
        )
