"""Backup candidates and the origin encoded in their directory name.

Backups land in directories named ``<prefix>_<remoteId>_<domain parts>``,
e.g. ``backup_86c1x2y_example_co_uk`` for remote task ``86c1x2y`` and
domain ``example.co.uk``.
"""

from dataclasses import dataclass
from pathlib import Path

SEPARATOR = "_"


class CandidateError(ValueError):
    """A path cannot be treated as a backup candidate."""

    pass


@dataclass(frozen=True)
class BackupOrigin:
    """Remote task and domain a backup belongs to.

    Attributes:
        prefix: Reserved first segment of the directory name
        remote_id: Ledger task the backup entry is linked to
        domain: Domain name the backup was taken from
    """

    prefix: str
    remote_id: str
    domain: str

    @classmethod
    def parse(cls, dir_name: str) -> "BackupOrigin":
        """Parse a backup directory name.

        Raises:
            CandidateError: If the name has fewer than three segments
        """
        segments = dir_name.split(SEPARATOR)
        if len(segments) < 3 or not segments[1]:
            raise CandidateError(f"Invalid directory name format: {dir_name}")
        prefix, remote_id, rest = dir_name.split(SEPARATOR, 2)
        domain = rest.replace(SEPARATOR, ".")
        if not domain:
            raise CandidateError(f"Invalid directory name format: {dir_name}")
        return cls(prefix=prefix, remote_id=remote_id, domain=domain)

    @property
    def dir_name(self) -> str:
        """Directory name this origin is encoded as."""
        return SEPARATOR.join(
            [self.prefix, self.remote_id, self.domain.replace(".", SEPARATOR)]
        )


@dataclass(frozen=True)
class BackupCandidate:
    """A backup archive found by the watcher."""

    path: Path
    origin: BackupOrigin

    @classmethod
    def from_path(cls, path: Path | str) -> "BackupCandidate":
        path = Path(path)
        if not path.parent.name:
            raise CandidateError(f"Invalid file path: {path}")
        return cls(path=path, origin=BackupOrigin.parse(path.parent.name))

    @property
    def name(self) -> str:
        return self.path.name


def has_backup_extension(name: str, extensions: tuple[str, ...]) -> bool:
    """Whether ``name`` ends in one of ``extensions`` (case-insensitive)."""
    return name.lower().endswith(extensions) if extensions else False
