# pyright: standard

"""backup-courier: backup_courier/__util__.py
Common utility code shared between modules.
"""

import re

SIZE_UNITS = {
    "": 1,
    "B": 1,
    "K": 1024,
    "M": 1024**2,
    "G": 1024**3,
    "T": 1024**4,
}

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([KMGT]?)(?:I?B)?\s*$", re.IGNORECASE)


def log_heading(caption: str) -> str:
    """Formatted heading for logging output sections."""
    return f"--[ {caption} ]--"


def parse_size(value: int | str) -> int:
    """Parse a byte size such as 943718400, "900M" or "2GiB".

    Units are binary multiples (K = 1024).

    Raises:
        ValueError: If the value cannot be parsed.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid size: {value!r}")
    if isinstance(value, int):
        return value
    match = _SIZE_RE.match(str(value))
    if not match:
        raise ValueError(f"Invalid size: {value!r}")
    number, unit = match.groups()
    return int(number) * SIZE_UNITS[unit.upper()]


def format_size(num_bytes: float) -> str:
    """Format a byte count for humans (e.g. 900.0 MiB)."""
    for unit in ("B", "KiB", "MiB", "GiB"):
        if abs(num_bytes) < 1024:
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024
    return f"{num_bytes:.1f} TiB"
