"""Split files into numbered parts and merge them back.

Parts are named ``<original>.part<N>`` with N starting at 1. Merge order
is always taken from N, never from directory listing order, so parts
uploaded and downloaded in any order still reassemble correctly.
"""

import logging
import os
import re
from pathlib import Path

logger = logging.getLogger(__name__)

BUFFER_SIZE = 1024 * 1024
PART_SUFFIX = ".part"
PART_PATTERN = re.compile(r"^(?P<base>.+)\.part(?P<number>\d+)$")


class ChunkingError(Exception):
    """Error while splitting or merging parts."""

    pass


def part_name(file_name: str, number: int) -> str:
    """Name of part ``number`` of ``file_name``."""
    return f"{file_name}{PART_SUFFIX}{number}"


def is_part_name(name: str) -> bool:
    return PART_PATTERN.match(name) is not None


def get_base_name(name: str) -> str:
    """Strip a trailing ``.part<N>`` suffix, if present."""
    match = PART_PATTERN.match(name)
    return match.group("base") if match else name


def part_number(name: str) -> int:
    """Return N from ``<base>.part<N>``.

    Raises:
        ChunkingError: If the name does not end in a numeric part suffix
    """
    match = PART_PATTERN.match(name)
    if not match:
        raise ChunkingError(f"Not a part file name: {name}")
    return int(match.group("number"))


def expected_part_count(size: int, part_size: int) -> int:
    """ceil(size / part_size); zero for an empty file."""
    return -(-size // part_size) if size > 0 else 0


def split_file(
    source: Path | str,
    output_dir: Path | str,
    part_size: int,
    buffer_size: int = BUFFER_SIZE,
) -> list[Path]:
    """Split ``source`` into parts of at most ``part_size`` bytes.

    A part file is only created once there is at least one byte for it,
    so splitting stops exactly at the end of the source and an empty
    source yields no parts.

    Args:
        source: File to split
        output_dir: Directory the parts are written to (created if missing)
        part_size: Maximum bytes per part
        buffer_size: Bytes copied per read

    Returns:
        Part paths in ascending part order
    """
    if part_size <= 0:
        raise ValueError(f"part_size must be positive, got {part_size}")

    source = Path(source)
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    parts: list[Path] = []
    with open(source, "rb") as src:
        number = 1
        while True:
            chunk = src.read(min(buffer_size, part_size))
            if not chunk:
                break

            part_path = output_dir / part_name(source.name, number)
            written = 0
            with open(part_path, "wb") as out:
                while chunk:
                    out.write(chunk)
                    written += len(chunk)
                    remaining = part_size - written
                    if remaining <= 0:
                        break
                    chunk = src.read(min(buffer_size, remaining))

            logger.debug("Wrote %s (%d bytes)", part_path.name, written)
            parts.append(part_path)
            number += 1

    logger.info("Split %s into %d part(s) in %s", source.name, len(parts), output_dir)
    return parts


def find_parts(directory: Path | str, base_name: str) -> list[Path]:
    """List the parts of ``base_name`` in ``directory``, ordered by number.

    Every sibling starting with ``<base_name>.part`` must carry a numeric
    suffix; numbering must start at 1 and have no gaps or duplicates.

    Raises:
        ChunkingError: On a malformed suffix or a broken sequence
    """
    directory = Path(directory)
    prefix = base_name + PART_SUFFIX

    numbered = []
    for entry in directory.iterdir():
        if not entry.name.startswith(prefix) or not entry.is_file():
            continue
        suffix = entry.name[len(prefix):]
        if not suffix.isdigit():
            raise ChunkingError(f"Invalid part number in {entry.name}")
        numbered.append((part_number(entry.name), entry))

    numbered.sort(key=lambda item: item[0])
    numbers = [n for n, _ in numbered]
    if numbers != list(range(1, len(numbers) + 1)):
        raise ChunkingError(
            f"Part sequence for {base_name} is not contiguous from 1: {numbers}"
        )
    return [path for _, path in numbered]


def merge_parts(first_part: Path | str, buffer_size: int = BUFFER_SIZE) -> Path:
    """Merge all parts sharing the base name of ``first_part``.

    Any part of the set may be given; the others are discovered in the
    same directory. The output is named after the base and only appears
    once the merge has fully succeeded.

    Returns:
        Path of the merged file

    Raises:
        ChunkingError: If the parts cannot be found, ordered or merged
    """
    first_part = Path(first_part)
    if not is_part_name(first_part.name):
        raise ChunkingError(f"Not a part file: {first_part}")

    directory = first_part.parent
    base_name = get_base_name(first_part.name)
    parts = find_parts(directory, base_name)
    if not parts:
        raise ChunkingError(f"No parts found for {base_name} in {directory}")

    merged = directory / base_name
    staging = directory / f".{base_name}.merging"
    total = 0
    try:
        with open(staging, "wb") as out:
            for part in parts:
                with open(part, "rb") as src:
                    while True:
                        chunk = src.read(buffer_size)
                        if not chunk:
                            break
                        out.write(chunk)
                        total += len(chunk)
        if total == 0:
            raise ChunkingError(f"Parts of {base_name} are empty")
        os.replace(staging, merged)
    except BaseException:
        staging.unlink(missing_ok=True)
        raise

    logger.info("Merged %d part(s) into %s (%d bytes)", len(parts), merged, total)
    return merged
