"""CLI dispatcher: argument parsing and subcommand routing."""

import argparse
import sys

from .. import __version__
from .common import add_verbosity_args


def create_subcommand_parser() -> argparse.ArgumentParser:
    """Create the main argument parser with subcommands."""
    parser = argparse.ArgumentParser(
        prog="backup-courier",
        description="Ship landed backup archives to a task ledger in bounded-size parts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    add_verbosity_args(parser)

    parser.add_argument(
        "-V",
        "--version",
        action="store_true",
        help="Show version and exit",
    )

    parser.add_argument(
        "-c",
        "--config",
        metavar="FILE",
        help="Path to configuration file",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        title="commands",
        description="Available commands (use 'command --help' for details)",
    )

    # watch command
    watch_parser = subparsers.add_parser(
        "watch",
        help="Watch the backup root and transfer new backups",
        description="Run until interrupted, transferring every backup that lands",
    )
    watch_parser.add_argument(
        "--root",
        metavar="DIR",
        help="Backup root to watch (overrides config)",
    )
    watch_parser.add_argument(
        "--workers",
        type=int,
        metavar="N",
        help="Max concurrent backups being processed (overrides config)",
    )
    watch_parser.add_argument(
        "--upload-workers",
        type=int,
        metavar="N",
        help="Max concurrent part uploads (overrides config)",
    )

    # split command
    split_parser = subparsers.add_parser(
        "split",
        help="Split a file into numbered parts",
        description="Split FILE into FILE.part1, FILE.part2, ... without uploading",
    )
    split_parser.add_argument("file", metavar="FILE", help="File to split")
    split_parser.add_argument(
        "-o",
        "--output-dir",
        metavar="DIR",
        help="Directory for the parts (default: next to FILE)",
    )
    split_parser.add_argument(
        "-s",
        "--part-size",
        metavar="SIZE",
        help="Part size, e.g. '900M' (default: config or 900M)",
    )

    # merge command
    merge_parser = subparsers.add_parser(
        "merge",
        help="Merge numbered parts back into one file",
        description="Merge all parts sharing the base name of PART",
    )
    merge_parser.add_argument("part", metavar="PART", help="Any one part file")
    merge_parser.add_argument(
        "--delete-parts",
        action="store_true",
        help="Delete the parts after a successful merge",
    )

    # reassemble command
    reassemble_parser = subparsers.add_parser(
        "reassemble",
        help="Rebuild a transferred backup as a temporary download",
        description="Download a task's parts, merge them and publish a time-limited link",
    )
    reassemble_parser.add_argument("task_id", metavar="TASK_ID", help="Ledger task id")
    reassemble_parser.add_argument(
        "--detach",
        action="store_true",
        help="Exit right away; expired directories are removed by 'sweep'",
    )
    reassemble_parser.add_argument(
        "--no-comment",
        action="store_true",
        help="Do not post the download link on the task",
    )

    # sweep command
    subparsers.add_parser(
        "sweep",
        help="Remove expired reassembly directories",
        description="Delete reassembly directories older than the configured TTL",
    )

    # status command
    status_parser = subparsers.add_parser(
        "status",
        help="Show configuration and transfer statistics",
        description="Display the effective configuration and journal statistics",
    )
    status_parser.add_argument(
        "-t",
        "--transactions",
        action="store_true",
        help="Show recent transaction history",
    )
    status_parser.add_argument(
        "-n",
        "--limit",
        type=int,
        default=10,
        metavar="N",
        help="Number of transactions to show (default: 10)",
    )

    # config command with subcommands
    config_parser = subparsers.add_parser(
        "config",
        help="Configuration management",
        description="Validate or initialize configuration",
    )
    config_subs = config_parser.add_subparsers(dest="config_action")

    config_subs.add_parser(
        "validate",
        help="Validate configuration file",
    )

    init_parser = config_subs.add_parser(
        "init",
        help="Generate example configuration",
    )
    init_parser.add_argument(
        "-o",
        "--output",
        metavar="FILE",
        help="Output file (default: stdout)",
    )
    init_parser.add_argument(
        "-f",
        "--force",
        action="store_true",
        help="Overwrite an existing output file",
    )

    return parser


def cmd_watch(args: argparse.Namespace) -> int:
    """Execute watch command."""
    from .watch import execute_watch

    return execute_watch(args)


def cmd_split(args: argparse.Namespace) -> int:
    """Execute split command."""
    from .chunk_cmd import execute_split

    return execute_split(args)


def cmd_merge(args: argparse.Namespace) -> int:
    """Execute merge command."""
    from .chunk_cmd import execute_merge

    return execute_merge(args)


def cmd_reassemble(args: argparse.Namespace) -> int:
    """Execute reassemble command."""
    from .reassemble import execute_reassemble

    return execute_reassemble(args)


def cmd_sweep(args: argparse.Namespace) -> int:
    """Execute sweep command."""
    from .reassemble import execute_sweep

    return execute_sweep(args)


def cmd_status(args: argparse.Namespace) -> int:
    """Execute status command."""
    from .status import execute_status

    return execute_status(args)


def cmd_config(args: argparse.Namespace) -> int:
    """Execute config command."""
    from .config_cmd import execute_config

    return execute_config(args)


COMMANDS = {
    "watch": cmd_watch,
    "split": cmd_split,
    "merge": cmd_merge,
    "reassemble": cmd_reassemble,
    "sweep": cmd_sweep,
    "status": cmd_status,
    "config": cmd_config,
}


def run_subcommand(args: argparse.Namespace) -> int:
    """Route parsed arguments to the matching command handler."""
    if getattr(args, "version", False):
        print(f"backup-courier {__version__}")
        return 0

    handler = COMMANDS.get(getattr(args, "command", None) or "")
    if handler is None:
        create_subcommand_parser().print_help()
        return 1

    return handler(args)


def main(argv: list[str] | None = None) -> int:
    """Main entry point for backup-courier CLI.

    Args:
        argv: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_subcommand_parser()
    args = parser.parse_args(argv)

    try:
        return run_subcommand(args)
    except KeyboardInterrupt:
        print("\nInterrupted")
        return 130
