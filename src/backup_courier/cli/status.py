"""Status command: Show configuration and transfer statistics."""

import argparse
import logging
from pathlib import Path

from .. import __util__
from ..transaction import get_transaction_log, get_transaction_stats, read_transaction_log
from .common import load_runtime_config

logger = logging.getLogger(__name__)


def execute_status(args: argparse.Namespace) -> int:
    """Execute the status command.

    Shows the effective configuration, leftover working directories and
    journal statistics.

    Args:
        args: Parsed command line arguments

    Returns:
        Exit code
    """
    config = load_runtime_config(args)
    if config is None:
        return 1

    all_healthy = True

    print("backup-courier Status")
    print("=" * 60)
    root = Path(config.watch.root)
    root_status = "ok" if root.is_dir() else "missing"
    if not root.is_dir():
        all_healthy = False
    print(f"Watch root: {root} ({root_status})")
    print(f"Extensions: {', '.join(config.normalized_extensions())}")
    print(
        f"Part size: {__util__.format_size(config.transfer.part_size)}, "
        f"workers: {config.watch.workers}, upload workers: {config.transfer.upload_workers}"
    )
    print(f"Ledger: {config.ledger.api_url} (list {config.ledger.list_id or 'not set'})")

    temp_dir = Path(config.global_config.temp_dir)
    if temp_dir.is_dir():
        leftovers = sorted(p.name for p in temp_dir.iterdir() if p.is_dir())
        split_dirs = [n for n in leftovers if n.startswith("split_")]
        print(f"Temp dir: {temp_dir} ({len(leftovers)} working directories)")
        if split_dirs:
            all_healthy = False
            print(f"  {len(split_dirs)} split directories left by failed transfers:")
            for name in split_dirs:
                print(f"    {temp_dir / name}")
    else:
        print(f"Temp dir: {temp_dir} (not created yet)")
    print("")

    log_path = get_transaction_log()
    if log_path is None:
        print("Transaction log: disabled (set global.transaction_log)")
    else:
        stats = get_transaction_stats(log_path)
        print(f"Transaction log: {log_path} ({stats['total_records']} records)")
        print(
            f"  Transfers: {stats['transfers']['completed']} completed, "
            f"{stats['transfers']['failed']} failed, {stats['timed_out']} timed out"
        )
        print(
            f"  Uploads: {stats['uploads']['completed']} completed, "
            f"{stats['uploads']['failed']} failed"
        )
        print(
            f"  Reassemblies: {stats['reassemblies']['completed']} completed, "
            f"{stats['reassemblies']['failed']} failed"
        )
        print(f"  Transferred: {__util__.format_size(stats['total_bytes_transferred'])}")

        if getattr(args, "transactions", False):
            print("")
            print("Recent transactions:")
            for record in read_transaction_log(log_path, limit=getattr(args, "limit", 10)):
                target = record.get("source") or record.get("task_id") or ""
                line = f"  {record.get('timestamp', '?')}  {record.get('action', '?'):<11} {record.get('status', '?'):<10} {target}"
                if record.get("error"):
                    line += f"  ({record['error']})"
                print(line)

    print("=" * 60)
    if all_healthy:
        print("Overall: All systems operational")
    else:
        print("Overall: Some issues detected")

    return 0 if all_healthy else 1
