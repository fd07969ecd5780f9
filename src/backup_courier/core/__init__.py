"""Core transfer pipeline for backup-courier.

Stability detection, chunking, directory watching, transfer
orchestration and ephemeral reassembly.
"""

from .candidate import BackupCandidate, BackupOrigin, CandidateError
from .chunking import ChunkingError, merge_parts, split_file
from .orchestrator import TransferError, TransferOrchestrator, TransferOutcome, TransferState
from .reassembly import ReassemblyError, ReassemblyResult, ReassemblyService
from .stability import StabilityDetector, StabilityResult, StabilityState
from .watcher import BackupWatcher, WatchedTree
from .workspace import DeferredCleanup, WorkspaceRegistry

__all__ = [
    "BackupCandidate",
    "BackupOrigin",
    "CandidateError",
    "ChunkingError",
    "merge_parts",
    "split_file",
    "TransferError",
    "TransferOrchestrator",
    "TransferOutcome",
    "TransferState",
    "ReassemblyError",
    "ReassemblyResult",
    "ReassemblyService",
    "StabilityDetector",
    "StabilityResult",
    "StabilityState",
    "BackupWatcher",
    "WatchedTree",
    "DeferredCleanup",
    "WorkspaceRegistry",
]
