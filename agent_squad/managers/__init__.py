"""マネージャーモジュール。"""

from .cost_manager import CostManager
from .event_bus import EventBus
from .git_service import GitService
from .multi_repo_coordinator import MultiRepoCoordinator
from .output_buffer import OutputRingBuffer
from .process_orchestrator import ProcessOrchestrator
from .worker_cli import WorkerCli
from .worktree_pool import WorktreePool

__all__ = [
    "CostManager",
    "EventBus",
    "GitService",
    "MultiRepoCoordinator",
    "OutputRingBuffer",
    "ProcessOrchestrator",
    "WorkerCli",
    "WorktreePool",
]
