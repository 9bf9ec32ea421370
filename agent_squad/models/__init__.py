"""データモデル。"""

from .agent import Agent, AgentRole
from .events import DomainEvent, EventType
from .process import AgentOutput, AgentOutputType, AgentProcess, ProcessState, SpawnOptions
from .workspace import (
    CommitResult,
    Feature,
    MultiRepoConfig,
    MultiRepoStats,
    MultiRepoWorktree,
    PullRequest,
    PullRequestBatch,
    RepoConfig,
    RepoRole,
    RepoStatusSummary,
    WorktreeAllocation,
    WorktreeInfo,
)

__all__ = [
    "Agent",
    "AgentOutput",
    "AgentOutputType",
    "AgentProcess",
    "AgentRole",
    "CommitResult",
    "DomainEvent",
    "EventType",
    "Feature",
    "MultiRepoConfig",
    "MultiRepoStats",
    "MultiRepoWorktree",
    "ProcessState",
    "PullRequest",
    "PullRequestBatch",
    "RepoConfig",
    "RepoRole",
    "RepoStatusSummary",
    "SpawnOptions",
    "WorktreeAllocation",
    "WorktreeInfo",
]
