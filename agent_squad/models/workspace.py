"""ワークスペース・Worktreeモデル定義。"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class WorktreeInfo(BaseModel):
    """git worktree 情報（`git worktree list --porcelain` の 1 エントリ）。"""

    path: str = Field(description="worktreeのパス")
    branch: str = Field(description="ブランチ名")
    commit: str = Field(description="現在のコミットハッシュ")
    is_bare: bool = Field(default=False, description="bareリポジトリかどうか")
    is_detached: bool = Field(default=False, description="detached HEADかどうか")
    locked: bool = Field(default=False, description="ロックされているかどうか")
    prunable: bool = Field(default=False, description="削除可能かどうか")


class WorktreeAllocation(BaseModel):
    """1 リポジトリの 1 ブランチに対する排他的な worktree 割り当て。"""

    id: str = Field(description="割り当てID")
    repo_name: str = Field(description="リポジトリ名")
    repo_path: str = Field(description="メインリポジトリのパス")
    worktree_path: str = Field(description="worktreeのパス")
    branch: str = Field(description="ブランチ名")
    feature_id: str = Field(description="所有するフィーチャーID")
    agent_id: str | None = Field(default=None, description="所有するエージェントID")
    created_at: datetime = Field(default_factory=datetime.now, description="作成日時")
    last_active_at: datetime = Field(default_factory=datetime.now, description="最終活動日時")
    allocated: bool = Field(default=True, description="割り当て中かどうか")
    dirty: bool = Field(default=False, description="未コミットの変更があるか")
    created_branch: bool = Field(
        default=False, description="この割り当てでブランチを新規作成したか"
    )
    created_worktree: bool = Field(
        default=False, description="この割り当てで worktree を新規作成したか"
    )


class RepoRole(str, Enum):
    """リポジトリの役割。"""

    PRIMARY = "primary"
    """メインリポジトリ"""

    DEPENDENCY = "dependency"
    """依存リポジトリ"""


class RepoConfig(BaseModel):
    """マルチリポジトリ構成に参加するリポジトリの定義。"""

    model_config = ConfigDict(use_enum_values=True)

    name: str = Field(description="リポジトリ名")
    path: str = Field(description="ローカルパス")
    url: str | None = Field(default=None, description="リモートURL")
    default_branch: str = Field(default="main", description="デフォルトブランチ")
    role: RepoRole = Field(default=RepoRole.DEPENDENCY, description="役割")


class MultiRepoConfig(BaseModel):
    """プライマリと依存リポジトリからなるワークスペース構成。"""

    primary: RepoConfig = Field(description="プライマリリポジトリ")
    dependencies: list[RepoConfig] = Field(default_factory=list, description="依存リポジトリ")

    def all_repos(self) -> list[RepoConfig]:
        """プライマリを先頭に全リポジトリを返す。"""
        return [self.primary, *self.dependencies]


class MultiRepoWorktree(BaseModel):
    """フィーチャー単位で全リポジトリにまたがる worktree の集合。"""

    feature_branch: str = Field(description="フィーチャーブランチ名")
    feature_id: str = Field(description="フィーチャーID")
    allocations: dict[str, WorktreeAllocation] = Field(
        default_factory=dict, description="リポジトリ名 → 割り当て"
    )
    allocation_ids: dict[str, str] = Field(
        default_factory=dict, description="リポジトリ名 → 割り当てID"
    )
    created_at: datetime = Field(default_factory=datetime.now, description="作成日時")


class Feature(BaseModel):
    """Pull Request 作成に使うフィーチャー情報。"""

    id: str = Field(description="フィーチャーID")
    name: str = Field(description="フィーチャー名")
    branch_name: str = Field(description="フィーチャーブランチ名")
    description: str | None = Field(default=None, description="説明")


class PullRequest(BaseModel):
    """作成された Pull Request。"""

    repo_name: str = Field(description="リポジトリ名")
    number: int | None = Field(default=None, description="PR番号")
    url: str = Field(description="PRのURL")
    title: str = Field(description="タイトル")
    state: str = Field(default="open", description="状態")
    head: str = Field(description="headブランチ")
    base: str = Field(description="baseブランチ")


class PullRequestFailure(BaseModel):
    """Pull Request 作成に失敗したリポジトリ。"""

    repo_name: str = Field(description="リポジトリ名")
    error: str = Field(description="エラー内容")


class PullRequestBatch(BaseModel):
    """複数リポジトリへの Pull Request 作成結果。"""

    prs: list[PullRequest] = Field(default_factory=list, description="作成したPR")
    skipped: list[str] = Field(
        default_factory=list, description="変更がないためスキップしたリポジトリ"
    )
    failed: list[PullRequestFailure] = Field(default_factory=list, description="失敗したリポジトリ")


class CommitResult(BaseModel):
    """1 リポジトリのコミット結果。"""

    repo_name: str = Field(description="リポジトリ名")
    feature_branch: str = Field(description="フィーチャーブランチ名")
    success: bool = Field(description="成功したかどうか")
    commit_hash: str | None = Field(default=None, description="コミットハッシュ")
    error: str | None = Field(default=None, description="エラー内容")


class RepoStatusSummary(BaseModel):
    """1 リポジトリの worktree 状態。"""

    repo_name: str = Field(description="リポジトリ名")
    worktree_path: str | None = Field(default=None, description="worktreeのパス")
    clean: bool = Field(default=True, description="変更がないか")
    has_changes: bool = Field(default=False, description="未コミットの変更があるか")
    ahead: int = Field(default=0, description="baseより進んでいるコミット数")
    behind: int = Field(default=0, description="baseより遅れているコミット数")
    error: str | None = Field(default=None, description="状態取得時のエラー")


class PoolStats(BaseModel):
    """WorktreePool の統計。"""

    total: int = Field(default=0, description="割り当て総数")
    active: int = Field(default=0, description="割り当て中の数")
    dirty: int = Field(default=0, description="未コミット変更ありの数")
    by_feature: dict[str, int] = Field(default_factory=dict, description="フィーチャー別件数")


class MultiRepoStats(BaseModel):
    """MultiRepoCoordinator の統計。"""

    total_repos: int = Field(default=0, description="構成リポジトリ数")
    active_worktrees: int = Field(default=0, description="割り当て中の worktree 数")
    by_repo: dict[str, int] = Field(default_factory=dict, description="リポジトリ別件数")
