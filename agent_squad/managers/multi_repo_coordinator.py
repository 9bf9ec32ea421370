"""マルチリポジトリ・コーディネーター。

プライマリと依存リポジトリそれぞれの WorktreePool をまとめ、
1 つのフィーチャーブランチを全リポジトリに一括で割り当てる。
"""

import asyncio
import functools
import logging
import re
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from agent_squad.errors import (
    AllocationError,
    CommitError,
    DirtyWorktreeError,
    GitError,
    NotInitializedError,
    RollbackError,
    SquadError,
)
from agent_squad.managers.event_bus import EventBus
from agent_squad.managers.worktree_pool import WorktreePool
from agent_squad.models.events import EventType
from agent_squad.models.workspace import (
    CommitResult,
    Feature,
    MultiRepoConfig,
    MultiRepoStats,
    MultiRepoWorktree,
    PullRequest,
    PullRequestBatch,
    PullRequestFailure,
    RepoConfig,
    RepoStatusSummary,
)

if TYPE_CHECKING:
    from agent_squad.config.settings import Settings

logger = logging.getLogger(__name__)

UndoAction = tuple[str, Callable[[], Awaitable[None]]]

_PR_NUMBER_PATTERN = re.compile(r"/pull/(\d+)")


class MultiRepoCoordinator:
    """複数リポジトリにまたがるフィーチャー worktree を管理するクラス。"""

    def __init__(self, settings: "Settings", event_bus: EventBus | None = None) -> None:
        """MultiRepoCoordinatorを初期化する。

        Args:
            settings: アプリケーション設定
            event_bus: イベントの送信先（各プールと共有）
        """
        self.settings = settings
        self.event_bus = event_bus or EventBus(settings.event_history_size)
        self._config: MultiRepoConfig | None = None
        self._repos: dict[str, RepoConfig] = {}
        self._pools: dict[str, WorktreePool] = {}
        self._worktrees: dict[str, MultiRepoWorktree] = {}
        self._pending_branches: set[str] = set()

    @property
    def initialized(self) -> bool:
        """initialize_workspace 済みかどうか。"""
        return self._config is not None

    def _ensure_initialized(self) -> None:
        if self._config is None:
            raise NotInitializedError()

    def get_pool(self, repo_name: str) -> WorktreePool | None:
        """リポジトリの WorktreePool を取得する。"""
        self._ensure_initialized()
        return self._pools.get(repo_name)

    # ========== 初期化 ==========

    async def initialize_workspace(self, config: MultiRepoConfig) -> None:
        """全リポジトリを検証し、プールを作成する。

        Args:
            config: ワークスペース構成

        Raises:
            AllocationError: 最初に見つかった無効なリポジトリ名を含む
        """
        if self._worktrees:
            raise AllocationError(
                "割り当て中のフィーチャーがあるため再初期化できません: "
                + ", ".join(self._worktrees)
            )

        repos = config.all_repos()
        names = [repo.name for repo in repos]
        duplicated = sorted({name for name in names if names.count(name) > 1})
        if duplicated:
            raise AllocationError(f"リポジトリ名が重複しています: {', '.join(duplicated)}")

        pools: dict[str, WorktreePool] = {}
        for repo in repos:
            pool = WorktreePool(
                repo.path, self.settings, repo_name=repo.name, event_bus=self.event_bus
            )
            await pool.initialize()
            pools[repo.name] = pool

        self._config = config
        self._repos = {repo.name: repo for repo in repos}
        self._pools = pools
        logger.info(f"マルチリポジトリワークスペースを初期化しました: {', '.join(names)}")

    # ========== 割り当て ==========

    async def create_multi_repo_worktree(
        self,
        feature_branch: str,
        feature_id: str | None = None,
        agent_id: str | None = None,
    ) -> MultiRepoWorktree:
        """全リポジトリに同名のフィーチャーブランチの worktree を割り当てる。

        途中で失敗した場合は、この呼び出しで行った割り当てを逆順に解放してから
        エラーを送出する。キャンセルされた場合も同様に巻き戻す。

        Args:
            feature_branch: フィーチャーブランチ名
            feature_id: フィーチャーID（省略時はブランチ名）
            agent_id: 所有するエージェントID

        Returns:
            全リポジトリ分の割り当て

        Raises:
            NotInitializedError: 未初期化の場合
            AllocationError: いずれかのリポジトリで割り当てに失敗した場合
            RollbackError: 巻き戻し自体に失敗した場合
        """
        self._ensure_initialized()
        if feature_branch in self._worktrees or feature_branch in self._pending_branches:
            raise AllocationError(f"フィーチャーブランチは既に割り当て済みです: {feature_branch}")

        self._pending_branches.add(feature_branch)
        aggregate = MultiRepoWorktree(
            feature_branch=feature_branch, feature_id=feature_id or feature_branch
        )
        undo: list[UndoAction] = []
        try:
            for name, pool in self._pools.items():
                allocation = await pool.allocate(
                    feature_branch,
                    aggregate.feature_id,
                    agent_id=agent_id,
                    base_branch=self._repos[name].default_branch,
                )
                # 既存の worktree を再利用した場合は登録の解除だけにとどめる
                if allocation.created_worktree:
                    action = functools.partial(
                        pool.release, allocation.id, force=True, keep_branch=False
                    )
                else:
                    action = functools.partial(pool.forget, allocation.id)
                undo.append((name, action))
                aggregate.allocations[name] = allocation
                aggregate.allocation_ids[name] = allocation.id
        except AllocationError as e:
            failures = await self._rollback(undo)
            if failures:
                error = RollbackError(e, failures)
                logger.error(str(error))
                raise error from e
            raise AllocationError(
                f"フィーチャーブランチ {feature_branch} の割り当てに失敗したため巻き戻しました: {e}"
            ) from e
        except asyncio.CancelledError:
            failures = await self._rollback(undo)
            if failures:
                logger.error(f"キャンセル時の巻き戻しに失敗しました: {'; '.join(failures)}")
            raise
        finally:
            self._pending_branches.discard(feature_branch)

        self._worktrees[feature_branch] = aggregate
        logger.info(
            f"フィーチャー worktree を作成しました: {feature_branch} ({len(aggregate.allocations)} リポジトリ)"
        )
        return aggregate

    async def _rollback(self, undo: list[UndoAction]) -> list[str]:
        """補償アクションを逆順に実行する。

        Returns:
            失敗した補償アクションの説明
        """
        failures: list[str] = []
        for name, action in reversed(undo):
            try:
                await action()
            except SquadError as e:
                logger.error(f"巻き戻しに失敗しました: {name} ({e})")
                failures.append(f"{name}: {e}")
        if undo and not failures:
            logger.info(f"{len(undo)} 件の割り当てを巻き戻しました")
        return failures

    async def cleanup_multi_repo_worktree(
        self, feature_branch: str, force: bool = False, keep_branches: bool = True
    ) -> int:
        """フィーチャーの worktree を全リポジトリで解放する。

        force なしの場合、どれか 1 つでも未コミットの変更があれば何も解放しない。

        Returns:
            解放した件数

        Raises:
            DirtyWorktreeError: 未コミットの変更があり force が指定されていない場合
        """
        self._ensure_initialized()
        aggregate = self._worktrees.get(feature_branch)
        if aggregate is None:
            return 0

        if not force:
            for name, allocation_id in aggregate.allocation_ids.items():
                pool = self._pools[name]
                allocation = pool.get_allocation(allocation_id)
                if allocation is None:
                    continue
                dirty = await pool.refresh_dirty(allocation_id)
                if dirty or allocation.dirty:
                    raise DirtyWorktreeError(name, allocation.worktree_path)

        released = 0
        try:
            for name, allocation_id in list(aggregate.allocation_ids.items()):
                pool = self._pools[name]
                if pool.get_allocation(allocation_id) is None:
                    continue
                await pool.release(allocation_id, force=force, keep_branch=keep_branches)
                released += 1
        finally:
            self._sync_worktrees()
        return released

    # ========== コミット ==========

    async def commit_in_repo(
        self, repo_name: str, message: str, feature_branch: str
    ) -> CommitResult:
        """1 リポジトリの worktree で変更をコミットする。

        Raises:
            NotInitializedError: 未初期化の場合
            CommitError: 割り当てがない、コミット対象がない、git が失敗した場合
        """
        self._ensure_initialized()
        pool = self._pools.get(repo_name)
        if pool is None:
            raise CommitError(repo_name, "構成されていないリポジトリです")
        allocation = pool.find_by_branch(feature_branch)
        if allocation is None:
            raise CommitError(repo_name, f"ブランチ {feature_branch} の worktree が割り当てられていません")

        path = allocation.worktree_path
        try:
            await pool.git.stage_all(path)
            if not await pool.git.has_staged_changes(path):
                raise CommitError(repo_name, "コミットする変更がありません")
            commit_hash = await pool.git.commit(path, message)
        except GitError as e:
            raise CommitError(repo_name, f"コミットに失敗しました: {e.stderr.strip()}") from e

        pool.mark_dirty(allocation.id, False)
        logger.info(f"コミットしました: {repo_name}:{feature_branch} ({commit_hash[:8]})")
        self.event_bus.emit(
            EventType.GIT_COMMIT_CREATED,
            repo_name=repo_name,
            branch=feature_branch,
            commit_hash=commit_hash,
            message=message,
        )
        return CommitResult(
            repo_name=repo_name,
            feature_branch=feature_branch,
            success=True,
            commit_hash=commit_hash,
        )

    async def commit_all(
        self, message: str, feature_branch: str | None = None
    ) -> list[CommitResult]:
        """割り当て済みの全 worktree でコミットする。

        リポジトリごとの失敗は結果に含め、例外としては送出しない。

        Args:
            message: コミットメッセージ
            feature_branch: 対象フィーチャー（省略時は全フィーチャー）

        Returns:
            リポジトリごとの結果
        """
        self._ensure_initialized()
        branches = [feature_branch] if feature_branch else list(self._worktrees)

        results: list[CommitResult] = []
        for branch in branches:
            for name, pool in self._pools.items():
                if pool.find_by_branch(branch) is None:
                    continue
                try:
                    results.append(await self.commit_in_repo(name, message, branch))
                except CommitError as e:
                    logger.warning(f"コミットに失敗しました: {e}")
                    results.append(
                        CommitResult(
                            repo_name=name,
                            feature_branch=branch,
                            success=False,
                            error=str(e),
                        )
                    )
        return results

    # ========== Pull Request ==========

    async def create_multi_repo_prs(self, feature: Feature) -> PullRequestBatch:
        """base より進んでいる全リポジトリで Pull Request を作成する。

        リポジトリごとの失敗は failed に記録し、処理を続ける。
        """
        self._ensure_initialized()
        batch = PullRequestBatch()
        branch = feature.branch_name

        for name, pool in self._pools.items():
            repo = self._repos[name]
            allocation = pool.find_by_branch(branch)
            if allocation is None:
                batch.skipped.append(name)
                continue

            path = allocation.worktree_path
            try:
                ahead, _ = await pool.git.ahead_behind(path, repo.default_branch)
                if ahead == 0:
                    logger.info(f"コミットがないため PR を作成しません: {name}")
                    batch.skipped.append(name)
                    continue
                await pool.git.push(path, branch, self.settings.git_remote)
                batch.prs.append(await self._open_pull_request(pool, repo, feature, path))
            except SquadError as e:
                logger.warning(f"PR の作成に失敗しました: {name} ({e})")
                batch.failed.append(PullRequestFailure(repo_name=name, error=str(e)))

        return batch

    async def _open_pull_request(
        self, pool: WorktreePool, repo: RepoConfig, feature: Feature, path: str
    ) -> PullRequest:
        title = f"[{feature.name}] {feature.description or 'Feature implementation'}"
        body = "\n".join(
            [
                f"Feature: {feature.name}",
                f"Repository: {repo.name}",
                f"Branch: {feature.branch_name}",
            ]
        )
        code, stdout, stderr = await pool.git.run_command(
            self.settings.pr_cli_command,
            "pr",
            "create",
            "--title",
            title,
            "--body",
            body,
            "--head",
            feature.branch_name,
            "--base",
            repo.default_branch,
            cwd=path,
        )
        if code != 0:
            raise SquadError(f"{self.settings.pr_cli_command} pr create が失敗しました: {stderr.strip()}")

        lines = [line.strip() for line in stdout.strip().split("\n") if line.strip()]
        url = lines[-1] if lines else ""
        match = _PR_NUMBER_PATTERN.search(url)
        logger.info(f"PR を作成しました: {repo.name} ({url})")
        return PullRequest(
            repo_name=repo.name,
            number=int(match.group(1)) if match else None,
            url=url,
            title=title,
            head=feature.branch_name,
            base=repo.default_branch,
        )

    # ========== 状態 ==========

    async def get_multi_repo_status(self, feature_branch: str) -> dict[str, RepoStatusSummary]:
        """リポジトリごとの変更有無と ahead/behind を取得する。"""
        self._ensure_initialized()
        statuses: dict[str, RepoStatusSummary] = {}

        for name, pool in self._pools.items():
            allocation = pool.find_by_branch(feature_branch)
            if allocation is None:
                statuses[name] = RepoStatusSummary(
                    repo_name=name, error=f"ブランチ {feature_branch} の worktree がありません"
                )
                continue

            path = allocation.worktree_path
            summary = RepoStatusSummary(repo_name=name, worktree_path=path)
            try:
                changes = await pool.git.get_status(path)
                summary.has_changes = bool(changes)
                summary.clean = not changes
                if changes:
                    allocation.dirty = True
                summary.ahead, summary.behind = await pool.git.ahead_behind(
                    path, self._repos[name].default_branch
                )
            except GitError as e:
                summary.error = str(e)
            statuses[name] = summary

        return statuses

    # ========== クリーンアップ ==========

    async def cleanup_all(self, force: bool = False) -> int:
        """全プールの割り当てを解放する。

        Returns:
            解放した件数の合計
        """
        self._ensure_initialized()
        total = 0
        try:
            for pool in self._pools.values():
                total += await pool.cleanup_all(force=force)
        finally:
            self._sync_worktrees()
        return total

    async def cleanup_stale(self, max_idle_hours: float | None = None) -> int:
        """全プールの stale な割り当てを解放する。

        Returns:
            解放した件数の合計
        """
        self._ensure_initialized()
        total = 0
        try:
            for pool in self._pools.values():
                total += await pool.cleanup_stale(max_idle_hours)
        finally:
            self._sync_worktrees()
        return total

    def _sync_worktrees(self) -> None:
        """解放済みの割り当てをフィーチャー集合から外す。"""
        for branch, aggregate in list(self._worktrees.items()):
            for name, allocation_id in list(aggregate.allocation_ids.items()):
                if self._pools[name].get_allocation(allocation_id) is None:
                    aggregate.allocation_ids.pop(name)
                    aggregate.allocations.pop(name, None)
            if not aggregate.allocation_ids:
                del self._worktrees[branch]

    # ========== 参照 ==========

    def touch_feature(self, feature_branch: str) -> int:
        """フィーチャーの全割り当ての最終活動日時を更新する。"""
        self._ensure_initialized()
        aggregate = self._worktrees.get(feature_branch)
        if aggregate is None:
            return 0
        return sum(
            1
            for name, allocation_id in aggregate.allocation_ids.items()
            if self._pools[name].touch(allocation_id)
        )

    def mark_dirty(self, repo_name: str, feature_branch: str, dirty: bool = True) -> bool:
        """リポジトリの worktree に未コミット変更フラグを設定する。"""
        self._ensure_initialized()
        pool = self._pools.get(repo_name)
        allocation = pool.find_by_branch(feature_branch) if pool else None
        if allocation is None:
            return False
        return pool.mark_dirty(allocation.id, dirty)

    def get_multi_repo_worktree(self, feature_branch: str) -> MultiRepoWorktree | None:
        """フィーチャーの割り当てを取得する。"""
        self._ensure_initialized()
        return self._worktrees.get(feature_branch)

    def list_multi_repo_worktrees(self) -> list[MultiRepoWorktree]:
        """全フィーチャーの割り当てを取得する。"""
        self._ensure_initialized()
        return list(self._worktrees.values())

    def get_configured_repos(self) -> list[RepoConfig]:
        """構成リポジトリをプライマリから順に取得する。"""
        self._ensure_initialized()
        return list(self._repos.values())

    def get_worktree_path(self, repo_name: str, feature_branch: str) -> str | None:
        """リポジトリのフィーチャー worktree のパスを取得する。"""
        self._ensure_initialized()
        pool = self._pools.get(repo_name)
        allocation = pool.find_by_branch(feature_branch) if pool else None
        return allocation.worktree_path if allocation else None

    def get_primary_worktree_path(self, feature_branch: str) -> str | None:
        """プライマリリポジトリのフィーチャー worktree のパスを取得する。"""
        self._ensure_initialized()
        return self.get_worktree_path(self._config.primary.name, feature_branch)

    def get_stats(self) -> MultiRepoStats:
        """統計を取得する。"""
        self._ensure_initialized()
        by_repo = {name: pool.get_stats().active for name, pool in self._pools.items()}
        return MultiRepoStats(
            total_repos=len(self._pools),
            active_worktrees=sum(by_repo.values()),
            by_repo=by_repo,
        )

