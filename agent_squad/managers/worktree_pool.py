"""worktree プール管理マネージャー。

1 リポジトリ内で、ブランチごとに排他的な worktree を割り当てる。
"""

import hashlib
import logging
import os
import re
import uuid
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

from agent_squad.errors import AllocationError, DirtyWorktreeError, GitError
from agent_squad.managers.event_bus import EventBus
from agent_squad.managers.git_service import GitService
from agent_squad.models.events import EventType
from agent_squad.models.workspace import PoolStats, WorktreeAllocation

if TYPE_CHECKING:
    from agent_squad.config.settings import Settings

logger = logging.getLogger(__name__)


def branch_slug(branch: str) -> str:
    """ブランチ名からディレクトリ名を生成する。

    `feature/x` と `feature-x` が衝突しないよう、ブランチ名のハッシュを付ける。
    """
    slug = re.sub(r"[^A-Za-z0-9._-]+", "-", branch).strip("-.") or "branch"
    digest = hashlib.sha1(branch.encode("utf-8")).hexdigest()[:6]
    return f"{slug}-{digest}"


class WorktreePool:
    """1 リポジトリの worktree 割り当てを管理するクラス。

    同じブランチの割り当ては常に 1 件まで。割り当て処理中のブランチは
    最初の await より前に予約されるため、同時に allocate されても 1 件だけが成功する。
    """

    def __init__(
        self,
        repo_path: str,
        settings: "Settings",
        repo_name: str | None = None,
        event_bus: EventBus | None = None,
        git: GitService | None = None,
    ) -> None:
        """WorktreePoolを初期化する。

        Args:
            repo_path: メインリポジトリのパス
            settings: アプリケーション設定
            repo_name: リポジトリ名（省略時はディレクトリ名）
            event_bus: イベントの送信先
            git: git 操作（省略時は repo_path から生成）
        """
        self.repo_path = os.path.abspath(repo_path)
        self.repo_name = repo_name or os.path.basename(self.repo_path.rstrip(os.sep))
        self.settings = settings
        self.event_bus = event_bus or EventBus(settings.event_history_size)
        self.git = git or GitService(self.repo_path)

        repo_hash = hashlib.sha1(os.path.realpath(self.repo_path).encode("utf-8")).hexdigest()[:8]
        self.pool_dir = settings.get_worktree_base_dir() / f"{self.repo_name}-{repo_hash}"

        self._allocations: dict[str, WorktreeAllocation] = {}
        self._reserved_branches: set[str] = set()
        self._releasing: set[str] = set()
        self._initialized = False

    @property
    def initialized(self) -> bool:
        """initialize 済みかどうか。"""
        return self._initialized

    async def initialize(self) -> None:
        """リポジトリを検証し、プールのディレクトリを用意する。

        Raises:
            AllocationError: パスが存在しない、または git リポジトリではない場合
        """
        if not os.path.isdir(self.repo_path):
            raise AllocationError(f"リポジトリのパスが存在しません: {self.repo_name} ({self.repo_path})")
        if not await self.git.is_git_repo():
            raise AllocationError(
                f"有効なgitリポジトリではありません: {self.repo_name} ({self.repo_path})"
            )

        self.pool_dir.mkdir(parents=True, exist_ok=True)
        if self.settings.worktree_auto_cleanup:
            # 前回の異常終了で残った worktree 情報を掃除する
            await self.git.prune_worktrees()
        self._initialized = True
        logger.info(f"worktree プールを初期化しました: {self.repo_name} ({self.pool_dir})")

    def get_worktree_path(self, branch: str) -> Path:
        """ブランチに対応する worktree のパスを返す。"""
        return self.pool_dir / branch_slug(branch)

    # ========== 割り当て ==========

    async def allocate(
        self,
        branch: str,
        feature_id: str,
        agent_id: str | None = None,
        base_branch: str | None = None,
    ) -> WorktreeAllocation:
        """ブランチの worktree を割り当てる。

        同じパスに既存の worktree があれば再利用し、ブランチがなければ作成する。

        Args:
            branch: ブランチ名
            feature_id: 所有するフィーチャーID
            agent_id: 所有するエージェントID
            base_branch: ブランチ新規作成時の基点

        Returns:
            登録した WorktreeAllocation

        Raises:
            AllocationError: 割り当て済み、上限超過、worktree 作成失敗の場合
        """
        if not self._initialized:
            raise AllocationError(f"worktree プールが初期化されていません: {self.repo_name}")
        if not branch.strip():
            raise AllocationError("ブランチ名が空です")
        if branch in self._reserved_branches or self.find_by_branch(branch) is not None:
            raise AllocationError(f"ブランチは既に割り当て済みです: {self.repo_name}:{branch}")
        in_use = len(self._allocations) + len(self._reserved_branches)
        if in_use >= self.settings.worktree_max_per_repo:
            raise AllocationError(
                f"割り当て上限 ({self.settings.worktree_max_per_repo}) に達しています: {self.repo_name}"
            )

        self._reserved_branches.add(branch)
        try:
            path = self.get_worktree_path(branch)
            created_worktree, created_branch = await self._prepare_worktree(
                path, branch, base_branch
            )
            allocation = WorktreeAllocation(
                id=f"wt_{uuid.uuid4().hex[:12]}",
                repo_name=self.repo_name,
                repo_path=self.repo_path,
                worktree_path=str(path),
                branch=branch,
                feature_id=feature_id,
                agent_id=agent_id,
                created_branch=created_branch,
                created_worktree=created_worktree,
            )
            self._allocations[allocation.id] = allocation
        finally:
            self._reserved_branches.discard(branch)

        logger.info(f"worktree を割り当てました: {self.repo_name}:{branch} -> {allocation.worktree_path}")
        self.event_bus.emit(
            EventType.GIT_WORKTREE_CREATED,
            allocation_id=allocation.id,
            repo_name=self.repo_name,
            branch=branch,
            worktree_path=allocation.worktree_path,
            feature_id=feature_id,
            agent_id=agent_id,
        )
        return allocation

    async def _prepare_worktree(
        self, path: Path, branch: str, base_branch: str | None
    ) -> tuple[bool, bool]:
        """worktree を作成または再利用する。

        Returns:
            (worktree を新規作成したか, ブランチを新規作成したか)
        """
        existing = await self.git.get_worktree_path_for_branch(branch)
        if existing is not None:
            if os.path.realpath(existing) != os.path.realpath(path):
                raise AllocationError(
                    f"ブランチ {branch} は別の worktree でチェックアウトされています: "
                    f"{self.repo_name} ({existing})"
                )
            logger.info(f"既存の worktree を再利用します: {path}")
            return False, False

        if path.exists():
            raise AllocationError(f"worktree のパスが既に存在します: {self.repo_name} ({path})")

        branch_exists = await self.git.branch_exists(branch)
        try:
            await self.git.create_worktree(
                str(path), branch, create_branch=not branch_exists, base_branch=base_branch
            )
        except GitError as e:
            raise AllocationError(
                f"worktree の作成に失敗しました: {self.repo_name}:{branch} ({e.stderr.strip()})"
            ) from e
        return True, not branch_exists

    async def release(self, allocation_id: str, force: bool = False, keep_branch: bool = True) -> None:
        """割り当てを解放し、worktree を削除する。

        Args:
            allocation_id: 割り当てID
            force: 未コミットの変更があっても削除するか
            keep_branch: False の場合、この割り当てで作成したブランチも削除する

        Raises:
            DirtyWorktreeError: 未コミットの変更があり force が指定されていない場合
            AllocationError: 割り当てが見つからない、または削除に失敗した場合
        """
        allocation = self._allocations.get(allocation_id)
        if allocation is None:
            raise AllocationError(f"割り当てが見つかりません: {self.repo_name}:{allocation_id}")
        if allocation_id in self._releasing:
            raise AllocationError(f"割り当ては解放処理中です: {self.repo_name}:{allocation.branch}")

        self._releasing.add(allocation_id)
        try:
            await self._release(allocation, force, keep_branch)
        finally:
            self._releasing.discard(allocation_id)

    async def _release(self, allocation: WorktreeAllocation, force: bool, keep_branch: bool) -> None:
        path = allocation.worktree_path
        path_exists = os.path.isdir(path)

        if not force:
            dirty = allocation.dirty
            if not dirty and path_exists:
                try:
                    dirty = not await self.git.is_clean(path)
                except GitError as e:
                    raise AllocationError(
                        f"worktree の状態を確認できません: {self.repo_name} ({path})"
                    ) from e
            if dirty:
                allocation.dirty = True
                raise DirtyWorktreeError(self.repo_name, path)

        if path_exists:
            try:
                await self.git.remove_worktree(path, force=force)
            except GitError as e:
                raise AllocationError(
                    f"worktree の削除に失敗しました: {self.repo_name} ({path}): {e.stderr.strip()}"
                ) from e
        else:
            await self.git.prune_worktrees()

        self._allocations.pop(allocation.id, None)
        allocation.allocated = False
        logger.info(f"worktree を解放しました: {self.repo_name}:{allocation.branch}")
        self.event_bus.emit(
            EventType.GIT_WORKTREE_REMOVED,
            allocation_id=allocation.id,
            repo_name=self.repo_name,
            branch=allocation.branch,
            worktree_path=path,
            feature_id=allocation.feature_id,
        )

        if not keep_branch and allocation.created_branch:
            try:
                await self.git.delete_branch(allocation.branch)
            except GitError as e:
                raise AllocationError(
                    f"ブランチの削除に失敗しました: {self.repo_name}:{allocation.branch}"
                ) from e

    async def forget(self, allocation_id: str) -> None:
        """ディスク上の worktree とブランチには触れずに登録だけを外す。

        Raises:
            AllocationError: 割り当てが見つからない場合
        """
        allocation = self._allocations.pop(allocation_id, None)
        if allocation is None:
            raise AllocationError(f"割り当てが見つかりません: {self.repo_name}:{allocation_id}")
        allocation.allocated = False
        logger.info(
            f"worktree の登録を解除しました（ディスクは保持）: "
            f"{self.repo_name}:{allocation.branch} ({allocation.worktree_path})"
        )

    # ========== メタデータ ==========

    def touch(self, allocation_id: str) -> bool:
        """最終活動日時を更新する。"""
        allocation = self._allocations.get(allocation_id)
        if allocation is None:
            return False
        allocation.last_active_at = datetime.now()
        return True

    def mark_dirty(self, allocation_id: str, dirty: bool = True) -> bool:
        """未コミット変更フラグを設定する。"""
        allocation = self._allocations.get(allocation_id)
        if allocation is None:
            return False
        allocation.dirty = dirty
        allocation.last_active_at = datetime.now()
        return True

    def assign_agent(self, allocation_id: str, agent_id: str | None) -> bool:
        """割り当てを所有するエージェントを設定する。"""
        allocation = self._allocations.get(allocation_id)
        if allocation is None:
            return False
        allocation.agent_id = agent_id
        allocation.last_active_at = datetime.now()
        return True

    async def refresh_dirty(self, allocation_id: str) -> bool | None:
        """git status に変更があれば未コミット変更フラグを立てる。

        呼び出し側が立てたフラグは git がクリーンでも下ろさない。

        Returns:
            更新後のフラグ。割り当てがない、または確認できない場合はNone
        """
        allocation = self._allocations.get(allocation_id)
        if allocation is None or not os.path.isdir(allocation.worktree_path):
            return None
        try:
            if not await self.git.is_clean(allocation.worktree_path):
                allocation.dirty = True
        except GitError as e:
            logger.warning(f"worktree の状態を確認できません: {allocation.worktree_path} ({e})")
            return None
        return allocation.dirty

    # ========== 参照 ==========

    def get_allocation(self, allocation_id: str) -> WorktreeAllocation | None:
        """割り当てを取得する。"""
        return self._allocations.get(allocation_id)

    def get_all_allocations(self) -> list[WorktreeAllocation]:
        """全割り当てを取得する。"""
        return list(self._allocations.values())

    def get_allocations_for_feature(self, feature_id: str) -> list[WorktreeAllocation]:
        """フィーチャー別の割り当てを取得する。"""
        return [a for a in self._allocations.values() if a.feature_id == feature_id]

    def get_allocations_for_agent(self, agent_id: str) -> list[WorktreeAllocation]:
        """エージェント別の割り当てを取得する。"""
        return [a for a in self._allocations.values() if a.agent_id == agent_id]

    def find_by_branch(self, branch: str) -> WorktreeAllocation | None:
        """ブランチの割り当てを取得する。"""
        for allocation in self._allocations.values():
            if allocation.branch == branch and allocation.allocated:
                return allocation
        return None

    def find_by_path(self, worktree_path: str) -> WorktreeAllocation | None:
        """worktree パスの割り当てを取得する。"""
        target = os.path.realpath(worktree_path)
        for allocation in self._allocations.values():
            if os.path.realpath(allocation.worktree_path) == target:
                return allocation
        return None

    def get_stats(self) -> PoolStats:
        """統計を取得する。"""
        stats = PoolStats()
        for allocation in self._allocations.values():
            stats.total += 1
            if allocation.allocated:
                stats.active += 1
            if allocation.dirty:
                stats.dirty += 1
            stats.by_feature[allocation.feature_id] = stats.by_feature.get(allocation.feature_id, 0) + 1
        return stats

    # ========== クリーンアップ ==========

    async def cleanup_stale(self, max_idle_hours: float | None = None) -> int:
        """アイドル時間が閾値を超えた割り当てを強制解放する。

        dirty フラグが立っている割り当ては未コミットの作業を守るためスキップする。

        Args:
            max_idle_hours: 閾値（省略時は worktree_stale_hours）

        Returns:
            解放した件数
        """
        hours = self.settings.worktree_stale_hours if max_idle_hours is None else max_idle_hours
        cutoff = datetime.now() - timedelta(hours=hours)
        stale = [a for a in self._allocations.values() if a.last_active_at < cutoff]

        released = 0
        for allocation in stale:
            if allocation.dirty:
                logger.warning(
                    f"未コミットの変更があるためスキップします: {self.repo_name}:{allocation.branch}"
                )
                continue
            try:
                await self.release(allocation.id, force=True)
                released += 1
            except AllocationError as e:
                logger.error(f"stale な worktree の解放に失敗しました: {e}")

        if stale:
            await self.git.prune_worktrees()
        if released:
            logger.info(f"stale な worktree を {released} 件解放しました: {self.repo_name}")
        return released

    async def cleanup_feature(self, feature_id: str, force: bool = False) -> int:
        """フィーチャーの割り当てをすべて解放する。"""
        return await self._release_many(self.get_allocations_for_feature(feature_id), force)

    async def cleanup_agent(self, agent_id: str, force: bool = False) -> int:
        """エージェントの割り当てをすべて解放する。"""
        return await self._release_many(self.get_allocations_for_agent(agent_id), force)

    async def cleanup_all(self, force: bool = False) -> int:
        """全割り当てを解放する。

        force なしの場合、未コミットの変更がある割り当ては残す。
        """
        return await self._release_many(self.get_all_allocations(), force)

    async def _release_many(self, allocations: list[WorktreeAllocation], force: bool) -> int:
        released = 0
        for allocation in allocations:
            try:
                await self.release(allocation.id, force=force)
                released += 1
            except DirtyWorktreeError as e:
                logger.warning(str(e))
            except AllocationError as e:
                logger.error(f"worktree の解放に失敗しました: {e}")
        return released

    async def sync_with_disk(self) -> int:
        """ディスク上から消えた worktree の割り当てを登録から外す。

        Returns:
            登録から外した件数
        """
        await self.git.prune_worktrees()
        on_disk = {os.path.realpath(wt.path) for wt in await self.git.list_worktrees()}

        removed = 0
        for allocation in list(self._allocations.values()):
            path = allocation.worktree_path
            if os.path.isdir(path) and os.path.realpath(path) in on_disk:
                continue
            self._allocations.pop(allocation.id, None)
            allocation.allocated = False
            removed += 1
            logger.warning(f"ディスク上に存在しない worktree を登録から外しました: {path}")
        return removed
