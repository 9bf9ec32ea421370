"""マルチリポジトリ worktree 管理ツール。"""

import logging
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from agent_squad.config.workspace_config import WorkspaceConfigManager
from agent_squad.errors import SquadError
from agent_squad.models.workspace import Feature, MultiRepoConfig, RepoConfig, RepoRole
from agent_squad.tools.helpers import error_response, get_app_context

logger = logging.getLogger(__name__)


def register_tools(mcp: FastMCP) -> None:
    """マルチリポジトリ worktree 管理ツールを登録する。"""

    @mcp.tool()
    async def initialize_workspace(
        primary_path: str | None = None,
        primary_name: str | None = None,
        default_branch: str = "main",
        dependencies: list[dict[str, Any]] | None = None,
        save: bool = False,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """ワークスペースのリポジトリ構成を検証して初期化する。

        primary_path を省略した場合は project_root の
        .agent-squad/workspace.toml から構成を読み込む。

        Args:
            primary_path: プライマリリポジトリのパス
            primary_name: プライマリリポジトリ名（省略時はディレクトリ名）
            default_branch: プライマリのデフォルトブランチ
            dependencies: 依存リポジトリ（name, path, default_branch, url）
            save: 構成を workspace.toml に保存するか

        Returns:
            初期化結果（success, repos または error）
        """
        app_ctx = get_app_context(ctx)
        config_manager = (
            WorkspaceConfigManager(app_ctx.project_root) if app_ctx.project_root else None
        )

        if primary_path is None:
            config = config_manager.load() if config_manager else None
            if config is None:
                return error_response("primary_path を指定するか workspace.toml を用意してください")
        else:
            try:
                config = MultiRepoConfig(
                    primary=RepoConfig(
                        name=primary_name or primary_path.rstrip("/").split("/")[-1],
                        path=primary_path,
                        default_branch=default_branch,
                        role=RepoRole.PRIMARY,
                    ),
                    dependencies=[
                        RepoConfig(**{**dep, "role": RepoRole.DEPENDENCY})
                        for dep in dependencies or []
                    ],
                )
            except (TypeError, ValueError) as e:
                return error_response(f"リポジトリ構成が不正です: {e}")

        try:
            await app_ctx.coordinator.initialize_workspace(config)
        except SquadError as e:
            return error_response(e)

        saved = False
        if save and config_manager is not None:
            saved = config_manager.save(config)

        return {
            "success": True,
            "repos": [repo.model_dump() for repo in config.all_repos()],
            "saved": saved,
        }

    @mcp.tool()
    async def create_feature_worktrees(
        feature_branch: str,
        feature_id: str | None = None,
        agent_id: str | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """全リポジトリにフィーチャーブランチの worktree を一括で割り当てる。

        Args:
            feature_branch: フィーチャーブランチ名
            feature_id: フィーチャーID
            agent_id: 所有するエージェントID

        Returns:
            割り当て結果（success, worktree または error）
        """
        app_ctx = get_app_context(ctx)
        try:
            worktree = await app_ctx.coordinator.create_multi_repo_worktree(
                feature_branch, feature_id=feature_id, agent_id=agent_id
            )
        except SquadError as e:
            return error_response(e)
        return {"success": True, "worktree": worktree.model_dump(mode="json")}

    @mcp.tool()
    async def get_feature_status(feature_branch: str, ctx: Context = None) -> dict[str, Any]:
        """フィーチャーのリポジトリ別状態を取得する。

        Args:
            feature_branch: フィーチャーブランチ名

        Returns:
            状態（success, repos または error）
        """
        app_ctx = get_app_context(ctx)
        try:
            statuses = await app_ctx.coordinator.get_multi_repo_status(feature_branch)
        except SquadError as e:
            return error_response(e)
        return {
            "success": True,
            "repos": {name: s.model_dump() for name, s in statuses.items()},
        }

    @mcp.tool()
    async def mark_worktree_dirty(
        repo_name: str,
        feature_branch: str,
        dirty: bool = True,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """worktree の未コミット変更フラグを設定する。

        Args:
            repo_name: リポジトリ名
            feature_branch: フィーチャーブランチ名
            dirty: 設定する値

        Returns:
            結果（success または error）
        """
        app_ctx = get_app_context(ctx)
        try:
            updated = app_ctx.coordinator.mark_dirty(repo_name, feature_branch, dirty)
        except SquadError as e:
            return error_response(e)
        if not updated:
            return error_response(f"{repo_name} に {feature_branch} の worktree がありません")
        return {"success": True, "dirty": dirty}

    @mcp.tool()
    async def commit_feature(
        message: str,
        feature_branch: str | None = None,
        repo_name: str | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """フィーチャーの変更をコミットする。

        repo_name を指定した場合はそのリポジトリのみ、
        省略した場合は割り当て済みの全リポジトリでコミットする。

        Args:
            message: コミットメッセージ
            feature_branch: フィーチャーブランチ名（全リポジトリ時は省略可）
            repo_name: リポジトリ名

        Returns:
            リポジトリ別の結果（success, results または error）
        """
        app_ctx = get_app_context(ctx)
        coordinator = app_ctx.coordinator
        try:
            if repo_name:
                if not feature_branch:
                    return error_response("repo_name 指定時は feature_branch も指定してください")
                results = [await coordinator.commit_in_repo(repo_name, message, feature_branch)]
            else:
                results = await coordinator.commit_all(message, feature_branch)
        except SquadError as e:
            return error_response(e)

        return {
            "success": all(r.success for r in results),
            "results": [r.model_dump() for r in results],
            "committed": sum(1 for r in results if r.success),
        }

    @mcp.tool()
    async def create_feature_prs(
        feature_branch: str,
        name: str,
        description: str | None = None,
        feature_id: str | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """コミットのある全リポジトリで Pull Request を作成する。

        Args:
            feature_branch: フィーチャーブランチ名
            name: フィーチャー名（PR タイトルに使用）
            description: 説明（PR タイトルに使用）
            feature_id: フィーチャーID

        Returns:
            作成結果（success, prs, skipped, failed または error）
        """
        app_ctx = get_app_context(ctx)
        feature = Feature(
            id=feature_id or feature_branch,
            name=name,
            branch_name=feature_branch,
            description=description,
        )
        try:
            batch = await app_ctx.coordinator.create_multi_repo_prs(feature)
        except SquadError as e:
            return error_response(e)
        return {"success": not batch.failed, **batch.model_dump()}

    @mcp.tool()
    async def release_feature_worktrees(
        feature_branch: str,
        force: bool = False,
        keep_branches: bool = True,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """フィーチャーの worktree を全リポジトリで解放する。

        Args:
            feature_branch: フィーチャーブランチ名
            force: 未コミットの変更があっても削除するか
            keep_branches: ブランチを残すか

        Returns:
            解放結果（success, released または error）
        """
        app_ctx = get_app_context(ctx)
        try:
            released = await app_ctx.coordinator.cleanup_multi_repo_worktree(
                feature_branch, force=force, keep_branches=keep_branches
            )
        except SquadError as e:
            return error_response(e)
        return {"success": True, "released": released}

    @mcp.tool()
    async def cleanup_worktrees(
        stale_only: bool = True,
        max_idle_hours: float | None = None,
        force: bool = False,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """worktree をクリーンアップする。

        Args:
            stale_only: True の場合はアイドル時間を超えたもののみ
            max_idle_hours: アイドル時間の閾値（省略時は設定値）
            force: stale_only=False のとき未コミットの変更があっても削除するか

        Returns:
            クリーンアップ結果（success, released または error）
        """
        app_ctx = get_app_context(ctx)
        coordinator = app_ctx.coordinator
        try:
            if stale_only:
                released = await coordinator.cleanup_stale(max_idle_hours)
            else:
                released = await coordinator.cleanup_all(force=force)
        except SquadError as e:
            return error_response(e)
        return {"success": True, "released": released}

    @mcp.tool()
    async def get_workspace_stats(ctx: Context = None) -> dict[str, Any]:
        """ワークスペースの統計を取得する。

        Returns:
            統計（success, stats, features または error）
        """
        app_ctx = get_app_context(ctx)
        coordinator = app_ctx.coordinator
        try:
            stats = coordinator.get_stats()
            features = [w.feature_branch for w in coordinator.list_multi_repo_worktrees()]
        except SquadError as e:
            return error_response(e)
        return {"success": True, "stats": stats.model_dump(), "features": features}
