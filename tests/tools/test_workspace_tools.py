"""マルチリポジトリ worktree 管理ツールのテスト。"""

import os

import pytest
from mcp.server.fastmcp import FastMCP

from agent_squad.config.workspace_config import WorkspaceConfigManager
from agent_squad.tools.workspace import register_tools


@pytest.fixture
def workspace_tools():
    """ツール名から関数を引く辞書を返す。"""
    mcp = FastMCP("test")
    register_tools(mcp)
    return {tool.name: tool.fn for tool in mcp._tool_manager._tools.values()}


@pytest.fixture
async def initialized_ctx(workspace_tools, mock_mcp_context, make_git_repo):
    """api と lib の 2 リポジトリで初期化済みの Context を返す。"""
    api = make_git_repo("api")
    lib = make_git_repo("lib")
    result = await workspace_tools["initialize_workspace"](
        primary_path=str(api),
        dependencies=[{"name": "lib", "path": str(lib)}],
        ctx=mock_mcp_context,
    )
    assert result["success"] is True
    return mock_mcp_context


class TestInitializeWorkspace:
    """initialize_workspace ツールのテスト。"""

    @pytest.mark.asyncio
    async def test_initialize_and_save(
        self, workspace_tools, mock_mcp_context, make_git_repo, temp_dir
    ):
        """初期化した構成を workspace.toml に保存できることをテスト。"""
        api = make_git_repo("api")
        result = await workspace_tools["initialize_workspace"](
            primary_path=str(api), save=True, ctx=mock_mcp_context
        )

        assert result["success"] is True
        assert result["repos"][0]["name"] == "api"
        assert result["saved"] is True

        loaded = WorkspaceConfigManager(str(temp_dir)).load()
        assert loaded.primary.path == str(api)

    @pytest.mark.asyncio
    async def test_initialize_from_file(
        self, workspace_tools, mock_mcp_context, make_git_repo, temp_dir
    ):
        """primary_path 省略時は workspace.toml から読み込むことをテスト。"""
        make_git_repo("api")
        WorkspaceConfigManager(str(temp_dir)).write(
            {"primary": {"name": "api", "path": "repos/api"}}
        )

        result = await workspace_tools["initialize_workspace"](ctx=mock_mcp_context)

        assert result["success"] is True
        assert result["repos"][0]["path"] == str(temp_dir / "repos" / "api")

    @pytest.mark.asyncio
    async def test_initialize_without_config(self, workspace_tools, mock_mcp_context):
        """構成がない場合はエラーになることをテスト。"""
        result = await workspace_tools["initialize_workspace"](ctx=mock_mcp_context)
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_initialize_invalid_repo(self, workspace_tools, mock_mcp_context, temp_dir):
        """無効なリポジトリは AllocationError として返ることをテスト。"""
        result = await workspace_tools["initialize_workspace"](
            primary_path=str(temp_dir / "nowhere"), primary_name="ghost", ctx=mock_mcp_context
        )
        assert result["success"] is False
        assert result["error_type"] == "AllocationError"
        assert "ghost" in result["error"]


class TestFeatureLifecycle:
    """フィーチャー worktree のライフサイクルのテスト。"""

    @pytest.mark.asyncio
    async def test_create_commit_release(self, workspace_tools, initialized_ctx):
        """作成・コミット・解放の一連の流れをテスト。"""
        created = await workspace_tools["create_feature_worktrees"](
            feature_branch="feature/x", ctx=initialized_ctx
        )
        assert created["success"] is True
        api_path = created["worktree"]["allocations"]["api"]["worktree_path"]

        with open(os.path.join(api_path, "a.txt"), "w") as f:
            f.write("a")

        status = await workspace_tools["get_feature_status"](
            feature_branch="feature/x", ctx=initialized_ctx
        )
        assert status["repos"]["api"]["has_changes"] is True

        committed = await workspace_tools["commit_feature"](
            message="add a", feature_branch="feature/x", ctx=initialized_ctx
        )
        assert committed["success"] is False
        assert committed["committed"] == 1

        stats = await workspace_tools["get_workspace_stats"](ctx=initialized_ctx)
        assert stats["stats"]["active_worktrees"] == 2
        assert stats["features"] == ["feature/x"]

        released = await workspace_tools["release_feature_worktrees"](
            feature_branch="feature/x", ctx=initialized_ctx
        )
        assert released == {"success": True, "released": 2}

    @pytest.mark.asyncio
    async def test_release_dirty(self, workspace_tools, initialized_ctx):
        """dirty フラグがあると解放が拒否されることをテスト。"""
        await workspace_tools["create_feature_worktrees"](
            feature_branch="feature/x", ctx=initialized_ctx
        )
        marked = await workspace_tools["mark_worktree_dirty"](
            repo_name="lib", feature_branch="feature/x", ctx=initialized_ctx
        )
        assert marked["success"] is True

        refused = await workspace_tools["release_feature_worktrees"](
            feature_branch="feature/x", ctx=initialized_ctx
        )
        assert refused["success"] is False
        assert refused["error_type"] == "DirtyWorktreeError"

        forced = await workspace_tools["release_feature_worktrees"](
            feature_branch="feature/x", force=True, ctx=initialized_ctx
        )
        assert forced["released"] == 2

    @pytest.mark.asyncio
    async def test_create_prs_skips_without_commits(self, workspace_tools, initialized_ctx):
        """コミットがないリポジトリは PR 作成をスキップすることをテスト。"""
        await workspace_tools["create_feature_worktrees"](
            feature_branch="feature/x", ctx=initialized_ctx
        )
        result = await workspace_tools["create_feature_prs"](
            feature_branch="feature/x", name="login", ctx=initialized_ctx
        )

        assert result["success"] is True
        assert result["prs"] == []
        assert sorted(result["skipped"]) == ["api", "lib"]

    @pytest.mark.asyncio
    async def test_cleanup_worktrees(self, workspace_tools, initialized_ctx):
        """stale のみ・全体のクリーンアップをテスト。"""
        await workspace_tools["create_feature_worktrees"](
            feature_branch="feature/x", ctx=initialized_ctx
        )

        stale = await workspace_tools["cleanup_worktrees"](ctx=initialized_ctx)
        assert stale["released"] == 0

        everything = await workspace_tools["cleanup_worktrees"](
            stale_only=False, ctx=initialized_ctx
        )
        assert everything["released"] == 2

    @pytest.mark.asyncio
    async def test_requires_initialize(self, workspace_tools, mock_mcp_context):
        """初期化前はエラーが返ることをテスト。"""
        result = await workspace_tools["create_feature_worktrees"](
            feature_branch="feature/x", ctx=mock_mcp_context
        )
        assert result["success"] is False
        assert result["error_type"] == "NotInitializedError"
