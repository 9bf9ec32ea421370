"""Worker プロセス管理ツールのテスト。"""

import pytest
from mcp.server.fastmcp import FastMCP

from agent_squad.tools.process import register_tools


@pytest.fixture
def process_tools():
    """ツール名から関数を引く辞書を返す。"""
    mcp = FastMCP("test")
    register_tools(mcp)
    return {tool.name: tool.fn for tool in mcp._tool_manager._tools.values()}


class TestRegisterAgent:
    """register_agent ツールのテスト。"""

    @pytest.mark.asyncio
    async def test_register_agent(self, process_tools, mock_mcp_context):
        """エージェントを登録できることをテスト。"""
        result = await process_tools["register_agent"](
            agent_id="qa-1",
            name="QA",
            role="quality-assurance",
            model="haiku",
            ctx=mock_mcp_context,
        )

        assert result["success"] is True
        assert result["agent"]["role"] == "quality-assurance"
        app_ctx = mock_mcp_context.request_context.lifespan_context
        assert "qa-1" in app_ctx.agents

    @pytest.mark.asyncio
    async def test_register_agent_invalid_role(self, process_tools, mock_mcp_context):
        """無効な役割はエラーになることをテスト。"""
        result = await process_tools["register_agent"](
            agent_id="x", name="X", role="owner", ctx=mock_mcp_context
        )
        assert result["success"] is False
        assert "無効な役割" in result["error"]


class TestSpawnAgent:
    """spawn_agent ツールのテスト。"""

    @pytest.mark.asyncio
    async def test_spawn_and_wait(self, process_tools, mock_mcp_context, temp_dir):
        """起動したプロセスの終了を待てることをテスト。"""
        await process_tools["register_agent"](agent_id="dev", name="Dev", ctx=mock_mcp_context)

        spawned = await process_tools["spawn_agent"](
            agent_id="dev", task="cost", working_directory=str(temp_dir), ctx=mock_mcp_context
        )
        assert spawned["success"] is True
        process_id = spawned["process"]["id"]

        waited = await process_tools["wait_for_agent"](
            process_id=process_id, timeout_seconds=10, ctx=mock_mcp_context
        )
        assert waited["success"] is True
        assert waited["process"]["state"] == "completed"
        assert waited["process"]["total_cost_usd"] == pytest.approx(0.06)

        output = await process_tools["get_agent_output"](
            process_id=process_id, limit=2, ctx=mock_mcp_context
        )
        assert output["count"] == 2

        cost = await process_tools["get_cost_summary"](ctx=mock_mcp_context)
        assert cost["summary"]["total_cost_usd"] == pytest.approx(0.06)
        assert cost["by_agent"]["dev"] == pytest.approx(0.06)

    @pytest.mark.asyncio
    async def test_spawn_unknown_agent(self, process_tools, mock_mcp_context, temp_dir):
        """未登録のエージェントはエラーになることをテスト。"""
        result = await process_tools["spawn_agent"](
            agent_id="nobody", task="cost", working_directory=str(temp_dir), ctx=mock_mcp_context
        )
        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_spawn_invalid_directory(self, process_tools, mock_mcp_context, temp_dir):
        """無効な作業ディレクトリは SpawnError として返ることをテスト。"""
        await process_tools["register_agent"](agent_id="dev", name="Dev", ctx=mock_mcp_context)
        result = await process_tools["spawn_agent"](
            agent_id="dev",
            task="cost",
            working_directory=str(temp_dir / "missing"),
            ctx=mock_mcp_context,
        )
        assert result["success"] is False
        assert result["error_type"] == "SpawnError"

    @pytest.mark.asyncio
    async def test_spawn_feature_branch_uninitialized(self, process_tools, mock_mcp_context):
        """未初期化のワークスペースでフィーチャーブランチを指定するとエラーになることをテスト。"""
        await process_tools["register_agent"](agent_id="dev", name="Dev", ctx=mock_mcp_context)
        result = await process_tools["spawn_agent"](
            agent_id="dev", task="cost", feature_branch="feature/x", ctx=mock_mcp_context
        )
        assert result["success"] is False
        assert result["error_type"] == "NotInitializedError"


class TestProcessControl:
    """プロセス操作ツールのテスト。"""

    @pytest.mark.asyncio
    async def test_kill_and_clear(self, process_tools, mock_mcp_context, temp_dir):
        """kill 後に一覧から削除できることをテスト。"""
        await process_tools["register_agent"](agent_id="dev", name="Dev", ctx=mock_mcp_context)
        spawned = await process_tools["spawn_agent"](
            agent_id="dev", task="sleep", working_directory=str(temp_dir), ctx=mock_mcp_context
        )
        process_id = spawned["process"]["id"]

        killed = await process_tools["kill_agent"](process_id=process_id, ctx=mock_mcp_context)
        assert killed["success"] is True
        assert killed["process"]["state"] == "killed"

        again = await process_tools["kill_agent"](process_id=process_id, ctx=mock_mcp_context)
        assert again["success"] is False

        listed = await process_tools["list_processes"](agent_id="dev", ctx=mock_mcp_context)
        assert listed["count"] == 1

        cleared = await process_tools["clear_completed_processes"](ctx=mock_mcp_context)
        assert cleared["removed"] == 1

    @pytest.mark.asyncio
    async def test_unknown_process(self, process_tools, mock_mcp_context):
        """未知のプロセスIDはエラーになることをテスト。"""
        for name in ("get_process_status", "pause_agent", "resume_agent", "get_agent_output"):
            result = await process_tools[name](process_id="proc_unknown", ctx=mock_mcp_context)
            assert result["success"] is False

        sent = await process_tools["send_agent_input"](
            process_id="proc_unknown", text="hi", ctx=mock_mcp_context
        )
        assert sent["success"] is False
