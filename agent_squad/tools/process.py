"""Worker プロセス管理ツール。"""

import logging
from typing import Any

from mcp.server.fastmcp import Context, FastMCP

from agent_squad.errors import NotInitializedError, SpawnError
from agent_squad.models.agent import Agent, AgentRole
from agent_squad.models.process import SpawnOptions
from agent_squad.tools.helpers import error_response, get_app_context

logger = logging.getLogger(__name__)


def register_tools(mcp: FastMCP) -> None:
    """Worker プロセス管理ツールを登録する。"""

    @mcp.tool()
    async def register_agent(
        agent_id: str,
        name: str,
        role: str = AgentRole.ENGINEERING.value,
        model: str | None = None,
        max_turns: int | None = None,
        system_prompt: str | None = None,
        allowed_tools: list[str] | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """Worker として起動するエージェントを登録する。

        Args:
            agent_id: エージェントID
            name: エージェント名
            role: 専門領域（engineering/quality-assurance/...）
            model: 使用するモデル（sonnet/opus/haiku またはフルネーム）
            max_turns: ターン数上限
            system_prompt: 追加のシステムプロンプト
            allowed_tools: 許可するツール

        Returns:
            登録結果（success, agent または error）
        """
        app_ctx = get_app_context(ctx)
        try:
            agent_role = AgentRole(role)
        except ValueError:
            valid = [r.value for r in AgentRole]
            return error_response(f"無効な役割です: {role}（有効: {valid}）")

        agent = Agent(
            id=agent_id,
            name=name,
            role=agent_role,
            model=model,
            max_turns=max_turns,
            system_prompt=system_prompt,
            allowed_tools=allowed_tools or [],
        )
        app_ctx.agents[agent_id] = agent
        logger.info(f"エージェントを登録しました: {agent_id}")
        return {"success": True, "agent": agent.model_dump()}

    @mcp.tool()
    async def spawn_agent(
        agent_id: str,
        task: str,
        working_directory: str | None = None,
        feature_branch: str | None = None,
        repo_name: str | None = None,
        model: str | None = None,
        max_turns: int | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """登録済みエージェントの Worker プロセスを起動する。

        working_directory を省略した場合は feature_branch の worktree
        （repo_name 省略時はプライマリリポジトリ）で起動する。

        Args:
            agent_id: エージェントID
            task: Worker に渡すタスク
            working_directory: 作業ディレクトリ
            feature_branch: 割り当て済みのフィーチャーブランチ
            repo_name: 作業するリポジトリ名
            model: モデル（エージェント設定より優先）
            max_turns: ターン数上限

        Returns:
            起動結果（success, process または error）
        """
        app_ctx = get_app_context(ctx)
        agent = app_ctx.agents.get(agent_id)
        if agent is None:
            return error_response(f"エージェント {agent_id} が登録されていません")

        cwd = working_directory
        if cwd is None:
            if feature_branch is None:
                return error_response("working_directory か feature_branch を指定してください")
            try:
                coordinator = app_ctx.coordinator
                if repo_name:
                    cwd = coordinator.get_worktree_path(repo_name, feature_branch)
                else:
                    cwd = coordinator.get_primary_worktree_path(feature_branch)
            except NotInitializedError as e:
                return error_response(e)
            if cwd is None:
                return error_response(f"ブランチ {feature_branch} の worktree が割り当てられていません")

        options = SpawnOptions(
            agent=agent,
            task=task,
            working_directory=cwd,
            model=model,
            max_turns=max_turns,
        )
        try:
            process = await app_ctx.orchestrator.spawn(options)
        except SpawnError as e:
            return error_response(e)

        if feature_branch is not None and app_ctx.coordinator.initialized:
            app_ctx.coordinator.touch_feature(feature_branch)

        return {"success": True, "process": process.to_dict()}

    @mcp.tool()
    async def get_process_status(process_id: str, ctx: Context = None) -> dict[str, Any]:
        """Worker プロセスの状態を取得する。

        Args:
            process_id: プロセスID

        Returns:
            状態（success, process または error）
        """
        app_ctx = get_app_context(ctx)
        process = app_ctx.orchestrator.get_process(process_id)
        if process is None:
            return error_response(f"プロセス {process_id} が見つかりません")
        return {"success": True, "process": process.to_dict()}

    @mcp.tool()
    async def list_processes(agent_id: str | None = None, ctx: Context = None) -> dict[str, Any]:
        """Worker プロセス一覧を取得する。

        Args:
            agent_id: 指定した場合はそのエージェントのプロセスのみ

        Returns:
            一覧（success, processes, count）
        """
        app_ctx = get_app_context(ctx)
        orchestrator = app_ctx.orchestrator
        processes = (
            orchestrator.get_processes_by_agent(agent_id)
            if agent_id
            else orchestrator.get_all_processes()
        )
        return {
            "success": True,
            "processes": [p.to_dict() for p in processes],
            "count": len(processes),
        }

    @mcp.tool()
    async def send_agent_input(process_id: str, text: str, ctx: Context = None) -> dict[str, Any]:
        """Worker の標準入力にテキストを送る。

        Args:
            process_id: プロセスID
            text: 入力テキスト

        Returns:
            送信結果（success, message または error）
        """
        app_ctx = get_app_context(ctx)
        if not app_ctx.orchestrator.send_input(process_id, text):
            return error_response(f"プロセス {process_id} は入力を受け付けていません")
        return {"success": True, "message": "入力を送信しました"}

    @mcp.tool()
    async def kill_agent(process_id: str, ctx: Context = None) -> dict[str, Any]:
        """Worker プロセスを終了させる。

        Args:
            process_id: プロセスID

        Returns:
            終了結果（success, process または error）
        """
        app_ctx = get_app_context(ctx)
        if not await app_ctx.orchestrator.kill(process_id):
            return error_response(f"プロセス {process_id} は実行中ではありません")
        process = app_ctx.orchestrator.get_process(process_id)
        return {"success": True, "process": process.to_dict() if process else None}

    @mcp.tool()
    async def pause_agent(process_id: str, ctx: Context = None) -> dict[str, Any]:
        """Worker プロセスを一時停止する。

        Args:
            process_id: プロセスID

        Returns:
            結果（success, message または error）
        """
        app_ctx = get_app_context(ctx)
        if not app_ctx.orchestrator.pause(process_id):
            return error_response(f"プロセス {process_id} を一時停止できません")
        return {"success": True, "message": f"プロセス {process_id} を一時停止しました"}

    @mcp.tool()
    async def resume_agent(process_id: str, ctx: Context = None) -> dict[str, Any]:
        """一時停止中の Worker プロセスを再開する。

        Args:
            process_id: プロセスID

        Returns:
            結果（success, message または error）
        """
        app_ctx = get_app_context(ctx)
        if not app_ctx.orchestrator.resume(process_id):
            return error_response(f"プロセス {process_id} は一時停止中ではありません")
        return {"success": True, "message": f"プロセス {process_id} を再開しました"}

    @mcp.tool()
    async def wait_for_agent(
        process_id: str,
        timeout_seconds: float | None = None,
        ctx: Context = None,
    ) -> dict[str, Any]:
        """Worker プロセスの終了を待つ。

        Args:
            process_id: プロセスID
            timeout_seconds: タイムアウト秒数（省略時は無制限）

        Returns:
            終了後の状態（success, process または error）
        """
        app_ctx = get_app_context(ctx)
        process = await app_ctx.orchestrator.wait_for_process(process_id, timeout_seconds)
        if process is None:
            return error_response(f"プロセス {process_id} が見つからないか、タイムアウトしました")
        return {"success": True, "process": process.to_dict()}

    @mcp.tool()
    async def get_agent_output(
        process_id: str, limit: int = 50, ctx: Context = None
    ) -> dict[str, Any]:
        """Worker の直近の出力を取得する。

        Args:
            process_id: プロセスID
            limit: 取得する最大件数

        Returns:
            出力（success, outputs, count または error）
        """
        app_ctx = get_app_context(ctx)
        if app_ctx.orchestrator.get_process(process_id) is None:
            return error_response(f"プロセス {process_id} が見つかりません")
        outputs = app_ctx.orchestrator.get_output(process_id)
        if limit > 0:
            outputs = outputs[-limit:]
        return {
            "success": True,
            "outputs": [o.model_dump(mode="json") for o in outputs],
            "count": len(outputs),
        }

    @mcp.tool()
    async def get_cost_summary(ctx: Context = None) -> dict[str, Any]:
        """Worker の累計コストを取得する。

        Returns:
            コスト集計（success, summary, by_agent, warning）
        """
        app_ctx = get_app_context(ctx)
        cost_manager = app_ctx.cost_manager
        return {
            "success": True,
            "summary": cost_manager.get_summary().to_dict(),
            "by_agent": cost_manager.get_cost_by_agent(),
            "warning": cost_manager.check_warning(),
        }

    @mcp.tool()
    async def clear_completed_processes(ctx: Context = None) -> dict[str, Any]:
        """終了済みの Worker プロセスを一覧から削除する。

        Returns:
            削除結果（success, removed）
        """
        app_ctx = get_app_context(ctx)
        removed = app_ctx.orchestrator.clear_completed()
        return {"success": True, "removed": removed}
