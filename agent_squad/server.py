"""Agent Squad MCP Server エントリーポイント。"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from mcp.server.fastmcp import FastMCP

from agent_squad.config.settings import load_settings_for_project
from agent_squad.context import AppContext
from agent_squad.managers.cost_manager import CostManager
from agent_squad.managers.credentials import EnvCredentialProvider
from agent_squad.managers.event_bus import EventBus
from agent_squad.managers.multi_repo_coordinator import MultiRepoCoordinator
from agent_squad.managers.process_orchestrator import ProcessOrchestrator
from agent_squad.tools import register_all_tools

# ログ設定（stderrに出力）
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app_context(project_root: str | None = None) -> AppContext:
    """設定を読み込み、マネージャーを組み立てる。

    Args:
        project_root: プロジェクトルート（.agent-squad/.env の探索に使用）

    Returns:
        アプリケーションコンテキスト
    """
    settings = load_settings_for_project(project_root)
    event_bus = EventBus(settings.event_history_size)
    cost_manager = CostManager(settings.cost_warning_threshold_usd)
    orchestrator = ProcessOrchestrator(
        settings,
        event_bus=event_bus,
        credentials=EnvCredentialProvider(settings.worker_token_env),
        cost_manager=cost_manager,
    )
    coordinator = MultiRepoCoordinator(settings, event_bus=event_bus)
    return AppContext(
        settings=settings,
        event_bus=event_bus,
        cost_manager=cost_manager,
        orchestrator=orchestrator,
        coordinator=coordinator,
        project_root=project_root,
    )


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """サーバーライフサイクルを管理する。

    Args:
        server: FastMCPサーバーインスタンス

    Yields:
        アプリケーションコンテキスト
    """
    logger.info("Agent Squad MCP Server を起動しています...")

    app_ctx = create_app_context(os.getenv("SQUAD_PROJECT_ROOT"))
    os.makedirs(app_ctx.settings.get_worktree_base_dir(), exist_ok=True)

    try:
        yield app_ctx
    finally:
        # クリーンアップ
        logger.info("サーバーをシャットダウンしています...")
        count = await app_ctx.orchestrator.kill_all()
        logger.info(f"{count} 件の Worker プロセスを終了しました")


# FastMCPサーバーを作成
mcp = FastMCP("Agent Squad MCP", lifespan=app_lifespan)

register_all_tools(mcp)


def main() -> None:
    """MCPサーバーを起動する。"""
    mcp.run()


if __name__ == "__main__":
    main()
