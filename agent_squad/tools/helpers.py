"""MCPツール用共通ヘルパー関数。"""

import logging
from typing import Any

from mcp.server.fastmcp import Context

from agent_squad.context import AppContext
from agent_squad.errors import SquadError

logger = logging.getLogger(__name__)


def get_app_context(ctx: Context) -> AppContext:
    """MCP Context からアプリケーションコンテキストを取り出す。"""
    return ctx.request_context.lifespan_context


def error_response(error: Exception | str) -> dict[str, Any]:
    """失敗レスポンスを生成する。

    SquadError の場合は例外クラス名を error_type に含める。
    """
    response: dict[str, Any] = {"success": False, "error": str(error)}
    if isinstance(error, SquadError):
        response["error_type"] = type(error).__name__
    return response
