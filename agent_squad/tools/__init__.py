"""MCP Tools モジュール。"""

from mcp.server.fastmcp import FastMCP

from agent_squad.tools import process, workspace


def register_all_tools(mcp: FastMCP) -> None:
    """全ツールをMCPサーバーに登録する。

    Args:
        mcp: FastMCPインスタンス
    """
    # Worker プロセス管理
    process.register_tools(mcp)

    # マルチリポジトリ worktree 管理
    workspace.register_tools(mcp)
