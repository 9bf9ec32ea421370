"""Worker CLI の stream-json 出力を解析するモジュール。

1 行 1 JSON オブジェクトの出力から、セッションID・コスト・表示用チャンクを取り出す。
"""

import json
import logging
import re
from typing import Any

from agent_squad.models.process import AgentOutput, AgentOutputType

logger = logging.getLogger(__name__)

# ユーザー入力待ちを示す出力パターン
WAITING_PATTERNS = [
    re.compile(r"waiting for (your )?(approval|confirmation|permission)", re.IGNORECASE),
    re.compile(r"waiting for (user )?input", re.IGNORECASE),
    re.compile(r"input required|user input needed", re.IGNORECASE),
    re.compile(r"please (enter|provide|specify|type|give)", re.IGNORECASE),
    re.compile(r"\(y/n\)\s*$", re.IGNORECASE),
]


def parse_stream_message(line: str) -> dict[str, Any] | None:
    """1 行を JSON として解析する。

    Args:
        line: stdout の 1 行

    Returns:
        解析結果の辞書。空行・不正な JSON・オブジェクト以外は None
    """
    text = line.strip()
    if not text:
        return None
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        logger.debug(f"JSON ではない出力行: {text[:80]}")
        return None
    if not isinstance(message, dict):
        return None
    return message


def extract_cost(message: dict[str, Any]) -> float | None:
    """メッセージから増分コスト（USD）を取り出す。

    cost_usd は報告ごとの増分として扱う。累計値の total_cost_usd は加算しない。
    """
    value = message.get("cost_usd")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    return None


def extract_session_id(message: dict[str, Any]) -> str | None:
    """メッセージからセッションIDを取り出す。"""
    session_id = message.get("session_id")
    if isinstance(session_id, str) and session_id:
        return session_id
    return None


def _as_text(value: Any) -> str | None:
    """表示用の値を文字列にそろえる。"""
    if value is None or isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def _content_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
    inner = message.get("message")
    content = inner.get("content") if isinstance(inner, dict) else message.get("content")
    if isinstance(content, list):
        return [block for block in content if isinstance(block, dict)]
    if isinstance(content, str):
        return [{"type": "text", "text": content}]
    return []


def to_agent_outputs(message: dict[str, Any]) -> list[AgentOutput]:
    """stream-json のメッセージを表示用チャンクに変換する。

    Args:
        message: parse_stream_message の結果

    Returns:
        AgentOutput のリスト（空の場合あり）
    """
    msg_type = message.get("type")

    if msg_type == "error":
        error = message.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return [AgentOutput(type=AgentOutputType.ERROR, content=str(error or "不明なエラー"))]

    if msg_type == "result":
        cost = extract_cost(message)
        if cost is not None:
            return [
                AgentOutput(
                    type=AgentOutputType.COST,
                    content=f"Cost: ${cost:.4f}",
                    cost_usd=cost,
                )
            ]
        return [AgentOutput(type=AgentOutputType.SYSTEM, content=str(message.get("result", "")))]

    if msg_type == "system":
        subtype = message.get("subtype") or "system"
        return [AgentOutput(type=AgentOutputType.SYSTEM, content=str(subtype))]

    if msg_type in ("assistant", "user"):
        outputs = []
        for block in _content_blocks(message):
            block_type = block.get("type")
            if block_type == "text":
                outputs.append(
                    AgentOutput(type=AgentOutputType.TEXT, content=_as_text(block.get("text", "")))
                )
            elif block_type == "tool_use":
                outputs.append(
                    AgentOutput(
                        type=AgentOutputType.TOOL_USE,
                        tool_name=_as_text(block.get("name")),
                        tool_input=block.get("input"),
                    )
                )
            elif block_type == "tool_result":
                content = block.get("content")
                outputs.append(
                    AgentOutput(
                        type=AgentOutputType.TOOL_RESULT,
                        content=_as_text(content),
                    )
                )
        return outputs

    # 未知のメッセージでもコスト報告だけは拾う
    cost = extract_cost(message)
    if cost is not None:
        return [
            AgentOutput(type=AgentOutputType.COST, content=f"Cost: ${cost:.4f}", cost_usd=cost)
        ]
    return [AgentOutput(type=AgentOutputType.SYSTEM, content=json.dumps(message))]


def detect_waiting(text: str | None) -> bool:
    """テキストがユーザー入力待ちを示しているか判定する。"""
    if not text:
        return False
    return any(pattern.search(text) for pattern in WAITING_PATTERNS)
