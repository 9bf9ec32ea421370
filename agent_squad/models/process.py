"""Worker プロセスモデル定義。"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from agent_squad.models.agent import Agent

if TYPE_CHECKING:
    from agent_squad.managers.output_buffer import OutputRingBuffer


class ProcessState(str, Enum):
    """Worker プロセスのライフサイクル状態。"""

    STARTING = "starting"
    """起動直後（まだ出力がない）"""

    WORKING = "working"
    """処理中"""

    WAITING = "waiting"
    """ユーザー入力待ち"""

    PAUSED = "paused"
    """SIGSTOP で一時停止中"""

    COMPLETED = "completed"
    """正常終了"""

    ERROR = "error"
    """異常終了（非ゼロ終了・I/O エラー）"""

    KILLED = "killed"
    """明示的に終了させた"""

    @property
    def is_terminal(self) -> bool:
        """終端状態かどうか。"""
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset({ProcessState.COMPLETED, ProcessState.ERROR, ProcessState.KILLED})
INPUT_STATES = frozenset({ProcessState.WORKING, ProcessState.WAITING})


class AgentOutputType(str, Enum):
    """Worker 出力の種類。"""

    TEXT = "text"
    TOOL_USE = "tool_use"
    TOOL_RESULT = "tool_result"
    ERROR = "error"
    COST = "cost"
    SYSTEM = "system"


class AgentOutput(BaseModel):
    """Worker が出力した 1 チャンク。"""

    model_config = ConfigDict(use_enum_values=True)

    type: AgentOutputType = Field(description="出力の種類")
    content: str | None = Field(default=None, description="テキスト内容")
    tool_name: str | None = Field(default=None, description="ツール名（tool_use のみ）")
    tool_input: Any = Field(default=None, description="ツール入力（tool_use のみ）")
    cost_usd: float | None = Field(default=None, description="コスト（cost のみ）")
    timestamp: datetime = Field(default_factory=datetime.now, description="出力日時")


class SpawnOptions(BaseModel):
    """Worker プロセスの起動オプション。"""

    agent: Agent = Field(description="起動するエージェント")
    task: str = Field(description="Worker に渡すタスク本文")
    working_directory: str = Field(description="作業ディレクトリ（通常は割り当て済み worktree）")
    model: str | None = Field(default=None, description="モデル（agent.model より優先）")
    max_turns: int | None = Field(default=None, description="ターン数上限")
    resume_session_id: str | None = Field(default=None, description="再開するセッションID")
    extra_args: list[str] = Field(default_factory=list, description="追加の CLI 引数")


@dataclass
class AgentProcess:
    """1 回の Worker 起動を表すレコード。

    OS プロセスへのハンドルは ProcessOrchestrator が保持し、
    このレコードには観測可能な状態のみを置く。
    """

    id: str
    agent_id: str
    output: "OutputRingBuffer"
    task: str
    working_directory: str
    state: ProcessState = ProcessState.STARTING
    pid: int | None = None
    session_id: str | None = None
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: datetime | None = None
    exit_code: int | None = None
    total_cost_usd: float = 0.0
    last_activity: datetime = field(default_factory=datetime.now)
    error_message: str | None = None

    @property
    def is_active(self) -> bool:
        """OS プロセスが生存している状態かどうか。"""
        return not self.state.is_terminal

    def to_dict(self) -> dict[str, Any]:
        """辞書形式に変換する。"""
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "state": self.state.value,
            "pid": self.pid,
            "session_id": self.session_id,
            "task": self.task,
            "working_directory": self.working_directory,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "exit_code": self.exit_code,
            "total_cost_usd": self.total_cost_usd,
            "last_activity": self.last_activity.isoformat(),
            "error_message": self.error_message,
            "buffered_output": len(self.output),
        }
