"""ドメインイベントモデル定義。"""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventType(str, Enum):
    """イベントバスに流れるイベント種別。"""

    AGENT_STARTED = "agent:started"
    AGENT_OUTPUT = "agent:output"
    AGENT_COMPLETED = "agent:completed"
    AGENT_ERROR = "agent:error"
    AGENT_PAUSED = "agent:paused"
    AGENT_RESUMED = "agent:resumed"
    GIT_WORKTREE_CREATED = "git:worktree_created"
    GIT_WORKTREE_REMOVED = "git:worktree_removed"
    GIT_COMMIT_CREATED = "git:commit_created"


class DomainEvent(BaseModel):
    """イベントバスで配送されるイベント。"""

    model_config = ConfigDict(use_enum_values=True)

    type: EventType = Field(description="イベント種別")
    payload: dict[str, Any] = Field(default_factory=dict, description="イベント内容")
    timestamp: datetime = Field(default_factory=datetime.now, description="発生日時")
