"""エージェントモデル定義。"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class AgentRole(str, Enum):
    """エージェントの専門領域。"""

    ENGINEERING = "engineering"
    """実装タスクを担当するフルスタックエンジニア"""

    ARCHITECTURE_DESIGN = "architecture-design"
    """設計・技術判断を担当するアーキテクト"""

    QUALITY_ASSURANCE = "quality-assurance"
    """テスト・品質検証を担当する QA"""

    SECURITY = "security"
    """脆弱性評価を担当するセキュリティ担当"""

    INFRASTRUCTURE_DEVOPS = "infrastructure-devops"
    """デプロイ・インフラを担当する DevOps"""

    DOCUMENTATION = "documentation-knowledge"
    """ドキュメントを担当するテクニカルライター"""


class Agent(BaseModel):
    """Worker として起動されるエージェントの定義。"""

    model_config = ConfigDict(use_enum_values=True)

    id: str = Field(description="エージェントの一意識別子")
    name: str = Field(description="エージェント名")
    role: AgentRole = Field(default=AgentRole.ENGINEERING, description="専門領域")
    model: str | None = Field(default=None, description="使用するモデル（エイリアス可）")
    max_turns: int | None = Field(default=None, description="ターン数上限")
    system_prompt: str | None = Field(default=None, description="追加のシステムプロンプト")
    allowed_tools: list[str] = Field(default_factory=list, description="許可するツール")
    disallowed_tools: list[str] = Field(default_factory=list, description="禁止するツール")
    env: dict[str, str] = Field(default_factory=dict, description="追加の環境変数")
