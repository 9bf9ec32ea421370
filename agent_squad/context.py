"""アプリケーションコンテキストの定義。"""

from dataclasses import dataclass, field

from agent_squad.config.settings import Settings
from agent_squad.managers.cost_manager import CostManager
from agent_squad.managers.event_bus import EventBus
from agent_squad.managers.multi_repo_coordinator import MultiRepoCoordinator
from agent_squad.managers.process_orchestrator import ProcessOrchestrator
from agent_squad.models.agent import Agent


@dataclass
class AppContext:
    """アプリケーションコンテキスト。"""

    settings: Settings
    event_bus: EventBus
    cost_manager: CostManager
    orchestrator: ProcessOrchestrator
    coordinator: MultiRepoCoordinator
    agents: dict[str, Agent] = field(default_factory=dict)

    project_root: str | None = None
    """プロジェクトルート（.agent-squad/ の親ディレクトリ）"""
