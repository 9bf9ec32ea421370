"""モデルのテスト。"""

from agent_squad.managers.output_buffer import OutputRingBuffer
from agent_squad.models.agent import Agent, AgentRole
from agent_squad.models.process import AgentProcess, ProcessState
from agent_squad.models.workspace import MultiRepoConfig, RepoConfig, RepoRole


class TestAgent:
    """Agent モデルのテスト。"""

    def test_create_agent(self):
        """エージェントの作成をテスト。"""
        agent = Agent(id="dev-1", name="Dev")

        assert agent.role == AgentRole.ENGINEERING
        assert agent.model is None
        assert agent.allowed_tools == []

    def test_agent_role_enum(self):
        """AgentRole enumの値をテスト。"""
        assert AgentRole.QUALITY_ASSURANCE.value == "quality-assurance"
        assert AgentRole.DOCUMENTATION.value == "documentation-knowledge"


class TestProcessState:
    """ProcessState のテスト。"""

    def test_terminal_states(self):
        """終端状態の判定をテスト。"""
        assert ProcessState.COMPLETED.is_terminal
        assert ProcessState.ERROR.is_terminal
        assert ProcessState.KILLED.is_terminal
        assert not ProcessState.PAUSED.is_terminal
        assert not ProcessState.WAITING.is_terminal


class TestAgentProcess:
    """AgentProcess のテスト。"""

    def test_to_dict(self):
        """辞書形式に変換できることをテスト。"""
        process = AgentProcess(
            id="proc_1",
            agent_id="dev-1",
            output=OutputRingBuffer(3),
            task="README を直す",
            working_directory="/tmp",
            pid=123,
        )

        data = process.to_dict()
        assert data["state"] == "starting"
        assert data["pid"] == 123
        assert data["ended_at"] is None
        assert data["buffered_output"] == 0
        assert process.is_active is True


class TestMultiRepoConfig:
    """MultiRepoConfig のテスト。"""

    def test_all_repos_primary_first(self):
        """プライマリが先頭になることをテスト。"""
        config = MultiRepoConfig(
            primary=RepoConfig(name="app", path="/a", role=RepoRole.PRIMARY),
            dependencies=[RepoConfig(name="lib", path="/b")],
        )

        assert [r.name for r in config.all_repos()] == ["app", "lib"]
        assert config.dependencies[0].role == "dependency"
