"""WorkerCliのテスト。"""

import pytest

from agent_squad.config.settings import Settings
from agent_squad.errors import SpawnError
from agent_squad.managers.credentials import EnvCredentialProvider
from agent_squad.managers.worker_cli import WorkerCli
from agent_squad.models.agent import Agent
from agent_squad.models.process import SpawnOptions


@pytest.fixture
def worker_cli():
    """デフォルト設定の WorkerCli を作成する。"""
    return WorkerCli(Settings(_env_file=None))


class TestBuildArgs:
    """build_argsのテスト。"""

    def test_stream_json_and_task_last(self, worker_cli):
        """stream-json 出力指定で始まり、タスクが最後になることをテスト。"""
        options = SpawnOptions(
            agent=Agent(id="a1", name="dev"), task="READMEを直す", working_directory="/tmp"
        )
        args = worker_cli.build_args(options)

        assert args[:3] == ["-p", "--output-format", "stream-json"]
        assert args[-1] == "READMEを直す"
        assert "--verbose" in args

    def test_model_alias_resolved(self, worker_cli):
        """モデルエイリアスが正式名に解決されることをテスト。"""
        options = SpawnOptions(
            agent=Agent(id="a1", name="dev", model="opus"), task="t", working_directory="/tmp"
        )
        args = worker_cli.build_args(options)

        index = args.index("--model")
        assert args[index + 1] == "claude-opus-4-20250514"

    def test_options_override_agent(self, worker_cli):
        """起動オプションがエージェント設定より優先されることをテスト。"""
        agent = Agent(
            id="a1",
            name="dev",
            model="opus",
            max_turns=3,
            allowed_tools=["Read", "Edit"],
            system_prompt="日本語で答える",
        )
        options = SpawnOptions(
            agent=agent,
            task="t",
            working_directory="/tmp",
            model="custom-model",
            max_turns=7,
            resume_session_id="sess-9",
            extra_args=["--foo"],
        )
        args = worker_cli.build_args(options)

        assert args[args.index("--model") + 1] == "custom-model"
        assert args[args.index("--max-turns") + 1] == "7"
        assert args[args.index("--allowedTools") + 1] == "Read,Edit"
        assert args[args.index("--append-system-prompt") + 1] == "日本語で答える"
        assert args[args.index("--resume") + 1] == "sess-9"
        assert args[-2:] == ["--foo", "t"]


class TestWorkerCliEnvironment:
    """実行ファイル解決と環境変数のテスト。"""

    def test_resolve_missing_executable(self):
        """実行ファイルがない場合は SpawnError になることをテスト。"""
        worker_cli = WorkerCli(
            Settings(_env_file=None, worker_command="definitely-missing-worker-cli")
        )
        assert worker_cli.is_available() is False
        with pytest.raises(SpawnError):
            worker_cli.resolve_executable()

    def test_build_env(self, worker_cli):
        """カラー無効化・エージェント環境変数・トークンが設定されることをテスト。"""
        options = SpawnOptions(
            agent=Agent(id="a1", name="dev", env={"FEATURE": "x"}),
            task="t",
            working_directory="/tmp",
        )
        env = worker_cli.build_env(options, "secret-token")

        assert env["NO_COLOR"] == "1"
        assert env["FORCE_COLOR"] == "0"
        assert env["FEATURE"] == "x"
        assert env["ANTHROPIC_API_KEY"] == "secret-token"


class TestEnvCredentialProvider:
    """EnvCredentialProviderのテスト。"""

    @pytest.mark.asyncio
    async def test_token_from_env(self, monkeypatch):
        """環境変数のトークンを返すことをテスト。"""
        monkeypatch.setenv("SQUAD_TEST_TOKEN", "abc")
        assert await EnvCredentialProvider("SQUAD_TEST_TOKEN").get_token() == "abc"

    @pytest.mark.asyncio
    async def test_missing_token(self, monkeypatch):
        """未設定の場合は None を返すことをテスト。"""
        monkeypatch.delenv("SQUAD_TEST_TOKEN", raising=False)
        assert await EnvCredentialProvider("SQUAD_TEST_TOKEN").get_token() is None
