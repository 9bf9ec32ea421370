"""pytest設定とフィクスチャ。"""

import asyncio
import os
import stat
import subprocess
import sys
import tempfile
import textwrap
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from agent_squad.config.settings import Settings
from agent_squad.context import AppContext
from agent_squad.managers.cost_manager import CostManager
from agent_squad.managers.event_bus import EventBus
from agent_squad.managers.multi_repo_coordinator import MultiRepoCoordinator
from agent_squad.managers.process_orchestrator import ProcessOrchestrator
from agent_squad.managers.worktree_pool import WorktreePool
from agent_squad.models.agent import Agent

# stream-json を出力する Worker CLI の代替。最後の引数（タスク）で動作を切り替える。
FAKE_WORKER_SCRIPT = textwrap.dedent(
    '''
    import json
    import signal
    import sys
    import time

    task = sys.argv[-1]


    def emit(obj):
        print(json.dumps(obj), flush=True)


    def say(text):
        emit({"type": "assistant", "message": {"content": [{"type": "text", "text": text}]}})


    emit({"type": "system", "subtype": "init", "session_id": "sess-123"})

    if task == "cost":
        for cost in (0.01, 0.02, 0.03):
            emit({"type": "result", "subtype": "success", "cost_usd": cost, "session_id": "sess-123"})
    elif task == "sleep":
        time.sleep(60)
    elif task == "ignore-term":
        signal.signal(signal.SIGTERM, signal.SIG_IGN)
        time.sleep(60)
    elif task == "echo":
        line = sys.stdin.readline()
        say("echo: " + line.strip())
    elif task == "ask":
        say("Waiting for your input")
        line = sys.stdin.readline()
        say("got: " + line.strip())
    elif task == "fail":
        print("boom", file=sys.stderr, flush=True)
        sys.exit(3)
    elif task == "plain":
        print("not json at all", flush=True)
    elif task == "odd":
        emit({"type": "assistant", "message": {"content": [{"type": "text", "text": 123}]}})
        emit({"type": "assistant", "message": {"content": [{"type": "tool_use", "name": ["x"]}]}})
        time.sleep(0.3)
        say("still alive")
    elif task.startswith("many:"):
        for i in range(int(task.split(":", 1)[1])):
            say(f"line {i}")
    '''
)


def run_git(repo: Path, *args: str) -> str:
    """テスト用に git コマンドを実行する。"""
    result = subprocess.run(
        ["git", *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return result.stdout


def init_git_repo(path: Path) -> Path:
    """main ブランチに初期コミットを持つ git リポジトリを作成する。"""
    path.mkdir(parents=True, exist_ok=True)
    run_git(path, "init")
    run_git(path, "config", "user.email", "test@example.com")
    run_git(path, "config", "user.name", "Test User")
    run_git(path, "config", "commit.gpgsign", "false")
    run_git(path, "commit", "--allow-empty", "-m", "init")
    run_git(path, "branch", "-M", "main")
    return path


@pytest.fixture
def temp_dir():
    """一時ディレクトリを作成する。"""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def git_repo(temp_dir):
    """テスト用のgitリポジトリを作成する。"""
    return init_git_repo(temp_dir / "repo")


@pytest.fixture
def make_git_repo(temp_dir):
    """名前を指定して git リポジトリを作成するファクトリ。"""

    def _make(name: str) -> Path:
        return init_git_repo(temp_dir / "repos" / name)

    return _make


@pytest.fixture
def fake_worker(temp_dir):
    """Worker CLI の代替スクリプトを作成し、実行ファイルのパスを返す。"""
    script = temp_dir / "fake_worker.py"
    script.write_text(FAKE_WORKER_SCRIPT, encoding="utf-8")

    wrapper = temp_dir / "fake-claude"
    wrapper.write_text(f'#!/bin/sh\nexec "{sys.executable}" "{script}" "$@"\n', encoding="utf-8")
    wrapper.chmod(wrapper.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return wrapper


@pytest.fixture
def settings(temp_dir, fake_worker):
    """テスト用の設定を作成する。"""
    return Settings(
        _env_file=None,
        worker_command=str(fake_worker),
        worktree_base_dir=str(temp_dir / "worktrees"),
        kill_grace_seconds=2.0,
        cost_warning_threshold_usd=100.0,
    )


@pytest.fixture
def event_bus():
    """EventBusインスタンスを作成する。"""
    return EventBus()


@pytest.fixture
def cost_manager():
    """CostManagerインスタンスを作成する。"""
    return CostManager(warning_threshold_usd=10.0)


@pytest.fixture
async def orchestrator(settings, event_bus):
    """ProcessOrchestratorインスタンスを作成する。テスト後に残ったプロセスを終了する。"""
    manager = ProcessOrchestrator(
        settings, event_bus=event_bus, cost_manager=CostManager(settings.cost_warning_threshold_usd)
    )
    try:
        yield manager
    finally:
        await manager.kill_all()


@pytest.fixture
async def worktree_pool(git_repo, settings, event_bus):
    """初期化済みの WorktreePool を作成する。"""
    pool = WorktreePool(str(git_repo), settings, repo_name="app", event_bus=event_bus)
    await pool.initialize()
    return pool


@pytest.fixture
def coordinator(settings, event_bus):
    """未初期化の MultiRepoCoordinator を作成する。"""
    return MultiRepoCoordinator(settings, event_bus=event_bus)


@pytest.fixture
def agent():
    """テスト用のエージェントを作成する。"""
    return Agent(id="agent-1", name="Engineer")


@pytest.fixture
def wait_until():
    """条件が成立するまでポーリングする関数を返す。"""

    async def _wait_until(predicate, timeout: float = 5.0, interval: float = 0.02) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while loop.time() < deadline:
            if predicate():
                return True
            await asyncio.sleep(interval)
        return predicate()

    return _wait_until


@pytest.fixture
def app_ctx(settings, event_bus, orchestrator, temp_dir):
    """テスト用の AppContext を作成する。"""
    return AppContext(
        settings=settings,
        event_bus=event_bus,
        cost_manager=orchestrator.cost_manager,
        orchestrator=orchestrator,
        coordinator=MultiRepoCoordinator(settings, event_bus=event_bus),
        project_root=str(temp_dir),
    )


@pytest.fixture
def mock_mcp_context(app_ctx):
    """MCPツールのContextをモックする。"""
    mock_ctx = MagicMock()
    mock_ctx.request_context.lifespan_context = app_ctx
    return mock_ctx


@pytest.fixture(autouse=True)
def isolate_squad_env(monkeypatch):
    """実行環境の SQUAD_* 環境変数がテストに影響しないようにする。"""
    for key in list(os.environ):
        if key.startswith("SQUAD_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def git_cmd():
    """テスト用に git コマンドを実行する関数を返す。"""
    return run_git
