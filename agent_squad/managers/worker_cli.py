"""Worker CLI管理マネージャー。

Worker として起動する CLI（既定は Claude Code）の検出と、
起動引数・環境変数の組み立てを行う。
"""

import logging
import os
import shutil
from typing import TYPE_CHECKING

from agent_squad.config.settings import resolve_model_name
from agent_squad.errors import SpawnError

if TYPE_CHECKING:
    from agent_squad.config.settings import Settings
    from agent_squad.models.process import SpawnOptions

logger = logging.getLogger(__name__)


class WorkerCli:
    """Worker CLI の起動コマンドを組み立てるクラス。"""

    def __init__(self, settings: "Settings") -> None:
        """WorkerCliを初期化する。

        Args:
            settings: アプリケーション設定
        """
        self.settings = settings

    def is_available(self) -> bool:
        """Worker CLI が利用可能か確認する。"""
        return shutil.which(self.settings.worker_command) is not None

    def resolve_executable(self) -> str:
        """Worker CLI の実行ファイルパスを解決する。

        Returns:
            実行ファイルの絶対パス

        Raises:
            SpawnError: 実行ファイルが見つからない場合
        """
        command = self.settings.worker_command
        resolved = shutil.which(command)
        if resolved is None:
            raise SpawnError(f"Worker CLI が見つかりません: {command}")
        return resolved

    def build_args(self, options: "SpawnOptions") -> list[str]:
        """Worker CLI の引数を組み立てる。

        タスク本文は最後の位置引数として渡す。

        Args:
            options: 起動オプション

        Returns:
            実行ファイルを含まない引数リスト
        """
        agent = options.agent
        args = ["-p", "--output-format", "stream-json"]

        model = resolve_model_name(options.model or agent.model or self.settings.default_model)
        if model:
            args.extend(["--model", model])

        if agent.allowed_tools:
            args.extend(["--allowedTools", ",".join(agent.allowed_tools)])
        if agent.disallowed_tools:
            args.extend(["--disallowedTools", ",".join(agent.disallowed_tools)])

        max_turns = options.max_turns or agent.max_turns or self.settings.default_max_turns
        if max_turns:
            args.extend(["--max-turns", str(max_turns)])

        if agent.system_prompt:
            args.extend(["--append-system-prompt", agent.system_prompt])

        if options.resume_session_id:
            args.extend(["--resume", options.resume_session_id])

        if self.settings.worker_verbose:
            args.append("--verbose")
        if self.settings.skip_permissions:
            args.append("--dangerously-skip-permissions")

        args.extend(options.extra_args)
        args.append(options.task)
        return args

    def build_env(self, options: "SpawnOptions", token: str | None) -> dict[str, str]:
        """Worker プロセスの環境変数を組み立てる。

        Args:
            options: 起動オプション
            token: 認証トークン（None の場合は設定しない）

        Returns:
            環境変数の辞書
        """
        env = dict(os.environ)
        # stream-json の解析を妨げるカラー出力を無効化
        env["FORCE_COLOR"] = "0"
        env["NO_COLOR"] = "1"
        env.update(options.agent.env)
        if token:
            env[self.settings.worker_token_env] = token
        return env
