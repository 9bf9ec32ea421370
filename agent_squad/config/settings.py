"""設定管理モジュール。"""

import os
from pathlib import Path
from typing import ClassVar

from pydantic import ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings

SQUAD_DIR = ".agent-squad"
"""プロジェクト別設定ディレクトリ名"""


def resolve_project_env_file(project_root: str | os.PathLike[str] | None) -> str | None:
    """指定した project_root から .env ファイルを解決する。

    Args:
        project_root: プロジェクトルートパス

    Returns:
        .env ファイルのパス（存在する場合）、または None
    """
    if not project_root:
        return None

    env_file = Path(project_root) / SQUAD_DIR / ".env"
    if env_file.exists():
        return str(env_file)
    return None


def get_project_env_file() -> str | None:
    """プロジェクト別 .env ファイルのパスを取得。

    SQUAD_PROJECT_ROOT 環境変数が設定されている場合、
    {project_root}/.agent-squad/.env を返す。
    """
    return resolve_project_env_file(os.getenv("SQUAD_PROJECT_ROOT"))


class ModelDefaults:
    """モデルエイリアスと正式名の対応。"""

    SONNET = "sonnet"
    OPUS = "opus"
    HAIKU = "haiku"

    MODEL_NAME_MAP: ClassVar[dict[str, str]] = {
        SONNET: "claude-sonnet-4-20250514",
        OPUS: "claude-opus-4-20250514",
        HAIKU: "claude-haiku-3-5-20250620",
    }


def resolve_model_name(model: str | None) -> str | None:
    """モデルエイリアスを Worker CLI に渡す正式名に解決する。

    未知の名前はそのまま返す（フルネーム指定を許可するため）。
    """
    if not model:
        return None
    return ModelDefaults.MODEL_NAME_MAP.get(model, model)


class Settings(BaseSettings):
    """agent-squad の設定。

    環境変数で上書き可能。プレフィックスは SQUAD_。
    例: SQUAD_WORKTREE_MAX_PER_REPO=20

    優先順位:
    1. 環境変数（最優先）
    2. プロジェクト別 .env ファイル（{project}/.agent-squad/.env）
    3. デフォルト値
    """

    model_config = ConfigDict(
        env_prefix="SQUAD_",
        env_file=get_project_env_file(),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Worker CLI 設定
    worker_command: str = Field(
        default="claude",
        description="Worker として起動する CLI の実行ファイル",
    )
    """Worker CLI（PATH 上のコマンド名または絶対パス）"""

    worker_token_env: str = Field(
        default="ANTHROPIC_API_KEY",
        description="認証トークンを渡す環境変数名",
    )
    """Worker プロセスに認証トークンを渡す環境変数名"""

    default_model: str = Field(
        default=ModelDefaults.SONNET,
        description="モデル未指定時に使用するモデル",
    )
    default_max_turns: int | None = Field(
        default=None,
        description="ターン数上限のデフォルト（None で無制限）",
    )
    worker_verbose: bool = True
    """stream-json 出力で --verbose を付けるか（Claude CLI では必須）"""

    skip_permissions: bool = False
    """--dangerously-skip-permissions を付けるか"""

    # プロセス管理設定
    output_buffer_size: int = Field(
        default=100,
        ge=1,
        description="プロセスごとに保持する出力チャンク数",
    )
    """出力リングバッファの容量（デフォルト: 100）"""

    stream_read_limit_bytes: int = Field(
        default=10 * 1024 * 1024,
        description="stdout/stderr の 1 行あたりの最大バイト数",
    )
    kill_grace_seconds: float = Field(
        default=5.0,
        description="SIGTERM 後に SIGKILL へ切り替えるまでの秒数",
    )

    # Worktree 設定
    worktree_base_dir: str = Field(
        default="~/.agent-squad/worktrees",
        description="worktree を作成するルートディレクトリ",
    )
    worktree_max_per_repo: int = Field(
        default=10,
        ge=1,
        description="1 リポジトリあたりの最大割り当て数",
    )
    worktree_stale_hours: float = Field(
        default=24,
        description="アイドル状態の割り当てを stale とみなす時間",
    )
    worktree_auto_cleanup: bool = True
    """initialize 時に git worktree prune で孤立した worktree 情報を掃除するか"""

    git_remote: str = "origin"
    """push 先のリモート名"""

    pr_cli_command: str = "gh"
    """Pull Request 作成に使う CLI"""

    # コスト設定
    cost_warning_threshold_usd: float = Field(
        default=10.0,
        description="コスト警告の閾値（USD）",
    )

    # イベント設定
    event_history_size: int = Field(
        default=1000,
        ge=0,
        description="イベントバスが保持する履歴件数",
    )

    @field_validator("worker_command", "pr_cli_command")
    @classmethod
    def validate_command(cls, value: str) -> str:
        """コマンド名が空でないことを確認する。"""
        candidate = value.strip()
        if not candidate:
            raise ValueError("コマンド名に空文字は指定できません")
        return candidate

    def get_worktree_base_dir(self) -> Path:
        """展開済みの worktree ルートディレクトリを返す。"""
        return Path(os.path.expanduser(self.worktree_base_dir))


def load_settings_for_project(project_root: str | os.PathLike[str] | None) -> Settings:
    """指定 project_root の .env を優先して Settings を生成する。

    優先順位:
    1. プロセス環境変数 SQUAD_*
    2. {project_root}/.agent-squad/.env
    3. デフォルト値

    Args:
        project_root: プロジェクトルートパス

    Returns:
        読み込み済み Settings インスタンス
    """
    env_file = resolve_project_env_file(project_root)
    if env_file:
        return Settings(_env_file=env_file)
    # model_config 側の env_file を使わず、環境変数 + デフォルトのみで構築
    return Settings(_env_file=None)
