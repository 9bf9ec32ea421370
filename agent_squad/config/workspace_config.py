"""ワークスペース構成ファイル（workspace.toml）の読み書き。

例:

    [primary]
    name = "app"
    path = "/work/app"
    default_branch = "main"

    [[dependencies]]
    name = "shared"
    path = "/work/shared"
"""

import logging
from pathlib import Path

import tomli
import tomli_w
from pydantic import ValidationError

from agent_squad.config.settings import SQUAD_DIR
from agent_squad.models.workspace import MultiRepoConfig, RepoConfig, RepoRole

logger = logging.getLogger(__name__)


class WorkspaceConfigManager:
    """プロジェクトの workspace.toml を管理するクラス。"""

    CONFIG_FILENAME = "workspace.toml"

    def __init__(self, project_root: str) -> None:
        """WorkspaceConfigManagerを初期化する。

        Args:
            project_root: プロジェクトのルートディレクトリ
        """
        self.project_root = Path(project_root)
        self.config_path = self.project_root / SQUAD_DIR / self.CONFIG_FILENAME

    def exists(self) -> bool:
        """構成ファイルが存在するか確認する。"""
        return self.config_path.exists()

    def read(self) -> dict | None:
        """構成ファイルを辞書として読み込む。

        Returns:
            設定の辞書、存在しない・壊れている場合None
        """
        if not self.config_path.exists():
            return None

        try:
            with open(self.config_path, "rb") as f:
                return tomli.load(f)
        except (OSError, tomli.TOMLDecodeError) as e:
            logger.error(f"workspace.toml 読み込みエラー: {e}")
            return None

    def write(self, config: dict) -> bool:
        """構成ファイルを書き込む。

        Returns:
            成功した場合True
        """
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "wb") as f:
                tomli_w.dump(config, f)
            return True
        except OSError as e:
            logger.error(f"workspace.toml 書き込みエラー: {e}")
            return False

    def load(self) -> MultiRepoConfig | None:
        """構成ファイルを MultiRepoConfig として読み込む。

        相対パスはプロジェクトルート基準で解決する。
        """
        data = self.read()
        if data is None:
            return None
        if "primary" not in data:
            logger.error("workspace.toml に [primary] がありません")
            return None

        try:
            primary = self._to_repo(data["primary"], RepoRole.PRIMARY)
            dependencies = [
                self._to_repo(dep, RepoRole.DEPENDENCY) for dep in data.get("dependencies", [])
            ]
        except (TypeError, ValidationError) as e:
            logger.error(f"workspace.toml の形式が不正です: {e}")
            return None
        return MultiRepoConfig(primary=primary, dependencies=dependencies)

    def save(self, config: MultiRepoConfig) -> bool:
        """MultiRepoConfig を構成ファイルに保存する。"""
        return self.write(
            {
                "primary": self._from_repo(config.primary),
                "dependencies": [self._from_repo(dep) for dep in config.dependencies],
            }
        )

    def _to_repo(self, data: dict, role: RepoRole) -> RepoConfig:
        path = Path(data.get("path", ""))
        if not path.is_absolute():
            path = self.project_root / path
        return RepoConfig(**{**data, "path": str(path), "role": role})

    @staticmethod
    def _from_repo(repo: RepoConfig) -> dict:
        # TOML は None を表現できないため除外する
        return {
            key: value
            for key, value in repo.model_dump(exclude={"role"}).items()
            if value is not None
        }
