"""配布設定の回帰を防ぐテスト。"""

from pathlib import Path

import tomli


def _load_pyproject() -> dict:
    pyproject_path = Path(__file__).resolve().parents[1] / "pyproject.toml"
    return tomli.loads(pyproject_path.read_text(encoding="utf-8"))


class TestPyprojectPackagingConfig:
    """pyproject.toml の配布設定を検証する。"""

    def test_wheel_includes_package(self) -> None:
        """wheel に agent_squad パッケージが含まれることを確認する。"""
        wheel_target = _load_pyproject()["tool"]["hatch"]["build"]["targets"]["wheel"]
        assert wheel_target["packages"] == ["agent_squad"]

    def test_runtime_dependencies(self) -> None:
        """実行時に import するライブラリが依存関係に含まれることを確認する。"""
        dependencies = " ".join(_load_pyproject()["project"]["dependencies"])
        for name in ("mcp", "pydantic", "pydantic-settings", "tomli", "tomli-w"):
            assert name in dependencies

    def test_console_script(self) -> None:
        """エントリーポイントが server.main を指すことを確認する。"""
        scripts = _load_pyproject()["project"]["scripts"]
        assert scripts["agent-squad-mcp"] == "agent_squad.server:main"
