"""設定モジュール。"""

from .settings import ModelDefaults, Settings, load_settings_for_project, resolve_model_name

__all__ = ["ModelDefaults", "Settings", "load_settings_for_project", "resolve_model_name"]
