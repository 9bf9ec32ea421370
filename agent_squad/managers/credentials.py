"""Worker 認証トークンの取得。"""

import logging
import os
from typing import Protocol

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Worker の認証トークンを返す外部コラボレーター。"""

    async def get_token(self) -> str | None:
        """認証トークンを返す（未設定の場合は None）。"""
        ...


class EnvCredentialProvider:
    """環境変数から認証トークンを読むデフォルト実装。"""

    def __init__(self, env_var: str = "ANTHROPIC_API_KEY") -> None:
        self.env_var = env_var

    async def get_token(self) -> str | None:
        token = os.getenv(self.env_var)
        if not token:
            logger.debug(f"{self.env_var} が未設定です。Worker CLI の既定の認証を使用します")
            return None
        return token
