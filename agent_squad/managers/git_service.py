"""git コマンド実行モジュール。

1 リポジトリに対する worktree・ブランチ・コミット操作を非同期に実行する。
"""

import asyncio
import logging
import os
import subprocess

from agent_squad.errors import GitError
from agent_squad.models.workspace import WorktreeInfo

logger = logging.getLogger(__name__)


class GitService:
    """1 リポジトリに対する git 操作を提供するクラス。"""

    def __init__(self, repo_path: str) -> None:
        """GitServiceを初期化する。

        Args:
            repo_path: メインリポジトリのパス
        """
        self.repo_path = repo_path

    async def run_command(
        self, *args: str, cwd: str | None = None
    ) -> tuple[int, str, str]:
        """コマンドを実行する。

        Args:
            *args: コマンドと引数
            cwd: 作業ディレクトリ（省略時はrepo_path）

        Returns:
            (リターンコード, stdout, stderr) のタプル
        """
        work_dir = cwd or self.repo_path
        try:
            proc = await asyncio.create_subprocess_exec(
                *args,
                cwd=work_dir,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            stdout, stderr = await proc.communicate()
            return proc.returncode or 0, stdout.decode(), stderr.decode()
        except FileNotFoundError:
            return 1, "", f"コマンドが見つかりません: {args[0]}"
        except (OSError, subprocess.SubprocessError) as e:
            logger.error(f"コマンド実行エラー: {e}")
            return 1, "", str(e)

    async def _run_git(
        self, *args: str, cwd: str | None = None
    ) -> tuple[int, str, str]:
        return await self.run_command("git", *args, cwd=cwd)

    async def _run_git_checked(self, *args: str, cwd: str | None = None) -> str:
        """gitコマンドを実行し、失敗時は GitError を送出する。

        Returns:
            stdout
        """
        code, stdout, stderr = await self._run_git(*args, cwd=cwd)
        if code != 0:
            raise GitError(list(args), code, stderr)
        return stdout

    async def is_git_repo(self) -> bool:
        """リポジトリが有効なgitリポジトリか確認する。"""
        if not os.path.isdir(self.repo_path):
            return False
        code, _, _ = await self._run_git("rev-parse", "--git-dir")
        return code == 0

    # ========== worktree ==========

    async def list_worktrees(self) -> list[WorktreeInfo]:
        """worktree一覧を取得する。

        Returns:
            WorktreeInfo のリスト（取得失敗時は空）
        """
        code, stdout, stderr = await self._run_git("worktree", "list", "--porcelain")
        if code != 0:
            logger.error(f"worktree一覧取得エラー: {stderr}")
            return []

        worktrees: list[WorktreeInfo] = []
        current: dict[str, str] = {}

        for line in stdout.strip().split("\n"):
            line = line.strip()
            if not line:
                if current:
                    worktrees.append(self._parse_worktree_info(current))
                    current = {}
                continue

            if " " in line:
                key, value = line.split(" ", 1)
                current[key] = value
            else:
                current[line] = "true"

        if current:
            worktrees.append(self._parse_worktree_info(current))

        return worktrees

    def _parse_worktree_info(self, data: dict[str, str]) -> WorktreeInfo:
        return WorktreeInfo(
            path=data.get("worktree", ""),
            branch=data.get("branch", "").replace("refs/heads/", ""),
            commit=data.get("HEAD", ""),
            is_bare="bare" in data,
            is_detached="detached" in data,
            locked="locked" in data,
            prunable="prunable" in data,
        )

    async def get_worktree_path_for_branch(self, branch: str) -> str | None:
        """指定ブランチをチェックアウトしている worktree のパスを取得する。"""
        for wt in await self.list_worktrees():
            if wt.branch == branch:
                return wt.path
        return None

    async def create_worktree(
        self,
        path: str,
        branch: str,
        create_branch: bool = True,
        base_branch: str | None = None,
    ) -> None:
        """worktreeを作成する。

        Args:
            path: worktreeのパス
            branch: ブランチ名
            create_branch: 新しいブランチを作成するか
            base_branch: 新しいブランチの基点（省略時はHEAD）

        Raises:
            GitError: git worktree add が失敗した場合
        """
        args = ["worktree", "add"]
        if create_branch:
            args.extend(["-b", branch, path])
            if base_branch:
                args.append(base_branch)
        else:
            args.extend([path, branch])

        await self._run_git_checked(*args)
        logger.info(f"worktreeを作成しました: {path} ({branch})")

    async def remove_worktree(self, path: str, force: bool = False) -> None:
        """worktreeを削除する。

        Raises:
            GitError: git worktree remove が失敗した場合
        """
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(path)
        await self._run_git_checked(*args)
        logger.info(f"worktreeを削除しました: {path}")

    async def prune_worktrees(self) -> bool:
        """削除済みディレクトリの worktree 情報をクリーンアップする。"""
        code, _, stderr = await self._run_git("worktree", "prune")
        if code != 0:
            logger.warning(f"worktree prune に失敗しました: {stderr}")
            return False
        return True

    # ========== ブランチ ==========

    async def branch_exists(self, branch: str) -> bool:
        """ローカルブランチが存在するか確認する。"""
        code, _, _ = await self._run_git("rev-parse", "--verify", "--quiet", f"refs/heads/{branch}")
        return code == 0

    async def delete_branch(self, branch: str) -> None:
        """ローカルブランチを強制削除する。

        Raises:
            GitError: 削除に失敗した場合
        """
        await self._run_git_checked("branch", "-D", branch)
        logger.info(f"ブランチを削除しました: {branch}")

    async def get_current_branch(self, path: str | None = None) -> str:
        """現在のブランチ名を取得する（取得失敗時は空文字）。"""
        code, stdout, _ = await self._run_git("rev-parse", "--abbrev-ref", "HEAD", cwd=path)
        return stdout.strip() if code == 0 else ""

    # ========== 状態・コミット ==========

    async def get_status(self, path: str) -> list[str]:
        """`git status --porcelain` の行を取得する。

        Raises:
            GitError: status が失敗した場合
        """
        stdout = await self._run_git_checked("status", "--porcelain", cwd=path)
        return [line for line in stdout.split("\n") if line.strip()]

    async def is_clean(self, path: str) -> bool:
        """worktree に未コミットの変更（未追跡ファイルを含む）がないか確認する。"""
        return not await self.get_status(path)

    async def stage_all(self, path: str) -> None:
        """すべての変更をステージする。"""
        await self._run_git_checked("add", "-A", cwd=path)

    async def has_staged_changes(self, path: str) -> bool:
        """ステージ済みの変更があるか確認する。"""
        code, _, stderr = await self._run_git("diff", "--cached", "--quiet", cwd=path)
        if code not in (0, 1):
            raise GitError(["diff", "--cached", "--quiet"], code, stderr)
        return code == 1

    async def commit(self, path: str, message: str) -> str:
        """ステージ済みの変更をコミットする。

        Returns:
            作成したコミットのハッシュ

        Raises:
            GitError: コミットに失敗した場合
        """
        await self._run_git_checked("commit", "-m", message, cwd=path)
        stdout = await self._run_git_checked("rev-parse", "HEAD", cwd=path)
        return stdout.strip()

    async def push(self, path: str, branch: str, remote: str = "origin") -> None:
        """ブランチをリモートへ push する（upstream を設定）。

        Raises:
            GitError: push に失敗した場合
        """
        await self._run_git_checked("push", "-u", remote, branch, cwd=path)
        logger.info(f"ブランチを push しました: {remote}/{branch}")

    async def ahead_behind(self, path: str, base: str) -> tuple[int, int]:
        """HEAD が base に対して何コミット進んで/遅れているかを取得する。

        Returns:
            (ahead, behind) のタプル

        Raises:
            GitError: rev-list が失敗した場合
        """
        stdout = await self._run_git_checked(
            "rev-list", "--left-right", "--count", f"{base}...HEAD", cwd=path
        )
        behind, ahead = stdout.split()
        return int(ahead), int(behind)
