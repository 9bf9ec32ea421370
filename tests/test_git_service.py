"""GitServiceのテスト。"""

import pytest

from agent_squad.errors import GitError
from agent_squad.managers.git_service import GitService


@pytest.fixture
def git(git_repo):
    """テスト用リポジトリの GitService を作成する。"""
    return GitService(str(git_repo))


class TestRepository:
    """リポジトリ検証のテスト。"""

    @pytest.mark.asyncio
    async def test_is_git_repo(self, git, temp_dir):
        """git リポジトリかどうかを判定できることをテスト。"""
        assert await git.is_git_repo() is True

        plain = temp_dir / "plain"
        plain.mkdir()
        assert await GitService(str(plain)).is_git_repo() is False
        assert await GitService(str(temp_dir / "missing")).is_git_repo() is False

    @pytest.mark.asyncio
    async def test_run_command_missing_binary(self, git):
        """存在しないコマンドはリターンコード1を返すことをテスト。"""
        code, _, stderr = await git.run_command("definitely-not-a-command")
        assert code == 1
        assert "definitely-not-a-command" in stderr


class TestWorktree:
    """worktree操作のテスト。"""

    @pytest.mark.asyncio
    async def test_create_list_remove(self, git, git_repo, temp_dir):
        """worktree の作成・一覧・削除をテスト。"""
        path = str(temp_dir / "wt-feature")
        await git.create_worktree(path, "feature/a", create_branch=True, base_branch="main")

        assert await git.branch_exists("feature/a") is True
        assert await git.get_worktree_path_for_branch("feature/a") == path
        branches = [wt.branch for wt in await git.list_worktrees()]
        assert "main" in branches and "feature/a" in branches
        assert await git.get_current_branch(path) == "feature/a"

        await git.remove_worktree(path)
        assert await git.get_worktree_path_for_branch("feature/a") is None

        await git.delete_branch("feature/a")
        assert await git.branch_exists("feature/a") is False

    @pytest.mark.asyncio
    async def test_create_worktree_failure(self, git, temp_dir):
        """チェックアウト済みブランチの worktree 作成は GitError になることをテスト。"""
        with pytest.raises(GitError) as exc_info:
            await git.create_worktree(str(temp_dir / "wt-main"), "main", create_branch=False)
        assert exc_info.value.returncode != 0


class TestStatusAndCommit:
    """状態確認とコミットのテスト。"""

    @pytest.mark.asyncio
    async def test_untracked_file_is_not_clean(self, git, git_repo):
        """未追跡ファイルがあればクリーンでないことをテスト。"""
        assert await git.is_clean(str(git_repo)) is True
        (git_repo / "new.txt").write_text("x")
        assert await git.is_clean(str(git_repo)) is False

    @pytest.mark.asyncio
    async def test_stage_and_commit(self, git, git_repo, git_cmd):
        """ステージしてコミットするとハッシュが返ることをテスト。"""
        (git_repo / "a.txt").write_text("a")
        path = str(git_repo)

        assert await git.has_staged_changes(path) is False
        await git.stage_all(path)
        assert await git.has_staged_changes(path) is True

        commit_hash = await git.commit(path, "add a")
        assert commit_hash == git_cmd(git_repo, "rev-parse", "HEAD").strip()
        assert await git.is_clean(path) is True

    @pytest.mark.asyncio
    async def test_ahead_behind(self, git, git_repo, temp_dir):
        """base に対する ahead/behind を取得できることをテスト。"""
        path = temp_dir / "wt-ahead"
        await git.create_worktree(str(path), "feature/b", base_branch="main")
        (path / "b.txt").write_text("b")
        await git.stage_all(str(path))
        await git.commit(str(path), "add b")

        assert await git.ahead_behind(str(path), "main") == (1, 0)

    @pytest.mark.asyncio
    async def test_push_without_remote(self, git, git_repo):
        """リモートがない場合の push は GitError になることをテスト。"""
        with pytest.raises(GitError):
            await git.push(str(git_repo), "main", remote="origin")
