"""エージェント実行・ワークスペース割り当ての例外定義。"""


class SquadError(RuntimeError):
    """agent_squad の例外基底クラス。"""


class SpawnError(SquadError):
    """Worker プロセスを起動できなかった場合の例外。

    実行ファイルが見つからない、作業ディレクトリが無効などで送出される。
    """


class AllocationError(SquadError):
    """worktree を割り当てられなかった場合の例外。"""


class DirtyWorktreeError(AllocationError):
    """未コミットの変更がある worktree を force なしで解放しようとした場合の例外。"""

    def __init__(self, repo_name: str, worktree_path: str) -> None:
        self.repo_name = repo_name
        self.worktree_path = worktree_path
        super().__init__(
            f"ワークスペースに未コミットの変更があります: "
            f"{repo_name} ({worktree_path})。force=True で強制解放できます"
        )


class CommitError(SquadError):
    """コミットに失敗した場合の例外（コミット対象なしを含む）。"""

    def __init__(self, repo_name: str, message: str) -> None:
        self.repo_name = repo_name
        super().__init__(f"{repo_name}: {message}")


class RollbackError(SquadError):
    """部分割り当て後のロールバック自体が失敗した場合の例外。"""

    def __init__(self, cause: BaseException, failures: list[str]) -> None:
        self.cause = cause
        self.failures = failures
        super().__init__(
            f"ロールバックに失敗しました（元のエラー: {cause}）: " + "; ".join(failures)
        )


class NotInitializedError(SquadError):
    """initialize_workspace 前にコーディネーターを使用した場合の例外。"""

    def __init__(self) -> None:
        super().__init__(
            "ワークスペースが初期化されていません。先に initialize_workspace を実行してください"
        )


class GitError(SquadError):
    """git コマンドが失敗した場合の例外。"""

    def __init__(self, command: list[str], returncode: int, stderr: str) -> None:
        self.command = command
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"git {' '.join(command)} が失敗しました (exit {returncode}): {stderr.strip()}"
        )
