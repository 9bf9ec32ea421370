"""Worker プロセス管理マネージャー。

Worker CLI を OS の子プロセスとして起動し、stdout/stderr をリングバッファへ
流し込みながら状態遷移・コスト・セッションIDを追跡する。
"""

import asyncio
import logging
import os
import signal
import subprocess
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from pydantic import ValidationError

from agent_squad.errors import SpawnError
from agent_squad.managers.credentials import CredentialProvider, EnvCredentialProvider
from agent_squad.managers.event_bus import EventBus
from agent_squad.managers.output_buffer import OutputRingBuffer, OutputSubscription
from agent_squad.managers.stream_parser import (
    detect_waiting,
    extract_cost,
    extract_session_id,
    parse_stream_message,
    to_agent_outputs,
)
from agent_squad.managers.worker_cli import WorkerCli
from agent_squad.models.events import EventType
from agent_squad.models.process import (
    INPUT_STATES,
    AgentOutput,
    AgentOutputType,
    AgentProcess,
    ProcessState,
    SpawnOptions,
)

if TYPE_CHECKING:
    from agent_squad.config.settings import Settings
    from agent_squad.managers.cost_manager import CostManager

logger = logging.getLogger(__name__)


@dataclass
class _ProcessHandle:
    """OS プロセスへのハンドルと監視タスク。"""

    proc: asyncio.subprocess.Process
    done: asyncio.Event = field(default_factory=asyncio.Event)
    tasks: list[asyncio.Task] = field(default_factory=list)
    kill_requested: bool = False
    io_error: str | None = None
    last_stderr: str | None = None
    state_before_pause: ProcessState | None = None


def generate_process_id() -> str:
    """プロセスIDを生成する。"""
    return f"proc_{int(time.time() * 1000):x}_{uuid.uuid4().hex[:6]}"


class ProcessOrchestrator:
    """Worker プロセスのライフサイクルを管理するクラス。

    呼び出し側をブロックするのは wait_for_process と kill の猶予待ちのみで、
    各プロセスの出力は独立したタスクで読み取られる。
    """

    def __init__(
        self,
        settings: "Settings",
        event_bus: EventBus | None = None,
        credentials: CredentialProvider | None = None,
        cost_manager: "CostManager | None" = None,
        worker_cli: WorkerCli | None = None,
    ) -> None:
        """ProcessOrchestratorを初期化する。

        Args:
            settings: アプリケーション設定
            event_bus: ライフサイクルイベントの送信先
            credentials: Worker 認証トークンの取得元
            cost_manager: コスト集計先（省略時は集計しない）
            worker_cli: 起動コマンドの組み立て（省略時は settings から生成）
        """
        self.settings = settings
        self.event_bus = event_bus or EventBus(settings.event_history_size)
        self.credentials = credentials or EnvCredentialProvider(settings.worker_token_env)
        self.cost_manager = cost_manager
        self.worker_cli = worker_cli or WorkerCli(settings)
        self._processes: dict[str, AgentProcess] = {}
        self._handles: dict[str, _ProcessHandle] = {}

    # ========== 起動 ==========

    async def spawn(self, options: SpawnOptions) -> AgentProcess:
        """Worker プロセスを起動する。

        Args:
            options: 起動オプション

        Returns:
            starting 状態で登録された AgentProcess

        Raises:
            SpawnError: 実行ファイルがない、作業ディレクトリが無効、起動に失敗した場合
        """
        cwd = options.working_directory
        if not os.path.isdir(cwd):
            raise SpawnError(f"作業ディレクトリが存在しません: {cwd}")

        executable = self.worker_cli.resolve_executable()
        args = self.worker_cli.build_args(options)
        token = await self.credentials.get_token()
        env = self.worker_cli.build_env(options, token)

        try:
            proc = await asyncio.create_subprocess_exec(
                executable,
                *args,
                cwd=cwd,
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
                limit=self.settings.stream_read_limit_bytes,
            )
        except FileNotFoundError as e:
            raise SpawnError(f"Worker CLI が見つかりません: {executable}") from e
        except (OSError, subprocess.SubprocessError) as e:
            raise SpawnError(f"Worker の起動に失敗しました: {e}") from e

        process = AgentProcess(
            id=generate_process_id(),
            agent_id=options.agent.id,
            output=OutputRingBuffer(self.settings.output_buffer_size),
            task=options.task,
            working_directory=cwd,
            pid=proc.pid,
        )
        handle = _ProcessHandle(proc=proc)
        self._processes[process.id] = process
        self._handles[process.id] = handle

        logger.info(f"Worker を起動しました: {process.id} (pid={proc.pid}, agent={process.agent_id})")
        self.event_bus.emit(
            EventType.AGENT_STARTED,
            process_id=process.id,
            agent_id=process.agent_id,
            pid=proc.pid,
            working_directory=cwd,
        )

        drains = [
            asyncio.create_task(self._drain_stdout(process, handle)),
            asyncio.create_task(self._drain_stderr(process, handle)),
        ]
        handle.tasks = [*drains, asyncio.create_task(self._watch_exit(process, handle, drains))]
        return process

    # ========== 出力の読み取り ==========

    async def _drain_stdout(self, process: AgentProcess, handle: _ProcessHandle) -> None:
        stream = handle.proc.stdout
        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                self._handle_stdout_line(process, line.decode("utf-8", errors="replace"))
        except (OSError, ValueError) as e:
            self._fail_io(process, handle, f"stdout の読み取りに失敗しました: {e}")

    async def _drain_stderr(self, process: AgentProcess, handle: _ProcessHandle) -> None:
        stream = handle.proc.stderr
        try:
            while True:
                line = await stream.readline()
                if not line:
                    break
                text = line.decode("utf-8", errors="replace").rstrip()
                if not text:
                    continue
                process.last_activity = datetime.now()
                handle.last_stderr = text
                self._push_output(process, AgentOutput(type=AgentOutputType.ERROR, content=text))
        except (OSError, ValueError) as e:
            self._fail_io(process, handle, f"stderr の読み取りに失敗しました: {e}")

    def _fail_io(self, process: AgentProcess, handle: _ProcessHandle, message: str) -> None:
        """読み取りエラーを記録し、子プロセスを停止させる。"""
        logger.error(f"{process.id}: {message}")
        if handle.io_error is None:
            handle.io_error = message
        # 読み手がいないと子プロセスが書き込みで詰まるため終了させる
        self._signal_group(handle, signal.SIGKILL)

    def _handle_stdout_line(self, process: AgentProcess, line: str) -> None:
        text = line.rstrip("\n")
        if not text.strip():
            return
        process.last_activity = datetime.now()

        message = parse_stream_message(text)
        if message is None:
            outputs = [AgentOutput(type=AgentOutputType.TEXT, content=text)]
        else:
            session_id = extract_session_id(message)
            if session_id:
                process.session_id = session_id
            cost = extract_cost(message)
            if cost is not None:
                process.total_cost_usd += cost
                if self.cost_manager is not None:
                    self.cost_manager.record_cost(
                        process.id, process.agent_id, cost, process.session_id
                    )
            try:
                outputs = to_agent_outputs(message)
            except ValidationError as e:
                logger.warning(f"{process.id}: 解釈できない出力行をテキストとして扱います: {e}")
                outputs = [AgentOutput(type=AgentOutputType.TEXT, content=text)]

        if process.state == ProcessState.STARTING:
            process.state = ProcessState.WORKING

        for output in outputs:
            self._update_waiting_state(process, output)
            self._push_output(process, output)

    def _update_waiting_state(self, process: AgentProcess, output: AgentOutput) -> None:
        if output.type == AgentOutputType.TEXT and detect_waiting(output.content):
            if process.state == ProcessState.WORKING:
                process.state = ProcessState.WAITING
                logger.info(f"{process.id}: ユーザー入力待ちを検出しました")
        elif output.type in (AgentOutputType.TEXT, AgentOutputType.TOOL_USE):
            if process.state == ProcessState.WAITING:
                process.state = ProcessState.WORKING

    def _push_output(self, process: AgentProcess, output: AgentOutput) -> None:
        process.output.append(output)
        self.event_bus.emit(
            EventType.AGENT_OUTPUT,
            process_id=process.id,
            agent_id=process.agent_id,
            output=output.model_dump(mode="json"),
        )

    # ========== 終了監視 ==========

    async def _watch_exit(
        self,
        process: AgentProcess,
        handle: _ProcessHandle,
        drains: list[asyncio.Task],
    ) -> None:
        try:
            await asyncio.gather(*drains)
            returncode = await handle.proc.wait()
        finally:
            if handle.proc.stdin is not None and not handle.proc.stdin.is_closing():
                handle.proc.stdin.close()
            process.output.close()

        process.exit_code = returncode
        process.ended_at = datetime.now()

        if handle.kill_requested:
            process.state = ProcessState.KILLED
        elif handle.io_error is not None:
            process.state = ProcessState.ERROR
            process.error_message = handle.io_error
        elif returncode == 0:
            process.state = ProcessState.COMPLETED
        else:
            process.state = ProcessState.ERROR
            process.error_message = handle.last_stderr or f"終了コード {returncode} で終了しました"

        handle.done.set()

        payload = {
            "process_id": process.id,
            "agent_id": process.agent_id,
            "state": process.state.value,
            "exit_code": returncode,
            "total_cost_usd": process.total_cost_usd,
            "session_id": process.session_id,
        }
        if process.state == ProcessState.ERROR:
            logger.warning(f"Worker が異常終了しました: {process.id} ({process.error_message})")
            self.event_bus.emit(EventType.AGENT_ERROR, error=process.error_message, **payload)
        else:
            logger.info(f"Worker が終了しました: {process.id} ({process.state.value})")
            self.event_bus.emit(EventType.AGENT_COMPLETED, **payload)

    # ========== 操作 ==========

    def send_input(self, process_id: str, text: str) -> bool:
        """Worker の標準入力にテキストを書き込む。

        Args:
            process_id: プロセスID
            text: 入力テキスト（末尾に改行を付与する）

        Returns:
            書き込んだ場合True。未知のID・入力を受け付けない状態ではFalse
        """
        process = self._processes.get(process_id)
        handle = self._handles.get(process_id)
        if process is None or handle is None or process.state not in INPUT_STATES:
            return False

        stdin = handle.proc.stdin
        if stdin is None or stdin.is_closing():
            return False
        try:
            stdin.write((text + "\n").encode("utf-8"))
        except (OSError, RuntimeError) as e:
            logger.warning(f"{process_id}: 標準入力への書き込みに失敗しました: {e}")
            return False

        process.last_activity = datetime.now()
        if process.state == ProcessState.WAITING:
            process.state = ProcessState.WORKING
        return True

    def _signal_group(self, handle: _ProcessHandle, sig: int) -> bool:
        """プロセスグループにシグナルを送る。"""
        if handle.proc.returncode is not None:
            return False
        try:
            os.killpg(handle.proc.pid, sig)
        except ProcessLookupError:
            return False
        except PermissionError:
            # グループが既に別プロセスに再利用されている場合は本体のみに送る
            try:
                handle.proc.send_signal(sig)
            except ProcessLookupError:
                return False
        return True

    async def kill(self, process_id: str, sig: int = signal.SIGTERM) -> bool:
        """Worker を終了させる。

        sig を送った後、kill_grace_seconds 以内に終了しなければ SIGKILL を送る。
        状態は終了を確認した時点で killed になる。

        Args:
            process_id: プロセスID
            sig: 最初に送るシグナル

        Returns:
            終了させた場合True。未知のID・終端状態ではFalse
        """
        process = self._processes.get(process_id)
        handle = self._handles.get(process_id)
        if process is None or handle is None or process.state.is_terminal:
            return False
        if handle.proc.returncode is not None:
            # 自然終了済みで終了処理待ちの場合は killed にしない
            await handle.done.wait()
            return False

        handle.kill_requested = True
        if process.state == ProcessState.PAUSED:
            self._signal_group(handle, signal.SIGCONT)
        self._signal_group(handle, sig)

        try:
            await asyncio.wait_for(handle.done.wait(), timeout=self.settings.kill_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(f"{process_id} が終了しないため SIGKILL を送ります")
            self._signal_group(handle, signal.SIGKILL)
            await handle.done.wait()
        return True

    async def kill_all(self) -> int:
        """生存中の全 Worker を終了させる。

        Returns:
            終了させたプロセス数
        """
        active = [p.id for p in self._processes.values() if p.is_active]
        results = await asyncio.gather(*(self.kill(pid) for pid in active))
        return sum(1 for r in results if r)

    def pause(self, process_id: str) -> bool:
        """Worker を SIGSTOP で一時停止する。"""
        process = self._processes.get(process_id)
        handle = self._handles.get(process_id)
        if process is None or handle is None:
            return False
        if process.state.is_terminal or process.state == ProcessState.PAUSED:
            return False
        if not self._signal_group(handle, signal.SIGSTOP):
            return False

        handle.state_before_pause = process.state
        process.state = ProcessState.PAUSED
        self.event_bus.emit(EventType.AGENT_PAUSED, process_id=process_id, agent_id=process.agent_id)
        return True

    def resume(self, process_id: str) -> bool:
        """一時停止中の Worker を SIGCONT で再開する。"""
        process = self._processes.get(process_id)
        handle = self._handles.get(process_id)
        if process is None or handle is None or process.state != ProcessState.PAUSED:
            return False
        if not self._signal_group(handle, signal.SIGCONT):
            return False

        process.state = handle.state_before_pause or ProcessState.WORKING
        handle.state_before_pause = None
        self.event_bus.emit(EventType.AGENT_RESUMED, process_id=process_id, agent_id=process.agent_id)
        return True

    async def wait_for_process(
        self, process_id: str, timeout_seconds: float | None = None
    ) -> AgentProcess | None:
        """Worker が終端状態になるまで待つ。

        Args:
            process_id: プロセスID
            timeout_seconds: タイムアウト秒数（None で無制限）

        Returns:
            終了した AgentProcess。未知のIDまたはタイムアウト時はNone
        """
        process = self._processes.get(process_id)
        handle = self._handles.get(process_id)
        if process is None or handle is None:
            return None
        try:
            await asyncio.wait_for(handle.done.wait(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            return None
        return process

    # ========== 参照 ==========

    def get_process(self, process_id: str) -> AgentProcess | None:
        """プロセスを取得する。"""
        return self._processes.get(process_id)

    def get_all_processes(self) -> list[AgentProcess]:
        """全プロセスを取得する。"""
        return list(self._processes.values())

    def get_processes_by_agent(self, agent_id: str) -> list[AgentProcess]:
        """エージェント別のプロセスを取得する。"""
        return [p for p in self._processes.values() if p.agent_id == agent_id]

    def get_active_processes(self) -> list[AgentProcess]:
        """生存中のプロセスを取得する。"""
        return [p for p in self._processes.values() if p.is_active]

    def get_session_id(self, process_id: str) -> str | None:
        """Worker のセッションIDを取得する。"""
        process = self._processes.get(process_id)
        return process.session_id if process else None

    def get_total_cost(self, process_id: str) -> float:
        """プロセスの累計コスト（USD）を取得する。未知のIDは0。"""
        process = self._processes.get(process_id)
        return process.total_cost_usd if process else 0.0

    def get_output(self, process_id: str) -> list[AgentOutput]:
        """バッファ中の出力を古い順に取得する。"""
        process = self._processes.get(process_id)
        return process.output.snapshot() if process else []

    def subscribe_output(self, process_id: str) -> OutputSubscription | None:
        """出力を購読する（バックログ → ライブ出力）。"""
        process = self._processes.get(process_id)
        return process.output.subscribe() if process else None

    # ========== 削除 ==========

    def remove_process(self, process_id: str) -> bool:
        """終端状態のプロセスをレジストリから削除する。

        Returns:
            削除した場合True。未知のID・生存中のプロセスはFalse
        """
        process = self._processes.get(process_id)
        handle = self._handles.get(process_id)
        if process is None or process.is_active:
            return False
        if handle is not None and not handle.done.is_set():
            return False
        del self._processes[process_id]
        self._handles.pop(process_id, None)
        return True

    def clear_completed(self) -> int:
        """終端状態のプロセスをすべて削除する。

        Returns:
            削除したプロセス数
        """
        finished = [pid for pid, p in self._processes.items() if not p.is_active]
        removed = sum(1 for pid in finished if self.remove_process(pid))
        if removed:
            logger.info(f"終了済みプロセスを {removed} 件削除しました")
        return removed
