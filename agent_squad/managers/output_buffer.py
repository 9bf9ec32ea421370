"""Worker 出力のリングバッファ。

プロセスごとに直近の出力チャンクを固定長で保持し、
後から購読したクライアントにもバックログ → ライブ出力の順で配送する。
"""

import asyncio
import logging
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agent_squad.models.process import AgentOutput

logger = logging.getLogger(__name__)

_CLOSED = object()


class OutputSubscription:
    """OutputRingBuffer の購読。

    `async for chunk in subscription` で出力を受け取る。
    プロセス終了（バッファのクローズ）で反復が終わる。
    """

    def __init__(self, buffer: "OutputRingBuffer", queue: asyncio.Queue) -> None:
        self._buffer = buffer
        self._queue = queue
        self._finished = False

    def __aiter__(self) -> "OutputSubscription":
        return self

    async def __anext__(self) -> "AgentOutput":
        if self._finished:
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            self._buffer.unsubscribe(self)
            raise StopAsyncIteration
        return item

    def close(self) -> None:
        """購読を解除する。"""
        self._finished = True
        self._buffer.unsubscribe(self)


class OutputRingBuffer:
    """固定容量の出力リングバッファ。"""

    def __init__(self, capacity: int = 100) -> None:
        """OutputRingBufferを初期化する。

        Args:
            capacity: 保持するチャンク数（1 以上）
        """
        if capacity < 1:
            raise ValueError(f"capacity は 1 以上を指定してください: {capacity}")
        self.capacity = capacity
        self._chunks: deque["AgentOutput"] = deque(maxlen=capacity)
        self._subscribers: dict[OutputSubscription, asyncio.Queue] = {}
        self._closed = False

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def closed(self) -> bool:
        """プロセス終了でクローズ済みかどうか。"""
        return self._closed

    def append(self, chunk: "AgentOutput") -> None:
        """チャンクを追加し、購読者へ配送する。

        容量を超えた場合は最も古いチャンクが捨てられる。
        """
        if self._closed:
            logger.debug("クローズ済みのバッファへの追加を無視します")
            return
        self._chunks.append(chunk)
        for queue in self._subscribers.values():
            # 読み出しが遅れている購読者からは古いチャンクを捨てる
            if queue.qsize() >= self.capacity:
                queue.get_nowait()
            queue.put_nowait(chunk)

    def snapshot(self) -> list["AgentOutput"]:
        """現在保持しているチャンクを古い順に返す。"""
        return list(self._chunks)

    def subscribe(self) -> OutputSubscription:
        """購読を開始する。

        登録は同期的に行われるため、呼び出し後に追加されたチャンクは
        反復を始める前でも取りこぼさない。読み出しが追いつかない場合は
        バッファと同じく古いチャンクから捨てられる。
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.capacity + 1)
        for chunk in self._chunks:
            queue.put_nowait(chunk)
        subscription = OutputSubscription(self, queue)
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._subscribers[subscription] = queue
        return subscription

    def unsubscribe(self, subscription: OutputSubscription) -> None:
        """購読を解除する。"""
        self._subscribers.pop(subscription, None)

    def close(self) -> None:
        """バッファをクローズし、全購読者の反復を終了させる。"""
        if self._closed:
            return
        self._closed = True
        for queue in self._subscribers.values():
            queue.put_nowait(_CLOSED)
        self._subscribers.clear()
