"""ライフサイクルイベントの配送。"""

import logging
from collections import deque
from collections.abc import Callable
from typing import Any

from agent_squad.models.events import DomainEvent, EventType

logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], None]


class EventBus:
    """プロセス・worktree のライフサイクルイベントを購読者に配送するクラス。

    ハンドラーは同期的に呼び出される。ハンドラー内の例外は記録のみ行い、
    イベントを発行した操作には伝播させない。
    """

    def __init__(self, history_size: int = 1000) -> None:
        """EventBusを初期化する。

        Args:
            history_size: 保持するイベント履歴の件数
        """
        self._history: deque[DomainEvent] = deque(maxlen=history_size)
        self._subscribers: dict[str, tuple[EventType | None, EventHandler]] = {}

    def subscribe(
        self, name: str, handler: EventHandler, event_type: EventType | None = None
    ) -> None:
        """ハンドラーを登録する。

        Args:
            name: 購読者名（同名の登録は置き換える）
            handler: イベントハンドラー
            event_type: 受け取るイベント種別（None で全種別）
        """
        self._subscribers[name] = (event_type, handler)

    def unsubscribe(self, name: str) -> bool:
        """ハンドラーの登録を解除する。"""
        return self._subscribers.pop(name, None) is not None

    def emit(self, event_type: EventType, **payload: Any) -> DomainEvent:
        """イベントを発行する。

        Args:
            event_type: イベント種別
            **payload: イベント内容

        Returns:
            発行したイベント
        """
        event = DomainEvent(type=event_type, payload=payload)
        self._history.append(event)
        for name, (wanted, handler) in list(self._subscribers.items()):
            if wanted is not None and wanted != event_type:
                continue
            try:
                handler(event)
            except Exception as e:
                logger.warning(f"イベントハンドラー '{name}' でエラーが発生しました: {e}")
        return event

    def get_recent_events(
        self, count: int = 50, event_type: EventType | None = None
    ) -> list[DomainEvent]:
        """直近のイベントを古い順に返す。"""
        events = [e for e in self._history if event_type is None or e.type == event_type]
        return events[-count:] if count > 0 else []

    def clear(self) -> None:
        """イベント履歴を消去する。"""
        self._history.clear()
