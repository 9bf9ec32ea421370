"""コスト集計マネージャー。

Worker が stream-json で報告したコストを記録し、集計・警告する。
"""

import logging
from dataclasses import dataclass
from datetime import datetime

logger = logging.getLogger(__name__)


@dataclass
class CostSummary:
    """コスト集計結果。"""

    total_cost_usd: float = 0.0
    """総コスト（USD）"""

    report_count: int = 0
    """コスト報告の件数"""

    process_count: int = 0
    """コスト報告のあったプロセス数"""

    def to_dict(self) -> dict:
        """辞書に変換する。"""
        return {
            "total_cost_usd": round(self.total_cost_usd, 4),
            "report_count": self.report_count,
            "process_count": self.process_count,
        }


@dataclass
class CostRecord:
    """コスト報告 1 件。"""

    process_id: str
    """報告元のプロセスID"""

    agent_id: str
    """報告元のエージェントID"""

    cost_usd: float
    """増分コスト（USD）"""

    timestamp: datetime
    """報告時刻"""

    session_id: str | None = None
    """Worker のセッションID"""


class CostManager:
    """Worker の実コストを集計するマネージャー。"""

    def __init__(self, warning_threshold_usd: float = 10.0) -> None:
        """CostManagerを初期化する。

        Args:
            warning_threshold_usd: コスト警告の閾値（USD）
        """
        self.warning_threshold = warning_threshold_usd
        self._records: list[CostRecord] = []
        self._warned = False

    def record_cost(
        self,
        process_id: str,
        agent_id: str,
        cost_usd: float,
        session_id: str | None = None,
    ) -> None:
        """コスト報告を記録する。

        閾値を初めて超えた時点で警告ログを出す。
        """
        self._records.append(
            CostRecord(
                process_id=process_id,
                agent_id=agent_id,
                cost_usd=cost_usd,
                timestamp=datetime.now(),
                session_id=session_id,
            )
        )
        logger.debug(f"コストを記録: {process_id} (+${cost_usd:.4f})")
        if not self._warned:
            warning = self.check_warning()
            if warning:
                self._warned = True
                logger.warning(warning)

    def get_summary(self) -> CostSummary:
        """コスト集計を取得する。"""
        return CostSummary(
            total_cost_usd=sum(r.cost_usd for r in self._records),
            report_count=len(self._records),
            process_count=len({r.process_id for r in self._records}),
        )

    def get_total_cost(self) -> float:
        """総コスト（USD）を返す。"""
        return sum(r.cost_usd for r in self._records)

    def get_cost_by_process(self, process_id: str) -> float:
        """プロセス別のコストを返す。"""
        return sum(r.cost_usd for r in self._records if r.process_id == process_id)

    def get_cost_by_agent(self) -> dict[str, float]:
        """エージェント別のコストを返す。"""
        costs: dict[str, float] = {}
        for record in self._records:
            costs[record.agent_id] = costs.get(record.agent_id, 0.0) + record.cost_usd
        return costs

    def check_warning(self) -> str | None:
        """コスト警告をチェックする。

        Returns:
            警告メッセージ、警告なしならNone
        """
        total = self.get_total_cost()
        if total >= self.warning_threshold:
            return (
                f"警告: 累計コスト (${total:.2f}) が "
                f"閾値 (${self.warning_threshold:.2f}) を超えています"
            )
        return None

    def set_warning_threshold(self, threshold_usd: float) -> None:
        """コスト警告の閾値を設定する。"""
        self.warning_threshold = threshold_usd
        self._warned = False
        logger.info(f"コスト警告閾値を ${threshold_usd:.2f} に設定しました")

    def reset(self) -> int:
        """コスト記録をリセットする。

        Returns:
            削除した記録数
        """
        count = len(self._records)
        self._records.clear()
        self._warned = False
        logger.info(f"コスト記録をリセットしました（{count} 件削除）")
        return count
