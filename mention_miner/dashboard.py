"""
Dashboard state

KnowledgeCache 由呼叫端擁有 (不是 module-level singleton)：
- refresh 失敗時保留最後一次成功的資料 (keep-last-good)
- 資料沒變時不替換
- collaborator 錯誤轉成可關閉的 Notification

build_dashboard 則是 filters -> aggregation -> projection 的組合。
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence
import logging

from mention_miner.errors import CollaboratorError
from mention_miner.models import DashboardView, KnowledgeRecord, Notification
from mention_miner.processing import filters, projection
from mention_miner.processing.aggregate import aggregate_mentions, build_category_insights
from mention_miner.processing.normalize import normalize_records
from mention_miner.utils import hashing
from mention_miner.utils.time import utcnow

logger = logging.getLogger(__name__)


class KnowledgeCache:
    """
    Knowledge records 的快取

    Args:
        load: 回傳原始 records 的函式 (例如 FileStore.read_records)
        clock: 回傳 tz-aware datetime 的函式
    """

    def __init__(
        self,
        load: Callable[[], List[Dict[str, Any]]],
        clock: Callable[[], datetime] = utcnow
    ):
        self._load = load
        self._clock = clock
        self._records: List[KnowledgeRecord] = []
        self._fingerprint: Optional[str] = None
        self._notifications: List[Notification] = []
        self._next_notification_id = 1
        self._alive = True

        self.loaded_at: Optional[datetime] = None
        self.error: Optional[str] = None
        self.is_loading = False
        self.last_stats: Dict[str, int] = {}

    @property
    def records(self) -> List[KnowledgeRecord]:
        """目前的 records (copy)"""
        return list(self._records)

    def close(self) -> None:
        """停止接受結果"""
        self._alive = False

    def refresh(self, initial: bool = False) -> bool:
        """
        重新讀取 knowledge

        Args:
            initial: 第一次載入 (不發送「有新資料」通知)

        Returns:
            資料是否有變動
        """
        if not self._alive:
            return False

        self.is_loading = initial
        try:
            raws = self._load()
        except CollaboratorError as e:
            if not self._alive:
                return False
            self.error = str(e)
            logger.error(f"Knowledge refresh failed, keeping {len(self._records)} records: {e}")
            self.notify("error", "Failed to fetch updates")
            return False
        finally:
            self.is_loading = False

        if not self._alive:
            return False

        self.error = None
        fingerprint = hashing.payload_fingerprint(raws)
        if fingerprint == self._fingerprint:
            logger.debug("Knowledge unchanged")
            return False

        records, stats = normalize_records(raws)
        self._records = records
        self._fingerprint = fingerprint
        self.loaded_at = self._clock()
        self.last_stats = stats

        if not initial:
            self.notify("success", "New knowledge data received!")

        return True

    def notify(self, level: str, message: str) -> Notification:
        notification = Notification(
            id=self._next_notification_id,
            level=level,
            message=message,
            created_at=self._clock()
        )
        self._next_notification_id += 1
        self._notifications.append(notification)
        return notification

    def dismiss(self, notification_id: int) -> None:
        for notification in self._notifications:
            if notification.id == notification_id:
                notification.dismissed = True

    @property
    def notifications(self) -> List[Notification]:
        """尚未關閉的通知"""
        return [n for n in self._notifications if not n.dismissed]


def build_dashboard(
    records: Sequence[KnowledgeRecord],
    now: datetime,
    selected_channels: Optional[Sequence[str]] = None,
    date_window: str = "all",
    selected_project: Optional[str] = None,
    top_n: int = 10,
    recent_days: int = 7,
    merge_case_variants: bool = False,
    tz_name: str = "UTC"
) -> DashboardView:
    """
    組合 dashboard 資料

    Args:
        records: KnowledgeRecords
        now: 當前時間
        selected_channels: 頻道選取 (空 = 全部)
        date_window: all | today | week | month | year
        selected_project: trend 圖選取的 project (None 或不存在時用 rpoints 最高者)
        top_n: Top N projects
        recent_days: category recent activity 天數
        merge_case_variants: 見 aggregate_mentions
        tz_name: 使用者時區

    Returns:
        DashboardView
    """
    selected = filters.filter_by_channels(records, selected_channels)
    selected = filters.filter_by_date_window(selected, date_window, now, tz_name)

    aggregate = aggregate_mentions(selected, merge_case_variants)

    if selected_project not in aggregate.project_trends:
        selected_project = projection.default_trend_project(aggregate)

    return DashboardView(
        record_count=len(selected),
        channels=filters.list_channels(records),
        selected_channels=list(selected_channels or []),
        aggregate=aggregate,
        top_projects=projection.top_entries(aggregate.project_distribution, top_n),
        category_rows=projection.with_percentages(aggregate.category_distribution),
        selected_project=selected_project,
        trend=projection.trend_for(aggregate, selected_project),
        category_insights=build_category_insights(selected, now, recent_days, merge_case_variants)
    )
