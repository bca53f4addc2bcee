"""
View Projection

把 MentionAggregate 轉成各個畫面需要的 rows：Top N、百分比、搜尋、排序、分頁、欄位顯示。
所有函式回傳新的 list，不修改 aggregate。
"""

from datetime import datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar
import logging
import math

from mention_miner.models import (
    CategoryInsight,
    CategoryRow,
    CoinCategoryEntry,
    CoinCategoryRow,
    CoinMarketData,
    KnowledgeRecord,
    MarketRow,
    MentionAggregate,
    Page,
    ProjectDistributionEntry,
    TrendPoint,
)
from mention_miner.processing import filters

logger = logging.getLogger(__name__)

T = TypeVar("T")

SORT_ORDERS = ("asc", "desc")
COIN_CATEGORY_SORT_KEYS = ("name", "categories", "rpoints")
MARKET_SORT_KEYS = ("rpoints", "price", "24h", "market_cap", "volume", "supply")
KNOWLEDGE_SORT_KEYS = ("date", "title", "channel")
INSIGHT_SORT_KEYS = ("rpoints", "mentions", "coins", "recent")

ALL_COLUMNS = ("price", "24h", "market_cap", "volume", "rpoints", "categories", "supply")
DEFAULT_COLUMNS = ("price", "24h", "market_cap", "volume", "rpoints", "categories")


def stable_sort(rows: Iterable[T], key: Callable[[T], object], order: str = "desc") -> List[T]:
    """
    穩定排序：同值時保留排序前的順序 (asc 與 desc 皆然)
    """
    if order not in SORT_ORDERS:
        raise ValueError(f"Unsupported sort order: {order}")
    return sorted(rows, key=key, reverse=(order == "desc"))


def top_entries(entries: Sequence[T], n: int) -> List[T]:
    """前 n 筆 (entries 已排序)"""
    return list(entries[:max(n, 0)])


def with_percentages(entries: Sequence) -> List[CategoryRow]:
    """
    計算百分比與 bar 寬度

    百分比的分母是「目前顯示的 entries 總和」，不是全域總和。
    四捨五入到 1 位小數後以 largest remainder 修正，讓總和剛好 100.0。

    Args:
        entries: 具有 name / value 的 entries

    Returns:
        List of CategoryRow
    """
    if not entries:
        return []

    values = [float(entry.value) for entry in entries]
    total = sum(values)
    max_value = max(values)

    if total <= 0:
        tenths = [0] * len(values)
    else:
        # 以 0.1% 為單位分配 1000 份
        exact = [value / total * 1000 for value in values]
        tenths = [math.floor(x) for x in exact]
        remaining = max(1000 - sum(tenths), 0)
        by_remainder = sorted(
            range(len(exact)),
            key=lambda i: exact[i] - tenths[i],
            reverse=True
        )
        for i in by_remainder[:remaining]:
            tenths[i] += 1

    return [
        CategoryRow(
            name=entry.name,
            value=value,
            percentage=units / 10,
            bar_width=(value / max_value * 100) if max_value > 0 else 0.0
        )
        for entry, value, units in zip(entries, values, tenths)
    ]


def project_category_table(aggregate: MentionAggregate, search: str = "") -> List[CategoryRow]:
    """Category 分布表 (搜尋後重新計算百分比)"""
    term = (search or "").lower()
    shown = [entry for entry in aggregate.category_distribution if term in entry.name.lower()]
    return with_percentages(shown)


def project_trend_options(aggregate: MentionAggregate, n: int = 10) -> List[ProjectDistributionEntry]:
    """Trend 圖的 project 下拉選單 (Top N by rpoints)"""
    return top_entries(aggregate.project_distribution, n)


def default_trend_project(aggregate: MentionAggregate) -> Optional[str]:
    """預設選取 rpoints 最高的 project"""
    if not aggregate.project_distribution:
        return None
    return aggregate.project_distribution[0].name


def trend_for(aggregate: MentionAggregate, project: Optional[str]) -> List[TrendPoint]:
    """單一 project 的 trend series (不存在回傳空 list)"""
    if not project:
        return []
    return list(aggregate.project_trends.get(project, []))


def project_coin_categories(
    aggregate: MentionAggregate,
    search: str = "",
    sort_by: str = "rpoints",
    order: str = "desc"
) -> List[CoinCategoryRow]:
    """
    Coin categories 表

    Args:
        aggregate: MentionAggregate
        search: 比對 coin 名稱或任一分類 (不分大小寫)
        sort_by: name | categories | rpoints
        order: asc | desc

    Returns:
        List of CoinCategoryRow
    """
    if sort_by not in COIN_CATEGORY_SORT_KEYS:
        raise ValueError(f"Unsupported sort key: {sort_by}")

    points = {entry.name: entry.value for entry in aggregate.project_distribution}

    rows = [
        CoinCategoryRow(coin=entry.coin, categories=list(entry.categories), rpoints=points.get(entry.coin, 0.0))
        for entry in aggregate.coin_categories
        if filters.matches_search(entry.coin, entry.categories, search)
    ]

    sort_keys: Dict[str, Callable[[CoinCategoryRow], object]] = {
        'name': lambda r: r.coin.casefold(),
        'categories': lambda r: len(r.categories),
        'rpoints': lambda r: r.rpoints,
    }
    return stable_sort(rows, sort_keys[sort_by], order)


def top_categories(coin_categories: Sequence[CoinCategoryEntry], n: int = 10) -> List[str]:
    """出現在最多 coins 的分類 (market table 的分類按鈕)"""
    counts: Dict[str, int] = {}
    for entry in coin_categories:
        for category in entry.categories:
            counts[category] = counts.get(category, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: item[1], reverse=True)
    return [name for name, _ in ranked[:n]]


def project_market_rows(
    aggregate: MentionAggregate,
    market_data: Dict[str, CoinMarketData],
    selected_channels: Optional[Sequence[str]] = None,
    search: str = "",
    tab: str = "all",
    selected_category: Optional[str] = None,
    sort_by: str = "rpoints",
    order: str = "desc"
) -> List[MarketRow]:
    """
    Combined market table

    Row 數量只由 aggregate 決定：沒有市場資料的 coin 以零值 placeholder 顯示，不會被移除。

    Args:
        aggregate: MentionAggregate
        market_data: {coin: CoinMarketData} (MarketEnricher snapshot)
        selected_channels: 頻道選取 (空 = 全部)
        search: 搜尋字串 (非 all tab 時也比對分類)
        tab: all | nfts | categories
        selected_category: categories tab 的選取分類
        sort_by: rpoints | price | 24h | market_cap | volume | supply
        order: asc | desc

    Returns:
        List of MarketRow
    """
    if sort_by not in MARKET_SORT_KEYS:
        raise ValueError(f"Unsupported sort key: {sort_by}")

    selected = set(selected_channels or [])
    points = {entry.name: entry.value for entry in aggregate.project_distribution}

    rows: List[MarketRow] = []
    for entry in aggregate.coin_categories:
        channels = aggregate.coin_channels.get(entry.coin, [])
        if selected and not selected.intersection(channels):
            continue

        if not filters.matches_search(entry.coin, entry.categories, search,
                                      include_categories=(tab != "all")):
            continue
        if not filters.matches_tab(entry.categories, tab, selected_category):
            continue

        market = market_data.get(entry.coin)
        rows.append(MarketRow(
            coin=entry.coin,
            categories=list(entry.categories),
            channels=list(channels),
            rpoints=points.get(entry.coin, 0.0),
            market=market.model_copy() if market else CoinMarketData.placeholder(entry.coin),
            has_market_data=market is not None
        ))

    sort_keys: Dict[str, Callable[[MarketRow], object]] = {
        'rpoints': lambda r: r.rpoints,
        'price': lambda r: r.market.price,
        '24h': lambda r: r.market.percent_change_24h,
        'market_cap': lambda r: r.market.market_cap,
        'volume': lambda r: r.market.volume_24h,
        'supply': lambda r: r.market.circulating_supply,
    }
    return stable_sort(rows, sort_keys[sort_by], order)


def filter_category_insights(
    insights: Sequence[CategoryInsight],
    search: str = "",
    selected_categories: Optional[Sequence[str]] = None,
    sort_by: str = "rpoints"
) -> List[CategoryInsight]:
    """
    Category 分析頁的過濾與排序

    搜尋字串以空白切成多個 term，每個 term 都必須命中分類名稱或任一 coin。
    """
    if sort_by not in INSIGHT_SORT_KEYS:
        raise ValueError(f"Unsupported sort key: {sort_by}")

    terms = [term for term in (search or "").lower().split() if term]
    selected = set(selected_categories or [])

    def matches(insight: CategoryInsight) -> bool:
        if selected and insight.name not in selected:
            return False
        return all(
            term in insight.name.lower() or any(term in coin.lower() for coin in insight.coins)
            for term in terms
        )

    sort_keys: Dict[str, Callable[[CategoryInsight], object]] = {
        'rpoints': lambda c: c.total_rpoints,
        'mentions': lambda c: c.mentions,
        'coins': lambda c: len(c.coins),
        'recent': lambda c: c.recent_activity,
    }
    return stable_sort([c for c in insights if matches(c)], sort_keys[sort_by], "desc")


def paginate(rows: Sequence[T], page: int = 1, page_size: int = 10) -> Page:
    """
    分頁 (page 超出範圍時夾到 [1, total_pages])
    """
    if page_size <= 0:
        raise ValueError("page_size must be positive")

    total = len(rows)
    total_pages = max(1, math.ceil(total / page_size))
    page = min(max(page, 1), total_pages)
    start = (page - 1) * page_size

    return Page(
        items=list(rows[start:start + page_size]),
        page=page,
        page_size=page_size,
        total=total,
        total_pages=total_pages
    )


def project_knowledge_list(
    records: Sequence[KnowledgeRecord],
    now: datetime,
    search: str = "",
    channel: str = "all",
    date_window: str = "all",
    sort_by: str = "date",
    page: int = 1,
    page_size: int = 10,
    tz_name: str = "UTC"
) -> Page:
    """
    Knowledge 瀏覽列表：標題搜尋 + 單一頻道 + 時間視窗 + 排序 + 分頁

    Args:
        records: KnowledgeRecords
        now: 當前時間 (時間視窗基準)
        search: 標題搜尋
        channel: 頻道名稱或 "all"
        date_window: all | today | week | month | year
        sort_by: date (新到舊) | title | channel
        page: 頁碼 (1-based)
        page_size: 每頁筆數
        tz_name: 使用者時區

    Returns:
        Page (items 為 KnowledgeRecord)
    """
    if sort_by not in KNOWLEDGE_SORT_KEYS:
        raise ValueError(f"Unsupported sort key: {sort_by}")

    selected = filters.filter_by_title(records, search)
    if channel != "all":
        selected = filters.filter_by_channels(selected, [channel])
    selected = filters.filter_by_date_window(selected, date_window, now, tz_name)

    if sort_by == "date":
        selected = stable_sort(selected, lambda r: r.date, "desc")
    elif sort_by == "title":
        selected = stable_sort(selected, lambda r: r.video_title.casefold(), "asc")
    else:
        selected = stable_sort(selected, lambda r: r.channel_name.casefold(), "asc")

    return paginate(selected, page, page_size)


class ColumnSelection:
    """
    欄位顯示的兩階段狀態

    勾選只改變 tentative；apply() 之後才會影響 committed (實際渲染的欄位)。
    """

    def __init__(self, columns: Sequence[str] = DEFAULT_COLUMNS):
        self._validate(columns)
        self._committed: Tuple[str, ...] = tuple(columns)
        self._tentative: List[str] = list(columns)

    @staticmethod
    def _validate(columns: Iterable[str]) -> None:
        unknown = [c for c in columns if c not in ALL_COLUMNS]
        if unknown:
            raise ValueError(f"Unknown columns: {unknown}")

    @property
    def committed(self) -> Tuple[str, ...]:
        """目前渲染中的欄位"""
        return self._committed

    @property
    def tentative(self) -> Tuple[str, ...]:
        """尚未套用的勾選狀態"""
        return tuple(self._tentative)

    def toggle(self, column: str) -> None:
        self._validate([column])
        if column in self._tentative:
            self._tentative.remove(column)
        else:
            self._tentative.append(column)

    def select_all(self) -> None:
        self._tentative = list(ALL_COLUMNS)

    def deselect_all(self) -> None:
        self._tentative = []

    def apply(self) -> Tuple[str, ...]:
        """把 tentative 寫入 committed"""
        self._committed = tuple(self._tentative)
        logger.debug(f"Visible columns: {self._committed}")
        return self._committed

    def discard(self) -> None:
        """放棄未套用的勾選，回到 committed"""
        self._tentative = list(self._committed)

    def is_visible(self, column: str) -> bool:
        return column in self._committed
