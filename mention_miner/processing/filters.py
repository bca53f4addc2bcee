"""
Channel / category / time filters

Aggregation 前：頻道多選、時間視窗、標題搜尋 (作用於 records)。
Projection 後：分類單選、tab 選擇 (作用於 rows)。

空的頻道選擇代表「不限制」，不是「什麼都不顯示」。
"""

from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from mention_miner.models import KnowledgeRecord
from mention_miner.utils.time import window_start


TABLE_TABS = ("all", "nfts", "categories")


def filter_by_channels(
    records: Iterable[KnowledgeRecord],
    selected_channels: Optional[Sequence[str]]
) -> List[KnowledgeRecord]:
    """
    頻道過濾

    Args:
        records: KnowledgeRecords
        selected_channels: 選取的頻道 (空 = 全部)

    Returns:
        新的 list (不修改輸入)
    """
    if not selected_channels:
        return list(records)

    selected = set(selected_channels)
    return [record for record in records if record.channel_name in selected]


def filter_by_date_window(
    records: Iterable[KnowledgeRecord],
    window: str,
    now: datetime,
    tz_name: str = "UTC"
) -> List[KnowledgeRecord]:
    """
    時間視窗過濾 (all | today | week | month | year)
    """
    start = window_start(window, now, tz_name)
    if start is None:
        return list(records)
    return [record for record in records if record.date >= start]


def filter_by_title(records: Iterable[KnowledgeRecord], search: str) -> List[KnowledgeRecord]:
    """影片標題搜尋 (不分大小寫)"""
    term = (search or "").strip().lower()
    if not term:
        return list(records)
    return [record for record in records if term in record.video_title.lower()]


def list_channels(records: Iterable[KnowledgeRecord]) -> List[str]:
    """所有頻道名稱 (排序、去重)"""
    return sorted({record.channel_name for record in records})


def toggle_channel(selected_channels: Sequence[str], channel: str) -> List[str]:
    """切換頻道選取狀態，回傳新的選取清單"""
    if channel in selected_channels:
        return [c for c in selected_channels if c != channel]
    return list(selected_channels) + [channel]


def matches_search(name: str, categories: Sequence[str], search: str, include_categories: bool = True) -> bool:
    """名稱或任一分類包含搜尋字串 (不分大小寫)"""
    term = (search or "").lower()
    if term in name.lower():
        return True
    if include_categories:
        return any(term in category.lower() for category in categories)
    return False


def matches_tab(categories: Sequence[str], tab: str, selected_category: Optional[str] = None) -> bool:
    """
    Market table 的 tab 過濾

    - all: 全部
    - nfts: 任一分類包含 "nft"
    - categories: 有選取分類時必須包含該分類，否則全部
    """
    if tab not in TABLE_TABS:
        raise ValueError(f"Unsupported tab: {tab}")

    if tab == "all":
        return True
    if tab == "nfts":
        return any("nft" in category.lower() for category in categories)
    return matches_category(categories, selected_category)


def matches_category(categories: Sequence[str], selected_category: Optional[str]) -> bool:
    """分類單選 (None = 不限制)"""
    if not selected_category:
        return True
    return selected_category in categories
