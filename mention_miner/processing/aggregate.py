"""
Mention Aggregation

將正規化後的 KnowledgeRecords 一次走訪聚合成：
project distribution / category distribution / project trends / coin categories，
以及頻道總覽 (summary) 與 coin -> channel 對應。

所有輸出每次重新計算，不修改輸入。
"""

from typing import List, Dict, Iterable, Sequence
from datetime import datetime, timedelta
import logging

from mention_miner.models import (
    CategoryDistributionEntry,
    CategoryInsight,
    ChannelSummary,
    CoinCategoryEntry,
    KnowledgeRecord,
    MarketcapDistribution,
    MentionAggregate,
    ProjectDistributionEntry,
    TimelinePoint,
    TrendPoint,
)
from mention_miner.utils.time import get_daily_bucket, to_utc

logger = logging.getLogger(__name__)


def entity_key(name: str, merge_case_variants: bool = False) -> str:
    """
    Coin/project 的 aggregation key

    merge_case_variants=True 時以 trim + casefold 合併 ("BTC" / "btc " 視為同一個)。
    """
    if merge_case_variants:
        return " ".join(name.split()).casefold()
    return name


def aggregate_mentions(
    records: Iterable[KnowledgeRecord],
    merge_case_variants: bool = False
) -> MentionAggregate:
    """
    聚合 records (單次走訪 records -> mentions)

    Args:
        records: KnowledgeRecords (可先經過 filters)
        merge_case_variants: 是否合併大小寫/空白不同的 coin 名稱 (顯示第一次出現的寫法)

    Returns:
        MentionAggregate
    """
    # dict 保留插入順序 = first-seen 順序 (穩定排序的 tie-break)
    display_names: Dict[str, str] = {}
    project_totals: Dict[str, float] = {}
    category_counts: Dict[str, int] = {}
    trend_buckets: Dict[str, Dict[str, float]] = {}
    coin_categories: Dict[str, List[str]] = {}
    coin_channels: Dict[str, List[str]] = {}
    timeline: Dict[str, float] = {}

    total_rpoints = 0.0
    total_mentions = 0
    record_count = 0

    for record in records:
        record_count += 1
        bucket = get_daily_bucket(record.date)

        for mention in record.project_mentions:
            key = entity_key(mention.coin_or_project, merge_case_variants)
            if key not in display_names:
                display_names[key] = mention.coin_or_project
                project_totals[key] = 0.0
                trend_buckets[key] = {}
                coin_categories[key] = []
                coin_channels[key] = []

            points = mention.rpoints
            total_rpoints += points
            total_mentions += 1

            # Project total
            project_totals[key] += points

            # Category mention count (數 mention 不是數 coin)
            for category in mention.categories:
                category_counts[category] = category_counts.get(category, 0) + 1

            # Trend (同一天加總)
            series = trend_buckets[key]
            series[bucket] = series.get(bucket, 0.0) + points

            # Coin -> categories (union)
            known = coin_categories[key]
            for category in mention.categories:
                if category not in known:
                    known.append(category)

            # Coin -> channels
            if record.channel_name not in coin_channels[key]:
                coin_channels[key].append(record.channel_name)

            timeline[bucket] = timeline.get(bucket, 0.0) + points

    # Project distribution (降序，同分保留 first-seen 順序)
    project_distribution = sorted(
        (ProjectDistributionEntry(name=display_names[key], value=total)
         for key, total in project_totals.items()),
        key=lambda e: e.value,
        reverse=True
    )

    category_distribution = sorted(
        (CategoryDistributionEntry(name=name, value=count)
         for name, count in category_counts.items()),
        key=lambda e: e.value,
        reverse=True
    )

    project_trends = fill_trend_gaps(
        {display_names[key]: series for key, series in trend_buckets.items()}
    )

    coin_category_entries = sorted(
        (CoinCategoryEntry(coin=display_names[key], categories=list(categories))
         for key, categories in coin_categories.items()),
        key=lambda e: e.coin
    )

    unique_categories = list(category_counts.keys())

    summary = ChannelSummary(
        total_rpoints=total_rpoints,
        total_mentions=total_mentions,
        unique_coins=list(display_names.values()),
        unique_categories=unique_categories,
        timeline=[
            TimelinePoint(date=date, value=value)
            for date, value in sorted(timeline.items())
        ]
    )

    logger.info(f"Aggregated {record_count} records: {len(project_distribution)} projects, " +
                f"{len(category_distribution)} categories, {total_mentions} mentions")

    return MentionAggregate(
        project_distribution=project_distribution,
        category_distribution=category_distribution,
        project_trends=project_trends,
        coin_categories=coin_category_entries,
        coin_channels={
            display_names[key]: sorted(channels)
            for key, channels in coin_channels.items()
        },
        summary=summary
    )


def fill_trend_gaps(trend_buckets: Dict[str, Dict[str, float]]) -> Dict[str, List[TrendPoint]]:
    """
    對齊所有 project 的日期 (缺少的日期補 0)，並依日期遞增排序

    Args:
        trend_buckets: {project: {date: rpoints}}

    Returns:
        {project: [TrendPoint, ...]}
    """
    all_dates = sorted({date for series in trend_buckets.values() for date in series})

    return {
        project: [
            TrendPoint(date=date, rpoints=series.get(date, 0.0))
            for date in all_dates
        ]
        for project, series in trend_buckets.items()
    }


def build_category_insights(
    records: Sequence[KnowledgeRecord],
    now: datetime,
    recent_days: int = 7,
    merge_case_variants: bool = False,
) -> List[CategoryInsight]:
    """
    Category 分析：每個分類的 coins、rpoints、mention 數、marketcap 分布與近期活動

    Args:
        records: KnowledgeRecords
        now: 當前時間 (判斷 recent activity)
        recent_days: 近期天數
        merge_case_variants: 見 aggregate_mentions (coin 名稱與 aggregate 一致)

    Returns:
        List of CategoryInsight (依 total_rpoints 降序)
    """
    now = to_utc(now)
    recent_cutoff = now - timedelta(days=recent_days)

    insights: Dict[str, Dict] = {}
    display_names: Dict[str, str] = {}

    for record in records:
        is_recent = recent_cutoff <= record.date <= now

        for mention in record.project_mentions:
            for category in mention.categories:
                info = insights.setdefault(category, {
                    'coins': [],
                    'total_rpoints': 0.0,
                    'mentions': 0,
                    'marketcap': {'large': 0, 'medium': 0, 'small': 0},
                    'recent_activity': 0
                })

                key = entity_key(mention.coin_or_project, merge_case_variants)
                display_names.setdefault(key, mention.coin_or_project)
                if key not in info['coins']:
                    info['coins'].append(key)
                info['total_rpoints'] += mention.rpoints
                info['mentions'] += 1

                if mention.marketcap_bucket in info['marketcap']:
                    info['marketcap'][mention.marketcap_bucket] += 1

                if is_recent:
                    info['recent_activity'] += 1

    results = [
        CategoryInsight(
            name=name,
            coins=[display_names[key] for key in info['coins']],
            total_rpoints=round(info['total_rpoints'], 2),
            mentions=info['mentions'],
            marketcap_distribution=MarketcapDistribution(**info['marketcap']),
            recent_activity=info['recent_activity']
        )
        for name, info in insights.items()
    ]

    results.sort(key=lambda c: c.total_rpoints, reverse=True)
    return results
