"""
Record normalization

所有 ingestion 路徑的唯一入口。接受歷史上出現過的幾種 record 形狀：

1. canonical: {"channel name", video_title, date, llm_answer: {projects: [...] | {...}}}
2. stored:    {title, channel, publish_date, sorted: "<JSON string>"}
3. upload:    {Title, Channel, Publish, Sorted, Summary: {answer}}

欄位解析順序：小寫/machine key -> 大寫 legacy key -> 預設值。
"""

import json
import math
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
import logging

from mention_miner.errors import MalformedRecordError, RecordValidationError
from mention_miner.models import KnowledgeRecord, ProjectMention, RejectedRecord
from mention_miner.utils import hashing
from mention_miner.utils.time import parse_iso8601, to_utc

logger = logging.getLogger(__name__)


# Record-level keys
ID_KEYS = ("id", "external_id")
DATE_KEYS = ("date", "publish_date", "Publish", "Date")
CHANNEL_KEYS = ("channel name", "channel_name", "channel", "Channel")
TITLE_KEYS = ("video_title", "title", "Title")
TRANSCRIPT_KEYS = ("transcript", "content", "Transcript")
LINK_KEYS = ("link", "url", "Link")
PROJECTS_KEYS = ("project_mentions", "projects", "sorted", "Sorted")

# Mention-level keys
COIN_KEYS = ("coin_or_project", "coin", "Coin_or_project", "Coin", "Project")
MARKETCAP_KEYS = ("marketcap_bucket", "marketcap", "market_cap", "Marketcap", "MarketCap")
RPOINTS_KEYS = ("rpoints", "r_points", "Rpoints", "RPoints")
TOTAL_COUNT_KEYS = ("total_count", "Total count", "Total_count", "totalCount")
CATEGORY_KEYS = ("category", "categories", "Category", "Categories")

UNKNOWN_CHANNEL = "Unknown"


def resolve_field(raw: Dict[str, Any], keys: Sequence[str], default: Any = None) -> Any:
    """依序尋找第一個存在且非 None 的 key"""
    for key in keys:
        value = raw.get(key)
        if value is not None:
            return value
    return default


def parse_rpoints(value: Any) -> float:
    """
    解析 rpoints

    缺少 -> 0；存在但不是有限、非負的數字 -> MalformedRecordError
    """
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise MalformedRecordError("rpoints", f"not a number: {value!r}")

    try:
        points = float(value.strip()) if isinstance(value, str) else float(value)
    except (TypeError, ValueError):
        raise MalformedRecordError("rpoints", f"not a number: {value!r}")

    if not math.isfinite(points):
        raise MalformedRecordError("rpoints", f"not finite: {value!r}")
    if points < 0:
        raise MalformedRecordError("rpoints", f"negative: {value!r}")

    return points


def parse_total_count(value: Any) -> int:
    """解析 total count (無法解析時預設 1)"""
    if value is None or isinstance(value, bool):
        return 1
    try:
        count = int(float(value))
    except (TypeError, ValueError, OverflowError):
        logger.debug(f"Unparseable total_count {value!r}, defaulting to 1")
        return 1
    return count if count >= 0 else 1


def parse_categories(value: Any) -> List[str]:
    """
    解析分類標籤

    接受 list 或單一字串；去除空白與重複 (保留首見順序)。
    """
    if value is None:
        return []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple, set)):
        return []

    categories: List[str] = []
    for tag in value:
        if not isinstance(tag, str):
            continue
        tag = tag.strip()
        if tag and tag not in categories:
            categories.append(tag)
    return categories


def parse_record_date(value: Any) -> datetime:
    """解析 record 時間 (naive 視為 UTC)"""
    if value is None or value == "":
        raise MalformedRecordError("date")
    if isinstance(value, datetime):
        return to_utc(value)
    if not isinstance(value, str):
        raise MalformedRecordError("date", f"unsupported type {type(value).__name__}")
    try:
        return parse_iso8601(value)
    except ValueError:
        raise MalformedRecordError("date", f"unparseable: {value!r}")


def extract_projects(raw: Dict[str, Any]) -> List[Any]:
    """
    取出 record 內的 project 清單

    llm_answer.projects 可能是 list 或單一 object；sorted / Sorted 可能是 JSON 字串。

    Raises:
        MalformedRecordError: JSON 字串無法解析
    """
    payload = None

    llm_answer = raw.get("llm_answer")
    if isinstance(llm_answer, str):
        llm_answer = _load_json(llm_answer, "llm_answer")
    if isinstance(llm_answer, dict):
        payload = llm_answer.get("projects")

    if payload is None:
        payload = resolve_field(raw, PROJECTS_KEYS)

    if isinstance(payload, str):
        payload = _load_json(payload, "projects")

    # {"projects": [...]} 包裝
    if isinstance(payload, dict) and "projects" in payload:
        payload = payload["projects"]

    if payload is None:
        return []
    if isinstance(payload, dict):
        return [payload]
    if isinstance(payload, list):
        return payload

    raise MalformedRecordError("projects", f"unsupported type {type(payload).__name__}")


def _load_json(text: str, field: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedRecordError(field, f"invalid JSON: {e.msg}")


def normalize_mention(raw: Any) -> ProjectMention:
    """
    正規化單一 mention

    Raises:
        MalformedRecordError: coin_or_project 缺少/空白，或 rpoints 無法解析
    """
    if not isinstance(raw, dict):
        raise MalformedRecordError("coin_or_project", "mention is not an object")

    coin = resolve_field(raw, COIN_KEYS)
    if not isinstance(coin, str) or not coin.strip():
        raise MalformedRecordError("coin_or_project")

    marketcap = resolve_field(raw, MARKETCAP_KEYS, default="")

    return ProjectMention(
        coin_or_project=coin.strip(),
        marketcap_bucket=str(marketcap).strip().lower(),
        rpoints=parse_rpoints(resolve_field(raw, RPOINTS_KEYS)),
        total_count=parse_total_count(resolve_field(raw, TOTAL_COUNT_KEYS)),
        categories=parse_categories(resolve_field(raw, CATEGORY_KEYS)),
    )


def _normalize(
    raw: Any,
    index: Optional[int],
    strict: bool
) -> Tuple[KnowledgeRecord, int]:
    if not isinstance(raw, dict):
        raise MalformedRecordError("record", "not an object", index=index)

    raw_date = resolve_field(raw, DATE_KEYS)
    try:
        date = parse_record_date(raw_date)
    except MalformedRecordError as e:
        e.index = index
        raise

    channel = str(resolve_field(raw, CHANNEL_KEYS, default="")).strip() or UNKNOWN_CHANNEL
    title = str(resolve_field(raw, TITLE_KEYS, default="")).strip()

    transcript = resolve_field(raw, TRANSCRIPT_KEYS)
    if transcript is None:
        summary = raw.get("Summary") or raw.get("summary")
        transcript = summary.get("answer", "") if isinstance(summary, dict) else summary
    transcript = "" if transcript is None else str(transcript)

    record_id = resolve_field(raw, ID_KEYS)
    if record_id is None or str(record_id).strip() == "":
        record_id = hashing.record_id(channel, title, str(raw_date))

    skipped = 0
    try:
        raw_projects = extract_projects(raw)
    except MalformedRecordError as e:
        e.index = index
        if strict:
            raise
        logger.warning(f"Record {record_id}: {e}; keeping record without mentions")
        raw_projects = []

    mentions: List[ProjectMention] = []
    for position, raw_project in enumerate(raw_projects):
        try:
            mentions.append(normalize_mention(raw_project))
        except MalformedRecordError as e:
            e.index = index
            if strict:
                raise
            logger.warning(f"Skipping mention #{position} of record {record_id}: {e}")
            skipped += 1

    record = KnowledgeRecord(
        id=str(record_id),
        date=date,
        channel_name=channel,
        video_title=title,
        transcript=transcript,
        link=str(resolve_field(raw, LINK_KEYS, default="")),
        project_mentions=mentions,
    )
    return record, skipped


def normalize_record(raw: Any, index: Optional[int] = None, strict: bool = False) -> KnowledgeRecord:
    """
    正規化單一 record

    Args:
        raw: 原始 record (任一歷史形狀)
        index: 在批次中的位置 (錯誤訊息用)
        strict: True 時任何無效 mention 都會拋出；False 時記 log 並略過該 mention

    Returns:
        KnowledgeRecord

    Raises:
        MalformedRecordError: record 本身無法正規化 (非 object、缺少日期)
    """
    record, _ = _normalize(raw, index, strict)
    return record


def normalize_records(
    raws: Iterable[Any],
    strict: bool = False
) -> Tuple[List[KnowledgeRecord], Dict[str, int]]:
    """
    正規化整批 records (單一壞資料不會中斷整批)

    Args:
        raws: 原始 records
        strict: 見 normalize_record

    Returns:
        (records, 統計資訊)
    """
    stats = {
        'original_count': 0,
        'skipped_records': 0,
        'skipped_mentions': 0,
        'mention_count': 0,
        'final_count': 0
    }

    records: List[KnowledgeRecord] = []
    for index, raw in enumerate(raws):
        stats['original_count'] += 1
        try:
            record, skipped = _normalize(raw, index, strict)
        except MalformedRecordError as e:
            if strict:
                raise
            logger.warning(f"Skipping record #{index}: {e}")
            stats['skipped_records'] += 1
            continue

        stats['skipped_mentions'] += skipped
        stats['mention_count'] += len(record.project_mentions)
        records.append(record)

    stats['final_count'] = len(records)
    logger.info(f"Normalized {stats['final_count']}/{stats['original_count']} records " +
                f"({stats['mention_count']} mentions, {stats['skipped_mentions']} mentions skipped)")

    return records, stats


def validate_records(raws: Sequence[Any]) -> Tuple[List[KnowledgeRecord], List[RejectedRecord]]:
    """
    寫入前驗證：每筆 record 以 strict 模式重新正規化，重複的 id 只接受第一筆

    Returns:
        (有效 records, 被拒絕的 records 與欄位)
    """
    records: List[KnowledgeRecord] = []
    rejected: List[RejectedRecord] = []
    seen_ids = set()

    for index, raw in enumerate(raws):
        try:
            record = normalize_record(raw, index=index, strict=True)
        except MalformedRecordError as e:
            rejected.append(RejectedRecord(index=index, field=e.field, reason=e.reason))
            continue

        # 同一個 id 只保留第一筆
        if record.id in seen_ids:
            rejected.append(RejectedRecord(index=index, field="id", reason="duplicate"))
            continue

        seen_ids.add(record.id)
        records.append(record)

    return records, rejected


def prepare_write(
    raws: Sequence[Any],
    policy: str = "lenient"
) -> Tuple[List[KnowledgeRecord], List[RejectedRecord]]:
    """
    套用寫入策略

    - lenient: 回傳有效 records，被拒絕者列在報告中
    - strict: 任一 record 無效即整批拒絕 (不做部分寫入)

    Raises:
        RecordValidationError: strict 模式下有無效 record
    """
    if policy not in ("lenient", "strict"):
        raise ValueError(f"Unsupported write policy: {policy}")

    records, rejected = validate_records(raws)

    if rejected:
        logger.warning(f"{len(rejected)}/{len(raws)} records failed validation: " +
                       ", ".join(f"#{r.index}:{r.field}" for r in rejected))
        if policy == "strict":
            raise RecordValidationError([(r.index, r.field) for r in rejected])

    return records, rejected
