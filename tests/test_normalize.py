"""
Tests for record normalization
"""

import json
import pytest
from datetime import datetime, timezone

from mention_miner.errors import MalformedRecordError, RecordValidationError
from mention_miner.processing.normalize import (
    normalize_mention,
    normalize_record,
    normalize_records,
    parse_categories,
    parse_rpoints,
    prepare_write,
)


def create_test_raw(
    channel: str = "Crypto Banter",
    title: str = "Top altcoins",
    date: str = "2024-01-01T12:00:00Z",
    projects=None
) -> dict:
    """Helper to create canonical raw record"""
    if projects is None:
        projects = [{"coin_or_project": "BTC", "rpoints": 5, "category": ["L1"]}]

    return {
        "channel name": channel,
        "video_title": title,
        "date": date,
        "transcript": "bitcoin is going up",
        "llm_answer": {"projects": projects},
    }


def test_canonical_shape():
    """測試 canonical 形狀"""
    record = normalize_record(create_test_raw())

    assert record.channel_name == "Crypto Banter"
    assert record.video_title == "Top altcoins"
    assert record.date == datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert record.transcript == "bitcoin is going up"
    assert len(record.project_mentions) == 1

    mention = record.project_mentions[0]
    assert mention.coin_or_project == "BTC"
    assert mention.rpoints == 5
    assert mention.total_count == 1
    assert mention.categories == ["L1"]


def test_single_project_object():
    """測試 projects 為單一 object"""
    raw = create_test_raw()
    raw["llm_answer"]["projects"] = {"coin_or_project": "ETH", "rpoints": 2}

    record = normalize_record(raw)

    assert [m.coin_or_project for m in record.project_mentions] == ["ETH"]


def test_stored_shape_with_json_string():
    """測試 stored 形狀 (sorted 為 JSON 字串)"""
    raw = {
        "id": "row-1",
        "title": "Weekly update",
        "channel": "Coin Bureau",
        "publish_date": "2024-02-10T08:30:00+08:00",
        "content": "transcript",
        "sorted": json.dumps([
            {"coin": "SOL", "marketcap": "Large", "rpoints": "7.5", "Total count": 3, "category": "L1"}
        ]),
    }

    record = normalize_record(raw)

    assert record.id == "row-1"
    assert record.channel_name == "Coin Bureau"
    assert record.date == datetime(2024, 2, 10, 0, 30, tzinfo=timezone.utc)

    mention = record.project_mentions[0]
    assert mention.coin_or_project == "SOL"
    assert mention.marketcap_bucket == "large"
    assert mention.rpoints == 7.5
    assert mention.total_count == 3
    assert mention.categories == ["L1"]


def test_upload_shape():
    """測試 upload 形狀 (大寫 key + Summary.answer)"""
    raw = {
        "Title": "Altseason?",
        "Channel": "Altcoin Daily",
        "Publish": "2024-03-01",
        "Summary": {"answer": "short summary"},
        "Sorted": json.dumps({"projects": [{"Coin_or_project": " Pepe ", "Rpoints": 1, "Category": ["Meme"]}]}),
    }

    record = normalize_record(raw)

    assert record.channel_name == "Altcoin Daily"
    assert record.video_title == "Altseason?"
    assert record.transcript == "short summary"
    assert record.project_mentions[0].coin_or_project == "Pepe"


def test_missing_channel_defaults_to_unknown():
    """測試缺少頻道時使用 Unknown"""
    raw = create_test_raw()
    del raw["channel name"]

    assert normalize_record(raw).channel_name == "Unknown"


def test_generated_id_is_stable():
    """測試沒有 id 時產生穩定 ID"""
    first = normalize_record(create_test_raw())
    second = normalize_record(create_test_raw())
    other = normalize_record(create_test_raw(title="Another video"))

    assert first.id == second.id
    assert first.id != other.id
    assert len(first.id) == 16


def test_parse_rpoints():
    """測試 rpoints 解析"""
    assert parse_rpoints(None) == 0.0
    assert parse_rpoints(" 4 ") == 4.0
    assert parse_rpoints(2) == 2.0

    for bad in ("abc", -1, float("nan"), float("inf"), True):
        with pytest.raises(MalformedRecordError) as exc_info:
            parse_rpoints(bad)
        assert exc_info.value.field == "rpoints"


def test_parse_categories_dedupes():
    """測試分類去重 (保留首見順序)"""
    assert parse_categories(["L1", " DeFi ", "L1", "", None]) == ["L1", "DeFi"]
    assert parse_categories("Meme") == ["Meme"]
    assert parse_categories(None) == []


def test_mention_without_coin_is_rejected():
    """測試缺少 coin 的 mention"""
    with pytest.raises(MalformedRecordError) as exc_info:
        normalize_mention({"rpoints": 3})
    assert exc_info.value.field == "coin_or_project"

    with pytest.raises(MalformedRecordError):
        normalize_mention({"coin_or_project": "   "})


def test_lenient_skips_bad_mentions():
    """測試 lenient 模式略過壞 mention，保留其餘"""
    raw = create_test_raw(projects=[
        {"coin_or_project": "BTC", "rpoints": 5},
        {"coin_or_project": "ETH", "rpoints": "lots"},
        {"rpoints": 1},
    ])

    records, stats = normalize_records([raw])

    assert [m.coin_or_project for m in records[0].project_mentions] == ["BTC"]
    assert stats['skipped_mentions'] == 2
    assert stats['mention_count'] == 1


def test_strict_raises_on_bad_mention():
    """測試 strict 模式遇到壞 mention 直接拋出"""
    raw = create_test_raw(projects=[{"coin_or_project": "ETH", "rpoints": -3}])

    with pytest.raises(MalformedRecordError) as exc_info:
        normalize_record(raw, index=4, strict=True)

    assert exc_info.value.field == "rpoints"
    assert exc_info.value.index == 4


def test_record_without_date_is_skipped():
    """測試缺少日期的 record 被略過，不中斷整批"""
    good = create_test_raw()
    bad = create_test_raw(date="")
    garbage = "not a record"

    records, stats = normalize_records([good, bad, garbage])

    assert len(records) == 1
    assert stats['original_count'] == 3
    assert stats['skipped_records'] == 2
    assert stats['final_count'] == 1


def test_invalid_projects_json_keeps_record():
    """測試 projects JSON 無法解析時保留 record (無 mentions)"""
    raw = {"title": "t", "channel": "c", "publish_date": "2024-01-01", "sorted": "{broken"}

    records, stats = normalize_records([raw])

    assert len(records) == 1
    assert records[0].project_mentions == []
    assert stats['skipped_records'] == 0


def test_prepare_write_lenient_reports_rejected():
    """測試 lenient 寫入：有效 records 寫入，無效者回報"""
    raws = [
        create_test_raw(),
        create_test_raw(date=""),
        create_test_raw(projects=[{"rpoints": 1}]),
    ]

    records, rejected = prepare_write(raws, "lenient")

    assert len(records) == 1
    assert [(r.index, r.field) for r in rejected] == [(1, "date"), (2, "coin_or_project")]


def test_prepare_write_strict_rejects_batch():
    """測試 strict 寫入：任一無效即整批拒絕"""
    raws = [create_test_raw(), create_test_raw(date="yesterday")]

    with pytest.raises(RecordValidationError) as exc_info:
        prepare_write(raws, "strict")

    assert exc_info.value.issues == [(1, "date")]


def test_prepare_write_unknown_policy():
    """測試不支援的寫入策略"""
    with pytest.raises(ValueError):
        prepare_write([], "sometimes")


def test_prepare_write_rejects_duplicate_ids():
    """測試重複 id：只接受第一筆，之後的回報為 duplicate"""
    first = dict(create_test_raw(title="first"), id="same")
    raws = [first, dict(first, video_title="second"), create_test_raw(title="other")]

    records, rejected = prepare_write(raws, "lenient")

    assert [r.video_title for r in records] == ["first", "other"]
    assert [(r.index, r.field, r.reason) for r in rejected] == [(1, "id", "duplicate")]

    with pytest.raises(RecordValidationError) as exc_info:
        prepare_write(raws, "strict")

    assert exc_info.value.issues == [(1, "id")]


def test_prepare_write_rejects_duplicate_generated_ids():
    """測試沒有 id 時以 channel/title/date 產生的 id 也會檢查重複"""
    raws = [create_test_raw(), create_test_raw()]

    records, rejected = prepare_write(raws, "lenient")

    assert len(records) == 1
    assert [(r.index, r.field) for r in rejected] == [(1, "id")]
