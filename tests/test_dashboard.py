"""
Tests for the knowledge cache and dashboard view
"""

from datetime import datetime, timezone

from mention_miner.dashboard import KnowledgeCache, build_dashboard
from mention_miner.errors import CollaboratorError
from mention_miner.processing.normalize import normalize_records
from mention_miner.storage.file_store import FileStore

NOW = datetime(2024, 1, 10, tzinfo=timezone.utc)


def create_test_raw(channel: str, date: str, projects: list) -> dict:
    """Helper to create raw record (projects: (coin, rpoints, categories))"""
    return {
        "channel name": channel,
        "video_title": f"{channel} {date}",
        "date": date,
        "llm_answer": {"projects": [
            {"coin_or_project": coin, "rpoints": points, "category": categories}
            for coin, points, categories in projects
        ]},
    }


class FakeSource:
    """可切換資料/失敗的 knowledge collaborator"""

    def __init__(self, raws):
        self.raws = raws
        self.fail = False

    def __call__(self):
        if self.fail:
            raise CollaboratorError("knowledge", "connection refused")
        return self.raws


def test_initial_load_without_notification():
    """測試初始載入不發送通知"""
    source = FakeSource([create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])])])
    cache = KnowledgeCache(source, clock=lambda: NOW)

    assert cache.refresh(initial=True)

    assert len(cache.records) == 1
    assert cache.loaded_at == NOW
    assert cache.notifications == []
    assert not cache.is_loading


def test_unchanged_data_not_replaced():
    """測試資料沒變時不替換"""
    source = FakeSource([create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])])])
    cache = KnowledgeCache(source, clock=lambda: NOW)
    cache.refresh(initial=True)

    assert not cache.refresh()
    assert cache.notifications == []


def test_new_data_notifies():
    """測試有新資料時發送通知"""
    source = FakeSource([create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])])])
    cache = KnowledgeCache(source, clock=lambda: NOW)
    cache.refresh(initial=True)

    source.raws = source.raws + [create_test_raw("Y", "2024-01-02", [("ETH", 1, [])])]

    assert cache.refresh()
    assert len(cache.records) == 2
    assert [(n.level, n.message) for n in cache.notifications] == [("success", "New knowledge data received!")]


def test_keeps_last_good_on_error():
    """測試失敗時保留上一次成功的資料並發送可關閉的通知"""
    source = FakeSource([create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])])])
    cache = KnowledgeCache(source, clock=lambda: NOW)
    cache.refresh(initial=True)

    source.fail = True
    assert not cache.refresh()

    assert len(cache.records) == 1
    assert "connection refused" in cache.error
    notification = cache.notifications[0]
    assert notification.level == "error"
    assert notification.message == "Failed to fetch updates"

    cache.dismiss(notification.id)
    assert cache.notifications == []


def test_corrupt_knowledge_file_keeps_last_good(tmp_path):
    """測試 knowledge 檔案損毀時保留上一次成功的資料"""
    store = FileStore(str(tmp_path / "knowledge.json"))
    store.replace_records([create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])])])
    cache = KnowledgeCache(store.read_records, clock=lambda: NOW)
    assert cache.refresh(initial=True)

    (tmp_path / "knowledge.json").write_text('[{"broken": ', encoding="utf-8")

    assert not cache.refresh()
    assert len(cache.records) == 1
    assert cache.error is not None
    assert [(n.level, n.message) for n in cache.notifications] == [("error", "Failed to fetch updates")]


def test_closed_cache_ignores_refresh():
    """測試 close() 後不再更新"""
    source = FakeSource([create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])])])
    cache = KnowledgeCache(source)
    cache.close()

    assert not cache.refresh(initial=True)
    assert cache.records == []


def test_build_dashboard():
    """測試 dashboard view 組合"""
    records, _ = normalize_records([
        create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])]),
        create_test_raw("X", "2024-01-02", [("BTC", 3, ["L1", "DeFi"])]),
        create_test_raw("Y", "2024-01-09", [("PEPE", 10, ["Meme"])]),
    ])

    view = build_dashboard(records, NOW)

    assert view.record_count == 3
    assert view.channels == ["X", "Y"]
    assert view.selected_project == "PEPE"
    assert [e.name for e in view.top_projects] == ["PEPE", "BTC"]
    assert sum(r.percentage for r in view.category_rows) == 100.0
    assert [c.name for c in view.category_insights] == ["Meme", "L1", "DeFi"]


def test_build_dashboard_channel_scope():
    """測試頻道範圍與指定 trend project"""
    records, _ = normalize_records([
        create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])]),
        create_test_raw("X", "2024-01-02", [("BTC", 3, ["L1", "DeFi"])]),
        create_test_raw("Y", "2024-01-09", [("PEPE", 10, ["Meme"])]),
    ])

    view = build_dashboard(records, NOW, selected_channels=["X"], selected_project="BTC")

    assert view.record_count == 2
    assert view.channels == ["X", "Y"]
    assert [(e.name, e.value) for e in view.top_projects] == [("BTC", 8)]
    assert [(p.date, p.rpoints) for p in view.trend] == [("2024-01-01", 5), ("2024-01-02", 3)]

    view = build_dashboard(records, NOW, selected_channels=["X"], selected_project="PEPE")
    assert view.selected_project == "BTC"


def test_build_dashboard_merged_insight_coins():
    """測試合併大小寫時 category 分析與 coin categories 名稱一致"""
    records, _ = normalize_records([
        create_test_raw("X", "2024-01-01", [("BTC", 5, ["L1"])]),
        create_test_raw("X", "2024-01-02", [("btc", 3, ["L1"])]),
    ])

    view = build_dashboard(records, NOW, merge_case_variants=True)

    assert [e.coin for e in view.aggregate.coin_categories] == ["BTC"]
    assert view.category_insights[0].coins == ["BTC"]
