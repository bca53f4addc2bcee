"""Hashing utilities for record IDs and change detection."""

import hashlib
import json
from typing import Dict, List, Any


def record_id(channel_name: str, video_title: str, date_str: str) -> str:
    """
    產生穩定的 record ID (原始資料沒有 id 時使用)

    Args:
        channel_name: 頻道名稱
        video_title: 影片標題
        date_str: 原始日期字串

    Returns:
        SHA256 hash (hex, 前 16 字元)
    """
    # 正規化：小寫、去除多餘空白
    normalized = f"{channel_name.lower().strip()}|{video_title.lower().strip()}|{date_str.strip()}"
    normalized = " ".join(normalized.split())

    return hashlib.sha256(normalized.encode('utf-8')).hexdigest()[:16]


def payload_fingerprint(payload: List[Dict[str, Any]]) -> str:
    """
    產生資料集指紋，用於判斷 poll 到的資料是否有變動

    Args:
        payload: 原始 records

    Returns:
        SHA256 hash (hex)
    """
    # 確保穩定性：使用 sorted JSON dumps
    json_str = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(json_str.encode('utf-8')).hexdigest()


# 不影響 aggregation 結果的設定
VOLATILE_CONFIG_KEYS = ('output_dir', 'page_size', 'knowledge_poll_seconds', 'market_poll_seconds', 'faq')


def config_hash(config_dict: Dict[str, Any]) -> str:
    """同樣的 aggregation 設定 -> 同樣的 hash (前 16 字元)"""
    relevant = {k: v for k, v in config_dict.items() if k not in VOLATILE_CONFIG_KEYS}
    encoded = json.dumps(relevant, sort_keys=True, ensure_ascii=False, default=str).encode('utf-8')
    return hashlib.sha256(encoded).hexdigest()[:16]
