"""
File-based knowledge store

整份 knowledge 資料集存成單一 JSON 檔 (canonical 形狀)。
"""

import json
import os
from typing import Any, Dict, List
from pathlib import Path
import logging

from mention_miner.errors import CollaboratorError
from mention_miner.models import KnowledgeRecord, WriteReport
from mention_miner.processing.normalize import prepare_write
from mention_miner.utils.time import utcnow

logger = logging.getLogger(__name__)


class FileStore:
    """檔案儲存後端"""

    def __init__(self, file_path: str = "memory/knowledge.json", write_policy: str = "lenient"):
        """
        初始化 FileStore

        Args:
            file_path: JSON 檔路徑
            write_policy: lenient | strict
        """
        self.file_path = Path(file_path)
        self.write_policy = write_policy

        # 建立目錄
        self.file_path.parent.mkdir(parents=True, exist_ok=True)

        logger.info(f"FileStore initialized at {self.file_path}")

    def read_records(self) -> List[Dict[str, Any]]:
        """
        讀取所有原始 records (新到舊)

        Raises:
            CollaboratorError: 檔案無法讀取、JSON 損毀或格式不是 list / dict
        """
        if not self.file_path.exists():
            return []

        try:
            with open(self.file_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read knowledge file {self.file_path}: {e}")
            raise CollaboratorError("knowledge-file", f"read failed: {e}")

        if isinstance(data, dict):
            # 舊版 upload 格式：{external_id: record}
            data = [dict(item, external_id=key) for key, item in data.items() if isinstance(item, dict)]

        if not isinstance(data, list):
            raise CollaboratorError("knowledge-file", f"unexpected payload type {type(data).__name__}")

        return data

    def replace_records(self, raws: List[Any]) -> WriteReport:
        """
        以新資料集取代整份檔案

        先寫入暫存檔再 rename，不會留下寫一半的檔案。

        Args:
            raws: 原始 records (寫入前會重新正規化)

        Returns:
            WriteReport

        Raises:
            RecordValidationError: strict 模式下有無效 record
        """
        records, rejected = prepare_write(raws, self.write_policy)
        written_at = utcnow()

        payload = [_to_stored(record) for record in records]
        payload.sort(key=lambda item: item['date'], reverse=True)

        tmp_path = self.file_path.with_suffix(self.file_path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(payload, f, indent=2, ensure_ascii=False, default=str)
        os.replace(tmp_path, self.file_path)

        logger.info(f"Written {len(records)} records ({len(rejected)} rejected): {self.file_path}")
        return WriteReport(written=len(records), rejected=rejected, written_at=written_at)


def _to_stored(record: KnowledgeRecord) -> Dict[str, Any]:
    return record.model_dump(mode="json")
