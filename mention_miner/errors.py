"""
Error taxonomy

- MalformedRecordError: 單筆 record / mention 無法正規化 (讀取路徑：記 log 後略過)
- RecordValidationError: 寫入時整批驗證失敗 (列出 index + 欄位)
- CollaboratorError: 外部系統 (knowledge store / CoinGecko / AI answer) 傳輸失敗
"""

from typing import List, Optional, Tuple


class MentionMinerError(Exception):
    """所有錯誤的基底類別"""


class MalformedRecordError(MentionMinerError):
    """無法解析的必要欄位"""

    def __init__(self, field: str, reason: str = "missing", index: Optional[int] = None):
        self.field = field
        self.reason = reason
        self.index = index
        location = f" (record #{index})" if index is not None else ""
        super().__init__(f"Unresolvable field '{field}': {reason}{location}")


class RecordValidationError(MentionMinerError):
    """寫入驗證失敗，不做任何部分寫入"""

    def __init__(self, issues: List[Tuple[int, str]]):
        self.issues = issues
        listing = ", ".join(f"#{index}:{field}" for index, field in issues)
        super().__init__(f"{len(issues)} invalid record field(s): {listing}")


class CollaboratorError(MentionMinerError):
    """外部 collaborator 呼叫失敗"""

    def __init__(self, collaborator: str, message: str):
        self.collaborator = collaborator
        super().__init__(f"{collaborator}: {message}")
