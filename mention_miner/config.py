"""
Configuration schemas using Pydantic

定義完整的配置結構，包含 knowledge store、CoinGecko、AI answer 與 polling 設定。
"""

from typing import Optional, Literal
from pydantic import BaseModel, Field
import os


class StorageConfig(BaseModel):
    """Knowledge store 後端設定"""
    backend: Literal["files", "postgres"] = Field(default="files", description="儲存後端")
    file_path: str = Field(default="memory/knowledge.json", description="files 後端的 JSON 檔")
    postgres_dsn: Optional[str] = Field(None, description="Postgres DSN (環境變數名稱)")
    table: str = Field(default="knowledge", description="Postgres table 名稱")


class MarketConfig(BaseModel):
    """CoinGecko 市場資料設定"""
    base_url: str = Field(default="https://api.coingecko.com/api/v3", description="API base URL")
    vs_currency: str = Field(default="usd", description="計價幣別")
    per_page: int = Field(default=250, description="一次取回的 coin 數 (依市值排序)")
    timeout_seconds: float = Field(default=30.0, description="Request timeout")


class FaqConfig(BaseModel):
    """AI answer collaborator 設定 (值為環境變數名稱)"""
    endpoint_env: str = Field(default="RELEVANCE_ENDPOINT", description="Endpoint 環境變數")
    api_key_env: str = Field(default="RELEVANCE_API_KEY", description="API key 環境變數")
    project_id_env: str = Field(default="RELEVANCE_PROJECT_ID", description="Project ID 環境變數")
    timeout_seconds: float = Field(default=60.0, description="Request timeout")


class MinerConfig(BaseModel):
    """完整設定 schema"""
    # 基本設定
    run_timezone: str = Field(default="UTC", description="日期視窗使用的時區")
    output_dir: str = Field(default="out", description="輸出目錄")
    top_n_projects: int = Field(default=10, description="圖表顯示的 Top N projects")
    page_size: int = Field(default=10, description="列表每頁筆數")
    recent_days: int = Field(default=7, description="Category recent activity 天數")

    # Polling
    knowledge_poll_seconds: float = Field(default=30.0, description="Knowledge 重新讀取間隔")
    market_poll_seconds: float = Field(default=15.0, description="市場資料重新讀取間隔")

    # Aggregation key 正規化
    merge_case_variants: bool = Field(
        default=False,
        description="預設區分大小寫；true 時以 trim + casefold 合併 coin 名稱 (顯示第一次出現的寫法)"
    )

    # 寫入策略
    write_policy: Literal["lenient", "strict"] = Field(
        default="lenient",
        description="lenient: 略過並回報無效 record；strict: 任一無效即整批拒絕"
    )

    storage: StorageConfig = Field(default_factory=StorageConfig, description="Knowledge store 設定")
    market: MarketConfig = Field(default_factory=MarketConfig, description="CoinGecko 設定")
    faq: FaqConfig = Field(default_factory=FaqConfig, description="AI answer 設定")

    @classmethod
    def from_yaml(cls, yaml_path: str) -> "MinerConfig":
        """從 YAML 檔案載入設定"""
        import yaml
        with open(yaml_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def get_postgres_dsn(self) -> Optional[str]:
        """取得 Postgres DSN (從環境變數)"""
        if self.storage.postgres_dsn:
            return os.environ.get(self.storage.postgres_dsn)
        return None
