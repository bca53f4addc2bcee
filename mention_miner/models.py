"""
Core data models for Mention Miner

KnowledgeRecord / ProjectMention 是正規化後的唯一內部格式；
其餘為 aggregation 與 view projection 的輸出契約。
"""

from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field


class ProjectMention(BaseModel):
    """
    單一 mention (一部影片中提到的一個 coin/project)
    """
    coin_or_project: str = Field(..., description="Aggregation key (已 strip)")
    marketcap_bucket: str = Field(default="", description="micro|small|medium|large 或原始文字 (小寫)")
    rpoints: float = Field(default=0.0, ge=0, description="上游給的重要度分數 (>= 0)")
    total_count: int = Field(default=1, description="提及次數")
    categories: List[str] = Field(default_factory=list, description="分類標籤 (去重，保留首見順序)")


class KnowledgeRecord(BaseModel):
    """
    正規化後的 knowledge record (每部影片一筆)

    所有 ingestion 路徑都必須經過 normalize_record 才能產生此物件。
    """
    id: str = Field(..., description="穩定 ID")
    date: datetime = Field(..., description="影片時間 (UTC tz-aware)")
    channel_name: str = Field(default="Unknown", description="頻道名稱")
    video_title: str = Field(default="", description="影片標題")
    transcript: str = Field(default="", description="逐字稿 / 摘要 (不解析)")
    link: str = Field(default="", description="影片連結")
    project_mentions: List[ProjectMention] = Field(default_factory=list, description="依提及順序")

    class Config:
        json_schema_extra = {
            "example": {
                "id": "a1b2c3d4e5f60718",
                "date": "2024-01-01T00:00:00Z",
                "channel_name": "Crypto Banter",
                "video_title": "Top altcoins this week",
                "transcript": "...",
                "link": "https://youtube.com/watch?v=xyz",
                "project_mentions": [
                    {
                        "coin_or_project": "BTC",
                        "marketcap_bucket": "large",
                        "rpoints": 5,
                        "total_count": 3,
                        "categories": ["L1"]
                    }
                ]
            }
        }


class ProjectDistributionEntry(BaseModel):
    """每個 project 的 rpoints 總和"""
    name: str
    value: float


class CategoryDistributionEntry(BaseModel):
    """每個 category 的 mention 次數"""
    name: str
    value: int


class TrendPoint(BaseModel):
    """Trend series 的單日資料點"""
    date: str = Field(..., description="UTC 日期 YYYY-MM-DD")
    rpoints: float = Field(..., description="當日 rpoints 總和")


class TimelinePoint(BaseModel):
    """Channel timeline 的單日資料點"""
    date: str
    value: float


class CoinCategoryEntry(BaseModel):
    """Coin -> 分類集合"""
    coin: str
    categories: List[str] = Field(default_factory=list)


class ChannelSummary(BaseModel):
    """頻道範圍的總覽統計"""
    total_rpoints: float = 0.0
    total_mentions: int = 0
    unique_coins: List[str] = Field(default_factory=list)
    unique_categories: List[str] = Field(default_factory=list)
    timeline: List[TimelinePoint] = Field(default_factory=list, description="每日 rpoints 總和 (日期遞增)")


class MentionAggregate(BaseModel):
    """
    Aggregator 的輸出 (每次重新計算，不做增量更新)
    """
    project_distribution: List[ProjectDistributionEntry] = Field(default_factory=list)
    category_distribution: List[CategoryDistributionEntry] = Field(default_factory=list)
    project_trends: Dict[str, List[TrendPoint]] = Field(default_factory=dict)
    coin_categories: List[CoinCategoryEntry] = Field(default_factory=list)
    coin_channels: Dict[str, List[str]] = Field(default_factory=dict, description="coin -> 提及的頻道")
    summary: ChannelSummary = Field(default_factory=ChannelSummary)

    def rpoints_for(self, name: str) -> float:
        """查詢單一 project 的 rpoints (不存在回傳 0)"""
        for entry in self.project_distribution:
            if entry.name == name:
                return entry.value
        return 0.0


class MarketcapDistribution(BaseModel):
    """Category 內各 marketcap bucket 的 mention 數"""
    large: int = 0
    medium: int = 0
    small: int = 0


class CategoryInsight(BaseModel):
    """Category 分析頁的單一分類"""
    name: str
    coins: List[str] = Field(default_factory=list)
    total_rpoints: float = 0.0
    mentions: int = 0
    marketcap_distribution: MarketcapDistribution = Field(default_factory=MarketcapDistribution)
    recent_activity: int = Field(default=0, description="最近 N 天內的 mention 數")


class CoinMarketData(BaseModel):
    """單一 coin 的即時市場資料"""
    id: str
    name: str
    symbol: str
    price: float = 0.0
    market_cap: float = 0.0
    volume_24h: float = 0.0
    percent_change_24h: float = 0.0
    circulating_supply: float = 0.0

    @classmethod
    def placeholder(cls, coin: str) -> "CoinMarketData":
        """沒有對應市場資料時的零值 row"""
        return cls(id=coin, name=coin, symbol=coin)


class MarketQuoteResponse(BaseModel):
    """Market-data collaborator 的回應"""
    data: Dict[str, CoinMarketData] = Field(default_factory=dict, description="key 為查詢時的 coin 名稱")
    timestamp: int = Field(..., description="epoch milliseconds")
    is_fresh: bool = Field(default=True, description="False 表示使用快取 (上游失敗)")


class CoinCategoryRow(BaseModel):
    """Coin categories 表的一列"""
    coin: str
    categories: List[str] = Field(default_factory=list)
    rpoints: float = 0.0


class MarketRow(BaseModel):
    """Combined market table 的一列"""
    coin: str
    categories: List[str] = Field(default_factory=list)
    channels: List[str] = Field(default_factory=list)
    rpoints: float = 0.0
    market: CoinMarketData
    has_market_data: bool = False


class CategoryRow(BaseModel):
    """Category 分布表的一列"""
    name: str
    value: float
    percentage: float = Field(..., description="佔目前顯示總和的百分比 (1 位小數)")
    bar_width: float = Field(..., description="相對最大值的比例 (0-100)")


class Page(BaseModel):
    """分頁結果"""
    items: List[Any] = Field(default_factory=list)
    page: int = 1
    page_size: int = 10
    total: int = 0
    total_pages: int = 1


class RejectedRecord(BaseModel):
    """寫入時被拒絕的 record"""
    index: int
    field: str
    reason: str = "missing"


class WriteReport(BaseModel):
    """Knowledge store 寫入結果"""
    written: int = 0
    rejected: List[RejectedRecord] = Field(default_factory=list)
    written_at: Optional[datetime] = None


class FaqAnswer(BaseModel):
    """AI answer collaborator 的結果"""
    question: str
    answer: str
    is_useful: bool = True
    message: Optional[str] = Field(None, description="給使用者的提示 (例如請換個問法)")


class Notification(BaseModel):
    """可關閉的使用者通知"""
    id: int
    level: str = Field(default="info", description="info|success|error")
    message: str
    created_at: datetime
    dismissed: bool = False


class RunMetadata(BaseModel):
    """CLI aggregate 執行的中繼資料"""
    run_id: str
    generated_at: datetime
    config_hash: str
    status: str = Field(default="running")

    # 統計資訊
    stats: Dict[str, Any] = Field(default_factory=dict, description="讀取數、略過數、project 數等")


class DashboardView(BaseModel):
    """Dashboard 一次渲染所需的資料 (依目前的 filters 重新計算)"""
    record_count: int = 0
    channels: List[str] = Field(default_factory=list, description="所有可選頻道")
    selected_channels: List[str] = Field(default_factory=list)
    aggregate: MentionAggregate = Field(default_factory=MentionAggregate)
    top_projects: List[ProjectDistributionEntry] = Field(default_factory=list)
    category_rows: List[CategoryRow] = Field(default_factory=list)
    selected_project: Optional[str] = None
    trend: List[TrendPoint] = Field(default_factory=list)
    category_insights: List[CategoryInsight] = Field(default_factory=list)
