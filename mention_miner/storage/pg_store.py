"""
Postgres knowledge store with automatic schema initialization

使用 psycopg2-binary。replace_records 在單一 transaction 內 delete + bulk insert，
失敗時 rollback，不會留下部分寫入。
"""

from typing import Any, Dict, List
import logging
import psycopg2
from psycopg2 import sql
from psycopg2.extras import RealDictCursor, execute_values
import json

from mention_miner.errors import CollaboratorError
from mention_miner.models import WriteReport
from mention_miner.processing.normalize import prepare_write
from mention_miner.utils.time import utcnow

logger = logging.getLogger(__name__)


class PostgresStore:
    """Postgres 儲存後端（不 fallback，fail fast）"""

    def __init__(
        self,
        dsn: str,
        table: str = "knowledge",
        write_policy: str = "lenient",
        auto_init_schema: bool = True
    ):
        """
        初始化 PostgresStore

        Args:
            dsn: Postgres connection string
            table: table 名稱
            write_policy: lenient | strict
            auto_init_schema: 是否自動建立 schema
        """
        self.dsn = dsn
        self.table = table
        self.write_policy = write_policy
        self.conn = None
        self._connect()

        if auto_init_schema:
            self.init_schema()

    def _connect(self):
        """建立資料庫連線（連線失敗直接拋出異常，不 fallback）"""
        try:
            self.conn = psycopg2.connect(self.dsn)
            self.conn.autocommit = False  # 使用 transaction
            logger.info("✓ Connected to Postgres")
        except psycopg2.Error as e:
            logger.error(f"✗ Failed to connect to Postgres: {e}")
            raise CollaboratorError("postgres", f"connection failed (no fallback): {e}")

    def init_schema(self):
        """初始化資料庫 schema（若表不存在則建立）"""
        ddl = sql.SQL("""
        CREATE TABLE IF NOT EXISTS {table} (
            id TEXT PRIMARY KEY,
            title TEXT,
            content TEXT,
            channel TEXT NOT NULL,
            link TEXT,
            publish_date TIMESTAMPTZ NOT NULL,
            sorted JSONB NOT NULL DEFAULT '[]'::jsonb,
            created_at TIMESTAMPTZ NOT NULL DEFAULT now()
        );

        CREATE INDEX IF NOT EXISTS {index} ON {table}(created_at DESC);
        """).format(
            table=sql.Identifier(self.table),
            index=sql.Identifier(f"idx_{self.table}_created_at")
        )

        self._execute_in_transaction(lambda cur: cur.execute(ddl), "initialize schema")
        logger.info("✓ Schema initialized successfully")

    def _execute_in_transaction(self, work, action: str):
        try:
            with self.conn.cursor() as cur:
                result = work(cur)
            self.conn.commit()
            return result
        except psycopg2.Error as e:
            self.conn.rollback()
            logger.error(f"Failed to {action}: {e}")
            raise CollaboratorError("postgres", f"{action} failed: {e}")

    def read_records(self) -> List[Dict[str, Any]]:
        """讀取所有 records (新到舊，stored 形狀)"""
        query = sql.SQL("""
        SELECT id, title, content, channel, link, publish_date, sorted
        FROM {table}
        ORDER BY created_at DESC, publish_date DESC
        """).format(table=sql.Identifier(self.table))

        try:
            with self.conn.cursor(cursor_factory=RealDictCursor) as cur:
                cur.execute(query)
                rows = cur.fetchall()
            self.conn.commit()
        except psycopg2.Error as e:
            self.conn.rollback()
            logger.error(f"Failed to read knowledge: {e}")
            raise CollaboratorError("postgres", f"read failed: {e}")

        logger.info(f"Read {len(rows)} records from {self.table}")
        return [dict(row) for row in rows]

    def replace_records(self, raws: List[Any]) -> WriteReport:
        """
        以新資料集取代整張表

        Args:
            raws: 原始 records (寫入前會重新正規化)

        Returns:
            WriteReport

        Raises:
            RecordValidationError: strict 模式下有無效 record
            CollaboratorError: 資料庫錯誤 (已 rollback)
        """
        records, rejected = prepare_write(raws, self.write_policy)
        written_at = utcnow()

        delete_sql = sql.SQL("DELETE FROM {table}").format(table=sql.Identifier(self.table))
        insert_sql = sql.SQL("""
        INSERT INTO {table} (id, title, content, channel, link, publish_date, sorted, created_at)
        VALUES %s
        ON CONFLICT (id) DO UPDATE SET
            title = EXCLUDED.title,
            content = EXCLUDED.content,
            channel = EXCLUDED.channel,
            link = EXCLUDED.link,
            publish_date = EXCLUDED.publish_date,
            sorted = EXCLUDED.sorted
        """).format(table=sql.Identifier(self.table))

        values = [
            (
                record.id, record.video_title, record.transcript, record.channel_name,
                record.link, record.date,
                json.dumps([m.model_dump() for m in record.project_mentions], ensure_ascii=False),
                written_at
            )
            for record in records
        ]

        def work(cur):
            cur.execute(delete_sql)
            if values:
                execute_values(cur, insert_sql.as_string(cur), values)

        self._execute_in_transaction(work, "replace knowledge")
        logger.info(f"✓ Replaced {self.table} with {len(records)} records ({len(rejected)} rejected)")

        return WriteReport(written=len(records), rejected=rejected, written_at=written_at)

    def close(self):
        """關閉連線"""
        if self.conn:
            self.conn.close()
            logger.info("Postgres connection closed")
