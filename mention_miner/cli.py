"""
CLI: Command Line Interface for Mention Miner

支援 init-config、aggregate、import、market、ask、watch 命令。
"""

import click
import json
import logging
from pathlib import Path
from datetime import datetime
from typing import Any, List, Optional, Union
import uuid

from mention_miner.config import MinerConfig
from mention_miner.dashboard import KnowledgeCache, build_dashboard
from mention_miner.errors import CollaboratorError, RecordValidationError
from mention_miner.faq import FaqClient
from mention_miner.market.client import CoinGeckoClient
from mention_miner.market.enricher import MarketEnricher
from mention_miner.market.service import MarketDataService
from mention_miner.models import DashboardView, RunMetadata
from mention_miner.polling import PollingLoop, Scheduler
from mention_miner.processing import projection
from mention_miner.processing.aggregate import aggregate_mentions
from mention_miner.processing.normalize import normalize_records
from mention_miner.storage.file_store import FileStore
from mention_miner.storage.pg_store import PostgresStore
from mention_miner.utils import hashing
from mention_miner.utils.time import DATE_WINDOWS, utcnow

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

KnowledgeStore = Union[FileStore, PostgresStore]


@click.group()
def cli():
    """Crypto mention aggregation CLI"""
    pass


@cli.command()
@click.option('--out', default='config.example.yaml', help='Output config file path')
def init_config(out: str):
    """產生範本設定檔"""

    example_path = Path(__file__).parent.parent / 'config.example.yaml'

    if example_path.exists():
        with open(example_path, 'r', encoding='utf-8') as f:
            content = f.read()
    else:
        content = """# Mention Miner Configuration
run_timezone: "UTC"
write_policy: "lenient"
storage:
  backend: "files"
  file_path: "memory/knowledge.json"
"""

    with open(out, 'w', encoding='utf-8') as f:
        f.write(content)

    click.echo(f"✓ Config file created: {out}")
    click.echo(f"  Edit this file and run: mention-miner aggregate --config {out}")


@cli.command()
@click.option('--config', required=True, help='Config YAML file path')
@click.option('--input', 'input_path', default=None, help='Raw records JSON (預設讀取 knowledge store)')
@click.option('--channel', 'channels', multiple=True, help='只計算指定頻道 (可重複)')
@click.option('--window', type=click.Choice(DATE_WINDOWS), default='all', help='日期視窗')
@click.option('--project', default=None, help='Trend 圖的 project (預設 rpoints 最高者)')
def aggregate(config: str, input_path: Optional[str], channels: List[str], window: str, project: Optional[str]):
    """計算 distributions / trends 並寫出 JSON"""

    click.echo("=" * 60)
    click.echo("Mention Miner: aggregation run")
    click.echo("=" * 60)

    logger.info(f"Loading config: {config}")
    cfg = MinerConfig.from_yaml(config)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    run_id = f"run_{timestamp}_{uuid.uuid4().hex[:8]}"
    logger.info(f"Run ID: {run_id}")

    output_dir = Path(cfg.output_dir) / run_id
    output_dir.mkdir(parents=True, exist_ok=True)

    run_meta = RunMetadata(
        run_id=run_id,
        generated_at=utcnow(),
        config_hash=hashing.config_hash(cfg.model_dump()),
        status="running",
        stats={}
    )

    try:
        # Step 1: Load
        logger.info("=" * 40)
        logger.info("STEP 1: Loading knowledge records")
        logger.info("=" * 40)

        raws = load_raw_records(cfg, input_path)
        click.echo(f"✓ Loaded {len(raws)} raw records")

        # Step 2: Normalize
        logger.info("=" * 40)
        logger.info("STEP 2: Normalizing records")
        logger.info("=" * 40)

        records, normalize_stats = normalize_records(raws)
        click.echo(f"✓ Normalized {normalize_stats['final_count']} records " +
                   f"({normalize_stats['skipped_records']} records, " +
                   f"{normalize_stats['skipped_mentions']} mentions skipped)")

        # Step 3: Aggregate
        logger.info("=" * 40)
        logger.info("STEP 3: Aggregating mentions")
        logger.info("=" * 40)

        view = build_dashboard(
            records,
            now=utcnow(),
            selected_channels=list(channels),
            date_window=window,
            selected_project=project,
            top_n=cfg.top_n_projects,
            recent_days=cfg.recent_days,
            merge_case_variants=cfg.merge_case_variants,
            tz_name=cfg.run_timezone
        )
        click.echo(f"✓ Aggregated {len(view.aggregate.project_distribution)} projects, " +
                   f"{len(view.aggregate.category_distribution)} categories " +
                   f"from {view.record_count} records")

        # Step 4: Write outputs
        logger.info("=" * 40)
        logger.info("STEP 4: Writing outputs")
        logger.info("=" * 40)

        run_meta.status = "completed"
        run_meta.stats = {
            'raw_count': normalize_stats['original_count'],
            'record_count': view.record_count,
            'skipped_records': normalize_stats['skipped_records'],
            'skipped_mentions': normalize_stats['skipped_mentions'],
            'project_count': len(view.aggregate.project_distribution),
            'category_count': len(view.aggregate.category_distribution),
            'channels': list(channels),
            'date_window': window,
        }

        write_output_files(output_dir, run_meta, view)
        click.echo(f"✓ Written outputs to {output_dir}")

        # Summary
        summary = view.aggregate.summary
        click.echo("\n" + "=" * 60)
        click.echo("RUN SUMMARY")
        click.echo("=" * 60)
        click.echo(f"Run ID: {run_id}")
        click.echo(f"Records: {view.record_count}")
        click.echo(f"Total R-points: {summary.total_rpoints:g}")
        click.echo(f"Total mentions: {summary.total_mentions}")
        click.echo(f"\nTop {len(view.top_projects)} Projects:")
        for i, entry in enumerate(view.top_projects, 1):
            click.echo(f"  {i}. {entry.name}: {entry.value:g}")
        click.echo("\nCategories:")
        for row in view.category_rows[:10]:
            click.echo(f"  {row.name}: {row.value:g} ({row.percentage:.1f}%)")
        if view.selected_project:
            click.echo(f"\nTrend: {view.selected_project} " +
                       f"({view.aggregate.rpoints_for(view.selected_project):g} R-points)")
            for point in view.trend:
                click.echo(f"  {point.date}: {point.rpoints:g}")

    except Exception as e:
        logger.error(f"Run failed: {e}", exc_info=True)
        run_meta.status = "failed"
        run_meta.stats['error'] = str(e)
        write_run_metadata(output_dir, run_meta)
        raise


@cli.command(name='import')
@click.option('--config', required=True, help='Config YAML file path')
@click.option('--input', 'input_path', required=True, help='Raw records JSON')
def import_records(config: str, input_path: str):
    """以新資料集取代 knowledge store"""

    cfg = MinerConfig.from_yaml(config)
    raws = read_json_records(input_path)
    storage = initialize_storage(cfg)

    try:
        report = storage.replace_records(raws)
    except RecordValidationError as e:
        for index, field in e.issues:
            click.echo(f"✗ record #{index}: {field}", err=True)
        raise click.ClickException(str(e))
    finally:
        if hasattr(storage, 'close'):
            storage.close()

    click.echo(f"✓ Written {report.written} records to {cfg.storage.backend} store")
    for rejected in report.rejected:
        click.echo(f"  skipped record #{rejected.index}: {rejected.field} ({rejected.reason})")


@cli.command()
@click.option('--config', required=True, help='Config YAML file path')
@click.option('--input', 'input_path', default=None, help='Raw records JSON (預設讀取 knowledge store)')
@click.option('--channel', 'channels', multiple=True, help='頻道選取 (可重複)')
@click.option('--search', default='', help='搜尋 coin 名稱')
@click.option('--tab', type=click.Choice(['all', 'nfts', 'categories']), default='all')
@click.option('--category', default=None, help='categories tab 的分類')
@click.option('--sort', 'sort_by', type=click.Choice(projection.MARKET_SORT_KEYS), default='rpoints')
@click.option('--order', type=click.Choice(projection.SORT_ORDERS), default='desc')
@click.option('--page', default=1, help='頁數')
def market(config: str, input_path: Optional[str], channels: List[str], search: str, tab: str,
           category: Optional[str], sort_by: str, order: str, page: int):
    """顯示結合 CoinGecko 市場資料的 coin 表"""

    cfg = MinerConfig.from_yaml(config)
    records, _ = normalize_records(load_raw_records(cfg, input_path))
    aggregate_result = aggregate_mentions(records, cfg.merge_case_variants)

    client = CoinGeckoClient(cfg.market)
    enricher = MarketEnricher(MarketDataService(client.fetch_markets).quote)
    try:
        enricher.refresh(entry.coin for entry in aggregate_result.coin_categories)
    finally:
        client.close()

    if enricher.last_error:
        raise click.ClickException(f"Market data unavailable: {enricher.last_error}")

    rows = projection.project_market_rows(
        aggregate_result,
        enricher.snapshot,
        selected_channels=list(channels),
        search=search,
        tab=tab,
        selected_category=category,
        sort_by=sort_by,
        order=order
    )
    result = projection.paginate(rows, page, cfg.page_size)

    if enricher.stale:
        click.echo("! Market data is stale (served from cache)")
    click.echo(f"{'Coin':<20} {'Price':>14} {'24h %':>8} {'Market Cap':>18} {'R-points':>10}")
    for row in result.items:
        price = f"${row.market.price:,.4f}" if row.has_market_data else "-"
        change = f"{row.market.percent_change_24h:.2f}" if row.has_market_data else "-"
        cap = f"${row.market.market_cap:,.0f}" if row.has_market_data else "-"
        click.echo(f"{row.coin:<20} {price:>14} {change:>8} {cap:>18} {row.rpoints:>10g}")
    click.echo(f"Page {result.page}/{result.total_pages} ({result.total} coins)")


@cli.command()
@click.option('--config', default=None, help='Config YAML file path')
@click.argument('question')
def ask(config: Optional[str], question: str):
    """向 AI answer 服務提問"""

    cfg = MinerConfig.from_yaml(config) if config else MinerConfig()
    try:
        client = FaqClient.from_config(cfg.faq)
    except ValueError as e:
        raise click.ClickException(str(e))

    try:
        result = client.ask(question)
    except (CollaboratorError, ValueError) as e:
        raise click.ClickException(str(e))
    finally:
        client.close()

    if result.is_useful:
        click.echo(result.answer)
    else:
        click.echo(result.message)


@cli.command()
@click.option('--config', required=True, help='Config YAML file path')
@click.option('--ticks', default=None, type=int, help='執行幾次 tick 後停止 (預設持續執行)')
def watch(config: str, ticks: Optional[int]):
    """持續 polling knowledge 與市場資料"""

    cfg = MinerConfig.from_yaml(config)
    storage = initialize_storage(cfg)
    cache = KnowledgeCache(storage.read_records)
    client = CoinGeckoClient(cfg.market)
    enricher = MarketEnricher(MarketDataService(client.fetch_markets).quote)

    def poll_knowledge():
        if cache.refresh(initial=cache.loaded_at is None):
            aggregate_result = aggregate_mentions(cache.records, cfg.merge_case_variants)
            click.echo(f"✓ {len(cache.records)} records, " +
                       f"{len(aggregate_result.project_distribution)} projects")
        for notification in cache.notifications:
            click.echo(f"[{notification.level}] {notification.message}")
            cache.dismiss(notification.id)

    def poll_market():
        coins = aggregate_mentions(cache.records, cfg.merge_case_variants).coin_categories
        if enricher.refresh(entry.coin for entry in coins):
            click.echo(f"✓ Market data updated ({len(enricher.snapshot)} coins)")
        if enricher.stale:
            click.echo("! Market data is stale")

    scheduler = Scheduler([
        PollingLoop("knowledge", cfg.knowledge_poll_seconds, poll_knowledge),
        PollingLoop("market", cfg.market_poll_seconds, poll_market),
    ])

    try:
        scheduler.run(max_ticks=ticks)
    except KeyboardInterrupt:
        scheduler.stop()
    finally:
        cache.close()
        enricher.close()
        client.close()
        if hasattr(storage, 'close'):
            storage.close()


def initialize_storage(cfg: MinerConfig) -> KnowledgeStore:
    """初始化 knowledge store（fail fast，不 fallback）"""
    if cfg.storage.backend == "postgres":
        dsn = cfg.get_postgres_dsn()
        if not dsn:
            raise click.ClickException(
                f"Postgres backend requires environment variable {cfg.storage.postgres_dsn or 'storage.postgres_dsn'}"
            )

        logger.info("Initializing Postgres storage...")
        return PostgresStore(dsn, table=cfg.storage.table, write_policy=cfg.write_policy)

    logger.info("Using file storage backend")
    return FileStore(cfg.storage.file_path, write_policy=cfg.write_policy)


def read_json_records(path: str) -> List[Any]:
    """讀取 raw records JSON (list 或 {id: record})"""
    with open(path, 'r', encoding='utf-8') as f:
        data = json.load(f)

    if isinstance(data, dict):
        return [dict(item, external_id=key) for key, item in data.items() if isinstance(item, dict)]
    if not isinstance(data, list):
        raise click.ClickException(f"{path}: expected a JSON list of records")
    return data


def load_raw_records(cfg: MinerConfig, input_path: Optional[str]) -> List[Any]:
    """--input 優先，否則讀取 knowledge store"""
    if input_path:
        return read_json_records(input_path)

    storage = initialize_storage(cfg)
    try:
        return storage.read_records()
    finally:
        if hasattr(storage, 'close'):
            storage.close()


def write_run_metadata(output_dir: Path, run_meta: RunMetadata):
    with open(output_dir / "run.json", 'w', encoding='utf-8') as f:
        json.dump(run_meta.model_dump(mode="json"), f, indent=2, ensure_ascii=False)


def write_output_files(output_dir: Path, run_meta: RunMetadata, view: DashboardView):
    """寫入輸出檔案"""

    # aggregate.json
    aggregate_file = output_dir / "aggregate.json"
    with open(aggregate_file, 'w', encoding='utf-8') as f:
        json.dump(view.aggregate.model_dump(mode="json"), f, indent=2, ensure_ascii=False)

    # categories.json
    categories_file = output_dir / "categories.json"
    with open(categories_file, 'w', encoding='utf-8') as f:
        data = {
            'distribution': [row.model_dump() for row in view.category_rows],
            'insights': [insight.model_dump() for insight in view.category_insights],
        }
        json.dump(data, f, indent=2, ensure_ascii=False)

    write_run_metadata(output_dir, run_meta)

    logger.info(f"Written: {aggregate_file}, {categories_file}")


if __name__ == "__main__":
    cli()
