"""
Background ingestion workers.

Each worker pulls one category of external source, normalizes the records and
upserts them into its content table. Failures are recorded per source and
returned as data; a worker never raises for a partial failure.

Used by:
    - griva.scheduler.WorkerScheduler   (timer, started with the app)
    - griva.routes.ops                  (/cron and /ingest manual triggers)
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from griva.config import get_settings
from griva.database import SessionLocal, dialect_insert
from griva.feed import broadcaster
from griva.fetcher import (
    ARXIV_FEEDS,
    HF_PIPELINE_TAGS,
    NEWS_ENTRIES_PER_FEED,
    NEWS_FEEDS,
    PAPER_ENTRIES_PER_FEED,
    fetch_feed,
    fetch_hub_models,
    model_from_hub,
    news_from_entry,
    paper_from_entry,
)
from griva.metrics import compute_metrics
from griva.models import AIModel, NewsArticle, ResearchPaper, new_id, utcnow
from griva.schemas import FeedItemType, WorkerResult

logger = logging.getLogger(__name__)

WORKER_NAMES = ["news", "papers", "models", "metrics"]

# Model-hub discovery queries, merged into one dedup map per run
HF_TOP_DOWNLOADS = {"sort": "downloads", "limit": "500"}
HF_PER_TAG_LIMIT = "100"
HF_TOP_LIKES = {"sort": "likes", "limit": "300"}

# Rows per INSERT statement, keeps SQLite under its bound-parameter limit
UPSERT_CHUNK_SIZE = 500


# ---------------------------------------------------------------------------
# Upserts: blocking, the workers call them through asyncio.to_thread
# ---------------------------------------------------------------------------

def _insert_ignoring_duplicates(db: Session, model, rows: List[dict], key: str) -> List[Dict[str, Any]]:
    """INSERT ... ON CONFLICT (key) DO NOTHING. Returns only the rows actually inserted."""
    stmt = (
        dialect_insert(db, model)
        .values(rows)
        .on_conflict_do_nothing(index_elements=[key])
        .returning(*model.__table__.c)
    )
    inserted = [dict(row) for row in db.execute(stmt).mappings().all()]
    db.commit()
    return inserted


def _upsert_models(db: Session, rows: List[dict]) -> List[Dict[str, Any]]:
    """
    INSERT ... ON CONFLICT (hf_id) DO UPDATE for every model row.
    id and created_at are never overwritten. Returns the rows that were new.
    """
    hf_ids = [row["hf_id"] for row in rows]
    existing = set()
    for start in range(0, len(hf_ids), UPSERT_CHUNK_SIZE):
        chunk = hf_ids[start:start + UPSERT_CHUNK_SIZE]
        existing.update(db.scalars(select(AIModel.hf_id).where(AIModel.hf_id.in_(chunk))))

    for start in range(0, len(rows), UPSERT_CHUNK_SIZE):
        stmt = dialect_insert(db, AIModel).values(rows[start:start + UPSERT_CHUNK_SIZE])
        stmt = stmt.on_conflict_do_update(
            index_elements=["hf_id"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "provider": stmt.excluded.provider,
                "model_type": stmt.excluded.model_type,
                "download_link": stmt.excluded.download_link,
                "tags": stmt.excluded.tags,
            },
        )
        db.execute(stmt)
    db.commit()

    return [row for row in rows if row["hf_id"] not in existing]


# ---------------------------------------------------------------------------
# Worker: News (RSS feeds)
# ---------------------------------------------------------------------------

async def run_news_worker(db_factory=None, feeds=None) -> WorkerResult:
    logger.info("[Worker:News] Starting...")
    db_factory = db_factory or SessionLocal
    feeds = NEWS_FEEDS if feeds is None else feeds
    timeout = get_settings().news_timeout_seconds
    result = WorkerResult()

    db: Session = db_factory()
    try:
        for feed in feeds:
            try:
                parsed = await fetch_feed(feed.url, timeout, feed.source)
                articles = [
                    article
                    for article in (news_from_entry(e, feed) for e in parsed.entries[:NEWS_ENTRIES_PER_FEED])
                    if article is not None
                ]
                if not articles:
                    continue

                rows = [{"id": new_id(), **a.model_dump()} for a in articles]
                inserted = await asyncio.to_thread(_insert_ignoring_duplicates, db, NewsArticle, rows, "url")
                result.count += len(rows)
                broadcaster.publish(FeedItemType.NEWS, inserted)

            except Exception as e:
                db.rollback()
                result.errors.append(f"News[{feed.source}]: {e}")
                logger.error(f"[Worker:News] {feed.source} failed: {e}")
    finally:
        db.close()

    logger.info(f"[Worker:News] Done: {result.count} articles, {len(result.errors)} errors")
    return result


# ---------------------------------------------------------------------------
# Worker: Research papers (arXiv RSS)
# ---------------------------------------------------------------------------

async def run_papers_worker(db_factory=None, feeds=None) -> WorkerResult:
    logger.info("[Worker:Papers] Starting...")
    db_factory = db_factory or SessionLocal
    feeds = ARXIV_FEEDS if feeds is None else feeds
    timeout = get_settings().papers_timeout_seconds
    result = WorkerResult()

    db: Session = db_factory()
    try:
        for feed in feeds:
            try:
                parsed = await fetch_feed(feed.url, timeout, feed.category)
                papers = [
                    paper
                    for paper in (paper_from_entry(e, feed) for e in parsed.entries[:PAPER_ENTRIES_PER_FEED])
                    if paper is not None
                ]
                if not papers:
                    continue

                # Publications are immutable once listed: duplicates are ignored
                rows = [{"id": new_id(), **p.model_dump()} for p in papers]
                inserted = await asyncio.to_thread(_insert_ignoring_duplicates, db, ResearchPaper, rows, "arxiv_id")
                result.count += len(rows)
                broadcaster.publish(FeedItemType.PAPER, inserted)

            except Exception as e:
                db.rollback()
                result.errors.append(f"Papers[{feed.category}]: {e}")
                logger.error(f"[Worker:Papers] {feed.category} failed: {e}")
    finally:
        db.close()

    logger.info(f"[Worker:Papers] Done: {result.count} papers, {len(result.errors)} errors")
    return result


# ---------------------------------------------------------------------------
# Worker: AI models (model-hub catalog API)
# ---------------------------------------------------------------------------

async def run_models_worker(db_factory=None, pipeline_tags=None) -> WorkerResult:
    logger.info("[Worker:Models] Starting...")
    db_factory = db_factory or SessionLocal
    pipeline_tags = HF_PIPELINE_TAGS if pipeline_tags is None else pipeline_tags
    timeout = get_settings().models_timeout_seconds
    result = WorkerResult()

    queries = [("trending", HF_TOP_DOWNLOADS)]
    queries += [(tag, {"filter": tag, "sort": "downloads", "limit": HF_PER_TAG_LIMIT}) for tag in pipeline_tags]
    queries.append(("most-liked", HF_TOP_LIKES))

    # Later queries overwrite earlier ones for the same hub id
    seen: Dict[str, dict] = {}
    for label, params in queries:
        try:
            for data in await fetch_hub_models(params, timeout):
                model = model_from_hub(data)
                seen[model.hf_id] = model.model_dump()
        except Exception as e:
            result.errors.append(f"Models[{label}]: {e}")
            logger.error(f"[Worker:Models] {label} fetch failed: {e}")

    if not seen:
        logger.info(f"[Worker:Models] Done: 0 models, {len(result.errors)} errors")
        return result

    now = utcnow()
    rows = [{"id": new_id(), "created_at": now, **row} for row in seen.values()]

    db: Session = db_factory()
    try:
        inserted = await asyncio.to_thread(_upsert_models, db, rows)
        result.count = len(rows)
        broadcaster.publish(FeedItemType.MODEL, inserted)
    except Exception as e:
        db.rollback()
        result.errors.append(f"Models[upsert]: {e}")
        logger.error(f"[Worker:Models] upsert failed: {e}")
    finally:
        db.close()

    logger.info(f"[Worker:Models] Done: {result.count} models, {len(result.errors)} errors")
    return result


# ---------------------------------------------------------------------------
# Worker: Metrics
# ---------------------------------------------------------------------------

async def run_metrics_worker(db_factory=None) -> None:
    logger.info("[Worker:Metrics] Starting...")
    db: Session = (db_factory or SessionLocal)()
    try:
        await asyncio.to_thread(compute_metrics, db)
        logger.info("[Worker:Metrics] Done")
    except Exception as e:
        db.rollback()
        logger.error(f"[Worker:Metrics] Failed: {e}")
    finally:
        db.close()


# ---------------------------------------------------------------------------
# Run all workers concurrently
# ---------------------------------------------------------------------------

@dataclass
class WorkerOutcome:
    name: str
    status: str                       # "fulfilled" | "rejected"
    result: Optional[WorkerResult] = None
    error: Optional[str] = None


async def run_worker(name: str, db_factory=None):
    """Run a single worker by name."""
    if name == "news":
        return await run_news_worker(db_factory)
    if name == "papers":
        return await run_papers_worker(db_factory)
    if name == "models":
        return await run_models_worker(db_factory)
    if name == "metrics":
        return await run_metrics_worker(db_factory)
    raise ValueError(f"Unknown worker: {name}")


async def run_all_workers(db_factory=None) -> List[WorkerOutcome]:
    """
    Run the four workers concurrently. Each outcome is captured independently:
    one worker raising never hides the others' results.
    """
    results = await asyncio.gather(
        *(run_worker(name, db_factory) for name in WORKER_NAMES),
        return_exceptions=True,
    )

    outcomes = []
    for name, value in zip(WORKER_NAMES, results):
        if isinstance(value, BaseException):
            logger.error(f"[Workers] {name} rejected: {value}")
            outcomes.append(WorkerOutcome(name=name, status="rejected", error=str(value)))
        else:
            outcomes.append(WorkerOutcome(name=name, status="fulfilled", result=value))
    return outcomes
