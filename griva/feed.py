import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Mapping, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from griva.models import AIModel, NewsArticle, ResearchPaper
from griva.schemas import FeedItem, FeedItemType

logger = logging.getLogger(__name__)

# Rows fetched per content kind, and the cap on the merged list
PER_KIND_LIMIT = 30
FEED_LIMIT = 90


def _utc(value: datetime) -> datetime:
    # SQLite returns naive datetimes; everything stored is UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Normalization: one function per content kind, row mapping -> FeedItem
# ---------------------------------------------------------------------------

def normalize_news(row: Mapping) -> FeedItem:
    return FeedItem(
        id=row["id"],
        type=FeedItemType.NEWS,
        title=row["title"],
        subtitle=row["source"],
        description=row.get("summary"),
        url=row.get("url"),
        category=row.get("category"),
        timestamp=_utc(row["published_at"]),
    )


def normalize_paper(row: Mapping) -> FeedItem:
    url = row.get("pdf_url")
    if not url and row.get("arxiv_id"):
        url = f"https://arxiv.org/abs/{row['arxiv_id']}"
    return FeedItem(
        id=row["id"],
        type=FeedItemType.PAPER,
        title=row["title"],
        subtitle=row.get("authors") or "Unknown authors",
        description=row.get("abstract"),
        url=url,
        category=row.get("category"),
        timestamp=_utc(row["published_date"]),
    )


def normalize_model(row: Mapping) -> FeedItem:
    return FeedItem(
        id=row["id"],
        type=FeedItemType.MODEL,
        title=row["name"],
        subtitle=row.get("provider") or "Community",
        description=row.get("description"),
        url=row.get("download_link"),
        category=row.get("model_type"),
        timestamp=_utc(row["created_at"]),
    )


# kind -> (table, timestamp column, searchable columns, normalizer)
FEED_SOURCES = {
    FeedItemType.NEWS: (
        NewsArticle, NewsArticle.published_at,
        (NewsArticle.title, NewsArticle.summary),
        normalize_news,
    ),
    FeedItemType.PAPER: (
        ResearchPaper, ResearchPaper.published_date,
        (ResearchPaper.title, ResearchPaper.abstract, ResearchPaper.authors),
        normalize_paper,
    ),
    FeedItemType.MODEL: (
        AIModel, AIModel.created_at,
        (AIModel.name, AIModel.description, AIModel.provider),
        normalize_model,
    ),
}


def merge_feed(buckets: List[List[FeedItem]], limit: int = FEED_LIMIT) -> List[FeedItem]:
    """
    Concatenate per-kind buckets and sort by timestamp, newest first.
    The sort is stable, so items with equal timestamps keep bucket order.
    """
    merged = [item for bucket in buckets for item in bucket]
    merged.sort(key=lambda item: item.timestamp, reverse=True)
    return merged[:limit]


def get_feed_items(
    db: Session,
    filter: Optional[FeedItemType] = None,
    search: Optional[str] = None,
) -> List[FeedItem]:
    """
    Build the unified feed from the news, paper and model tables.

    Args:
        db: active SQLAlchemy session
        filter: restrict the feed to one content kind
        search: case-insensitive substring matched against each kind's text columns

    Returns:
        up to FEED_LIMIT items, newest first
    """
    buckets: List[List[FeedItem]] = []

    for kind, (model, timestamp_col, search_cols, normalize) in FEED_SOURCES.items():
        if filter and filter != kind:
            continue

        query = select(*model.__table__.c).order_by(timestamp_col.desc()).limit(PER_KIND_LIMIT)
        if search:
            query = query.where(or_(*(col.icontains(search, autoescape=True) for col in search_cols)))

        rows = db.execute(query).mappings().all()
        buckets.append([normalize(row) for row in rows])

    return merge_feed(buckets)


# ---------------------------------------------------------------------------
# Live updates
# ---------------------------------------------------------------------------

InsertHandler = Callable[[FeedItemType, Mapping], None]


class FeedBroadcaster:
    """
    In-process publish/subscribe for newly inserted content rows.
    The ingestion workers publish; LiveFeed instances subscribe.
    """

    def __init__(self):
        self._handlers: List[InsertHandler] = []

    def subscribe(self, handler: InsertHandler) -> Callable[[], None]:
        """Register a handler and return a callable that unregisters it."""
        self._handlers.append(handler)

        def unsubscribe():
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    def publish(self, kind: FeedItemType, rows: List[Mapping]) -> None:
        for row in rows:
            for handler in list(self._handlers):
                try:
                    handler(kind, row)
                except Exception as e:
                    # A broken subscriber must not fail the worker that published
                    logger.error(f"[Feed] Subscriber failed on {kind.value} insert: {e}")


NORMALIZERS: Dict[FeedItemType, Callable[[Mapping], FeedItem]] = {
    kind: normalize for kind, (_, _, _, normalize) in FEED_SOURCES.items()
}


class LiveFeed:
    """
    An in-memory feed list that stays current as rows are inserted.
    New items go to the head of the list; the list never exceeds `cap`.
    """

    def __init__(
        self,
        items: Optional[List[FeedItem]] = None,
        filter: Optional[FeedItemType] = None,
        cap: int = FEED_LIMIT,
    ):
        self.items: List[FeedItem] = list(items or [])[:cap]
        self.filter = filter
        self.cap = cap
        self.new_count = 0

    def on_insert(self, kind: FeedItemType, row: Mapping) -> None:
        if self.filter and self.filter != kind:
            return
        item = NORMALIZERS[kind](row)
        self.items = [item, *self.items][: self.cap]
        self.new_count += 1

    def attach(self, broadcaster: FeedBroadcaster) -> Callable[[], None]:
        return broadcaster.subscribe(self.on_insert)


# Shared broadcaster: workers publish here
broadcaster = FeedBroadcaster()
