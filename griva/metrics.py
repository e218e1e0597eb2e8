import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, union
from sqlalchemy.orm import Session

from griva.models import AIModel, NewsArticle, PlatformMetrics, Post, PostInteraction, ResearchPaper

logger = logging.getLogger(__name__)

METRICS_ROW_ID = "global"


def _count(db: Session, model) -> int:
    return db.scalar(select(func.count()).select_from(model)) or 0


def compute_metrics(db: Session, now: Optional[datetime] = None) -> PlatformMetrics:
    """
    Recompute platform counters from the live tables and store them in the
    cached platform_metrics row.
    """
    now = now or datetime.now(timezone.utc)
    # Stored datetimes are naive UTC on SQLite; compare against naive UTC midnight
    today_start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0, tzinfo=None)

    total_posts = _count(db, Post)
    total_papers = _count(db, ResearchPaper)
    total_models = _count(db, AIModel)
    total_news = _count(db, NewsArticle)

    posted_today = select(Post.author_id.label("user_id")).where(Post.created_at >= today_start)
    interacted_today = select(PostInteraction.user_id).where(PostInteraction.updated_at >= today_start)

    posted = posted_today.subquery()
    daily_contributors = db.scalar(select(func.count(func.distinct(posted.c.user_id)))) or 0
    active_users = db.scalar(
        select(func.count()).select_from(union(posted_today, interacted_today).subquery())
    ) or 0

    metrics = db.get(PlatformMetrics, METRICS_ROW_ID)
    if metrics is None:
        metrics = PlatformMetrics(id=METRICS_ROW_ID)
        db.add(metrics)
    metrics.active_users = active_users
    metrics.daily_contributors = daily_contributors
    metrics.total_posts = total_posts
    metrics.total_papers = total_papers
    metrics.total_models = total_models
    metrics.total_news = total_news
    metrics.total_documents = total_posts + total_papers + total_models + total_news
    metrics.updated_at = now

    db.commit()

    logger.info(
        f"[Metrics] documents={metrics.total_documents} "
        f"contributors={daily_contributors} active={active_users}"
    )
    return metrics


def get_metrics(db: Session) -> Optional[PlatformMetrics]:
    """Return the cached metrics row, or None if metrics were never computed."""
    return db.get(PlatformMetrics, METRICS_ROW_ID)
