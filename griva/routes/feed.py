import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from griva.context import retrieve_context
from griva.database import get_db
from griva.feed import get_feed_items
from griva.schemas import ContextResponse, FeedItem, FeedItemType

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/feed", response_model=List[FeedItem])
def feed(
    type: Optional[FeedItemType] = None,
    q: Optional[str] = Query(default=None, max_length=200),
    db: Session = Depends(get_db),
):
    """Unified news/paper/model feed, newest first, optionally filtered by kind and search text."""
    items = get_feed_items(db, filter=type, search=q or None)
    logger.info(f"[/feed] Returning {len(items)} items (type={type.value if type else 'all'}, q={q!r})")
    return items


@router.get("/context", response_model=ContextResponse)
def context(q: str = Query(min_length=1, max_length=500), db: Session = Depends(get_db)):
    """Keyword-matched snippets from posts, papers and news."""
    return ContextResponse(context=retrieve_context(db, q))
