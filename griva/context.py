from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from griva.models import NewsArticle, Post, ResearchPaper

QUERY_MAX_LENGTH = 50
SNIPPET_MAX_LENGTH = 200


def retrieve_context(db: Session, query: str, limit: int = 3) -> Optional[str]:
    """
    Keyword retrieval across community posts, papers and news for grounding
    an assistant prompt. Returns one snippet per line, or None when nothing matches.
    """
    term = (query or "").strip()[:QUERY_MAX_LENGTH]
    if not term:
        return None

    def matching(*cols):
        return or_(*(col.icontains(term, autoescape=True) for col in cols))

    results: List[str] = []

    posts = db.execute(
        select(Post.title, Post.content).where(matching(Post.title, Post.content)).limit(limit)
    )
    for title, content in posts:
        results.append(f"[Community Post] {title}: {(content or '')[:SNIPPET_MAX_LENGTH]}")

    papers = db.execute(
        select(ResearchPaper.title, ResearchPaper.authors, ResearchPaper.abstract)
        .where(matching(ResearchPaper.title, ResearchPaper.abstract))
        .limit(limit)
    )
    for title, authors, abstract in papers:
        results.append(
            f'[Research Paper] "{title}" by {authors or "Unknown"}: {(abstract or "")[:SNIPPET_MAX_LENGTH]}'
        )

    news = db.execute(
        select(NewsArticle.title, NewsArticle.source, NewsArticle.summary)
        .where(matching(NewsArticle.title, NewsArticle.summary))
        .limit(limit)
    )
    for title, source, summary in news:
        results.append(f"[News: {source}] {title}: {(summary or '')[:SNIPPET_MAX_LENGTH]}")

    return "\n\n".join(results) if results else None
