import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from griva.database import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Content tables: written by the ingestion workers
# ---------------------------------------------------------------------------

class NewsArticle(Base):
    __tablename__ = "news_articles"

    id = Column(String, primary_key=True, default=new_id)
    url = Column(String, nullable=False, unique=True, index=True)  # dedup key
    title = Column(String(500), nullable=False)
    summary = Column(Text, nullable=True)
    source = Column(String, nullable=False)          # e.g. "OpenAI", "Hacker News"
    category = Column(String, nullable=True)          # e.g. "AI", "Dev"
    published_at = Column(DateTime, nullable=False, index=True)


class ResearchPaper(Base):
    __tablename__ = "research_papers"

    id = Column(String, primary_key=True, default=new_id)
    arxiv_id = Column(String, nullable=False, unique=True, index=True)  # dedup key
    title = Column(String(500), nullable=False)
    authors = Column(String(500), nullable=True)
    abstract = Column(Text, nullable=True)
    category = Column(String, nullable=True)
    pdf_url = Column(String, nullable=True)
    published_date = Column(DateTime, nullable=False, index=True)


class AIModel(Base):
    __tablename__ = "ai_models"

    id = Column(String, primary_key=True, default=new_id)
    hf_id = Column(String, nullable=False, unique=True, index=True)  # dedup key
    name = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    provider = Column(String, nullable=True)
    model_type = Column(String, nullable=True)        # mapped pipeline tag, e.g. "LLM"
    download_link = Column(String, nullable=True)
    tags = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)  # first seen


# ---------------------------------------------------------------------------
# Community tables: written by users
# ---------------------------------------------------------------------------

class Community(Base):
    __tablename__ = "communities"

    id = Column(String, primary_key=True, default=new_id)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, unique=True, index=True)
    description = Column(Text, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class CommunityMember(Base):
    __tablename__ = "community_members"
    __table_args__ = (UniqueConstraint("community_id", "user_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    community_id = Column(String, ForeignKey("communities.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, nullable=False, index=True)
    role = Column(String, nullable=False, default="member")  # admin | moderator | member
    joined_at = Column(DateTime, nullable=False, default=utcnow)


class Post(Base):
    __tablename__ = "posts"

    id = Column(String, primary_key=True, default=new_id)
    community_id = Column(String, ForeignKey("communities.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String, nullable=False, index=True)
    title = Column(String(300), nullable=False)
    content = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class PostInteraction(Base):
    __tablename__ = "post_interactions"
    # One row per (post, user); direction 0 means the interaction was toggled off
    __table_args__ = (UniqueConstraint("post_id", "user_id"),)

    id = Column(String, primary_key=True, default=new_id)
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, nullable=False, index=True)
    direction = Column(Integer, nullable=False)  # 1 = positive, -1 = negative, 0 = none
    updated_at = Column(DateTime, nullable=False, default=utcnow)


class CommunityBan(Base):
    __tablename__ = "community_bans"
    __table_args__ = (UniqueConstraint("community_id", "user_id"),)

    id = Column(String, primary_key=True, default=new_id)
    community_id = Column(String, ForeignKey("communities.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String, nullable=False, index=True)
    banned_by = Column(String, nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Response(Base):
    """A threaded reply to a post. parent_response_id is null for top-level responses."""
    __tablename__ = "responses"

    id = Column(String, primary_key=True, default=new_id)
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String, nullable=False, index=True)
    content = Column(Text, nullable=False)
    parent_response_id = Column(String, ForeignKey("responses.id", ondelete="CASCADE"), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow, index=True)


class PostReport(Base):
    __tablename__ = "post_reports"
    # One open report per (post, reporter); reporting again replaces the reason
    __table_args__ = (UniqueConstraint("post_id", "reported_by"),)

    id = Column(String, primary_key=True, default=new_id)
    post_id = Column(String, ForeignKey("posts.id", ondelete="CASCADE"), nullable=False, index=True)
    reported_by = Column(String, nullable=False)
    reason = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


# ---------------------------------------------------------------------------
# Cached platform metrics (single row, id = "global")
# ---------------------------------------------------------------------------

class PlatformMetrics(Base):
    __tablename__ = "platform_metrics"

    id = Column(String, primary_key=True)
    active_users = Column(Integer, nullable=False, default=0)
    daily_contributors = Column(Integer, nullable=False, default=0)
    total_documents = Column(Integer, nullable=False, default=0)
    total_posts = Column(Integer, nullable=False, default=0)
    total_papers = Column(Integer, nullable=False, default=0)
    total_models = Column(Integer, nullable=False, default=0)
    total_news = Column(Integer, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
