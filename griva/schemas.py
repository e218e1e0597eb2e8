from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Ingestion boundary: one shape per content kind, produced by the fetcher
# ---------------------------------------------------------------------------

class NewsArticleIngest(BaseModel):
    """A news item as it is written to news_articles."""
    url: str
    title: str = Field(max_length=500)
    summary: Optional[str] = Field(default=None, max_length=1000)
    source: str
    category: Optional[str] = None
    published_at: datetime


class ResearchPaperIngest(BaseModel):
    """An arXiv listing as it is written to research_papers."""
    arxiv_id: str
    title: str = Field(max_length=500)
    authors: Optional[str] = Field(default=None, max_length=500)
    abstract: Optional[str] = Field(default=None, max_length=2000)
    category: Optional[str] = None
    pdf_url: Optional[str] = None
    published_date: datetime


class AIModelIngest(BaseModel):
    """A model-hub catalog entry as it is written to ai_models."""
    hf_id: str
    name: str
    description: Optional[str] = None
    provider: Optional[str] = None
    model_type: Optional[str] = None
    download_link: Optional[str] = None
    tags: List[str] = []


# ---------------------------------------------------------------------------
# Unified feed
# ---------------------------------------------------------------------------

class FeedItemType(str, Enum):
    NEWS = "news"
    PAPER = "paper"
    MODEL = "model"


class FeedItem(BaseModel):
    id: str
    type: FeedItemType
    title: str
    subtitle: str                       # source / authors / provider
    description: Optional[str] = None
    url: Optional[str] = None
    category: Optional[str] = None
    timestamp: datetime                 # always timezone-aware UTC


class ContextResponse(BaseModel):
    context: Optional[str] = None


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------

class WorkerResult(BaseModel):
    count: int = 0
    errors: List[str] = []


class IngestedCounts(BaseModel):
    news: int
    papers: int
    models: int


class IngestSummary(BaseModel):
    success: bool = True
    started: datetime
    finished: datetime
    ingested: IngestedCounts
    errors: List[str]


class MetricsResponse(BaseModel):
    active_users: int
    daily_contributors: int
    total_documents: int
    total_posts: int
    total_papers: int
    total_models: int
    total_news: int
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Community
# ---------------------------------------------------------------------------

class CommunityCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    slug: str = Field(min_length=1, max_length=100, pattern=r"^[a-z0-9-]+$")
    description: Optional[str] = None


class CommunityResponse(BaseModel):
    id: str
    name: str
    slug: str
    description: Optional[str] = None
    created_by: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PostCreate(BaseModel):
    title: str = Field(min_length=1, max_length=300)
    content: Optional[str] = None


class PostResponse(BaseModel):
    id: str
    community_id: str
    author_id: str
    title: str
    content: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RankedPostResponse(PostResponse):
    """A post with its interaction counters and hot score, used for the 'hot' listing."""
    positive_count: int
    negative_count: int
    hot_score: float


class InteractionRequest(BaseModel):
    direction: Literal[1, -1]


class InteractionResponse(BaseModel):
    post_id: str
    direction: int  # resulting state: 1, -1 or 0 when toggled off


class InteractionCounts(BaseModel):
    positive: int
    negative: int
    net: int


class CommunitySummary(CommunityResponse):
    member_count: int = 0


class MemberResponse(BaseModel):
    user_id: str
    role: str
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleUpdate(BaseModel):
    role: Literal["moderator", "member"]


class BanCreate(BaseModel):
    user_id: str = Field(min_length=1)
    reason: Optional[str] = Field(default=None, max_length=500)


class ReportCreate(BaseModel):
    reason: str = Field(min_length=1, max_length=500)


class ReportResponse(BaseModel):
    id: str
    post_id: str
    reported_by: str
    reason: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Responses (threaded replies to posts)
# ---------------------------------------------------------------------------

class ResponseCreate(BaseModel):
    content: str = Field(min_length=1, max_length=10000)
    parent_response_id: Optional[str] = None


class ResponseOut(BaseModel):
    id: str
    post_id: str
    author_id: str
    content: str
    parent_response_id: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ResponseThread(ResponseOut):
    replies: List["ResponseThread"] = []


ResponseThread.model_rebuild()
