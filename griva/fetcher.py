import asyncio
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

import feedparser
import requests

from griva.errors import FetchError
from griva.schemas import AIModelIngest, NewsArticleIngest, ResearchPaperIngest

logger = logging.getLogger(__name__)

HF_API_URL = "https://huggingface.co/api/models"

FEED_HEADERS = {
    "User-Agent": "GrivaBot/1.0",
    "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
}

# Per-field storage limits
TITLE_MAX_LENGTH = 500
SUMMARY_MAX_LENGTH = 1000
ABSTRACT_MAX_LENGTH = 2000
AUTHORS_MAX_LENGTH = 500

# Entries taken from each feed per run
NEWS_ENTRIES_PER_FEED = 50
PAPER_ENTRIES_PER_FEED = 100


# ---------------------------------------------------------------------------
# Source descriptors: add or remove entries here to enable/disable sources
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NewsFeed:
    url: str
    category: str
    source: str


@dataclass(frozen=True)
class ArxivFeed:
    url: str
    category: str


NEWS_FEEDS: List[NewsFeed] = [
    # Core AI company blogs
    NewsFeed("https://blog.google/technology/ai/rss/", "AI", "Google AI Blog"),
    NewsFeed("https://openai.com/blog/rss.xml", "AI", "OpenAI"),
    NewsFeed("https://www.anthropic.com/rss.xml", "AI", "Anthropic"),
    NewsFeed("https://deepmind.google/blog/feed/basic/", "AI", "DeepMind"),
    NewsFeed("https://ai.meta.com/blog/rss/", "AI", "Meta AI"),
    NewsFeed("https://blogs.microsoft.com/ai/feed/", "AI", "Microsoft AI"),
    NewsFeed("https://aws.amazon.com/blogs/machine-learning/feed/", "AI", "AWS ML Blog"),
    NewsFeed("https://huggingface.co/blog/feed.xml", "AI", "HuggingFace"),
    NewsFeed("https://blogs.nvidia.com/feed/", "AI", "NVIDIA Blog"),
    # AI & tech news
    NewsFeed("https://techcrunch.com/category/artificial-intelligence/feed/", "AI", "TechCrunch AI"),
    NewsFeed("https://www.technologyreview.com/feed/", "Tech", "MIT Tech Review"),
    NewsFeed("https://venturebeat.com/category/ai/feed/", "AI", "VentureBeat AI"),
    NewsFeed("https://www.theverge.com/rss/ai-artificial-intelligence/index.xml", "AI", "The Verge AI"),
    NewsFeed("https://www.wired.com/feed/tag/ai/latest/rss", "Tech", "Wired AI"),
    NewsFeed("https://feeds.arstechnica.com/arstechnica/technology-lab", "Tech", "Ars Technica"),
    NewsFeed("https://feed.infoq.com/ai-ml-data-eng/", "AI", "InfoQ AI/ML"),
    # Developer community
    NewsFeed("https://news.ycombinator.com/rss", "Dev", "Hacker News"),
    NewsFeed("https://dev.to/feed/tag/ai", "Dev", "dev.to AI"),
    NewsFeed("https://dev.to/feed/tag/machinelearning", "AI", "dev.to ML"),
    NewsFeed("https://dev.to/feed/tag/llm", "AI", "dev.to LLM"),
    NewsFeed("https://github.blog/feed/", "Dev", "GitHub Blog"),
    NewsFeed("https://stackoverflow.blog/feed/", "Dev", "Stack Overflow"),
    # Research & deep dives
    NewsFeed("https://www.kdnuggets.com/feed", "AI", "KDnuggets"),
    NewsFeed("https://towardsdatascience.com/feed", "AI", "Towards Data Science"),
    NewsFeed("https://simonwillison.net/atom/everything/", "AI", "Simon Willison"),
    NewsFeed("https://lilianweng.github.io/index.xml", "AI", "Lilian Weng"),
]

ARXIV_FEEDS: List[ArxivFeed] = [
    ArxivFeed("https://rss.arxiv.org/rss/cs.AI", "Artificial Intelligence"),
    ArxivFeed("https://rss.arxiv.org/rss/cs.LG", "Machine Learning"),
    ArxivFeed("https://rss.arxiv.org/rss/cs.CL", "NLP"),
    ArxivFeed("https://rss.arxiv.org/rss/cs.CV", "Computer Vision"),
    ArxivFeed("https://rss.arxiv.org/rss/cs.RO", "Robotics"),
    ArxivFeed("https://rss.arxiv.org/rss/cs.NE", "Neural Computing"),
    ArxivFeed("https://rss.arxiv.org/rss/stat.ML", "Statistics ML"),
    ArxivFeed("https://rss.arxiv.org/rss/cs.IR", "Information Retrieval"),
]

# Pipeline tags queried one by one for catalog breadth
HF_PIPELINE_TAGS: List[str] = [
    "text-generation",
    "text2text-generation",
    "text-to-image",
    "image-to-image",
    "image-classification",
    "object-detection",
    "image-segmentation",
    "automatic-speech-recognition",
    "text-to-speech",
    "audio-classification",
    "text-classification",
    "token-classification",
    "question-answering",
    "summarization",
    "translation",
    "fill-mask",
    "sentence-similarity",
    "feature-extraction",
    "zero-shot-classification",
    "reinforcement-learning",
    "tabular-classification",
    "depth-estimation",
    "video-classification",
]

PIPELINE_TAG_CATEGORIES: Dict[str, str] = {
    "text-generation":              "LLM",
    "text2text-generation":         "LLM",
    "fill-mask":                    "LLM",
    "text-to-image":                "Image",
    "image-classification":         "Vision",
    "object-detection":             "Vision",
    "automatic-speech-recognition": "Audio",
    "text-to-speech":               "Audio",
    "text-classification":          "NLP",
    "token-classification":         "NLP",
    "question-answering":           "NLP",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def strip_html(text: Optional[str]) -> str:
    """Remove HTML tags from a string, returning clean plain text."""
    return re.sub(r"<[^>]+>", "", text or "").strip()


def parse_date(entry) -> datetime:
    """
    Extract a UTC datetime from a feedparser entry.
    Falls back to the current time if no date is found.
    """
    parsed = getattr(entry, "published_parsed", None) or getattr(entry, "updated_parsed", None)
    if parsed:
        return datetime(*parsed[:6], tzinfo=timezone.utc)
    return datetime.now(timezone.utc)


def entry_body(entry) -> str:
    """RSS body may be in 'summary' or nested inside 'content'."""
    return (
        entry.get("summary")
        or (entry.get("content") or [{}])[0].get("value")
        or ""
    )


def parse_arxiv_id(link: str) -> str:
    """'https://arxiv.org/abs/2401.01234v1' -> '2401.01234v1'"""
    return re.sub(r"https?://arxiv\.org/abs/", "", link or "").strip()


def map_pipeline_tag(tag: Optional[str]) -> str:
    """Map a hub pipeline tag to a display category, e.g. 'text-generation' -> 'LLM'."""
    if not tag:
        return "General"
    if tag in PIPELINE_TAG_CATEGORIES:
        return PIPELINE_TAG_CATEGORIES[tag]
    return tag.replace("-", " ").title()


# ---------------------------------------------------------------------------
# Transforms: raw source records -> ingestion schemas
# ---------------------------------------------------------------------------

def news_from_entry(entry, feed: NewsFeed) -> Optional[NewsArticleIngest]:
    link = entry.get("link")
    if not link:
        logger.warning(f"[{feed.source}] Skipping entry with no link")
        return None

    summary = strip_html(entry_body(entry))[:SUMMARY_MAX_LENGTH]
    return NewsArticleIngest(
        url=link,
        title=(entry.get("title") or "").strip()[:TITLE_MAX_LENGTH],
        summary=summary or None,
        source=feed.source,
        category=feed.category,
        published_at=parse_date(entry),
    )


def paper_from_entry(entry, feed: ArxivFeed) -> Optional[ResearchPaperIngest]:
    arxiv_id = parse_arxiv_id(entry.get("link"))
    if not arxiv_id:
        logger.warning(f"[{feed.category}] Skipping paper with no link")
        return None

    title = (entry.get("title") or "").replace("\n", " ").strip()
    abstract = strip_html(entry_body(entry))[:ABSTRACT_MAX_LENGTH]
    return ResearchPaperIngest(
        arxiv_id=arxiv_id,
        title=title[:TITLE_MAX_LENGTH],
        authors=(entry.get("author") or "Unknown")[:AUTHORS_MAX_LENGTH],
        abstract=abstract or None,
        category=feed.category,
        pdf_url=f"https://arxiv.org/pdf/{arxiv_id}",
        published_date=parse_date(entry),
    )


def model_from_hub(data: dict) -> AIModelIngest:
    hf_id = data["id"]
    pipeline_tag = data.get("pipeline_tag")
    downloads = data.get("downloads") or 0
    return AIModelIngest(
        hf_id=hf_id,
        name=data.get("modelId") or hf_id,
        description=f"{pipeline_tag or 'General'} model · {downloads:,} downloads",
        provider=hf_id.split("/")[0] or "Community",
        model_type=map_pipeline_tag(pipeline_tag),
        download_link=f"https://huggingface.co/{hf_id}",
        tags=(data.get("tags") or [])[:5],
    )


# ---------------------------------------------------------------------------
# Fetching: blocking I/O runs in a thread, raced against a timeout
# ---------------------------------------------------------------------------

def download_feed(url: str, timeout: float):
    """
    GET a feed with a socket timeout and parse the body.
    The timeout bounds every connect and read, so the calling thread always returns.
    """
    response = requests.get(url, timeout=timeout, headers=FEED_HEADERS)
    response.raise_for_status()
    return feedparser.parse(response.content)


async def fetch_feed(url: str, timeout: float, label: str):
    """
    Download and parse an RSS/Atom feed.
    Raises FetchError on timeout, HTTP error status, or an unparseable feed.
    """
    try:
        feed = await asyncio.wait_for(asyncio.to_thread(download_feed, url, timeout), timeout)
    except (asyncio.TimeoutError, requests.Timeout):
        raise FetchError(f"Timeout after {timeout:g}s: {label}")
    except requests.HTTPError as e:
        status = e.response.status_code if e.response is not None else "error"
        raise FetchError(f"HTTP {status}: {label}")

    if feed.get("bozo") and not feed.get("entries"):
        raise FetchError(f"Unparseable feed: {feed.get('bozo_exception')}")
    return feed


def _get_hub_models(params: Dict[str, str], timeout: float) -> List[dict]:
    response = requests.get(
        HF_API_URL,
        params=params,
        timeout=timeout,
        headers={"Accept": "application/json"},
    )
    response.raise_for_status()
    return response.json()


async def fetch_hub_models(params: Dict[str, str], timeout: float) -> List[dict]:
    """Query the model-hub catalog API. Raises on timeout or a non-2xx response."""
    try:
        return await asyncio.wait_for(asyncio.to_thread(_get_hub_models, params, timeout), timeout)
    except (asyncio.TimeoutError, requests.Timeout):
        raise FetchError(f"Timeout after {timeout:g}s: {params}")
