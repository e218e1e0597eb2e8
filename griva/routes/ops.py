import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from griva.config import Settings, get_settings
from griva.database import get_db, get_session_factory
from griva.metrics import compute_metrics, get_metrics
from griva.schemas import IngestedCounts, IngestSummary, MetricsResponse, WorkerResult
from griva.workers import WORKER_NAMES, run_all_workers, run_worker

logger = logging.getLogger(__name__)

router = APIRouter()

SCHEDULE_DESCRIPTION = "every {interval}s via the app scheduler"


def _check_secret(secret: Optional[str], settings: Settings) -> None:
    """
    Reject the request before any work starts when the shared secret does not match.
    The comparison takes the same time wherever the first differing byte is.
    """
    if secret is None or not secrets.compare_digest(secret.encode(), settings.cron_secret.encode()):
        logger.warning("[/cron] Rejected trigger with invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("/cron")
async def cron(
    secret: Optional[str] = None,
    action: str = "status",
    settings: Settings = Depends(get_settings),
    db_factory=Depends(get_session_factory),
):
    """
    Manual trigger for the background workers.
    action=run runs all workers; news|papers|models|metrics runs one; anything else reports status.
    """
    _check_secret(secret, settings)
    started = datetime.now(timezone.utc).isoformat()

    if action == "run":
        outcomes = await run_all_workers(db_factory)
        return {"status": "completed", "started": started, "workers": [o.status for o in outcomes]}

    if action in ("news", "papers", "models"):
        result: WorkerResult = await run_worker(action, db_factory)
        logger.info(f"[/cron] {action}: {result.count} rows, {len(result.errors)} errors")
        return {"status": "completed", "started": started, **result.model_dump()}

    if action == "metrics":
        await run_worker("metrics", db_factory)
        return {"status": "completed", "started": started}

    return {
        "status": "scheduled",
        "schedule": SCHEDULE_DESCRIPTION.format(interval=settings.fetch_interval_seconds),
        "workers": WORKER_NAMES,
    }


@router.get("/ingest", response_model=IngestSummary)
async def ingest(
    secret: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    db_factory=Depends(get_session_factory),
):
    """Run every worker once and summarize what each ingested. A failed worker counts as zero."""
    _check_secret(secret, settings)
    started = datetime.now(timezone.utc)

    outcomes = {o.name: o for o in await run_all_workers(db_factory)}

    counts = {}
    errors = []
    for name in ("news", "papers", "models"):
        outcome = outcomes[name]
        result = outcome.result if outcome.status == "fulfilled" else WorkerResult(errors=[outcome.error])
        counts[name] = result.count
        errors.extend(result.errors)

    return IngestSummary(
        started=started,
        finished=datetime.now(timezone.utc),
        ingested=IngestedCounts(**counts),
        errors=errors,
    )


@router.get("/metrics", response_model=MetricsResponse)
def metrics(refresh: bool = False, db: Session = Depends(get_db)):
    """Cached platform metrics; refresh=true forces a recompute."""
    if refresh:
        return compute_metrics(db)

    cached = get_metrics(db)
    if cached is not None:
        return cached
    return compute_metrics(db)
