"""
FastAPI REST API for CatIndexer

Read-only HTTP access to the OP_CAT index: checkpoint, totals, per-height
series and the matched transactions at a height.  Must not run while a
scan is writing to the same database.
"""

from typing import Optional, List
import os
import time

from fastapi import FastAPI, HTTPException, Query, Path, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel

from catindexer import version_short
from catindexer.server.metrics import MetricNames, get_metrics

# App instance
app = FastAPI(
    title="CatIndexer REST API",
    description="Read-only API over the OP_CAT transaction index",
    version=version_short,
    docs_url="/docs",
    redoc_url="/redoc",
)

MAX_SERIES_HEIGHTS = 10000


@app.middleware("http")
async def _api_key_middleware(request: Request, call_next):
    if request.url.path.startswith('/health'):
        return await call_next(request)

    required_key = os.getenv('REST_API_KEY', '').strip()
    if required_key and request.headers.get('x-api-key') != required_key:
        return JSONResponse(status_code=401, content={'detail': 'Unauthorized'})
    return await call_next(request)


# Set by the serve command on startup
_cat_index = None
_report = None
_start_time = time.time()


def set_indexer(cat_index, report):
    """Set the index and report references from the main process."""
    global _cat_index, _report
    _cat_index = cat_index
    _report = report


def _require_index():
    if _cat_index is None or _report is None:
        raise HTTPException(status_code=503, detail="Index not available")


def _check_range(start, end):
    if end - start > MAX_SERIES_HEIGHTS:
        raise HTTPException(status_code=400,
                            detail=f"Range exceeds {MAX_SERIES_HEIGHTS} heights")


# =============================================================================
# RESPONSE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    status: str
    uptime_seconds: float
    database: str
    checkpoint: Optional[int] = None


class CheckpointResponse(BaseModel):
    checkpoint: int
    index_till: int


class TotalResponse(BaseModel):
    start: int
    end: int
    total: int


class SeriesPoint(BaseModel):
    height: int
    count: int


class SeriesResponse(BaseModel):
    start: int
    end: int
    points: List[SeriesPoint]


class HeightResponse(BaseModel):
    height: int
    count: int
    txids: List[str]


class HeightsResponse(BaseModel):
    count: int
    first: Optional[int] = None
    last: Optional[int] = None


# =============================================================================
# HEALTH
# =============================================================================

@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check():
    """Check API health and database connectivity."""
    uptime = time.time() - _start_time

    db_status = "connected" if _cat_index else "disconnected"
    checkpoint = None

    if _cat_index:
        try:
            checkpoint = _cat_index.get_checkpoint()
        except Exception:
            db_status = "error"

    return HealthResponse(
        status="healthy" if db_status == "connected" else "degraded",
        uptime_seconds=round(uptime, 2),
        database=db_status,
        checkpoint=checkpoint,
    )


@app.get("/health/live", tags=["Health"])
async def health_live():
    return {"status": "alive"}


@app.get("/metrics", response_class=PlainTextResponse, tags=["Health"])
def metrics():
    """Prometheus metrics; index gauges are read from the database."""
    collector = get_metrics()
    if _cat_index is not None:
        collector.set_gauge(MetricNames.CHECKPOINT_HEIGHT, _cat_index.get_checkpoint())
    return collector.generate_metrics()


# =============================================================================
# INDEX
# =============================================================================

@app.get("/checkpoint", response_model=CheckpointResponse, tags=["Index"])
def get_checkpoint():
    """Next height to scan, and the first height beyond the safety margin."""
    _require_index()
    return CheckpointResponse(
        checkpoint=_cat_index.get_checkpoint(),
        index_till=_report.index_till(),
    )


@app.get("/heights", response_model=HeightsResponse, tags=["Index"])
def get_heights():
    """Number and bounds of the heights with a stored entry."""
    _require_index()
    heights = _cat_index.heights()
    if not heights:
        return HeightsResponse(count=0)
    return HeightsResponse(count=len(heights), first=heights[0], last=heights[-1])


@app.get("/cats/total", response_model=TotalResponse, tags=["Index"])
def get_total_cat_txs(
    start: Optional[int] = Query(default=None, ge=0),
    end: Optional[int] = Query(default=None, ge=0),
):
    """Number of OP_CAT transactions in [start, end)."""
    _require_index()
    start = _report.start_block if start is None else start
    end = _report.index_till() if end is None else end
    _check_range(start, end)
    return TotalResponse(start=start, end=end,
                         total=_report.get_total_cat_txs(start, end))


@app.get("/cats/series", response_model=SeriesResponse, tags=["Index"])
def get_cats_in_range(
    start: int = Query(..., ge=0),
    end: int = Query(..., ge=0),
):
    """Per-height OP_CAT counts in [start, end), zero-filled."""
    _require_index()
    _check_range(start, end)
    points = [SeriesPoint(height=height, count=count)
              for height, count in _report.get_cats_in_range(start, end)]
    return SeriesResponse(start=start, end=end, points=points)


@app.get("/cats/{height}", response_model=HeightResponse, tags=["Index"])
def get_cats_at_height(height: int = Path(..., ge=0)):
    """Matched transaction ids at a height."""
    _require_index()
    matches = _cat_index.get_matches(height)
    txids = sorted(matches)
    return HeightResponse(height=height, count=len(txids), txids=txids)


def create_app():
    """Factory function to create the FastAPI app."""
    return app
