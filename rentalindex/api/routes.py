# rentalindex/api/routes.py
import math
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response, StreamingResponse
from sqlalchemy.orm import Session

from .. import analytics, config, crud, schemas, volatility
from ..db import SessionLocal, get_db
from ..errors import PipelineError
from ..events import TERMINAL, EventChannel, sse_frame
from ..jobs.orchestrator import start_job_thread, validate_job
from ..query import InvalidFilter, ListingQuery, resolve_property_types
from ..utils import logger, utcnow

router = APIRouter()

RANGES = {"30d": 30, "90d": 90, "180d": 180, "365d": 365}


def get_session_factory():
    """Session factory handed to background jobs."""
    return SessionLocal


def get_adapter_factory():
    # None: jobs build their own adapters from the registry
    return None


@router.get("/health")
def health():
    return {"status": "ok"}


# ---------- jobs ----------

@router.post("/jobs/run")
async def run_job(
    request: Request,
    job: str = Query(...),
    source: Optional[str] = Query(None),
    session_factory=Depends(get_session_factory),
    adapter_factory=Depends(get_adapter_factory),
):
    """Start a job in the background and stream its events as server-sent events."""
    try:
        validate_job(job, source)
    except PipelineError as e:
        raise HTTPException(status_code=400, detail=str(e))

    channel = EventChannel()
    start_job_thread(job, source, channel, session_factory, adapter_factory)
    logger.info("Started job %s (source=%s)", job, source)

    async def stream():
        finished = False
        try:
            while True:
                if await request.is_disconnected():
                    logger.info("Client left job %s; cancelling", job)
                    break
                event = await run_in_threadpool(channel.get, 0.5)
                if event is None:
                    continue
                yield sse_frame(event)
                if isinstance(event, TERMINAL):
                    finished = True
                    break
        finally:
            # stream torn down before the job ended: stop it from fetching more
            if not finished:
                channel.cancel.set()

    return StreamingResponse(
        stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.get("/job-runs", response_model=List[schemas.JobRunOut])
def job_runs(
    limit: int = Query(50, ge=1, le=100),
    job_type: Optional[str] = Query(None, alias="jobType"),
    db: Session = Depends(get_db),
):
    return crud.list_job_runs(db, limit=limit, job_type=job_type)


# ---------- listings ----------

@router.get("/listings", response_model=schemas.ListingPage)
def listings(
    page: int = Query(1, ge=1),
    limit: int = Query(25, ge=1, le=100),
    source: Optional[str] = Query(None),
    property_type: Optional[str] = Query(None, alias="propertyType"),
    district: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    sort: str = Query("lastSeenAt"),
    order: str = Query("desc", pattern="^(asc|desc)$"),
    active_only: bool = Query(False, alias="activeOnly"),
    db: Session = Depends(get_db),
):
    q = ListingQuery(
        source=source, property_type=property_type, district=district, search=search,
        sort=sort, order=order, active_only=active_only,
    )
    try:
        res = crud.list_listings(db, q, page=page, limit=limit)
    except InvalidFilter as e:
        raise HTTPException(status_code=400, detail=str(e))
    return schemas.ListingPage(
        listings=[schemas.ListingOut.model_validate(obj) for obj in res["items"]],
        total=res["total"],
        page=res["page"],
        limit=res["limit"],
        total_pages=math.ceil(res["total"] / res["limit"]) if res["total"] else 0,
    )


@router.get("/listings/{listing_id}", response_model=schemas.ListingDetail)
def get_listing(listing_id: int, db: Session = Depends(get_db)):
    obj = crud.get_listing(db, listing_id)
    if not obj:
        raise HTTPException(status_code=404, detail="Listing not found")
    return obj


@router.get("/listings/{listing_id}/snapshots", response_model=List[schemas.SnapshotOut])
def listing_snapshots(listing_id: int, db: Session = Depends(get_db)):
    if not crud.get_listing(db, listing_id):
        raise HTTPException(status_code=404, detail="Listing not found")
    return crud.list_snapshots(db, listing_id)


# ---------- analytics ----------

@router.get("/analytics")
def market_analytics(
    city: str = Query(config.DEFAULT_CITY),
    district: Optional[str] = Query(None),
    bedrooms: Optional[int] = Query(None, ge=0),
    property_type: Optional[str] = Query(None, alias="propertyType"),
    range_: str = Query("90d", alias="range"),
    format: Optional[str] = Query(None),
    db: Session = Depends(get_db),
):
    """KPIs, trend and district breakdowns from the daily index."""
    if range_ not in RANGES:
        raise HTTPException(status_code=400, detail=f"range must be one of {', '.join(RANGES)}")
    property_types = None
    if property_type:
        try:
            property_types = resolve_property_types(property_type)
        except InvalidFilter as e:
            raise HTTPException(status_code=400, detail=str(e))

    since = utcnow().date() - timedelta(days=RANGES[range_])
    rows = [
        schemas.IndexRow.from_model(r)
        for r in crud.index_rows(db, city, since, district, bedrooms, property_types)
    ]
    trend = analytics.compute_trend(rows)

    if format == "csv":
        return Response(
            content=analytics.trend_csv(trend),
            media_type="text/csv",
            headers={"Content-Disposition": f'attachment; filename="rental-trend-{range_}.csv"'},
        )

    summary = analytics.compute_kpi(rows)
    summary.volatility_score = volatility.volatility_score(
        [r.median_price_usd for r in rows if r.median_price_usd is not None]
    )

    return {
        "summary": summary.dump(),
        "trend": [p.dump() for p in trend],
        "distribution": [b.dump() for b in analytics.compute_distribution(rows)],
        "movers": [m.dump() for m in analytics.compute_movers(rows)],
        "heatmapDistricts": [h.dump() for h in analytics.compute_district_heatmap(rows)],
        "volatility": {
            "rolling": [v.dump() for v in volatility.rolling_volatility(rows)],
            "districts": [d.dump() for d in volatility.district_volatilities(rows)],
        },
        "districts": crud.indexed_districts(db, city),
        "filters": {
            "city": city,
            "district": district,
            "bedrooms": bedrooms,
            "propertyType": property_type,
            "range": range_,
        },
        "meta": {
            "rowCount": len(rows),
            "dateRange": {
                "from": rows[0].date.isoformat() if rows else None,
                "to": rows[-1].date.isoformat() if rows else None,
            },
        },
    }
