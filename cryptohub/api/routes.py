from dataclasses import asdict
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import PlainTextResponse
from .schemas import (
    EvolutionOut,
    PnLSummaryOut,
    SchedulerStateOut,
    SnapshotCreate,
    SnapshotImport,
    SnapshotOut,
    SyncOut,
)
from ..errors import AuthorizationFailure, TransientSyncFailure
from ..pipeline.history import export_csv, get_chart_data, get_stats
from ..runtime import Core

router = APIRouter()

def get_core(request: Request) -> Core:
    return request.app.state.core

@router.get(
    '/health',
    summary="Health check",
    description="Returns DB connectivity and scheduler state.",
    tags=["Health"],
)
def health(core: Core = Depends(get_core)):
    try:
        core.db.conn.execute("SELECT 1").fetchone()
    except Exception as e:
        raise HTTPException(503, f'db_error: {e}')
    return {'ok': True, 'db': 'ok', 'scheduler': asdict(core.scheduler.get_state())}

@router.get(
    '/users/{user_id}/snapshots',
    response_model=list[SnapshotOut],
    summary="List snapshots",
    description="Snapshots newest first, optionally bounded by start_ms/end_ms (inclusive).",
    tags=["Snapshots"],
)
def list_snapshots(user_id: str, start_ms: int | None = None, end_ms: int | None = None, limit: int | None = None, core: Core = Depends(get_core)):
    return [asdict(s) for s in core.store.list_snapshots(user_id, start_ms, end_ms, limit)]

@router.get(
    '/users/{user_id}/snapshots/latest',
    response_model=SnapshotOut,
    summary="Latest snapshot",
    tags=["Snapshots"],
)
def latest_snapshot(user_id: str, core: Core = Depends(get_core)):
    snap = core.store.get_latest(user_id)
    if not snap:
        raise HTTPException(404, 'no snapshots')
    return asdict(snap)

@router.post(
    '/users/{user_id}/snapshots',
    response_model=SnapshotOut,
    status_code=201,
    summary="Create snapshot",
    description="Records a valuation supplied by the caller (manual snapshot).",
    tags=["Snapshots"],
)
def create_snapshot(user_id: str, req: SnapshotCreate, core: Core = Depends(get_core)):
    snap = core.store.create_snapshot(user_id, req.total_primary, req.total_secondary, req.timestamp_ms)
    return asdict(snap)

@router.post(
    '/users/{user_id}/snapshots/import',
    summary="Import historical snapshots",
    description="Bulk insert of backdated snapshots in one transaction.",
    tags=["Snapshots"],
)
def import_snapshots(user_id: str, req: SnapshotImport, core: Core = Depends(get_core)):
    rows = []
    for item in req.snapshots:
        if item.timestamp_ms is None:
            raise HTTPException(400, 'timestamp_ms is required for imported snapshots')
        rows.append(item.model_dump())
    created = core.store.import_snapshots(user_id, rows)
    return {'ok': True, 'imported': len(created)}

@router.post(
    '/users/{user_id}/snapshots/force',
    response_model=SchedulerStateOut,
    summary="Force daily snapshot",
    description="Runs the daily snapshot routine now (sync + persist, with retries).",
    tags=["Snapshots"],
)
async def force_snapshot(user_id: str, core: Core = Depends(get_core)):
    await core.scheduler.force_snapshot(user_id)
    return asdict(core.scheduler.get_state())

@router.delete(
    '/users/{user_id}/snapshots',
    summary="Delete all snapshots",
    tags=["Snapshots"],
)
def delete_snapshots(user_id: str, core: Core = Depends(get_core)):
    return {'ok': True, 'deleted': core.store.delete_all(user_id)}

@router.get(
    '/users/{user_id}/snapshots/export.csv',
    response_class=PlainTextResponse,
    summary="Export snapshots as CSV",
    tags=["Snapshots"],
)
def snapshots_csv(user_id: str, core: Core = Depends(get_core)):
    return PlainTextResponse(export_csv(core.store, user_id), media_type="text/csv")

@router.get(
    '/users/{user_id}/stats',
    summary="Snapshot statistics",
    description="Daily/weekly/monthly change and all-time high/low from stored snapshots.",
    tags=["Analytics"],
)
def stats(user_id: str, core: Core = Depends(get_core)):
    out = get_stats(core.store, user_id)
    if out is None:
        raise HTTPException(404, 'no snapshots')
    return out

@router.get(
    '/users/{user_id}/chart',
    summary="Daily chart data",
    tags=["Analytics"],
)
def chart(user_id: str, days: int = 30, core: Core = Depends(get_core)):
    return get_chart_data(core.store, user_id, days)

@router.get(
    '/users/{user_id}/pnl',
    response_model=PnLSummaryOut,
    summary="PnL summary",
    description="Today/7d/15d/30d PnL against stored snapshots. current_value defaults to the latest snapshot.",
    tags=["Analytics"],
)
def pnl(user_id: str, current_value: float | None = None, core: Core = Depends(get_core)):
    return core.pnl.get_summary(user_id, current_value).to_dict()

@router.get(
    '/users/{user_id}/evolution',
    response_model=EvolutionOut,
    summary="Portfolio evolution",
    description="Exactly `days` points over the last `days` days (interpolated when history is sparse).",
    tags=["Analytics"],
)
def evolution(user_id: str, days: int = 7, core: Core = Depends(get_core)):
    if days < 1 or days > 365:
        raise HTTPException(400, 'days must be between 1 and 365')
    series = core.evolution.get_evolution_series(user_id, days)
    return {'user_id': user_id, 'days': days, **series}

@router.post(
    '/users/{user_id}/sync',
    response_model=SyncOut,
    summary="Refresh balances",
    description="Fetches live balances; concurrent requests share one remote call.",
    tags=["Sync"],
)
async def sync(user_id: str, core: Core = Depends(get_core)):
    try:
        result = await core.coordinator.sync_now(user_id)
    except AuthorizationFailure as e:
        raise HTTPException(401, str(e))
    except TransientSyncFailure as e:
        raise HTTPException(502, str(e))
    if result is None:
        return SyncOut(user_id=user_id, synced=False)
    return SyncOut(
        user_id=user_id,
        synced=True,
        total_primary=result.total_primary,
        total_secondary=result.total_secondary,
        exchanges_ok=result.exchanges_ok,
        exchanges_failed=result.exchanges_failed,
    )

@router.get(
    '/scheduler/state',
    response_model=SchedulerStateOut,
    summary="Scheduler state",
    tags=["Sync"],
)
def scheduler_state(core: Core = Depends(get_core)):
    return asdict(core.scheduler.get_state())
