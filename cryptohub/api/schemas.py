from pydantic import BaseModel, Field
from typing import Optional

class SnapshotOut(BaseModel):
    id: str
    user_id: str
    total_primary: float
    total_secondary: float
    timestamp_ms: int
    created_at: str

class SnapshotCreate(BaseModel):
    total_primary: float = Field(ge=0)
    total_secondary: float = Field(ge=0)
    timestamp_ms: Optional[int] = None

class SnapshotImport(BaseModel):
    snapshots: list[SnapshotCreate]

class PnLOut(BaseModel):
    current: float
    previous: float
    change: float
    change_percent: float
    period: str

class PnLSummaryOut(BaseModel):
    current_balance: float
    today: PnLOut
    week: PnLOut
    two_weeks: PnLOut
    month: PnLOut

class EvolutionOut(BaseModel):
    user_id: str
    days: int
    values: list[float]
    values_secondary: list[float]
    timestamps: list[str]

class SchedulerStateOut(BaseModel):
    is_running: bool
    last_snapshot_at: Optional[int] = None
    next_run_at: Optional[int] = None
    retry_count: int
    last_error: Optional[str] = None

class SyncOut(BaseModel):
    user_id: str
    synced: bool
    total_primary: Optional[float] = None
    total_secondary: Optional[float] = None
    exchanges_ok: int = 0
    exchanges_failed: list[str] = []
