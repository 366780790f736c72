from __future__ import annotations

from dataclasses import dataclass

from .config import settings
from .db import Database, migrate
from .pipeline.evolution import EvolutionInterpolator
from .pipeline.pnl import PnLCalculator
from .pipeline.scheduler import DailySnapshotScheduler
from .pipeline.snapshots import SnapshotStore
from .pipeline.sync import SyncCoordinator, ValuationSource
from .pipeline.valuation import BalancesClient
from .security.cipher import SecretCipher, XorSecretCipher


@dataclass
class Core:
    db: Database
    cipher: SecretCipher
    store: SnapshotStore
    coordinator: SyncCoordinator
    scheduler: DailySnapshotScheduler
    pnl: PnLCalculator
    evolution: EvolutionInterpolator

    async def aclose(self):
        self.scheduler.stop()
        await self.coordinator.aclose()
        self.db.close()


def build_core(
    db_path: str | None = None,
    source: ValuationSource | None = None,
    cipher: SecretCipher | None = None,
    db: Database | None = None,
) -> Core:
    db = db or Database(db_path or settings.db_path)
    migrate(db.conn)
    cipher = cipher or XorSecretCipher()
    source = source or BalancesClient(settings.api_base_url, settings.api_token, settings.http_timeout_seconds)
    store = SnapshotStore(db)
    coordinator = SyncCoordinator(db, source, cipher)
    return Core(
        db=db,
        cipher=cipher,
        store=store,
        coordinator=coordinator,
        scheduler=DailySnapshotScheduler(db, store, coordinator),
        pnl=PnLCalculator(store),
        evolution=EvolutionInterpolator(store),
    )
