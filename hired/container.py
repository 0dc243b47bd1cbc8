"""
Process-scoped wiring of the HIRED core.

Construct once at startup and pass the instance (or its members) to the
UI and routing layers:

    core = HiredCore.create(directory=directory, router=router)
    await core.start()
    ...
    await core.close()
"""
import logging
from dataclasses import dataclass
from typing import Optional

from hired.core.config import Settings, settings, validate_config
from hired.core.database import Database
from hired.core.logging import configure_logging
from hired.features.access.service import AccessGate, AuthGate
from hired.features.admission.service import AdmissionGate
from hired.features.attempts.service import AttemptLifecycleManager
from hired.features.entitlements.service import EntitlementResolver
from hired.features.identity.service import Directory, IdentitySessionStore, Router
from hired.features.plans.service import PlanCatalog
from hired.features.scores.service import ScoreService, ScoringCollaborator, SqlProcedureScoring
from hired.features.simulations.service import SimulationCatalog
from hired.features.usage.service import QuotaAccountant

logger = logging.getLogger(__name__)


@dataclass
class HiredCore:
    settings: Settings
    db: Database
    sessions: IdentitySessionStore
    plans: PlanCatalog
    entitlements: EntitlementResolver
    quota: QuotaAccountant
    simulations: SimulationCatalog
    scores: ScoreService
    attempts: AttemptLifecycleManager
    admission: AdmissionGate
    auth_gate: AuthGate

    @classmethod
    def create(
        cls,
        *,
        directory: Directory,
        router: Router,
        cfg: Optional[Settings] = None,
        db: Optional[Database] = None,
        scoring: Optional[ScoringCollaborator] = None,
    ) -> "HiredCore":
        cfg = cfg or settings
        validate_config(settings_obj=cfg)
        db = db or Database.from_settings(cfg)
        entitlements = EntitlementResolver(db)
        quota = QuotaAccountant(db, cfg)
        simulations = SimulationCatalog(db)
        scores = ScoreService(db, scoring or SqlProcedureScoring(db, cfg.SCORE_REFRESH_PROCEDURE))
        return cls(
            settings=cfg,
            db=db,
            sessions=IdentitySessionStore(directory, router, cfg),
            plans=PlanCatalog(db),
            entitlements=entitlements,
            quota=quota,
            simulations=simulations,
            scores=scores,
            attempts=AttemptLifecycleManager(db, scores),
            admission=AdmissionGate(db, entitlements, quota, simulations, cfg),
            auth_gate=AuthGate.from_settings(cfg),
        )

    def feature_gate(self, feature: str) -> AccessGate:
        return AccessGate.requiring(feature, resolver=self.entitlements, cfg=self.settings)

    async def start(self) -> None:
        configure_logging(self.settings.ENV)
        if not await self.db.check_connection():
            logger.warning("[hired] record store is not reachable at startup")
        await self.sessions.start()

    async def close(self) -> None:
        await self.sessions.close()
        await self.scores.drain()
        await self.db.dispose()
