from __future__ import annotations

import logging
import uuid
from datetime import datetime

from app.stockline.core.context import Actor
from app.stockline.core.error_catalog import AuthorizationError, InvalidStateError, NotFoundError, ValidationError
from app.stockline.core.logging import log_json
from app.stockline.core.metrics import metrics
from app.stockline.db.models import TransferVariance
from app.stockline.repos.transfers import TransferRepository
from app.stockline.repos.variances import VarianceQueryFilters, VarianceRepository
from app.stockline.services.access_policy import RolePolicy
from app.stockline.services.risk import RiskAssessment, RiskPolicy, score, score_all, summarize
from app.stockline.services.severity import (
    VARIANCE_INVESTIGATING,
    VARIANCE_RESOLVED,
    VARIANCE_WRITE_OFF,
)


logger = logging.getLogger(__name__)

INVESTIGATION_OUTCOMES = {VARIANCE_INVESTIGATING, VARIANCE_RESOLVED, VARIANCE_WRITE_OFF}


class InvestigationService:
    """Manual follow-up on variances plus the risk views that feed it.

    Investigations never touch the ledger.
    """

    def __init__(self, db, *, roles: RolePolicy | None = None, risk_policy: RiskPolicy | None = None):
        self.db = db
        self.repo = VarianceRepository(db)
        self.transfers = TransferRepository(db)
        self.roles = roles or RolePolicy.from_settings()
        self.risk_policy = risk_policy or RiskPolicy.from_settings()

    def get(self, variance_id: uuid.UUID, *, for_update: bool = False) -> TransferVariance:
        variance = self.repo.get(variance_id, for_update=for_update)
        if variance is None:
            raise NotFoundError("variance not found", variance_id=str(variance_id))
        return variance

    def list_variances(self, filters: VarianceQueryFilters) -> list[TransferVariance]:
        return self.repo.list_variances(filters)

    def unresolved(self) -> list[TransferVariance]:
        return self.repo.list_unresolved({VARIANCE_RESOLVED})

    def assess(self, variance: TransferVariance, *, now: datetime | None = None) -> RiskAssessment:
        return score(variance, self.unresolved(), now=now, policy=self.risk_policy)

    def risk_queue(self, *, now: datetime | None = None, high_risk_only: bool = False) -> tuple[dict, list]:
        population = self.unresolved()
        assessments = score_all(population, now=now, policy=self.risk_policy)
        rows = sorted(zip(population, assessments), key=lambda row: row[1].score, reverse=True)
        if high_risk_only:
            rows = [row for row in rows if row[1].is_high_risk]
        return summarize(population, assessments), rows

    def investigate(
        self,
        variance_id: uuid.UUID,
        *,
        root_cause: str,
        corrective_action: str,
        new_status: str,
        actor: Actor,
    ) -> TransferVariance:
        if not self.roles.is_manager(actor.role):
            raise AuthorizationError("role may not investigate variances", role=actor.role)
        variance = self.get(variance_id, for_update=True)
        if variance.status == VARIANCE_RESOLVED:
            raise InvalidStateError(
                "variance is already resolved",
                current_status=variance.status,
                variance_id=str(variance.id),
            )
        root_cause = (root_cause or "").strip()
        corrective_action = (corrective_action or "").strip()
        if not root_cause:
            raise ValidationError("root cause is required")
        if not corrective_action:
            raise ValidationError("corrective action is required")
        if new_status not in INVESTIGATION_OUTCOMES:
            raise ValidationError(
                "unsupported investigation status",
                status=new_status,
                allowed=sorted(INVESTIGATION_OUTCOMES),
            )

        now = datetime.utcnow()
        previous_status = variance.status
        settled = False
        try:
            variance.root_cause = root_cause
            variance.corrective_action = corrective_action
            variance.status = new_status
            variance.investigated_by_user_id = actor.user_id
            variance.updated_at = now
            variance.resolved_at = now if new_status == VARIANCE_RESOLVED else None
            self.db.flush()
            settled = self._settle_transfer(variance.transfer_id, now)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        variance = self.get(variance_id)
        log_json(
            logger,
            {
                "event": "variance_investigated",
                "variance_id": str(variance.id),
                "transfer_id": str(variance.transfer_id),
                "previous_status": previous_status,
                "status": variance.status,
                "transfer_settled": settled,
            },
        )
        if settled:
            metrics.increment_transfer_transition("completed")
        return variance

    def _settle_transfer(self, transfer_id: uuid.UUID, now: datetime) -> bool:
        """A received transfer completes once every one of its variances is resolved.

        Write-offs stay re-openable, so they hold the transfer at received.
        """
        siblings = self.repo.list_for_transfer(transfer_id)
        if any(sibling.status != VARIANCE_RESOLVED for sibling in siblings):
            return False
        return self.transfers.compare_and_set_status(
            transfer_id,
            from_statuses={"received"},
            values={"status": "completed", "completed_at": now, "updated_at": now},
        )
