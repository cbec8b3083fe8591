from uuid import UUID

from fastapi import APIRouter, Depends, Query

from app.stockline.core.context import Actor
from app.stockline.core.deps import require_actor
from app.stockline.core.error_catalog import AuthorizationError
from app.stockline.db.session import get_db
from app.stockline.repos.variances import VarianceQueryFilters
from app.stockline.schemas.variances import (
    RiskAssessmentResponse,
    RiskQueueEntry,
    RiskQueueResponse,
    RiskSummaryResponse,
    VarianceDetailResponse,
    VarianceInvestigateRequest,
    VarianceListResponse,
    VarianceResponse,
)
from app.stockline.services.access_policy import DatabaseAccessPolicy, RolePolicy
from app.stockline.services.audit import AuditEventPayload, AuditService
from app.stockline.services.investigations import InvestigationService


router = APIRouter()


def variance_response(variance) -> VarianceResponse:
    return VarianceResponse(
        id=str(variance.id),
        transfer_id=str(variance.transfer_id),
        line_id=str(variance.line_id),
        item_kind=variance.item_kind,
        item_id=str(variance.item_id),
        outlet_id=str(variance.outlet_id),
        expected_quantity=variance.expected_quantity,
        received_quantity=variance.received_quantity,
        variance=variance.variance,
        unit_cost=variance.unit_cost,
        variance_value=variance.variance_value,
        severity=variance.severity,
        status=variance.status,
        reason=variance.reason,
        root_cause=variance.root_cause,
        corrective_action=variance.corrective_action,
        reported_by_user_id=str(variance.reported_by_user_id),
        investigated_by_user_id=str(variance.investigated_by_user_id) if variance.investigated_by_user_id else None,
        created_at=variance.created_at,
        updated_at=variance.updated_at,
        resolved_at=variance.resolved_at,
    )


def _risk_response(assessment) -> RiskAssessmentResponse:
    return RiskAssessmentResponse(
        variance_id=str(assessment.variance_id),
        score=assessment.score,
        is_high_risk=assessment.is_high_risk,
        flags=list(assessment.flags),
        pattern=assessment.pattern,
        unresolved_at_location=assessment.unresolved_at_location,
        unresolved_for_item=assessment.unresolved_for_item,
        age_days=assessment.age_days,
    )


@router.get("/stockline/variances", response_model=VarianceListResponse)
def list_variances(
    status: str | None = Query(default=None),
    severity: str | None = Query(default=None),
    outlet_id: UUID | None = Query(default=None),
    item_id: UUID | None = Query(default=None),
    transfer_id: UUID | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    filters = VarianceQueryFilters(
        status=status,
        severity=severity,
        outlet_id=outlet_id,
        item_id=item_id,
        transfer_id=transfer_id,
        visible_outlet_ids=DatabaseAccessPolicy(db).visible_outlet_ids(actor.user_id),
        limit=limit,
        offset=offset,
    )
    rows = InvestigationService(db).list_variances(filters)
    return VarianceListResponse(rows=[variance_response(variance) for variance in rows])


@router.get("/stockline/variances/risk", response_model=RiskQueueResponse)
def risk_queue(
    high_risk_only: bool = Query(default=False),
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    if not RolePolicy.from_settings().is_manager(actor.role):
        raise AuthorizationError("role may not view the risk queue", role=actor.role)
    summary, rows = InvestigationService(db).risk_queue(high_risk_only=high_risk_only)
    return RiskQueueResponse(
        summary=RiskSummaryResponse(**summary),
        rows=[
            RiskQueueEntry(variance=variance_response(variance), risk=_risk_response(assessment))
            for variance, assessment in rows
        ],
    )


@router.get("/stockline/variances/{variance_id}", response_model=VarianceDetailResponse)
def get_variance(variance_id: UUID, actor: Actor = Depends(require_actor), db=Depends(get_db)):
    service = InvestigationService(db)
    variance = service.get(variance_id)
    if not DatabaseAccessPolicy(db).can_view(actor.user_id, variance.outlet_id):
        raise AuthorizationError("no access to this variance", variance_id=str(variance.id))
    return VarianceDetailResponse(
        variance=variance_response(variance),
        risk=_risk_response(service.assess(variance)),
    )


@router.post("/stockline/variances/{variance_id}/investigate", response_model=VarianceResponse)
def investigate_variance(
    variance_id: UUID,
    payload: VarianceInvestigateRequest,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    variance = InvestigationService(db).investigate(
        variance_id,
        root_cause=payload.root_cause,
        corrective_action=payload.corrective_action,
        new_status=payload.status,
        actor=actor,
    )
    response = variance_response(variance)
    AuditService(db).record_event(
        AuditEventPayload.for_actor(
            actor,
            action="variance.investigate",
            entity_type="transfer_variance",
            entity_id=variance_id,
            after=response.model_dump(mode="json"),
            metadata={"transfer_id": str(variance.transfer_id)},
        )
    )
    return response
