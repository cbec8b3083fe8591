from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel


class VarianceResponse(BaseModel):
    id: str
    transfer_id: str
    line_id: str
    item_kind: str
    item_id: str
    outlet_id: str
    expected_quantity: int
    received_quantity: int
    variance: int
    unit_cost: Decimal
    variance_value: Decimal
    severity: str
    status: str
    reason: str | None
    root_cause: str | None
    corrective_action: str | None
    reported_by_user_id: str
    investigated_by_user_id: str | None
    created_at: datetime
    updated_at: datetime
    resolved_at: datetime | None


class RiskAssessmentResponse(BaseModel):
    variance_id: str
    score: int
    is_high_risk: bool
    flags: list[str]
    pattern: str | None
    unresolved_at_location: int
    unresolved_for_item: int
    age_days: int


class VarianceDetailResponse(BaseModel):
    variance: VarianceResponse
    risk: RiskAssessmentResponse


class VarianceListResponse(BaseModel):
    rows: list[VarianceResponse]


class VarianceInvestigateRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "root_cause": "pallet mis-picked at source",
                "corrective_action": "re-count source bin and retrain picker",
                "status": "resolved",
            }
        }
    }

    root_cause: str
    corrective_action: str
    status: Literal["investigating", "resolved", "write_off"]


class RiskQueueEntry(BaseModel):
    variance: VarianceResponse
    risk: RiskAssessmentResponse


class RiskSummaryResponse(BaseModel):
    total_unresolved: int
    high_risk_count: int
    total_variance_value: Decimal
    by_severity: dict[str, int]
    by_pattern: dict[str, int]


class RiskQueueResponse(BaseModel):
    summary: RiskSummaryResponse
    rows: list[RiskQueueEntry]
