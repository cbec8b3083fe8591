from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel

from app.stockline.schemas.variances import VarianceResponse


class TransferLineCreate(BaseModel):
    item_id: UUID
    quantity: int


class TransferCreateRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "source_outlet_id": "6c1d8f0e-1b7e-4a8a-9f0e-3f1a2b4c5d6e",
                "destination_outlet_id": "0f7e5d4c-3b2a-4918-8f7e-6d5c4b3a2918",
                "lines": [{"item_id": "a3f1c2d4-5e6f-4a7b-8c9d-0e1f2a3b4c5d", "quantity": 100}],
                "packaging_lines": [],
                "notes": "weekly restock",
            }
        }
    }

    source_outlet_id: UUID
    destination_outlet_id: UUID
    lines: list[TransferLineCreate] = []
    packaging_lines: list[TransferLineCreate] = []
    notes: str | None = None


class TransferLineApproval(BaseModel):
    line_id: UUID
    quantity_approved: int


class TransferApproveRequest(BaseModel):
    lines: list[TransferLineApproval] = []
    packaging_lines: list[TransferLineApproval] = []


class TransferRejectRequest(BaseModel):
    reason: str


class TransferReceiveLine(BaseModel):
    line_id: UUID
    quantity_received: int
    quantity_expected: int | None = None
    reason: str | None = None


class TransferReceiveRequest(BaseModel):
    model_config = {
        "json_schema_extra": {
            "example": {
                "lines": [
                    {
                        "line_id": "b7c6d5e4-f3a2-4b1c-9d8e-7f6a5b4c3d2e",
                        "quantity_received": 95,
                        "reason": "damaged carton",
                    }
                ],
                "packaging_lines": [],
                "notes": "unloaded at dock 2",
            }
        }
    }

    lines: list[TransferReceiveLine] = []
    packaging_lines: list[TransferReceiveLine] = []
    notes: str | None = None


class TransferLineResponse(BaseModel):
    id: str
    item_kind: str
    item_id: str
    position: int
    quantity_requested: int
    quantity_approved: int | None
    quantity_received: int | None
    variance_reason: str | None
    unit_cost_snapshot: Decimal | None


class TransferResponse(BaseModel):
    id: str
    reference: str
    source_outlet_id: str
    destination_outlet_id: str
    status: str
    requested_by_user_id: str
    approved_by_user_id: str | None
    dispatched_by_user_id: str | None
    received_by_user_id: str | None
    cancelled_by_user_id: str | None
    notes: str | None
    rejection_reason: str | None
    receipt_notes: str | None
    requested_at: datetime
    approved_at: datetime | None
    dispatched_at: datetime | None
    received_at: datetime | None
    completed_at: datetime | None
    cancelled_at: datetime | None
    updated_at: datetime
    lines: list[TransferLineResponse]
    packaging_lines: list[TransferLineResponse]


class TransferListResponse(BaseModel):
    rows: list[TransferResponse]


class TransferReceiptResponse(BaseModel):
    transfer: TransferResponse
    variances: list[VarianceResponse]
    replayed: bool = False


class LedgerLineBalance(BaseModel):
    line_id: str
    item_kind: str
    item_id: str
    transfer_out: int | None
    transfer_in: int | None
    net: int
    variance: int
    balanced: bool


class TransferLedgerResponse(BaseModel):
    transfer_id: str
    reference: str
    status: str
    lines: list[LedgerLineBalance]
    balanced: bool

