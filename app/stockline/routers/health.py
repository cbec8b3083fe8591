from fastapi import APIRouter, Depends, Request
from sqlalchemy import select, text

from app.stockline.core.error_catalog import ErrorCatalog
from app.stockline.core.errors import error_response
from app.stockline.db.models import TransferRequest
from app.stockline.db.session import get_db

router = APIRouter()


@router.get("/health")
async def health(request: Request):
    trace_id = getattr(request.state, "trace_id", "")
    return {"status": "ok", "trace_id": trace_id}


@router.get("/ready")
async def ready(request: Request, db=Depends(get_db)):
    trace_id = getattr(request.state, "trace_id", "")
    try:
        db.execute(text("SELECT 1"))
        # schema check: transfers table must exist before traffic is accepted
        db.execute(select(TransferRequest.id).limit(1))
    except Exception as exc:
        return error_response(
            code=ErrorCatalog.DB_UNAVAILABLE.code,
            message=ErrorCatalog.DB_UNAVAILABLE.message,
            details=str(exc),
            trace_id=trace_id,
            status_code=ErrorCatalog.DB_UNAVAILABLE.status_code,
        )
    return {"status": "ready", "trace_id": trace_id}
