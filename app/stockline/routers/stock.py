from uuid import UUID

from fastapi import APIRouter, Depends, Request

from app.stockline.core.context import Actor
from app.stockline.core.deps import require_actor
from app.stockline.core.error_catalog import AuthorizationError
from app.stockline.db.session import get_db
from app.stockline.schemas.stock import AvailableQuantityResponse, ItemKind
from app.stockline.services.access_policy import DatabaseAccessPolicy
from app.stockline.services.ledger import LedgerWriter

router = APIRouter()


@router.get(
    "/stockline/stock/{outlet_id}/{item_kind}/{item_id}",
    response_model=AvailableQuantityResponse,
    summary="Available quantity at an outlet, summed from the movement ledger",
)
def available_quantity(
    outlet_id: UUID,
    item_kind: ItemKind,
    item_id: UUID,
    request: Request,
    actor: Actor = Depends(require_actor),
    db=Depends(get_db),
):
    if not DatabaseAccessPolicy(db).has_outlet_access(actor.user_id, outlet_id):
        raise AuthorizationError("no access to this outlet", outlet_id=str(outlet_id))
    quantity = LedgerWriter(db).available_quantity(item_kind, item_id, outlet_id)
    return AvailableQuantityResponse(
        outlet_id=str(outlet_id),
        item_kind=item_kind,
        item_id=str(item_id),
        available_quantity=quantity,
        trace_id=getattr(request.state, "trace_id", ""),
    )
