from typing import Literal

from pydantic import BaseModel


ItemKind = Literal["product", "packaging"]


class AvailableQuantityResponse(BaseModel):
    outlet_id: str
    item_kind: ItemKind
    item_id: str
    available_quantity: int
    trace_id: str
