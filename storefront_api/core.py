from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Dict, Any, List, Literal
import uuid

from pydantic import BaseModel, Field

# ---------------------------
# Request schemas
# ---------------------------
class OptionValueIn(BaseModel):
    id: Optional[str] = None
    name: str = Field(..., min_length=1)
    price_adjustment: Decimal = Decimal("0")
    is_default: bool = False
    is_sold_out: bool = False
    sort_order: int = 0

class OptionIn(BaseModel):
    name: str = Field(..., min_length=1)
    display_name: str = ""
    sort_order: Optional[int] = None
    values: List[OptionValueIn] = Field(..., min_length=1)

class OptionPatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    display_name: Optional[str] = None
    sort_order: Optional[int] = None
    values: Optional[List[OptionValueIn]] = Field(None, min_length=1)

class ProductIn(BaseModel):
    name: str
    base_price: Decimal = Field(..., ge=0)
    quantity: int = Field(0, ge=0)
    category: Optional[str] = "general"
    options: List[OptionIn] = []

class AddressIn(BaseModel):
    name: str = Field(..., min_length=1)
    line1: str = Field(..., min_length=1)
    line2: Optional[str] = ""
    city: str = Field(..., min_length=1)
    region: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = "US"
    is_default: bool = False
    sort_order: Optional[int] = None
    type: Literal["shipping", "billing"] = "shipping"

class AddressPatch(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    line1: Optional[str] = Field(None, min_length=1)
    line2: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1)
    region: Optional[str] = Field(None, min_length=1)
    postal_code: Optional[str] = Field(None, min_length=1)
    country: Optional[str] = None
    is_default: Optional[bool] = None
    sort_order: Optional[int] = None
    type: Optional[Literal["shipping", "billing"]] = None

class MediaIn(BaseModel):
    url: str = Field(..., min_length=1)
    thumbnail_url: Optional[str] = None
    alt: str = ""
    sort: Optional[int] = None

class MediaPatch(BaseModel):
    url: Optional[str] = Field(None, min_length=1)
    thumbnail_url: Optional[str] = None
    alt: Optional[str] = None
    sort: Optional[int] = None

class ReorderEntry(BaseModel):
    id: str
    sort_order: int = Field(..., ge=0)
    is_default: Optional[bool] = None

class AddToCartIn(BaseModel):
    user_email: str
    product_id: str
    quantity: int = 1
    selected_options: Dict[str, str] = {}

class RemoveFromCartIn(BaseModel):
    user_email: str
    product_id: str
    quantity: Optional[int] = None

# largest quantity a single cart line may hold
MAX_LINE_QUANTITY = 999

# ---------------------------
# Record helpers
# ---------------------------
def _new_id() -> str:
    return uuid.uuid4().hex

def _now() -> str:
    return datetime.now(timezone.utc).isoformat()

def _make_product_dict(product_id: str, p: ProductIn) -> Dict[str, Any]:
    return {
        "id": product_id,
        "name": p.name,
        "base_price": str(p.base_price),
        "quantity": p.quantity,
        "category": p.category,
    }

def _normalize_values(values: List[OptionValueIn]) -> List[Dict[str, Any]]:
    """Values keep their list position as a dense sort order; new values get ids."""
    out = []
    for index, v in enumerate(values):
        d = v.model_dump(mode="json")
        d["id"] = d["id"] or _new_id()
        d["sort_order"] = index
        out.append(d)
    return out

def _public(record: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in record.items() if not k.startswith("_")}
