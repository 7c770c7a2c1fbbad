import logging
from typing import Optional, Dict, Any, List, Callable

from fastapi import HTTPException

from .core import (
    ProductIn, OptionIn, AddToCartIn, RemoveFromCartIn, ReorderEntry, MAX_LINE_QUANTITY,
    _make_product_dict, _normalize_values, _new_id, _now, _public
)
from .database import (
    PRODUCTS, OPTIONS, MEDIA, ADDRESSES, CARTS,
    _get_lock, _next_seq, reset_all
)

logger = logging.getLogger(__name__)

# This file contains the core logic for all API endpoints.


# ---------------------------
# Collections
# ---------------------------
class Collection:
    """
    An ordered, owner-scoped collection (a user's addresses, a product's
    options or media) with create/update/delete/reorder semantics.
    """

    def __init__(
        self,
        kind: str,
        store: Dict[str, Dict[str, Dict[str, Any]]],
        sort_field: str,
        default_field: Optional[str] = None,
        default_scope: Optional[str] = None,
        timestamps: bool = False,
        prepare: Optional[Callable[[Dict[str, Any]], Dict[str, Any]]] = None,
    ):
        self.kind = kind
        self.store = store
        self.sort_field = sort_field
        self.default_field = default_field
        self.default_scope = default_scope
        self.timestamps = timestamps
        self.prepare = prepare

    def _lock(self, owner: str):
        return _get_lock(f"{self.kind}:{owner}")

    def _records(self, owner: str) -> Dict[str, Dict[str, Any]]:
        return self.store.setdefault(owner, {})

    def _get(self, owner: str, item_id: str) -> Dict[str, Any]:
        record = self._records(owner).get(item_id)
        if record is None:
            raise HTTPException(status_code=404, detail=f"{self.kind} not found")
        return record

    def ordered(self, owner: str) -> List[Dict[str, Any]]:
        records = self._records(owner).values()
        return [_public(r) for r in sorted(records, key=lambda r: (r[self.sort_field], r["_seq"]))]

    def _clear_other_defaults(self, owner: str, keep: Dict[str, Any]):
        # one default per scope (e.g. per address type)
        for record in self._records(owner).values():
            if record is keep:
                continue
            if self.default_scope and record.get(self.default_scope) != keep.get(self.default_scope):
                continue
            record[self.default_field] = False

    async def create(self, owner: str, data: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock(owner):
            records = self._records(owner)
            if self.prepare:
                data = self.prepare(data)
            if data.get(self.sort_field) is None:
                data[self.sort_field] = len(records)
            item_id = _new_id()
            record = {"id": item_id, **data, "_seq": _next_seq()}
            if self.timestamps:
                record["created_at"] = record["updated_at"] = _now()
            records[item_id] = record
            if self.default_field and record.get(self.default_field):
                self._clear_other_defaults(owner, record)
            logger.debug("created %s %s for %s", self.kind, item_id, owner)
            return _public(record)

    async def update(self, owner: str, item_id: str, changes: Dict[str, Any]) -> Dict[str, Any]:
        async with self._lock(owner):
            record = self._get(owner, item_id)
            if self.prepare:
                changes = self.prepare(changes)
            record.update(changes)
            if self.timestamps:
                record["updated_at"] = _now()
            if self.default_field and changes.get(self.default_field):
                self._clear_other_defaults(owner, record)
            logger.debug("updated %s %s for %s", self.kind, item_id, owner)
            return _public(record)

    async def delete(self, owner: str, item_id: str) -> Dict[str, Any]:
        async with self._lock(owner):
            self._get(owner, item_id)
            del self._records(owner)[item_id]
            logger.debug("deleted %s %s for %s", self.kind, item_id, owner)
            return {"status": "deleted", "id": item_id}

    async def reorder(self, owner: str, entries: List[ReorderEntry]) -> List[Dict[str, Any]]:
        async with self._lock(owner):
            records = self._records(owner)
            missing = [e.id for e in entries if e.id not in records]
            if missing:
                raise HTTPException(status_code=404, detail=f"{self.kind} not found: {', '.join(missing)}")
            for entry in entries:
                record = records[entry.id]
                record[self.sort_field] = entry.sort_order
                if self.default_field and entry.is_default is not None:
                    record[self.default_field] = entry.is_default
                if self.timestamps:
                    record["updated_at"] = _now()
        return self.ordered(owner)


def _prepare_option(data: Dict[str, Any]) -> Dict[str, Any]:
    if data.get("values") is not None:
        data = dict(data)
        data["values"] = _normalize_values(OptionIn(name="_", values=data["values"]).values)
    return data


ADDRESS_BOOK = Collection("address", ADDRESSES, "sort_order", default_field="is_default", default_scope="type", timestamps=True)
PRODUCT_OPTIONS = Collection("option", OPTIONS, "sort_order", prepare=_prepare_option)
PRODUCT_MEDIA = Collection("media", MEDIA, "sort")


# ---------------------------
# Products
# ---------------------------
def _require_product(product_id: str) -> Dict[str, Any]:
    p = PRODUCTS.get(product_id)
    if not p:
        raise HTTPException(status_code=404, detail="product not found")
    return p

def _product_view(product_id: str) -> Dict[str, Any]:
    return {**PRODUCTS[product_id], "options": PRODUCT_OPTIONS.ordered(product_id)}

async def register_product_logic(payload: ProductIn):
    pid = _new_id()
    PRODUCTS[pid] = _make_product_dict(pid, payload)
    for index, option in enumerate(payload.options):
        data = option.model_dump(mode="json")
        if data.get("sort_order") is None:
            data["sort_order"] = index
        await PRODUCT_OPTIONS.create(pid, data)
    return {"product_id": pid, "product": _product_view(pid)}

async def list_products_logic(
    category: Optional[str] = None,
    search: Optional[str] = None,
    available_only: bool = False,
    page: int = 1,
    page_size: int = 20,
):
    out = []
    term = search.lower() if search else None
    for pid, p in PRODUCTS.items():
        if category and p["category"] != category:
            continue
        if available_only and p["quantity"] <= 0:
            continue
        if term and term not in p["name"].lower():
            continue
        out.append(_product_view(pid))
    start = (page - 1) * page_size
    return {
        "products": out[start:start + page_size],
        "total": len(out),
        "page": page,
        "page_size": page_size,
    }

async def search_product_logic(name: str):
    term = name.lower()
    return [_product_view(pid) for pid, p in PRODUCTS.items() if term in p["name"].lower()]

async def get_product_logic(product_id: str):
    _require_product(product_id)
    return _product_view(product_id)


# ---------------------------
# Cart
# ---------------------------
def _check_selection(product_id: str, selected: Dict[str, str]):
    options = {o["name"]: o for o in OPTIONS.get(product_id, {}).values()}
    for option_name, value_name in selected.items():
        option = options.get(option_name)
        if option is None:
            raise HTTPException(status_code=400, detail=f"unknown option: {option_name}")
        if not any(v["name"] == value_name for v in option["values"]):
            raise HTTPException(status_code=400, detail=f"unknown value for {option_name}: {value_name}")

async def cart_add_logic(payload: AddToCartIn):
    if payload.quantity <= 0:
        raise HTTPException(status_code=400, detail="quantity must be > 0")
    _require_product(payload.product_id)
    _check_selection(payload.product_id, payload.selected_options)
    cart = CARTS.setdefault(payload.user_email, [])
    line = next((x for x in cart if x["product_id"] == payload.product_id and x["selected_options"] == payload.selected_options), None)
    held = line["quantity"] if line else 0
    if held + payload.quantity > MAX_LINE_QUANTITY:
        raise HTTPException(status_code=400, detail=f"quantity per line cannot exceed {MAX_LINE_QUANTITY}")
    if line is not None:
        line["quantity"] += payload.quantity
    else:
        cart.append({
            "product_id": payload.product_id,
            "quantity": payload.quantity,
            "selected_options": dict(payload.selected_options),
        })
    return {"user_email": payload.user_email, "cart": cart}

async def view_cart_logic(user_email: str):
    items = []
    for line in CARTS.get(user_email, []):
        product = _product_view(line["product_id"]) if line["product_id"] in PRODUCTS else None
        items.append({**line, "product": product, "available": product is not None})
    return {"user_email": user_email, "items": items}

async def cart_remove_logic(payload: RemoveFromCartIn):
    cart = CARTS.setdefault(payload.user_email, [])
    lines = [line for line in cart if line["product_id"] == payload.product_id]
    if not lines:
        return {"user_email": payload.user_email, "cart": cart}

    qty_to_remove = payload.quantity
    if qty_to_remove is not None and qty_to_remove <= 0:
        raise HTTPException(status_code=400, detail="quantity must be > 0")

    if qty_to_remove is None:
        CARTS[payload.user_email] = [line for line in cart if line["product_id"] != payload.product_id]
    else:
        line = lines[0]
        if qty_to_remove >= line["quantity"]:
            cart.remove(line)
        else:
            line["quantity"] -= qty_to_remove
    return {"user_email": payload.user_email, "cart": CARTS[payload.user_email]}


# Utility: reset (for tests/demo)
async def reset_all_logic():
    reset_all()
    return {"status": "reset"}
