# storefront_api/main.py
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from typing import Optional, List

from .core import (
    ProductIn, OptionIn, OptionPatch, AddressIn, AddressPatch, MediaIn, MediaPatch,
    ReorderEntry, AddToCartIn, RemoveFromCartIn
)
from .logic import (
    ADDRESS_BOOK, PRODUCT_OPTIONS, PRODUCT_MEDIA, _require_product,
    register_product_logic, list_products_logic, search_product_logic, get_product_logic,
    cart_add_logic, view_cart_logic, cart_remove_logic, reset_all_logic
)

app = FastAPI(title="storefront-api (in-memory reference backend)")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # or restrict to ["http://localhost:5173"]
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(HTTPException)
async def http_error(request: Request, exc: HTTPException):
    # clients read "message"; "detail" is kept for FastAPI tooling
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail, "message": str(exc.detail)})


# ---------------------------
# Seller endpoints
# ---------------------------
@app.post("/seller/products", status_code=201)
async def seller_register(payload: ProductIn):
    return await register_product_logic(payload)

# ---------------------------
# Product endpoints
# ---------------------------
@app.get("/products")
async def list_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    available_only: bool = False,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
):
    return await list_products_logic(category, search, available_only, page, page_size)

@app.get("/products/search")
async def search_product(name: str = Query(..., min_length=1)):
    # empty list rather than 404, caller can decide
    return await search_product_logic(name)

@app.get("/products/{product_id}")
async def get_product(product_id: str):
    return await get_product_logic(product_id)

# ---------------------------
# Product options
# ---------------------------
@app.get("/products/{product_id}/options")
async def list_options(product_id: str):
    _require_product(product_id)
    return PRODUCT_OPTIONS.ordered(product_id)

@app.post("/products/{product_id}/options", status_code=201)
async def create_option(product_id: str, payload: OptionIn):
    _require_product(product_id)
    return await PRODUCT_OPTIONS.create(product_id, payload.model_dump(mode="json"))

# declared before /{option_id} so "reorder" is not taken for an id
@app.put("/products/{product_id}/options/reorder")
async def reorder_options(product_id: str, entries: List[ReorderEntry]):
    _require_product(product_id)
    return await PRODUCT_OPTIONS.reorder(product_id, entries)

@app.put("/products/{product_id}/options/{option_id}")
async def update_option(product_id: str, option_id: str, payload: OptionPatch):
    _require_product(product_id)
    return await PRODUCT_OPTIONS.update(product_id, option_id, payload.model_dump(mode="json", exclude_unset=True))

@app.delete("/products/{product_id}/options/{option_id}")
async def delete_option(product_id: str, option_id: str):
    _require_product(product_id)
    return await PRODUCT_OPTIONS.delete(product_id, option_id)

# ---------------------------
# Product media
# ---------------------------
@app.get("/products/{product_id}/media")
async def list_media(product_id: str):
    _require_product(product_id)
    return PRODUCT_MEDIA.ordered(product_id)

@app.post("/products/{product_id}/media", status_code=201)
async def add_media(product_id: str, payload: MediaIn):
    _require_product(product_id)
    return await PRODUCT_MEDIA.create(product_id, payload.model_dump(mode="json"))

@app.put("/products/{product_id}/media/reorder")
async def reorder_media(product_id: str, entries: List[ReorderEntry]):
    _require_product(product_id)
    return await PRODUCT_MEDIA.reorder(product_id, entries)

@app.put("/products/{product_id}/media/{media_id}")
async def update_media(product_id: str, media_id: str, payload: MediaPatch):
    _require_product(product_id)
    return await PRODUCT_MEDIA.update(product_id, media_id, payload.model_dump(mode="json", exclude_unset=True))

@app.delete("/products/{product_id}/media/{media_id}")
async def delete_media(product_id: str, media_id: str):
    _require_product(product_id)
    return await PRODUCT_MEDIA.delete(product_id, media_id)

# ---------------------------
# Address book
# ---------------------------
@app.get("/users/{user_email}/addresses")
async def list_addresses(user_email: str):
    return ADDRESS_BOOK.ordered(user_email)

@app.post("/users/{user_email}/addresses", status_code=201)
async def create_address(user_email: str, payload: AddressIn):
    return await ADDRESS_BOOK.create(user_email, payload.model_dump(mode="json"))

@app.put("/users/{user_email}/addresses/reorder")
async def reorder_addresses(user_email: str, entries: List[ReorderEntry]):
    return await ADDRESS_BOOK.reorder(user_email, entries)

@app.put("/users/{user_email}/addresses/{address_id}")
async def update_address(user_email: str, address_id: str, payload: AddressPatch):
    return await ADDRESS_BOOK.update(user_email, address_id, payload.model_dump(mode="json", exclude_unset=True))

@app.delete("/users/{user_email}/addresses/{address_id}")
async def delete_address(user_email: str, address_id: str):
    return await ADDRESS_BOOK.delete(user_email, address_id)

# ---------------------------
# Cart endpoints
# ---------------------------
@app.post("/cart/add")
async def cart_add(payload: AddToCartIn):
    return await cart_add_logic(payload)

@app.get("/cart/{user_email}")
async def view_cart(user_email: str):
    return await view_cart_logic(user_email)

@app.post("/cart/remove")
async def cart_remove(payload: RemoveFromCartIn):
    return await cart_remove_logic(payload)

# ---------------------------
# Utility: reset (for tests/demo)
# ---------------------------
@app.post("/reset")
async def reset_all():
    return await reset_all_logic()


def run(host: str = "127.0.0.1", port: int = 8085):
    import uvicorn
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    run()
