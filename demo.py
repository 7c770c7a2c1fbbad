#!/usr/bin/env python
# Walk-through against a running backend:  python -m storefront_api.main  (port 8085)
import asyncio

from storefront_sdk.client import AsyncStoreClient, StoreClient
from storefront_sdk.models import ByName, CartLine, address_natural_key
from storefront_sdk.pricing import cart_total, line_total, price_range, unit_price
from storefront_sdk.staging import StagedCollectionEditor

BASE_URL = "http://127.0.0.1:8085"


async def edit_addresses(user_email: str):
    async with AsyncStoreClient(base_url=BASE_URL) as api:
        editor = StagedCollectionEditor(api.addresses(user_email), natural_key=address_natural_key)
        await editor.load()

        home = editor.stage_create({
            "name": "Home", "line1": "1 Main St", "city": "Springfield",
            "region": "IL", "postal_code": "62701",
        })
        work = editor.stage_create({
            "name": "Work", "line1": "200 Market St", "city": "Springfield",
            "region": "IL", "postal_code": "62704",
        })
        editor.stage_update(work, {"line2": "Suite 400"})
        editor.stage_set_default(work)
        editor.stage_reorder([work, home])
        print("Staged:", [str(a.id) for a in editor.items])

        saved = await editor.commit()
        for a in saved:
            print(f"  {a.sort_order}. {a.name} {a.line1} {a.line2 or ''} default={a.is_default} id={a.id}")


def main():
    c = StoreClient(base_url=BASE_URL)

    # -----------------------------
    # Reset everything for demo
    # -----------------------------
    print("Resetting store...")
    c.reset()

    # -----------------------------
    # Register a configurable product
    # -----------------------------
    print("\nRegistering products...")
    tee = c.register_product("T-Shirt", "20.00", 10, "apparel", options=[
        {"name": "Size", "display_name": "Choose Size", "values": [
            {"name": "Small", "price_adjustment": "0", "is_default": True},
            {"name": "Large", "price_adjustment": "5.00"},
        ]},
        {"name": "Print", "display_name": "Choose Print", "values": [
            {"name": "Plain", "price_adjustment": "-2.00"},
            {"name": "Logo", "price_adjustment": "3.00"},
        ]},
    ])
    mug = c.register_product("Mug", "8.50", 25, "kitchen")
    print(tee.name, tee.id)
    print(mug.name, mug.id)

    # -----------------------------
    # Price range across variants
    # -----------------------------
    rng = price_range(tee.base_price, tee.options)
    print(f"\n{tee.name}: {rng.min} - {rng.max} (range: {rng.has_range})")
    large_logo = unit_price(tee.base_price, tee.options, ByName({"Size": "Large", "Print": "Logo"}))
    print("Large / Logo:", large_logo, "x2 =", line_total(large_logo, 2))

    # -----------------------------
    # Cart with client-side totals
    # -----------------------------
    user_email = "alice@example.com"
    print(f"\nFilling cart for {user_email}...")
    c.add_to_cart(user_email, tee.id, 2, {"Size": "Large"})
    c.add_to_cart(user_email, mug.id, 1)
    cart = c.view_cart(user_email)
    lines = [CartLine.model_validate(it) for it in cart["items"]]
    print("Cart total:", cart_total(lines))

    # -----------------------------
    # Staged address book
    # -----------------------------
    print("\nEditing address book...")
    asyncio.run(edit_addresses(user_email))


if __name__ == "__main__":
    main()
