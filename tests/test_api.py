# tests/test_api.py
from fastapi.testclient import TestClient
from storefront_api.main import app

client = TestClient(app)

TEE = {
    "name": "Tee",
    "base_price": "20.00",
    "quantity": 5,
    "category": "apparel",
    "options": [
        {"name": "Size", "values": [
            {"name": "Small", "price_adjustment": "0"},
            {"name": "Large", "price_adjustment": "5.00"},
        ]},
        {"name": "Print", "values": [
            {"name": "Plain", "price_adjustment": "-2.00"},
            {"name": "Logo", "price_adjustment": "3.00"},
        ]},
    ],
}

HOME = {"name": "Home", "line1": "1 Main St", "city": "Springfield", "region": "IL", "postal_code": "62701"}
WORK = {"name": "Work", "line1": "200 Market St", "city": "Springfield", "region": "IL", "postal_code": "62704"}


def reset():
    client.post("/reset")


def register(payload=TEE):
    r = client.post("/seller/products", json=payload)
    assert r.status_code == 201
    return r.json()["product"]


def test_register_product_keeps_money_as_strings():
    reset()
    product = register()
    assert product["base_price"] == "20.00"
    assert [o["name"] for o in product["options"]] == ["Size", "Print"]
    assert [o["sort_order"] for o in product["options"]] == [0, 1]
    large = product["options"][0]["values"][1]
    assert large["price_adjustment"] == "5.00"
    assert large["id"]
    assert large["sort_order"] == 1


def test_register_rejects_negative_price():
    reset()
    r = client.post("/seller/products", json={"name": "Bad", "base_price": "-1"})
    assert r.status_code == 422


def test_list_filter_and_paginate():
    reset()
    register()
    register({"name": "Mug", "base_price": "8.50", "quantity": 0, "category": "kitchen"})
    register({"name": "Tee Deluxe", "base_price": "30", "quantity": 2, "category": "apparel"})

    body = client.get("/products", params={"category": "apparel"}).json()
    assert body["total"] == 2
    assert {p["name"] for p in body["products"]} == {"Tee", "Tee Deluxe"}

    body = client.get("/products", params={"available_only": "true"}).json()
    assert "Mug" not in [p["name"] for p in body["products"]]

    body = client.get("/products", params={"page": 2, "page_size": 2}).json()
    assert body["total"] == 3
    assert len(body["products"]) == 1

    assert client.get("/products", params={"page_size": 0}).status_code == 422


def test_search_and_get():
    reset()
    tee = register()
    found = client.get("/products/search", params={"name": "tee"}).json()
    assert [p["id"] for p in found] == [tee["id"]]
    assert client.get("/products/search", params={"name": "nothing"}).json() == []

    r = client.get(f"/products/{tee['id']}")
    assert r.status_code == 200
    assert len(r.json()["options"]) == 2

    r = client.get("/products/missing")
    assert r.status_code == 404
    assert r.json()["message"] == "product not found"


def test_address_collection_crud_and_single_default():
    reset()
    path = "/users/alice@example.com/addresses"
    home = client.post(path, json={**HOME, "is_default": True}).json()
    work = client.post(path, json={**WORK, "is_default": True}).json()
    billing = client.post(path, json={**WORK, "type": "billing", "is_default": True}).json()

    assert home["sort_order"] == 0 and work["sort_order"] == 1
    assert home["created_at"]

    listed = {a["id"]: a for a in client.get(path).json()}
    assert listed[home["id"]]["is_default"] is False
    assert listed[work["id"]]["is_default"] is True
    assert listed[billing["id"]]["is_default"] is True

    r = client.put(f"{path}/{home['id']}", json={"line2": "Apt 4"})
    assert r.status_code == 200
    assert r.json()["line2"] == "Apt 4"
    assert r.json()["name"] == "Home"

    r = client.delete(f"{path}/{work['id']}")
    assert r.json() == {"status": "deleted", "id": work["id"]}
    assert client.delete(f"{path}/{work['id']}").status_code == 404
    assert client.put(f"{path}/{work['id']}", json={"name": "x"}).status_code == 404


def test_reorder_applies_positions_and_defaults():
    reset()
    path = "/users/bob@example.com/addresses"
    a = client.post(path, json=HOME).json()
    b = client.post(path, json=WORK).json()

    r = client.put(f"{path}/reorder", json=[
        {"id": b["id"], "sort_order": 0, "is_default": True},
        {"id": a["id"], "sort_order": 1, "is_default": False},
    ])
    assert r.status_code == 200
    assert [x["id"] for x in r.json()] == [b["id"], a["id"]]
    assert [x["is_default"] for x in r.json()] == [True, False]


def test_reorder_with_unknown_id_changes_nothing():
    reset()
    path = "/users/carol@example.com/addresses"
    a = client.post(path, json=HOME).json()
    r = client.put(f"{path}/reorder", json=[
        {"id": a["id"], "sort_order": 5},
        {"id": "ghost", "sort_order": 0},
    ])
    assert r.status_code == 404
    assert client.get(path).json()[0]["sort_order"] == 0


def test_option_and_media_collections():
    reset()
    tee = register()
    options = f"/products/{tee['id']}/options"
    color = client.post(options, json={"name": "Color", "values": [{"name": "Red"}, {"name": "Blue", "price_adjustment": "1.50"}]})
    assert color.status_code == 201
    assert color.json()["sort_order"] == 2
    assert client.post(options, json={"name": "Empty", "values": []}).status_code == 422

    r = client.put(f"{options}/{color.json()['id']}", json={"values": [{"name": "Green"}]})
    assert [v["name"] for v in r.json()["values"]] == ["Green"]
    assert len(client.get(f"/products/{tee['id']}").json()["options"]) == 3

    media = f"/products/{tee['id']}/media"
    front = client.post(media, json={"url": "https://cdn.example/front.png"}).json()
    back = client.post(media, json={"url": "https://cdn.example/back.png", "alt": "back"}).json()
    assert (front["sort"], back["sort"]) == (0, 1)
    r = client.put(f"{media}/reorder", json=[
        {"id": back["id"], "sort_order": 0},
        {"id": front["id"], "sort_order": 1},
    ])
    assert [m["id"] for m in r.json()] == [back["id"], front["id"]]

    assert client.get("/products/missing/media").status_code == 404


def test_cart_merges_lines_and_checks_selection():
    reset()
    tee = register()
    email = "dave@example.com"

    r = client.post("/cart/add", json={"user_email": email, "product_id": tee["id"], "quantity": 1, "selected_options": {"Size": "Large"}})
    assert r.status_code == 200
    client.post("/cart/add", json={"user_email": email, "product_id": tee["id"], "quantity": 2, "selected_options": {"Size": "Large"}})
    client.post("/cart/add", json={"user_email": email, "product_id": tee["id"], "quantity": 1, "selected_options": {"Size": "Small"}})

    items = client.get(f"/cart/{email}").json()["items"]
    assert [(i["selected_options"]["Size"], i["quantity"]) for i in items] == [("Large", 3), ("Small", 1)]
    assert all(i["available"] for i in items)
    assert items[0]["product"]["base_price"] == "20.00"

    bad = client.post("/cart/add", json={"user_email": email, "product_id": tee["id"], "selected_options": {"Size": "XXL"}})
    assert bad.status_code == 400
    zero = client.post("/cart/add", json={"user_email": email, "product_id": tee["id"], "quantity": 0})
    assert zero.status_code == 400

    client.post("/cart/remove", json={"user_email": email, "product_id": tee["id"], "quantity": 1})
    assert client.get(f"/cart/{email}").json()["items"][0]["quantity"] == 2
    client.post("/cart/remove", json={"user_email": email, "product_id": tee["id"]})
    assert client.get(f"/cart/{email}").json()["items"] == []


def test_cart_line_quantity_is_capped():
    reset()
    tee = register()
    email = "gina@example.com"
    line = {"user_email": email, "product_id": tee["id"], "quantity": 999, "selected_options": {"Size": "Large"}}

    assert client.post("/cart/add", json=line).status_code == 200
    r = client.post("/cart/add", json={**line, "quantity": 1})
    assert r.status_code == 400
    assert "999" in r.json()["message"]
    assert client.post("/cart/add", json={**line, "selected_options": {}, "quantity": 1000}).status_code == 400

    items = client.get(f"/cart/{email}").json()["items"]
    assert [i["quantity"] for i in items] == [999]
