import json


def _add_product(client, headers, **payload):
    response = client.post("/catalog", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


def test_requires_token(client):
    assert client.get("/cart").status_code == 401
    assert client.get("/cart", headers={"Authorization": "Bearer junk"}).status_code == 401


def test_catalog_crud(client, auth_headers):
    soap = _add_product(client, auth_headers, name="Soap", price="10", stock=5)
    _add_product(client, auth_headers, name="Green Tea", price="4.5", stock=2, unit="box")

    listing = client.get("/catalog", params={"search": "tea"}, headers=auth_headers).json()
    assert listing["total_items"] == 2
    assert [p["name"] for p in listing["products"]] == ["Green Tea"]

    updated = client.patch(f"/catalog/{soap['id']}", json={"stock": 8}, headers=auth_headers)
    assert updated.json()["stock"] == 8

    assert client.delete(f"/catalog/{soap['id']}", headers=auth_headers).json() == {"ok": True}
    assert client.get("/catalog", headers=auth_headers).json()["total_items"] == 1


def test_catalog_validation(client, auth_headers):
    response = client.post("/catalog", json={"name": "", "price": "1"}, headers=auth_headers)
    assert response.status_code == 422

    response = client.patch("/catalog/ghost", json={"stock": 1}, headers=auth_headers)
    assert response.status_code == 404


def test_cart_and_checkout_flow(client, auth_headers):
    soap = _add_product(client, auth_headers, name="Soap", price="10", stock=5)
    tea = _add_product(client, auth_headers, name="Tea", price="5", stock=4)

    client.post("/cart/items", json={"product_id": soap["id"]}, headers=auth_headers)
    client.post("/cart/items", json={"product_id": soap["id"]}, headers=auth_headers)
    cart = client.post("/cart/items", json={"product_id": tea["id"]}, headers=auth_headers).json()
    assert cart["total"] == "25.00"
    assert cart["item_count"] == 3

    response = client.post(
        "/sales/checkout",
        json={"customer_name": "Jane", "customer_mobile": "555-1234"},
        headers=auth_headers,
    )
    assert response.status_code == 200, response.text
    body = response.json()
    assert body["total"] == "25.00"
    assert body["item_count"] == 3
    assert body["receipt"]["customer_name"] == "Jane"
    assert body["receipt"]["customer_mobile"] == "555-1234"

    stocks = {p["name"]: p["stock"] for p in client.get("/catalog", headers=auth_headers).json()["products"]}
    assert stocks == {"Soap": 3, "Tea": 3}

    cart = client.get("/cart", headers=auth_headers).json()
    assert cart["lines"] == []
    assert cart["customer_name"] == ""

    receipt = client.get("/sales/receipt", headers=auth_headers).json()
    assert receipt["order_number"] == body["order_number"]

    client.delete("/sales/receipt", headers=auth_headers)
    assert client.get("/sales/receipt", headers=auth_headers).status_code == 404


def test_cart_quantity_changes(client, auth_headers):
    soap = _add_product(client, auth_headers, name="Soap", price="2", stock=3)
    client.post("/cart/items", json={"product_id": soap["id"]}, headers=auth_headers)

    cart = client.patch(f"/cart/items/{soap['id']}", json={"value": "9"}, headers=auth_headers).json()
    assert cart["lines"][0]["qty"] == 3

    cart = client.patch(f"/cart/items/{soap['id']}", json={"value": "abc"}, headers=auth_headers).json()
    assert cart["lines"][0]["qty"] == 1

    cart = client.patch(f"/cart/items/{soap['id']}", json={"delta": -1}, headers=auth_headers).json()
    assert cart["lines"] == []

    missing = client.patch(f"/cart/items/{soap['id']}", json={"delta": 1}, headers=auth_headers)
    assert missing.status_code == 404

    both = client.patch(f"/cart/items/{soap['id']}", json={"delta": 1, "value": 2}, headers=auth_headers)
    assert both.status_code == 422


def test_empty_checkout_is_rejected_without_writing(client, auth_headers):
    response = client.post("/sales/checkout", json={}, headers=auth_headers)
    assert response.status_code == 400
    assert response.json()["detail"] == "Cart is empty"
    assert client.get("/sales", headers=auth_headers).json()["order_count"] == 0


def test_lock_gates_checkout_and_sections(client, auth_headers):
    soap = _add_product(client, auth_headers, name="Soap", price="10", stock=5)
    client.post("/cart/items", json={"product_id": soap["id"]}, headers=auth_headers)

    assert client.post("/lock", headers=auth_headers).json() == {"locked": True}

    response = client.post("/sales/checkout", json={}, headers=auth_headers)
    assert response.status_code == 423
    assert client.delete(f"/catalog/{soap['id']}", headers=auth_headers).status_code == 423

    denied = client.post("/sections/sales/access", json={}, headers=auth_headers).json()
    assert denied == {"section": "sales", "granted": False}
    granted = client.post("/sections/sales/access", json={"pin": "1234"}, headers=auth_headers).json()
    assert granted["granted"] is True

    assert client.post("/unlock", json={"pin": "0000"}, headers=auth_headers).status_code == 401
    assert client.post("/unlock", json={"pin": "1234"}, headers=auth_headers).json() == {"locked": False}
    assert client.post("/sales/checkout", json={}, headers=auth_headers).status_code == 200


def test_sales_report_edit_and_delete(client, auth_headers):
    soap = _add_product(client, auth_headers, name="Soap", price="10", stock=5)
    client.post("/cart/items", json={"product_id": soap["id"]}, headers=auth_headers)
    sale = client.post("/sales/checkout", json={"customer_name": "Jane"}, headers=auth_headers).json()

    report = client.get("/sales", params={"filter_type": "daily", "search": "jane"}, headers=auth_headers).json()
    assert report["order_count"] == 1
    assert report["revenue"] == "10.00"

    assert client.get("/sales", params={"filter_month": "March"}, headers=auth_headers).status_code == 422

    edited = client.patch(
        f"/sales/{sale['sale_id']}",
        json={
            "order_number": "ORD-111111",
            "date_str": "3/15/2024",
            "customer_name": "Jane",
            "items": [{"name": "Soap", "price": "10", "qty": 4}],
        },
        headers=auth_headers,
    ).json()
    assert edited["total"] == "40"
    assert edited["item_count"] == 4

    receipt = client.get(f"/sales/{sale['sale_id']}", headers=auth_headers).json()
    assert receipt["total"] == "40.00"

    assert client.delete(f"/sales/{sale['sale_id']}", headers=auth_headers).json() == {"ok": True}
    assert client.get("/sales", headers=auth_headers).json()["order_count"] == 0


def test_change_pin(client, auth_headers):
    assert client.put("/settings/pin", json={"pin": "12"}, headers=auth_headers).status_code == 400
    assert client.put("/settings/pin", json={"pin": "4321"}, headers=auth_headers).json() == {"ok": True}

    client.post("/lock", headers=auth_headers)
    assert client.post("/unlock", json={"pin": "4321"}, headers=auth_headers).status_code == 200


def test_backup_download_and_import(client, auth_headers):
    _add_product(client, auth_headers, name="Soap", price="10", stock=5)

    response = client.get("/backup", headers=auth_headers)
    assert response.status_code == 200
    assert "bizdash_backup_" in response.headers["content-disposition"]
    dump = json.loads(response.text)
    assert "exportedAt" in dump

    dump["items"][0]["stock"] = 50
    restored = client.post("/backup/import", json=dump, headers=auth_headers).json()
    assert restored == {"products": 1, "sales": 0}

    products = client.get("/catalog", headers=auth_headers).json()["products"]
    assert [(p["name"], p["stock"]) for p in products] == [("Soap", 50)]

    bad = client.post("/backup/import", json={"items": 3}, headers=auth_headers)
    assert bad.status_code == 400


def test_sign_out_revokes_token_and_closes_terminal(client, auth_headers):
    context = client.app.state.context
    client.get("/cart", headers=auth_headers)
    assert len(context.open_terminals) == 1

    assert client.post("/auth/sign-out", headers=auth_headers).json() == {"ok": True}
    assert context.open_terminals == []

    assert client.get("/cart", headers=auth_headers).status_code == 401
    assert context.open_terminals == []

    fresh = client.post("/auth/anonymous").json()["access_token"]
    assert client.get("/cart", headers={"Authorization": f"Bearer {fresh}"}).status_code == 200
