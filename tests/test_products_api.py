from conftest import headers_for, make_product, make_user
from schemas import Role

RICE = {
    "name": "Organic Basmati Rice",
    "category": "grains",
    "sku": "ORG-RICE-2",
    "productType": "Variable",
    "tags": ["rice", "basmati"],
    "shortDescription": "Aged long grain rice",
}


def test_seller_creates_product_from_form_strings(client, db, seller):
    body = {
        **RICE,
        "variants": [
            {"size": "1kg", "price": "12000", "discountPrice": "", "stock": "10", "unit": "Kg"},
            {"size": "5kg", "price": "55000", "discountPrice": "52000", "stock": "3"},
        ],
    }
    resp = client.post("/api/products", json=body, headers=headers_for(seller))
    assert resp.status_code == 201
    product = resp.json()
    assert product["sellerId"] == str(seller["_id"])
    assert product["variants"] == [
        {"size": "1kg", "color": "", "price": 12000, "discountPrice": None, "stock": 10, "unit": "Kg"},
        {"size": "5kg", "color": "", "price": 55000, "discountPrice": 52000, "stock": 3, "unit": "Piece"},
    ]


def test_product_without_variants_gets_a_default_one(client, db, seller):
    resp = client.post("/api/products", json={**RICE, "price": "4500", "stock": 7}, headers=headers_for(seller))
    assert resp.status_code == 201
    assert resp.json()["variants"] == [
        {"size": "Default", "color": "", "price": 4500, "discountPrice": None, "stock": 7, "unit": "Piece"}
    ]


def test_bad_variant_is_rejected(client, db, seller):
    body = {**RICE, "variants": [{"size": "1kg", "price": "twelve"}]}
    resp = client.post("/api/products", json=body, headers=headers_for(seller))
    assert resp.status_code == 400
    assert db["product"].count_documents({}) == 0


def test_buyers_cannot_list_products(client, db, buyer):
    resp = client.post("/api/products", json={**RICE, "price": 100}, headers=headers_for(buyer))
    assert resp.status_code == 403


def test_duplicate_sku(client, db, seller):
    make_product(db, seller, sku=RICE["sku"])
    resp = client.post("/api/products", json={**RICE, "price": 100}, headers=headers_for(seller))
    assert resp.status_code == 400
    assert resp.json()["code"] == "DUPLICATE_SKU"


def test_search_and_fetch(client, db, seller):
    product = make_product(db, seller)
    assert [p["sku"] for p in client.get("/api/products", params={"q": "basmati"}).json()] == ["ORG-RICE-1"]
    assert client.get("/api/products", params={"q": "quinoa"}).json() == []
    assert client.get("/api/products", params={"category": "grains"}).json()[0]["id"] == str(product["_id"])
    assert client.get(f"/api/products/seller/{seller['_id']}").json()[0]["sku"] == "ORG-RICE-1"
    assert client.get(f"/api/products/{product['_id']}").json()["isOrganic"] is True
    assert client.get("/api/products/5f1d7f1d7f1d7f1d7f1d7f1d").status_code == 404


def test_only_owner_updates(client, db, seller):
    product = make_product(db, seller)
    other = make_user(db, Role.seller, username="otherseller")
    resp = client.put(f"/api/products/{product['_id']}", json={"name": "Mine now"}, headers=headers_for(other))
    assert resp.status_code == 403


def test_update_replaces_variants(client, db, seller):
    product = make_product(db, seller)
    resp = client.put(
        f"/api/products/{product['_id']}",
        json={"name": "Brown Rice", "variants": [{"size": "2kg", "price": "21000", "stock": "4"}]},
        headers=headers_for(seller),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "Brown Rice"
    assert body["sku"] == "ORG-RICE-1"
    assert [(v["size"], v["price"], v["stock"]) for v in body["variants"]] == [("2kg", 21000, 4)]


def test_update_rejects_empty_variants(client, db, seller):
    product = make_product(db, seller)
    resp = client.put(f"/api/products/{product['_id']}", json={"variants": []}, headers=headers_for(seller))
    assert resp.status_code == 400


def test_delete_product(client, db, seller, admin):
    product = make_product(db, seller)
    assert client.delete(f"/api/products/{product['_id']}", headers=headers_for(admin)).status_code == 204
    assert db["product"].count_documents({}) == 0


def test_admin_inventory(client, db, seller, admin):
    make_product(db, seller)
    inventory = client.get("/api/admin/inventory", headers=headers_for(admin)).json()
    assert inventory[0]["totalStock"] == 7

    resp = client.put(
        "/api/admin/inventory/ORG-RICE-1",
        json={"variants": [{"size": "1kg", "price": 12000, "discountPrice": 9900, "stock": "50"}]},
        headers=headers_for(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["variants"][0]["stock"] == 50
    assert client.get("/api/admin/inventory", headers=headers_for(seller)).status_code == 403
    missing = client.put("/api/admin/inventory/NOPE", json={"variants": [{"size": "1kg", "price": 1}]}, headers=headers_for(admin))
    assert missing.status_code == 404


def test_null_leaves_required_fields_alone(client, db, seller):
    product = make_product(db, seller)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"brand": "Acme"}})
    resp = client.put(
        f"/api/products/{product['_id']}",
        json={"name": None, "tags": None, "brand": None},
        headers=headers_for(seller),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["name"] == "Organic Basmati Rice"
    assert body["tags"] == ["rice"]
    assert body["brand"] is None


def test_update_with_wrongly_typed_field_is_a_400(client, db, seller):
    product = make_product(db, seller)
    resp = client.put(
        f"/api/products/{product['_id']}",
        json={"variants": [{"size": "1kg", "price": 100, "color": 5}]},
        headers=headers_for(seller),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_variant_with_non_string_color_is_a_400(client, db, seller):
    body = {**RICE, "variants": [{"size": "1kg", "price": "12000", "color": 5}]}
    resp = client.post("/api/products", json=body, headers=headers_for(seller))
    assert resp.status_code == 400
    assert db["product"].count_documents({}) == 0
