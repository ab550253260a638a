from config import Settings
from database import Database
from fastapi.testclient import TestClient
from main import create_app


def test_stats_without_orders(client, admin_headers):
    stats = client.get("/stats", headers=admin_headers).json()
    assert stats["total_users"] >= 1
    assert stats["total_orders"] == 0
    assert stats["total_revenue"] == 0


def test_stats_after_orders(client, admin_headers, customer_headers, make_product):
    product = make_product(price="12.50")
    client.post("/cart", headers=customer_headers, json={"product_id": product["id"], "quantity": 2})
    client.post("/orders", headers=customer_headers, json={})
    client.post("/cart", headers=customer_headers, json={"product_id": product["id"]})
    client.post("/orders", headers=customer_headers, json={})

    stats = client.get("/stats", headers=admin_headers).json()
    assert stats == {"total_users": 2, "total_orders": 2, "total_revenue": 37.5}


def test_sample_catalog_is_seeded_once(tmp_path):
    url = f"sqlite:///{tmp_path / 'shop.db'}"
    settings = Settings(database_url=url, seed_catalog=True)
    with TestClient(create_app(settings, Database(url))) as client:
        products = client.get("/products").json()
        assert {p["name"] for p in products} == {"Smartphone X", "Laptop Pro", "Classic T-Shirt"}
        assert {c["slug"] for c in client.get("/categories").json()} == {"electronics", "clothing"}

    # a restart against the same database does not duplicate anything
    with TestClient(create_app(settings, Database(url))) as client:
        assert len(client.get("/products").json()) == 3
        assert len(client.get("/categories").json()) == 2
