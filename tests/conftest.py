import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import create_app

ADMIN_PASSWORD = "admin-secret"


@pytest.fixture
def app():
    settings = Settings(
        database_url="sqlite://",
        seed_catalog=False,
        admin_username="admin",
        admin_password=ADMIN_PASSWORD,
    )
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def db(app, client):
    session = app.state.database.session()
    yield session
    session.close()


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


def signup(client, username, password="pass1234", address="1 Main St"):
    resp = client.post("/auth/signup", json={
        "username": username,
        "password": password,
        "name": username.title(),
        "address": address,
    })
    assert resp.status_code == 201, resp.text
    # tests pass credentials explicitly
    client.cookies.clear()
    return bearer(resp.json()["token"])


@pytest.fixture
def admin_headers(client):
    resp = client.post("/auth/signin", json={"username": "admin", "password": ADMIN_PASSWORD})
    assert resp.status_code == 200, resp.text
    client.cookies.clear()
    return bearer(resp.json()["token"])


@pytest.fixture
def customer_headers(client):
    return signup(client, "alice")


@pytest.fixture
def make_product(client, admin_headers):
    def _make(name="Widget", price="10.00", stock=10, category_id=None):
        resp = client.post("/products", headers=admin_headers, json={
            "name": name,
            "price": price,
            "stock": stock,
            "category_id": category_id,
        })
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make


@pytest.fixture
def make_category(client, admin_headers):
    def _make(name="Electronics", slug="electronics"):
        resp = client.post("/categories", headers=admin_headers, json={"name": name, "slug": slug})
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _make
