import mongomock
import pytest

from backend.app import create_app

TEST_SECRET = "test-secret-key-with-enough-length-for-hs256"


@pytest.fixture
def db():
    return mongomock.MongoClient()["shop_test"]


@pytest.fixture
def app(db, tmp_path):
    app = create_app(
        config={
            "TESTING": True,
            "JWT_SECRET_KEY": TEST_SECRET,
            "BCRYPT_ROUNDS": 4,
            "UPLOAD_FOLDER": str(tmp_path / "uploads"),
        },
        database=db,
    )
    return app


@pytest.fixture
def client(app):
    return app.test_client()


def register_and_login(client, email, role=None, password="secret-pass"):
    payload = {"name": email.split("@")[0], "email": email, "password": password}
    if role:
        payload["role"] = role
    response = client.post("/api/register", json=payload)
    assert response.status_code == 201
    response = client.post("/api/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.get_json()['token']}"}


@pytest.fixture
def buyer_headers(client):
    return register_and_login(client, "buyer@example.com")


@pytest.fixture
def admin_headers(client):
    return register_and_login(client, "admin@example.com", role="admin")


@pytest.fixture
def poster_headers(client):
    return register_and_login(client, "poster@example.com", role="poster")


@pytest.fixture
def product_id(client, admin_headers):
    response = client.post(
        "/api/products",
        json={"name": "Lime soda", "price": 2.5},
        headers=admin_headers,
    )
    return response.get_json()["id"]


@pytest.fixture
def login_as(client):
    def login(email, role=None):
        return register_and_login(client, email, role=role)

    return login
