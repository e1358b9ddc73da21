import io
import logging
import os

import pytest

from backend.app import INSECURE_JWT_SECRET, create_app


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.get_json() == {"status": "ok"}


def test_unknown_route_renders_json(client):
    response = client.get("/api/nothing-here")

    assert response.status_code == 404
    assert "message" in response.get_json()


def test_unexpected_error_renders_detail(app):
    def explode():
        raise RuntimeError("database went away")

    app.add_url_rule("/boom", "boom", explode)

    response = app.test_client().get("/boom")

    assert response.status_code == 500
    assert response.get_json() == {
        "message": "Internal server error",
        "error": "database went away",
    }


def test_cors_headers(client):
    response = client.get("/api/products", headers={"Origin": "http://shop.test"})

    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_missing_mongo_uri_stops_startup(tmp_path):
    with pytest.raises(SystemExit):
        create_app(config={"MONGO_URI": None, "UPLOAD_FOLDER": str(tmp_path)})


def test_insecure_secret_is_reported(db, tmp_path, caplog):
    create_app(
        config={"JWT_SECRET_KEY": INSECURE_JWT_SECRET, "UPLOAD_FOLDER": str(tmp_path)},
        database=db,
    )

    assert "insecure default" in caplog.text


def test_upload_stores_file_and_serves_it(client, app, buyer_headers):
    response = client.post(
        "/api/upload",
        data={"image": (io.BytesIO(b"fake-image-bytes"), "Holiday Photo.PNG")},
        headers=buyer_headers,
        content_type="multipart/form-data",
    )

    assert response.status_code == 200
    image_url = response.get_json()["imageUrl"]
    assert image_url.startswith("http://localhost/uploads/")
    filename = image_url.rsplit("/", 1)[1]
    stem, extension = os.path.splitext(filename)
    assert stem.isdigit()
    assert extension == ".PNG"
    assert os.path.exists(os.path.join(app.config["UPLOAD_FOLDER"], filename))

    served = client.get(f"/uploads/{filename}")
    assert served.data == b"fake-image-bytes"


def test_upload_without_file(client, buyer_headers):
    response = client.post(
        "/api/upload", data={}, headers=buyer_headers, content_type="multipart/form-data"
    )

    assert response.status_code == 400
    assert response.get_json() == {"message": "No file uploaded"}


def test_upload_requires_token(client):
    response = client.post(
        "/api/upload",
        data={"image": (io.BytesIO(b"x"), "a.png")},
        content_type="multipart/form-data",
    )

    assert response.status_code == 401


def test_upload_keeps_extension_of_non_ascii_name(client, buyer_headers):
    response = client.post(
        "/api/upload",
        data={"image": (io.BytesIO(b"x"), "фото.jpg")},
        headers=buyer_headers,
        content_type="multipart/form-data",
    )

    filename = response.get_json()["imageUrl"].rsplit("/", 1)[1]
    assert os.path.splitext(filename)[1] == ".jpg"


def test_upload_drops_unsafe_extension(client, buyer_headers):
    response = client.post(
        "/api/upload",
        data={"image": (io.BytesIO(b"x"), "photo.jp g")},
        headers=buyer_headers,
        content_type="multipart/form-data",
    )

    filename = response.get_json()["imageUrl"].rsplit("/", 1)[1]
    assert filename.isdigit()


def test_upload_over_size_limit(client, app, buyer_headers):
    app.config["MAX_CONTENT_LENGTH"] = 10

    response = client.post(
        "/api/upload",
        data={"image": (io.BytesIO(b"x" * 1024), "big.png")},
        headers=buyer_headers,
        content_type="multipart/form-data",
    )

    assert response.status_code == 413
    assert "message" in response.get_json()


def test_unreachable_database_stops_startup(tmp_path):
    uri = "mongodb://127.0.0.1:1/shop?serverSelectionTimeoutMS=200&connectTimeoutMS=200"

    with pytest.raises(SystemExit):
        create_app(config={"MONGO_URI": uri, "UPLOAD_FOLDER": str(tmp_path)})


def test_successful_login_is_logged(client, app, caplog):
    caplog.set_level(logging.INFO, logger=app.logger.name)
    client.post(
        "/api/register",
        json={"name": "Ada", "email": "ada@example.com", "password": "pw"},
    )

    response = client.post("/api/login", json={"email": "ada@example.com", "password": "pw"})

    assert "User ada@example.com logged in" in caplog.text
    assert response.get_json()["token"] not in caplog.text
