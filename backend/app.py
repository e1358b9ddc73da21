import os
import re
import time
from datetime import timedelta
from typing import Dict, Optional
from urllib.parse import urljoin

from dotenv import load_dotenv
from flask import Flask, jsonify, request, send_from_directory
from flask_cors import CORS
from flask_jwt_extended import jwt_required
from flask_pymongo import PyMongo
from pymongo.errors import PyMongoError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from . import accounts, cart, catalog
from .auth import CATALOG_MANAGER_ROLES, current_identity, init_jwt, role_required
from .errors import ApiError, InternalError, ValidationError

load_dotenv()

INSECURE_JWT_SECRET = "change-me-in-production"
UPLOAD_EXTENSION_PATTERN = re.compile(r"\.[A-Za-z0-9]+")


def load_config(app: Flask) -> None:
    app.config["MONGO_URI"] = os.getenv("MONGO_URI") or os.getenv("MONGO_URL")
    app.config["MONGO_DBNAME"] = os.getenv("MONGO_DBNAME", "shop")
    app.config["JWT_SECRET_KEY"] = (
        os.getenv("JWT_SECRET_KEY") or os.getenv("JWT_SECRET") or INSECURE_JWT_SECRET
    )
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(hours=1)
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]
    app.config["BCRYPT_ROUNDS"] = int(os.getenv("BCRYPT_ROUNDS", "10"))
    app.config["UPLOAD_FOLDER"] = os.getenv(
        "UPLOAD_FOLDER", os.path.join(app.root_path, "uploads")
    )
    max_upload_mb = int(os.getenv("MAX_UPLOAD_SIZE_MB", "16"))
    app.config["MAX_CONTENT_LENGTH"] = max_upload_mb * 1024 * 1024

    trusted_proxy_hops_raw = os.getenv("TRUSTED_PROXY_HOPS", "1")
    try:
        app.config["TRUSTED_PROXY_HOPS"] = max(0, int(trusted_proxy_hops_raw))
    except (TypeError, ValueError):
        app.config["TRUSTED_PROXY_HOPS"] = 1

    cors_origins = [
        origin.strip()
        for origin in os.getenv("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    ]
    app.config["CORS_ALLOWED_ORIGINS"] = cors_origins or "*"


def connect_database(app: Flask):
    """Open the MongoDB connection or stop the process."""
    if not app.config.get("MONGO_URI"):
        app.logger.error("MONGO_URI is not defined in environment variables.")
        raise SystemExit(1)

    mongo = PyMongo(app)
    try:
        mongo.cx.admin.command("ping")
    except PyMongoError as exc:
        app.logger.error("MongoDB connection error: %s", exc)
        raise SystemExit(1)

    app.logger.info("Connected to MongoDB")
    if mongo.db is not None:
        return mongo.db
    return mongo.cx[app.config["MONGO_DBNAME"]]


def ensure_indexes(app: Flask, db) -> None:
    try:
        db.users.create_index("email", unique=True)
        db.carts.create_index("user")
        db.orders.create_index([("user", 1), ("created_at", -1)])
        db.banners.create_index([("active", 1), ("order", 1)])
    except PyMongoError as exc:
        app.logger.warning("Unable to ensure indexes: %s", exc)


def create_app(config: Optional[Dict] = None, database=None) -> Flask:
    """Create and configure the Flask application.

    ``database`` is an already opened database handle. When it is omitted the
    application connects to ``MONGO_URI`` itself.
    """
    app = Flask(__name__)
    load_config(app)
    if config:
        app.config.update(config)

    if app.config["TRUSTED_PROXY_HOPS"]:
        hops = app.config["TRUSTED_PROXY_HOPS"]
        app.wsgi_app = ProxyFix(
            app.wsgi_app, x_for=hops, x_proto=hops, x_host=hops, x_port=hops
        )

    if app.config["JWT_SECRET_KEY"] == INSECURE_JWT_SECRET:
        app.logger.warning(
            "JWT_SECRET_KEY is not set; tokens are signed with an insecure default."
        )

    os.makedirs(app.config["UPLOAD_FOLDER"], exist_ok=True)

    CORS(
        app,
        origins=app.config["CORS_ALLOWED_ORIGINS"],
        send_wildcard=app.config["CORS_ALLOWED_ORIGINS"] == "*",
        methods=["GET", "POST", "PUT", "DELETE"],
        allow_headers=["Content-Type", "Authorization"],
    )
    init_jwt(app)

    db = database if database is not None else connect_database(app)
    ensure_indexes(app, db)

    # --- Error handlers ---

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"message": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.exception("Unhandled error on %s %s", request.method, request.path)
        return (
            jsonify({"message": InternalError.default_message, "error": str(error)}),
            500,
        )

    # --- Helpers ---

    def get_payload() -> Dict:
        payload = request.get_json(silent=True)
        return payload if isinstance(payload, dict) else {}

    def build_upload_url(filename: str) -> str:
        return urljoin(request.host_url, f"uploads/{filename}")

    def save_upload(upload) -> str:
        extension = os.path.splitext(upload.filename or "")[1]
        if not UPLOAD_EXTENSION_PATTERN.fullmatch(extension):
            extension = ""
        filename = f"{int(time.time() * 1000)}{extension}"
        destination = os.path.join(app.config["UPLOAD_FOLDER"], filename)
        try:
            upload.save(destination)
        except OSError as exc:
            app.logger.error("Unable to store upload %s: %s", filename, exc)
            raise InternalError("We could not store the uploaded image.")
        return filename

    # --- ROUTES ---

    @app.route("/uploads/<path:filename>")
    def serve_uploaded_file(filename: str):
        return send_from_directory(app.config["UPLOAD_FOLDER"], filename)

    @app.route("/api/register", methods=["POST"])
    def register():
        user_id = accounts.register_user(
            db, get_payload(), rounds=app.config["BCRYPT_ROUNDS"]
        )
        app.logger.info("Registered user %s", user_id)
        return jsonify({"message": "User registered successfully!"}), 201

    @app.route("/api/login", methods=["POST"])
    def login():
        payload = get_payload()
        try:
            token = accounts.authenticate(
                db, payload.get("email"), payload.get("password")
            )
        except ApiError:
            app.logger.warning("Failed login attempt from %s", request.remote_addr)
            raise
        app.logger.info(
            "User %s logged in", accounts.normalize_email(payload.get("email"))
        )
        return jsonify({"token": token})

    @app.route("/api/products", methods=["GET"])
    def list_products():
        return jsonify(catalog.list_products(db))

    @app.route("/api/products/featured", methods=["GET"])
    def list_featured_products():
        return jsonify(catalog.list_featured_products(db))

    @app.route("/api/products", methods=["POST"])
    @role_required(*CATALOG_MANAGER_ROLES)
    def create_product():
        user_id, _ = current_identity()
        product = catalog.create_product(db, get_payload(), user_id)
        app.logger.info("Product %s created by %s", product["id"], user_id)
        return jsonify(product), 201

    @app.route("/api/products/<product_id>/featured", methods=["PUT"])
    @role_required(*CATALOG_MANAGER_ROLES)
    def set_product_featured(product_id: str):
        featured = get_payload().get("featured")
        return jsonify(catalog.set_product_featured(db, product_id, featured))

    @app.route("/api/products/<product_id>", methods=["DELETE"])
    @role_required(*CATALOG_MANAGER_ROLES)
    def delete_product(product_id: str):
        catalog.delete_product(db, product_id)
        app.logger.info("Product %s deleted by %s", product_id, current_identity()[0])
        return jsonify({"message": "Product deleted successfully"})

    @app.route("/api/upload", methods=["POST"])
    @jwt_required()
    def upload_image():
        upload = request.files.get("image")
        if not upload or not upload.filename:
            raise ValidationError("No file uploaded")
        filename = save_upload(upload)
        return jsonify({"imageUrl": build_upload_url(filename)})

    @app.route("/api/cart", methods=["POST"])
    @jwt_required()
    def add_to_cart():
        user_id, _ = current_identity()
        payload = get_payload()
        return jsonify(
            cart.add_to_cart(
                db, user_id, payload.get("productId"), payload.get("quantity")
            )
        )

    @app.route("/api/cart", methods=["GET"])
    @jwt_required()
    def get_cart():
        user_id, _ = current_identity()
        return jsonify(cart.get_cart(db, user_id))

    @app.route("/api/cart/<product_id>", methods=["DELETE"])
    @jwt_required()
    def remove_from_cart(product_id: str):
        user_id, _ = current_identity()
        return jsonify(cart.remove_from_cart(db, user_id, product_id))

    @app.route("/api/banner", methods=["GET"])
    def get_banner():
        return jsonify(catalog.get_active_banner(db))

    @app.route("/api/banner", methods=["POST"])
    @role_required(*CATALOG_MANAGER_ROLES)
    def create_banner():
        banner = catalog.create_banner(db, get_payload())
        app.logger.info("Banner %s created by %s", banner["id"], current_identity()[0])
        return jsonify(banner), 201

    @app.route("/api/orders", methods=["POST"])
    @jwt_required()
    def place_order():
        user_id, _ = current_identity()
        order = cart.place_order(db, user_id)
        app.logger.info(
            "Order %s placed by %s with %d items",
            order["id"],
            user_id,
            len(order["items"]),
        )
        return jsonify(order), 201

    @app.route("/api/orders", methods=["GET"])
    @jwt_required()
    def list_orders():
        user_id, _ = current_identity()
        return jsonify(cart.list_orders(db, user_id))

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app


if __name__ == "__main__":
    app = create_app()
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
