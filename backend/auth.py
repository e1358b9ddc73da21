from functools import wraps
from typing import Tuple

from flask import jsonify
from flask_jwt_extended import (
    JWTManager,
    create_access_token,
    get_jwt,
    get_jwt_identity,
    jwt_required,
)

from .errors import Forbidden, Unauthenticated

BUYER = "buyer"
ADMIN = "admin"
POSTER = "poster"
ALLOWED_USER_ROLES = {BUYER, ADMIN, POSTER}
CATALOG_MANAGER_ROLES = (ADMIN, POSTER)


def init_jwt(app) -> JWTManager:
    """Attach the token verifier and its JSON failure responses to ``app``."""
    jwt = JWTManager(app)

    @jwt.unauthorized_loader
    def missing_token(reason):
        error = Unauthenticated()
        return jsonify(error.to_dict()), error.status_code

    @jwt.invalid_token_loader
    def invalid_token(reason):
        app.logger.warning("Rejected token: %s", reason)
        error = Unauthenticated("Invalid token")
        return jsonify(error.to_dict()), error.status_code

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        error = Unauthenticated("Invalid token")
        return jsonify(error.to_dict()), error.status_code

    return jwt


def issue_token(user_id, role: str) -> str:
    # Expiry comes from JWT_ACCESS_TOKEN_EXPIRES.
    return create_access_token(
        identity=str(user_id), additional_claims={"role": role}
    )


def current_identity() -> Tuple[str, str]:
    """Return ``(user_id, role)`` from the verified token of this request."""
    return get_jwt_identity(), get_jwt().get("role", BUYER)


def role_required(*roles: str):
    allowed = frozenset(roles)

    def decorator(view):
        @wraps(view)
        @jwt_required()
        def wrapper(*args, **kwargs):
            _, role = current_identity()
            if allowed and role not in allowed:
                raise Forbidden()
            return view(*args, **kwargs)

        return wrapper

    return decorator
