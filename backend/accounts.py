from datetime import datetime, timezone
from typing import Dict, Optional

import bcrypt
from pymongo.errors import DuplicateKeyError

from .auth import ALLOWED_USER_ROLES, BUYER, issue_token
from .errors import DuplicateEmail, InvalidCredentials, UserNotFound, ValidationError


def normalize_email(value: Optional[str]) -> str:
    return str(value or "").strip().lower()


def normalize_role(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    if not normalized:
        return BUYER
    if normalized not in ALLOWED_USER_ROLES:
        raise ValidationError(
            "Role must be one of: " + ", ".join(sorted(ALLOWED_USER_ROLES))
        )
    return normalized


def hash_password(password: str, rounds: int = 10) -> bytes:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))


def check_password(password: str, hashed) -> bool:
    if isinstance(hashed, str):
        hashed = hashed.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed)
    except (TypeError, ValueError):
        return False


def register_user(db, payload: Dict, rounds: int = 10):
    """Create a user account and return its id.

    The caller must log in separately to obtain a token.
    """
    name = str(payload.get("name") or "").strip()
    email = normalize_email(payload.get("email"))
    password = payload.get("password")
    password = password if isinstance(password, str) else ""

    if not name or not email or not password:
        raise ValidationError("Name, email and password are required")

    role = normalize_role(payload.get("role"))

    if db.users.find_one({"email": email}):
        raise DuplicateEmail()

    user_document = {
        "name": name,
        "email": email,
        "password": hash_password(password, rounds),
        "role": role,
        "created_at": datetime.now(timezone.utc),
    }
    try:
        result = db.users.insert_one(user_document)
    except DuplicateKeyError:
        raise DuplicateEmail()
    return result.inserted_id


def authenticate(db, email: Optional[str], password: Optional[str]) -> str:
    """Check the credentials and return a freshly issued access token."""
    email = normalize_email(email)
    if not email or not password or not isinstance(password, str):
        raise ValidationError("Email and password required")

    user = db.users.find_one({"email": email})
    if not user:
        raise UserNotFound()

    if not check_password(password, user.get("password")):
        raise InvalidCredentials()

    return issue_token(user["_id"], user.get("role") or BUYER)
