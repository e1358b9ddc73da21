from datetime import datetime, timezone
from typing import Dict, List, Optional

from pymongo import ReturnDocument

from .documents import (
    fetch_by_ids,
    is_number,
    normalize_object_id_value,
    safe_float,
    serialize_datetime,
    stringify_id,
)
from .errors import NotFound, ValidationError

FEATURED_SHOWCASE_LIMIT = 8
FEATURED_TRUTHY_STRINGS = ("true", "1")


def is_featured_value(value) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value in FEATURED_TRUTHY_STRINGS
    return is_number(value) and value == 1


def serialize_product(product_document, user_names: Optional[Dict] = None):
    """Render a product for the API.

    With ``user_names`` the creator is expanded to ``{"id", "name"}`` (or
    ``None`` when the user no longer exists), otherwise it stays a plain id.
    """
    if not product_document:
        return None

    created_by = product_document.get("created_by")
    if user_names is not None:
        creator = user_names.get(created_by)
        created_by_value = (
            {"id": str(created_by), "name": creator} if creator is not None else None
        )
    else:
        created_by_value = stringify_id(created_by)

    return {
        "id": str(product_document["_id"]),
        "name": product_document.get("name", ""),
        "price": product_document.get("price"),
        "description": product_document.get("description"),
        "image": product_document.get("image"),
        "category": product_document.get("category"),
        "discount": product_document.get("discount", 0),
        "featured": bool(product_document.get("featured", False)),
        "createdBy": created_by_value,
        "createdAt": serialize_datetime(product_document.get("created_at")),
    }


def build_creator_names(db, product_documents) -> Dict:
    users = fetch_by_ids(
        db.users, [document.get("created_by") for document in product_documents]
    )
    return {user_id: user.get("name", "") or "" for user_id, user in users.items()}


def list_products(db) -> List[Dict]:
    product_docs = list(db.products.find())
    user_names = build_creator_names(db, product_docs)
    return [serialize_product(document, user_names) for document in product_docs]


def list_featured_products(db, limit: int = FEATURED_SHOWCASE_LIMIT) -> List[Dict]:
    cursor = db.products.find({"featured": True}).limit(limit)
    return [serialize_product(document) for document in cursor]


def create_product(db, payload: Dict, creator_id) -> Dict:
    name = str(payload.get("name") or "").strip()
    raw_price = payload.get("price")
    if not name or raw_price is None or raw_price == "":
        raise ValidationError("Name and price are required")

    price_value = safe_float(raw_price)
    if price_value is None:
        raise ValidationError("Price must be a valid number.")

    raw_discount = payload.get("discount")
    discount_value = 0
    if raw_discount not in (None, "", 0):
        discount_value = safe_float(raw_discount)
        if discount_value is None:
            raise ValidationError("Discount must be a valid number.")

    product_document = {
        "name": name,
        "price": price_value,
        "description": payload.get("description"),
        "image": payload.get("image"),
        "category": payload.get("category"),
        "discount": discount_value,
        "featured": is_featured_value(payload.get("featured")),
        "created_by": normalize_object_id_value(creator_id),
        "created_at": datetime.now(timezone.utc),
    }
    result = db.products.insert_one(product_document)
    product_document["_id"] = result.inserted_id
    return serialize_product(product_document)


def set_product_featured(db, product_id: str, featured) -> Dict:
    if not isinstance(featured, bool):
        raise ValidationError("featured field must be boolean")

    object_id = normalize_object_id_value(product_id)
    product_document = None
    if object_id is not None:
        product_document = db.products.find_one_and_update(
            {"_id": object_id},
            {"$set": {"featured": featured}},
            return_document=ReturnDocument.AFTER,
        )
    if not product_document:
        raise NotFound("Product not found")
    return serialize_product(product_document)


def delete_product(db, product_id: str) -> None:
    object_id = normalize_object_id_value(product_id)
    deleted = 0
    if object_id is not None:
        deleted = db.products.delete_one({"_id": object_id}).deleted_count
    if not deleted:
        raise NotFound("Product not found")


# Banners


def serialize_banner(banner_document):
    return {
        "id": str(banner_document["_id"]),
        "image": banner_document.get("image"),
        "title": banner_document.get("title"),
        "subtitle": banner_document.get("subtitle"),
        "link": banner_document.get("link"),
        "active": bool(banner_document.get("active", True)),
        "order": banner_document.get("order", 0),
    }


def get_active_banner(db) -> Dict:
    cursor = (
        db.banners.find({"active": True}).sort([("order", 1), ("_id", 1)]).limit(1)
    )
    for banner_document in cursor:
        return serialize_banner(banner_document)
    raise NotFound("No active banner found")


def create_banner(db, payload: Dict) -> Dict:
    image = payload.get("image")
    if not image:
        raise ValidationError("Image is required")

    active = payload.get("active")
    if active is None:
        active = True
    elif not isinstance(active, bool):
        raise ValidationError("active field must be boolean")

    raw_order = payload.get("order")
    order_value = 0
    if raw_order not in (None, "", 0):
        order_value = safe_float(raw_order)
        if order_value is None:
            raise ValidationError("Order must be a valid number.")
        if order_value.is_integer():
            order_value = int(order_value)

    banner_document = {
        "image": image,
        "title": payload.get("title"),
        "subtitle": payload.get("subtitle"),
        "link": payload.get("link"),
        "active": active,
        "order": order_value,
    }
    result = db.banners.insert_one(banner_document)
    banner_document["_id"] = result.inserted_id
    return serialize_banner(banner_document)
