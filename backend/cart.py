"""Per-user carts and the orders placed from them.

Cart mutations are plain read-modify-write cycles on the cart document.
Two concurrent requests from the same user can therefore lose one of the
updates; there is no version field guarding against it.
"""
from datetime import datetime, timezone
from typing import Dict, List

from .catalog import serialize_product
from .documents import (
    fetch_by_ids,
    normalize_object_id_value,
    serialize_datetime,
    stringify_id,
)
from .errors import NotFound, ValidationError

# Largest quantity a cart line may hold; keeps totals inside a BSON int32.
MAX_LINE_QUANTITY = 2**31 - 1


def parse_quantity(value):
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value <= 0 or value > MAX_LINE_QUANTITY:
        return None
    return value


def serialize_lines(lines, products=None) -> List[Dict]:
    serialized = []
    for line in lines or []:
        product_id = line.get("product")
        if products is None:
            product_value = stringify_id(product_id)
        else:
            product_value = serialize_product(products.get(product_id))
        serialized.append({"product": product_value, "quantity": line.get("quantity")})
    return serialized


def serialize_cart(cart_document, products=None) -> Dict:
    return {
        "id": str(cart_document["_id"]),
        "user": stringify_id(cart_document.get("user")),
        "products": serialize_lines(cart_document.get("products"), products),
    }


def serialize_order(order_document, products=None) -> Dict:
    return {
        "id": str(order_document["_id"]),
        "user": stringify_id(order_document.get("user")),
        "items": serialize_lines(order_document.get("items"), products),
        "createdAt": serialize_datetime(order_document.get("created_at")),
    }


def find_cart(db, user_id):
    return db.carts.find_one({"user": normalize_object_id_value(user_id)})


def add_to_cart(db, user_id, product_id, quantity) -> Dict:
    """Add ``quantity`` of a product, merging onto an existing line."""
    product_object_id = normalize_object_id_value(product_id)
    quantity = parse_quantity(quantity)
    if product_object_id is None or quantity is None:
        raise ValidationError("Valid productId and quantity are required")

    cart_document = find_cart(db, user_id)
    if not cart_document:
        cart_document = {
            "user": normalize_object_id_value(user_id),
            "products": [{"product": product_object_id, "quantity": quantity}],
        }
        result = db.carts.insert_one(cart_document)
        cart_document["_id"] = result.inserted_id
        return serialize_cart(cart_document)

    lines = list(cart_document.get("products") or [])
    for line in lines:
        if str(line.get("product")) == str(product_object_id):
            merged_quantity = (line.get("quantity") or 0) + quantity
            if merged_quantity > MAX_LINE_QUANTITY:
                raise ValidationError(
                    f"Quantity per product cannot exceed {MAX_LINE_QUANTITY}"
                )
            line["quantity"] = merged_quantity
            break
    else:
        lines.append({"product": product_object_id, "quantity": quantity})

    db.carts.update_one({"_id": cart_document["_id"]}, {"$set": {"products": lines}})
    cart_document["products"] = lines
    return serialize_cart(cart_document)


def get_cart(db, user_id) -> Dict:
    """Return the cart with product details, or an empty cart if none exists."""
    cart_document = find_cart(db, user_id)
    if not cart_document:
        return {"products": []}
    products = fetch_by_ids(
        db.products,
        [line.get("product") for line in cart_document.get("products") or []],
    )
    return serialize_cart(cart_document, products)


def remove_from_cart(db, user_id, product_id) -> Dict:
    cart_document = find_cart(db, user_id)
    if not cart_document:
        raise NotFound("Cart not found")

    lines = [
        line
        for line in cart_document.get("products") or []
        if str(line.get("product")) != str(product_id)
    ]
    db.carts.update_one({"_id": cart_document["_id"]}, {"$set": {"products": lines}})
    cart_document["products"] = lines
    return serialize_cart(cart_document)


def place_order(db, user_id) -> Dict:
    """Snapshot the cart into a new order, then empty the cart.

    The order insert and the cart update are separate writes. A failure
    between them leaves the order recorded with the cart still full.
    """
    cart_document = find_cart(db, user_id)
    if not cart_document or not cart_document.get("products"):
        raise ValidationError("Cart is empty")

    order_document = {
        "user": normalize_object_id_value(user_id),
        "items": [
            {"product": line.get("product"), "quantity": line.get("quantity")}
            for line in cart_document["products"]
        ],
        "created_at": datetime.now(timezone.utc),
    }
    result = db.orders.insert_one(order_document)
    order_document["_id"] = result.inserted_id

    db.carts.update_one({"_id": cart_document["_id"]}, {"$set": {"products": []}})
    return serialize_order(order_document)


def list_orders(db, user_id) -> List[Dict]:
    order_docs = list(
        db.orders.find({"user": normalize_object_id_value(user_id)}).sort(
            [("created_at", -1), ("_id", -1)]
        )
    )
    products = fetch_by_ids(
        db.products,
        [item.get("product") for order in order_docs for item in order.get("items") or []],
    )
    return [serialize_order(order, products) for order in order_docs]
