"""
Order placement and fulfilment.

An order fans out into one line per product; each line belongs to the seller
of its product and moves through its own status workflow. The order-level
``orderStatus`` is always derived from the line statuses.
"""
import logging
import math
import random
import time
from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from bson import ObjectId
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, fetch_briefs, get_documents, parse_object_id, utcnow
from errors import BadRequest, Conflict, Forbidden, NotFound, PersistenceError
from schemas import (
    Account,
    Order,
    OrderCreate,
    OrderItem,
    PaymentIn,
    PaymentResult,
    StatusEntry,
)
from security import Capability, authorize

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("createdAt", -1), ("_id", -1)]

TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped", "cancelled"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
}


# -----------------
# Pure helpers
# -----------------
def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, frozenset())


def derive_order_status(statuses: List[str]) -> str:
    """Summarise line statuses; the first matching rule wins."""
    if statuses and all(s == "delivered" for s in statuses):
        return "delivered"
    if "cancelled" in statuses and all(s in ("cancelled", "delivered") for s in statuses):
        return "cancelled"
    if "shipped" in statuses:
        return "shipped"
    if "processing" in statuses:
        return "processing"
    return "pending"


def calculate_prices(lines: Iterable[Tuple[float, int]]) -> dict:
    """Price breakdown for ``(unit price, quantity)`` pairs."""
    items_price = sum(price * qty for price, qty in lines)
    tax_price = items_price * config.TAX_RATE
    shipping_price = 0.0 if items_price > config.FREE_SHIPPING_THRESHOLD else config.FLAT_SHIPPING_FEE
    total_price = items_price + tax_price + shipping_price
    return {
        "items_price": items_price,
        "tax_price": tax_price,
        "shipping_price": shipping_price,
        "total_price": total_price,
    }


def generate_order_number() -> str:
    timestamp = str(int(time.time() * 1000))
    return f"ORD-{timestamp[-6:]}{random.randint(0, 999):03d}"


def apply_transition(item: dict, status: str, note: Optional[str] = None):
    current = item.get("status", "pending")
    if not can_transition(current, status):
        raise BadRequest(f"Cannot change item status from {current} to {status}")
    item["status"] = status
    entry = StatusEntry(status=status, note=note or f"Status updated to {status}")
    item.setdefault("statusHistory", []).append(entry.model_dump(by_alias=True))


def refresh_order_status(order: dict):
    if not order.get("orderItems"):
        return
    order["orderStatus"] = derive_order_status([i["status"] for i in order["orderItems"]])
    if order["orderStatus"] == "delivered":
        order["isDelivered"] = True
        order["deliveredAt"] = order.get("deliveredAt") or utcnow()


# -----------------
# Loading / population
# -----------------
def _find_order(db: Database, order_id) -> dict:
    order = db["order"].find_one({"_id": parse_object_id(order_id, "Order")})
    if not order:
        raise NotFound("Order not found")
    return order


def populate_orders(
    db: Database,
    orders: List[dict],
    user_fields: Optional[Iterable[str]] = ("name", "email"),
    seller_fields: Optional[Iterable[str]] = ("name", "storeName"),
) -> List[dict]:
    if user_fields:
        buyers = fetch_briefs(db, "user", (o["user"] for o in orders), user_fields)
        for o in orders:
            o["user"] = buyers.get(o["user"], {"_id": o["user"]})
    if seller_fields:
        seller_ids = (i["seller"] for o in orders for i in o.get("orderItems", []))
        sellers = fetch_briefs(db, "user", seller_ids, seller_fields)
        for o in orders:
            for item in o.get("orderItems", []):
                item["seller"] = sellers.get(item["seller"], {"_id": item["seller"]})
    return orders


def _restore_stock(db: Database, decremented: List[Tuple[ObjectId, int]]):
    for product_id, qty in decremented:
        db["product"].update_one({"_id": product_id}, {"$inc": {"countInStock": qty}})
    if decremented:
        logger.warning("Rolled back stock for %d order line(s)", len(decremented))


# -----------------
# Order creation
# -----------------
def create_order(db: Database, user: Account, body: OrderCreate) -> dict:
    if not body.order_items:
        raise BadRequest("No order items")

    lines = []
    requested = defaultdict(int)
    for item in body.order_items:
        product = db["product"].find_one({"_id": parse_object_id(item.product, f"Product {item.product}")})
        if not product:
            raise NotFound(f"Product {item.product} not found")
        if not product.get("isActive", True):
            raise BadRequest(f"{product['name']} is not available")
        requested[product["_id"]] += item.qty
        lines.append((item, product))

    for item, product in lines:
        available = product.get("countInStock", 0)
        if requested[product["_id"]] > available:
            raise BadRequest(f"Insufficient stock for {product['name']}: {available} available")

    decremented = []
    try:
        for item, product in lines:
            result = db["product"].update_one(
                {"_id": product["_id"], "countInStock": {"$gte": item.qty}},
                {"$inc": {"countInStock": -item.qty}},
            )
            if result.matched_count == 0:
                current = db["product"].find_one({"_id": product["_id"]}, {"countInStock": 1}) or {}
                raise BadRequest(
                    f"Insufficient stock for {product['name']}: {current.get('countInStock', 0)} available"
                )
            decremented.append((product["_id"], item.qty))

        order_items = [
            OrderItem(
                product=product["_id"],
                name=product["name"],
                image=product.get("image", ""),
                price=product["price"],
                qty=item.qty,
                seller=product["seller"],
                status="pending",
                status_history=[StatusEntry(status="pending", note="Order placed")],
            )
            for item, product in lines
        ]
        order = Order(
            user=parse_object_id(user.id, "User"),
            order_items=order_items,
            shipping_address=body.shipping_address,
            payment_method=body.payment_method or "PayPal",
            order_number=generate_order_number(),
            **calculate_prices((i.price, i.qty) for i in order_items),
        )
        try:
            order_id = create_document(db, "order", order)
        except DuplicateKeyError:
            logger.error("Order number collision on %s", order.order_number)
            raise PersistenceError("Could not create order")
    except Exception:
        _restore_stock(db, decremented)
        raise

    logger.info("Order %s placed by %s with %d line(s)", order.order_number, user.id, len(order_items))
    created = _find_order(db, order_id)
    return populate_orders(db, [created], seller_fields=("name", "storeName", "email"))[0]


# -----------------
# Queries
# -----------------
def get_order(db: Database, user: Account, order_id: str) -> dict:
    order = _find_order(db, order_id)
    can_access = (
        str(order["user"]) == user.id
        or any(str(i["seller"]) == user.id for i in order.get("orderItems", []))
        or user.is_admin
    )
    if not can_access:
        raise Forbidden("Access denied")
    return populate_orders(db, [order], seller_fields=("name", "storeName", "email", "phone"))[0]


def my_orders(db: Database, user: Account) -> List[dict]:
    orders = get_documents(db, "order", {"user": parse_object_id(user.id, "User")}, sort=NEWEST_FIRST)
    return populate_orders(db, orders, user_fields=None)


def seller_orders(db: Database, user: Account) -> List[dict]:
    authorize(user, Capability.SELL)
    seller_oid = parse_object_id(user.id, "User")
    orders = get_documents(db, "order", {"orderItems.seller": seller_oid}, sort=NEWEST_FIRST)
    for order in orders:
        order["orderItems"] = [i for i in order["orderItems"] if i["seller"] == seller_oid]
    return populate_orders(db, orders, user_fields=("name", "email", "phone"), seller_fields=None)


def list_orders(db: Database, user: Account, page: int = 1, page_size: int = 10) -> dict:
    authorize(user, Capability.ADMIN)
    if page < 1 or page_size < 1:
        raise BadRequest("pageNumber and pageSize must be at least 1")
    total = db["order"].count_documents({})
    cursor = db["order"].find({}).sort(NEWEST_FIRST).skip(page_size * (page - 1)).limit(page_size)
    return {
        "orders": populate_orders(db, list(cursor)),
        "page": page,
        "pages": math.ceil(total / page_size),
        "total": total,
    }


# -----------------
# Payment / fulfilment
# -----------------
def mark_paid(db: Database, user: Account, order_id: str, body: PaymentIn) -> dict:
    order = _find_order(db, order_id)
    authorize(user, Capability.OWN, order["user"])
    payment = PaymentResult(
        id=body.id,
        status=body.status,
        update_time=body.update_time,
        email_address=body.payer.email_address,
    )
    now = utcnow()
    db["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"isPaid": True, "paidAt": now, "paymentResult": payment.model_dump(), "updatedAt": now}},
    )
    logger.info("Order %s marked paid", order["_id"])
    return _find_order(db, order["_id"])


def _transition_item(
    db: Database,
    user: Account,
    order_id: str,
    item_id: str,
    status: str,
    note: Optional[str],
    extra: Optional[dict] = None,
) -> dict:
    order = _find_order(db, order_id)
    item_oid = parse_object_id(item_id, "Order item")
    item = next((i for i in order["orderItems"] if i["_id"] == item_oid), None)
    if item is None:
        raise NotFound("Order item not found")
    authorize(user, Capability.OWN, item["seller"])

    previous = item["status"]
    apply_transition(item, status, note)
    refresh_order_status(order)

    changes = {
        "orderItems": order["orderItems"],
        "orderStatus": order["orderStatus"],
        "isDelivered": order.get("isDelivered", False),
        "deliveredAt": order.get("deliveredAt"),
        "updatedAt": utcnow(),
    }
    changes.update(extra or {})
    result = db["order"].update_one(
        {"_id": order["_id"], "updatedAt": order.get("updatedAt")},
        {"$set": changes},
    )
    if result.matched_count == 0:
        raise Conflict("Order was modified by another request, please retry")

    logger.info("Order %s item %s: %s -> %s", order["_id"], item_oid, previous, status)
    updated = _find_order(db, order["_id"])
    return populate_orders(db, [updated])[0]


def update_item_status(
    db: Database, user: Account, order_id: str, item_id: str, status: str, note: Optional[str] = None
) -> dict:
    return _transition_item(db, user, order_id, item_id, status, note)


def add_tracking(db: Database, user: Account, order_id: str, item_id: str, tracking_number: str) -> dict:
    _transition_item(
        db,
        user,
        order_id,
        item_id,
        "shipped",
        f"Package shipped with tracking number: {tracking_number}",
        extra={"trackingNumber": tracking_number},
    )
    return {"message": "Tracking number added successfully", "trackingNumber": tracking_number}
