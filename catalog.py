"""
Product catalog: filtered listing, seller storefronts and product management.

Derived fields (``seo.slug``, ``rating``, ``numReviews``) are computed by the
pure helpers below and written explicitly by the functions that change their
inputs.
"""
import logging
import math
import re
from typing import Iterable, List, Optional

from pymongo.database import Database

import config
from database import create_document, fetch_briefs, parse_object_id, utcnow
from errors import BadRequest, NotFound
from schemas import Account, Product, ProductIn, ProductUpdate, Review, ReviewIn, Seo
from security import Capability, authorize

logger = logging.getLogger(__name__)

SELLER_LIST_FIELDS = ("name", "storeName")
SELLER_STOREFRONT_FIELDS = ("name", "storeName", "storeDescription")
SELLER_DETAIL_FIELDS = ("name", "storeName", "storeDescription", "phone", "email")

NEWEST_FIRST = [("createdAt", -1), ("_id", -1)]


def derive_slug(name: str) -> str:
    slug = name.lower()
    slug = re.sub(r"[^a-z0-9 -]", "", slug)
    slug = re.sub(r"\s+", "-", slug)
    slug = re.sub(r"-+", "-", slug)
    return slug.strip("-")


def derive_rating(reviews: Iterable[dict]) -> float:
    ratings = [r["rating"] for r in reviews]
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def unique_tags(tags: Iterable[str]) -> List[str]:
    seen = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


def _check_bound(value: Optional[float], label: str) -> Optional[float]:
    if value is None:
        return None
    if not math.isfinite(value):
        raise BadRequest(f"{label} must be a finite number")
    return value


def build_product_filter(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
) -> dict:
    """Translate listing parameters into a MongoDB filter over active products."""
    query = {"isActive": True}

    keyword = keyword.strip() if keyword else None
    if keyword:
        pattern = re.escape(keyword)
        query["$or"] = [
            {"name": {"$regex": pattern, "$options": "i"}},
            {"description": {"$regex": pattern, "$options": "i"}},
            {"category": {"$regex": pattern, "$options": "i"}},
        ]

    category = category.strip() if category else None
    if category:
        query["category"] = {"$regex": re.escape(category), "$options": "i"}

    min_price = _check_bound(min_price, "minPrice")
    max_price = _check_bound(max_price, "maxPrice")
    if min_price is not None and max_price is not None and min_price > max_price:
        raise BadRequest("minPrice cannot be greater than maxPrice")
    price_filter = {}
    if min_price is not None:
        price_filter["$gte"] = min_price
    if max_price is not None:
        price_filter["$lte"] = max_price
    if price_filter:
        query["price"] = price_filter

    return query


def attach_sellers(db: Database, products: List[dict], fields: Iterable[str]) -> List[dict]:
    """Replace each product's seller id with a projection of the seller."""
    sellers = fetch_briefs(db, "user", (p.get("seller") for p in products), fields)
    for p in products:
        seller_id = p.get("seller")
        p["seller"] = sellers.get(seller_id, {"_id": seller_id})
    return products


def list_products(
    db: Database,
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    page: int = 1,
    page_size: int = config.DEFAULT_PAGE_SIZE,
) -> dict:
    if page < 1:
        raise BadRequest("pageNumber must be at least 1")
    if page_size < 1:
        raise BadRequest("pageSize must be at least 1")

    query = build_product_filter(keyword, category, min_price, max_price)
    total = db["product"].count_documents(query)
    cursor = (
        db["product"]
        .find(query)
        .sort(NEWEST_FIRST)
        .skip(page_size * (page - 1))
        .limit(page_size)
    )
    products = attach_sellers(db, list(cursor), SELLER_LIST_FIELDS)
    return {
        "products": products,
        "page": page,
        "pages": math.ceil(total / page_size),
        "total": total,
    }


def featured_products(db: Database) -> List[dict]:
    cursor = (
        db["product"]
        .find({"isFeatured": True, "isActive": True})
        .sort(NEWEST_FIRST)
        .limit(config.FEATURED_LIMIT)
    )
    return attach_sellers(db, list(cursor), SELLER_LIST_FIELDS)


def list_categories(db: Database) -> List[str]:
    return sorted(db["product"].distinct("category", {"isActive": True}))


def seller_products(db: Database, seller_id: str) -> List[dict]:
    seller_oid = parse_object_id(seller_id, "Seller")
    cursor = db["product"].find({"seller": seller_oid, "isActive": True}).sort(NEWEST_FIRST)
    return attach_sellers(db, list(cursor), SELLER_STOREFRONT_FIELDS)


def my_products(db: Database, user: Account) -> List[dict]:
    authorize(user, Capability.SELL)
    cursor = db["product"].find({"seller": parse_object_id(user.id, "User")}).sort(NEWEST_FIRST)
    return list(cursor)


def _find_product(db: Database, product_id) -> dict:
    product = db["product"].find_one({"_id": parse_object_id(product_id, "Product")})
    if not product:
        raise NotFound("Product not found")
    return product


def get_product(db: Database, product_id: str) -> dict:
    product = _find_product(db, product_id)
    return attach_sellers(db, [product], SELLER_DETAIL_FIELDS)[0]


def create_product(db: Database, user: Account, body: ProductIn) -> dict:
    authorize(user, Capability.SELL)
    product = Product(
        seller=parse_object_id(user.id, "User"),
        name=body.name,
        description=body.description,
        price=body.price,
        original_price=body.original_price if body.original_price is not None else body.price,
        image=body.image,
        images=body.images or [body.image],
        category=body.category,
        subcategory=body.subcategory,
        brand=body.brand,
        count_in_stock=body.count_in_stock,
        is_featured=body.is_featured,
        tags=unique_tags(body.tags),
        specifications=body.specifications,
        shipping_info=body.shipping_info,
        seo=Seo(slug=derive_slug(body.name)),
    )
    product_id = create_document(db, "product", product)
    logger.info("Seller %s created product %s", user.id, product_id)
    created = _find_product(db, product_id)
    return attach_sellers(db, [created], SELLER_LIST_FIELDS)[0]


def update_product(db: Database, user: Account, product_id: str, body: ProductUpdate) -> dict:
    authorize(user, Capability.SELL)
    product = _find_product(db, product_id)
    authorize(user, Capability.OWN, product["seller"], "Access denied. You can only edit your own products.")

    changes = body.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
    if "tags" in changes:
        changes["tags"] = unique_tags(changes["tags"])
    if "name" in changes:
        changes["seo.slug"] = derive_slug(changes["name"])
    changes["updatedAt"] = utcnow()

    db["product"].update_one({"_id": product["_id"]}, {"$set": changes})
    return attach_sellers(db, [_find_product(db, product["_id"])], SELLER_LIST_FIELDS)[0]


def delete_product(db: Database, user: Account, product_id: str) -> dict:
    authorize(user, Capability.SELL)
    product = _find_product(db, product_id)
    authorize(user, Capability.OWN, product["seller"], "Access denied. You can only delete your own products.")
    db["product"].delete_one({"_id": product["_id"]})
    logger.info("Product %s removed by %s", product["_id"], user.id)
    return {"message": "Product removed"}


def toggle_product_status(db: Database, user: Account, product_id: str) -> dict:
    authorize(user, Capability.SELL)
    product = _find_product(db, product_id)
    authorize(user, Capability.OWN, product["seller"], "Access denied. You can only modify your own products.")

    is_active = not product.get("isActive", True)
    db["product"].update_one(
        {"_id": product["_id"]},
        {"$set": {"isActive": is_active, "updatedAt": utcnow()}},
    )
    state = "activated" if is_active else "deactivated"
    return {"message": f"Product {state} successfully", "isActive": is_active}


def add_review(db: Database, user: Account, product_id: str, body: ReviewIn) -> dict:
    product = _find_product(db, product_id)
    user_oid = parse_object_id(user.id, "User")
    if any(r["user"] == user_oid for r in product.get("reviews", [])):
        raise BadRequest("Product already reviewed")

    review = Review(name=user.name, rating=body.rating, comment=body.comment, user=user_oid)
    review_doc = review.model_dump(by_alias=True)
    reviews = product.get("reviews", []) + [review_doc]

    db["product"].update_one(
        {"_id": product["_id"]},
        {
            "$push": {"reviews": review_doc},
            "$set": {
                "rating": derive_rating(reviews),
                "numReviews": len(reviews),
                "updatedAt": utcnow(),
            },
        },
    )
    logger.info("User %s reviewed product %s", user.id, product["_id"])
    return {"message": "Review added"}
