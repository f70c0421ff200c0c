import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from pymongo.errors import PyMongoError
from starlette.exceptions import HTTPException as StarletteHTTPException

import catalog
import config
import database
import orders
import security
from database import ensure_indexes, get_db, serialize_doc
from errors import MarketplaceError
from schemas import (
    BuyerRegister,
    LoginBody,
    OrderCreate,
    PaymentIn,
    ProductIn,
    ProductUpdate,
    ProfileUpdate,
    ReviewIn,
    SellerRegister,
    StatusUpdate,
    TrackingUpdate,
)
from security import get_current_user

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.setup_logging()
    if database.db is not None:
        ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; data endpoints are unavailable")
    yield


app = FastAPI(title="Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error responses are always {"message": ...}
@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": exc.detail},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    if errors:
        first = errors[0]
        location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
        message = f"{location}: {first.get('msg')}" if location else first.get("msg", "Invalid request")
    else:
        message = "Invalid request"
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"message": message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"message": "Internal server error"})


# Routes
@app.get("/")
def root():
    return {"message": "Marketplace API is running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if config.DATABASE_URL else "❌ Not Set",
        "database_name": "✅ Set" if config.DATABASE_NAME else "❌ Not Set",
        "connection_status": "Not Connected",
        "collections": [],
    }
    if database.db is not None:
        try:
            response["collections"] = database.db.list_collection_names()[:10]
            response["database"] = "✅ Connected & Working"
            response["connection_status"] = "Connected"
        except PyMongoError as e:
            response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
    return response


# Auth endpoints
@app.post("/auth/register/buyer", status_code=201)
def register_buyer(payload: BuyerRegister, db: Database = Depends(get_db)):
    return security.register_buyer(db, payload)


@app.post("/auth/register/seller", status_code=201)
def register_seller(payload: SellerRegister, db: Database = Depends(get_db)):
    return security.register_seller(db, payload)


@app.post("/auth/login")
def login(payload: LoginBody, db: Database = Depends(get_db)):
    return security.login(db, payload.email, payload.password)


@app.get("/auth/profile")
def get_profile(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(security.get_profile(db, user))


@app.put("/auth/profile")
def update_profile(payload: ProfileUpdate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return security.update_profile(db, user, payload)


# Product endpoints
@app.get("/products")
def list_products(
    keyword: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    page: int = Query(1, alias="pageNumber"),
    page_size: int = Query(config.DEFAULT_PAGE_SIZE, alias="pageSize"),
    db: Database = Depends(get_db),
):
    result = catalog.list_products(
        db,
        keyword=keyword,
        category=category,
        min_price=min_price,
        max_price=max_price,
        page=page,
        page_size=page_size,
    )
    return serialize_doc(result)


@app.get("/products/featured")
def featured_products(db: Database = Depends(get_db)):
    return serialize_doc(catalog.featured_products(db))


@app.get("/products/categories/list")
def list_categories(db: Database = Depends(get_db)):
    return catalog.list_categories(db)


@app.get("/products/my-products")
def my_products(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(catalog.my_products(db, user))


@app.get("/products/seller/{seller_id}")
def seller_products(seller_id: str, db: Database = Depends(get_db)):
    return serialize_doc(catalog.seller_products(db, seller_id))


@app.get("/products/{product_id}")
def get_product(product_id: str, db: Database = Depends(get_db)):
    return serialize_doc(catalog.get_product(db, product_id))


@app.post("/products", status_code=201)
def create_product(payload: ProductIn, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(catalog.create_product(db, user, payload))


@app.put("/products/{product_id}")
def update_product(
    product_id: str,
    payload: ProductUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return serialize_doc(catalog.update_product(db, user, product_id, payload))


@app.delete("/products/{product_id}")
def delete_product(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return catalog.delete_product(db, user, product_id)


@app.patch("/products/{product_id}/toggle-status")
def toggle_product_status(product_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return catalog.toggle_product_status(db, user, product_id)


@app.post("/products/{product_id}/reviews", status_code=201)
def add_review(
    product_id: str,
    payload: ReviewIn,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return catalog.add_review(db, user, product_id, payload)


# Orders
@app.post("/orders", status_code=201)
def create_order(payload: OrderCreate, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(orders.create_order(db, user, payload))


@app.get("/orders")
def list_orders(
    page: int = Query(1, alias="pageNumber"),
    page_size: int = Query(10, alias="pageSize"),
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return serialize_doc(orders.list_orders(db, user, page, page_size))


@app.get("/orders/my-orders")
def my_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(orders.my_orders(db, user))


@app.get("/orders/seller-orders")
def seller_orders(user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(orders.seller_orders(db, user))


@app.get("/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user), db: Database = Depends(get_db)):
    return serialize_doc(orders.get_order(db, user, order_id))


@app.patch("/orders/{order_id}/pay")
def mark_paid(
    order_id: str,
    payload: PaymentIn,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return serialize_doc(orders.mark_paid(db, user, order_id, payload))


@app.patch("/orders/{order_id}/items/{item_id}/status")
def update_item_status(
    order_id: str,
    item_id: str,
    payload: StatusUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return serialize_doc(orders.update_item_status(db, user, order_id, item_id, payload.status, payload.note))


@app.patch("/orders/{order_id}/items/{item_id}/tracking")
def add_tracking(
    order_id: str,
    item_id: str,
    payload: TrackingUpdate,
    user=Depends(get_current_user),
    db: Database = Depends(get_db),
):
    return orders.add_tracking(db, user, order_id, item_id, payload.tracking_number)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=config.PORT)
