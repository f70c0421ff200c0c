"""
Database Schemas for the marketplace

Each collection model corresponds to a MongoDB collection; the collection name
is the lowercase class name. Field names are snake_case in Python and camelCase
in MongoDB and on the wire.
"""
from datetime import datetime, timezone
from typing import Annotated, Dict, List, Literal, Optional, Union, get_args

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, TypeAdapter
from pydantic.alias_generators import to_camel

ItemStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]
ITEM_STATUSES = get_args(ItemStatus)
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]


def _utcnow():
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class DocumentModel(CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, arbitrary_types_allowed=True
    )


# -----------------------------
# Users
# -----------------------------
class User(DocumentModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Literal["buyer", "seller"] = "buyer"
    is_admin: bool = False
    phone: str = ""
    store_name: Optional[str] = None
    store_description: Optional[str] = None


class AccountBase(CamelModel):
    id: str = Field(..., alias="_id")
    name: str
    email: str
    is_admin: bool = False
    phone: str = ""


class BuyerAccount(AccountBase):
    role: Literal["buyer"] = "buyer"


class SellerAccount(AccountBase):
    role: Literal["seller"] = "seller"
    store_name: str
    store_description: str = ""


# A resolved user is either a buyer or a seller, never both.
Account = Annotated[Union[BuyerAccount, SellerAccount], Field(discriminator="role")]
account_adapter = TypeAdapter(Account)


class BuyerRegister(CamelModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class SellerRegister(BuyerRegister):
    store_name: Optional[str] = None
    store_description: str = ""
    phone: str = ""


class LoginBody(CamelModel):
    email: str
    password: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    password: Optional[str] = Field(None, min_length=6)
    store_name: Optional[str] = Field(None, min_length=1)
    store_description: Optional[str] = None


# -----------------------------
# Catalog
# -----------------------------
class Dimensions(CamelModel):
    length: Optional[float] = Field(None, ge=0)
    width: Optional[float] = Field(None, ge=0)
    height: Optional[float] = Field(None, ge=0)


class ShippingInfo(CamelModel):
    weight: Optional[float] = Field(None, ge=0)
    dimensions: Optional[Dimensions] = None
    free_shipping: bool = False
    shipping_cost: float = Field(0, ge=0)


class Seo(CamelModel):
    meta_title: str = ""
    meta_description: str = ""
    slug: str = ""


class Review(DocumentModel):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    user: ObjectId
    created_at: datetime = Field(default_factory=_utcnow)


class Product(DocumentModel):
    seller: ObjectId
    name: str
    description: str
    price: float = Field(..., ge=0)
    original_price: float = Field(0, ge=0)
    image: str
    images: List[str] = []
    category: str
    subcategory: str = ""
    brand: str = ""
    count_in_stock: int = Field(0, ge=0)
    rating: float = Field(0, ge=0, le=5)
    num_reviews: int = 0
    reviews: List[Review] = []
    is_active: bool = True
    is_featured: bool = False
    tags: List[str] = []
    specifications: Dict[str, str] = {}
    shipping_info: ShippingInfo = Field(default_factory=ShippingInfo)
    seo: Seo = Field(default_factory=Seo)


class ProductIn(CamelModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: str = Field(..., min_length=1)
    images: Optional[List[str]] = None
    category: str = Field(..., min_length=1)
    subcategory: str = ""
    brand: str = ""
    count_in_stock: int = Field(0, ge=0)
    tags: List[str] = []
    specifications: Dict[str, str] = {}
    shipping_info: ShippingInfo = Field(default_factory=ShippingInfo)
    is_featured: bool = False


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = Field(None, min_length=1)
    price: Optional[float] = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    images: Optional[List[str]] = None
    category: Optional[str] = Field(None, min_length=1)
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    count_in_stock: Optional[int] = Field(None, ge=0)
    tags: Optional[List[str]] = None
    specifications: Optional[Dict[str, str]] = None
    shipping_info: Optional[ShippingInfo] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class ReviewIn(CamelModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1)


# -----------------------------
# Orders
# -----------------------------
class StatusEntry(CamelModel):
    status: ItemStatus
    date: datetime = Field(default_factory=_utcnow)
    note: str = ""


class OrderItem(DocumentModel):
    id: ObjectId = Field(default_factory=ObjectId, alias="_id")
    product: ObjectId
    name: str
    image: str = ""
    price: float = Field(..., ge=0)
    qty: int = Field(..., ge=1)
    seller: ObjectId
    status: ItemStatus = "pending"
    status_history: List[StatusEntry] = []


class ShippingAddress(CamelModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class PaymentResult(BaseModel):
    id: str = ""
    status: str = ""
    update_time: str = ""
    email_address: str = ""


class Order(DocumentModel):
    user: ObjectId
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str = "PayPal"
    payment_result: Optional[PaymentResult] = None
    items_price: float = 0.0
    tax_price: float = 0.0
    shipping_price: float = 0.0
    total_price: float = 0.0
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    order_status: OrderStatus = "pending"
    order_number: str
    notes: str = ""
    tracking_number: str = ""


class OrderItemIn(CamelModel):
    product: str
    qty: int = Field(..., ge=1)


class OrderCreate(CamelModel):
    order_items: List[OrderItemIn] = []
    shipping_address: ShippingAddress
    payment_method: Optional[str] = None


class StatusUpdate(CamelModel):
    status: ItemStatus
    note: Optional[str] = None


class TrackingUpdate(CamelModel):
    tracking_number: str = Field(..., min_length=1)


class Payer(BaseModel):
    email_address: str = ""


class PaymentIn(BaseModel):
    id: str = ""
    status: str = ""
    update_time: str = ""
    payer: Payer = Field(default_factory=Payer)
