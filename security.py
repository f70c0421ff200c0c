"""
Accounts, password hashing, bearer tokens and authorization checks.
"""
import logging
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

import config
from database import create_document, get_db, parse_object_id, utcnow
from errors import BadRequest, Forbidden, NotFound, Unauthorized
from schemas import (
    Account,
    BuyerRegister,
    ProfileUpdate,
    SellerAccount,
    SellerRegister,
    User,
    account_adapter,
)

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=config.BCRYPT_ROUNDS)
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")

INVALID_CREDENTIALS = "Invalid email or password"


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def create_access_token(user_id: str, expires_delta: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(days=config.ACCESS_TOKEN_EXPIRE_DAYS))
    to_encode = {"sub": str(user_id), "exp": expire}
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def load_account(user_doc: dict) -> Account:
    data = dict(user_doc)
    data["_id"] = str(data["_id"])
    return account_adapter.validate_python(data)


def get_current_user(token: str = Depends(oauth2_scheme), db: Database = Depends(get_db)):
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Not authorized, token failed",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
        user_id: str = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError:
        raise credentials_exception

    try:
        user = db["user"].find_one({"_id": ObjectId(user_id)})
    except (InvalidId, TypeError):
        user = None

    if not user:
        raise credentials_exception
    return load_account(user)


# -----------------
# Authorization
# -----------------
class Capability(str, Enum):
    SELL = "sell"
    OWN = "own"
    ADMIN = "admin"


def authorize(user: Account, capability: Capability, owner_id=None, message: Optional[str] = None):
    """Raise Forbidden unless ``user`` holds ``capability``; admins hold all of them."""
    if user.is_admin:
        return
    if capability is Capability.SELL and isinstance(user, SellerAccount):
        return
    if capability is Capability.OWN and owner_id is not None and str(owner_id) == user.id:
        return
    if message is None:
        message = {
            Capability.SELL: "Access denied. Seller role required.",
            Capability.OWN: "Access denied",
            Capability.ADMIN: "Access denied. Admin role required.",
        }[capability]
    logger.warning("Denied %s to user %s", capability.value, user.id)
    raise Forbidden(message)


# -----------------
# Registration / login
# -----------------
def auth_payload(user_doc: dict) -> dict:
    response = {
        "_id": str(user_doc["_id"]),
        "name": user_doc["name"],
        "email": user_doc["email"],
        "role": user_doc["role"],
        "isAdmin": user_doc.get("isAdmin", False),
        "token": create_access_token(str(user_doc["_id"])),
    }
    if user_doc["role"] == "seller":
        response["storeName"] = user_doc.get("storeName")
        response["storeDescription"] = user_doc.get("storeDescription", "")
    return response


def _insert_user(db: Database, user: User) -> dict:
    if db["user"].find_one({"email": user.email}):
        raise BadRequest("User already exists")
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise BadRequest("User already exists")
    logger.info("Registered %s %s", user.role, user_id)
    return db["user"].find_one({"_id": ObjectId(user_id)})


def register_buyer(db: Database, body: BuyerRegister) -> dict:
    user = User(
        name=body.name,
        email=normalize_email(body.email),
        password_hash=get_password_hash(body.password),
        role="buyer",
    )
    return auth_payload(_insert_user(db, user))


def register_seller(db: Database, body: SellerRegister) -> dict:
    if not body.store_name or not body.store_name.strip():
        raise BadRequest("Store name is required for sellers")
    user = User(
        name=body.name,
        email=normalize_email(body.email),
        password_hash=get_password_hash(body.password),
        role="seller",
        phone=body.phone,
        store_name=body.store_name.strip(),
        store_description=body.store_description,
    )
    return auth_payload(_insert_user(db, user))


def login(db: Database, email: str, password: str) -> dict:
    user = db["user"].find_one({"email": normalize_email(email)})
    if not user or not verify_password(password, user.get("passwordHash", "")):
        logger.warning("Failed login attempt")
        raise Unauthorized(INVALID_CREDENTIALS)
    return auth_payload(user)


# -----------------
# Profile
# -----------------
def get_profile(db: Database, user: Account) -> dict:
    doc = db["user"].find_one({"_id": parse_object_id(user.id, "User")}, {"passwordHash": 0})
    if not doc:
        raise NotFound("User not found")
    return doc


def update_profile(db: Database, user: Account, body: ProfileUpdate) -> dict:
    user_oid = parse_object_id(user.id, "User")
    changes = {}
    if body.name:
        changes["name"] = body.name
    if body.email:
        email = normalize_email(body.email)
        if email != user.email and db["user"].find_one({"email": email, "_id": {"$ne": user_oid}}):
            raise BadRequest("User already exists")
        changes["email"] = email
    if body.phone is not None:
        changes["phone"] = body.phone
    if body.password:
        changes["passwordHash"] = get_password_hash(body.password)
    if isinstance(user, SellerAccount):
        if body.store_name:
            changes["storeName"] = body.store_name
        if body.store_description is not None:
            changes["storeDescription"] = body.store_description

    changes["updatedAt"] = utcnow()
    try:
        result = db["user"].update_one({"_id": user_oid}, {"$set": changes})
    except DuplicateKeyError:
        raise BadRequest("User already exists")
    if result.matched_count == 0:
        raise NotFound("User not found")

    updated = db["user"].find_one({"_id": user_oid})
    payload = auth_payload(updated)
    payload["phone"] = updated.get("phone", "")
    return payload
