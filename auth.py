import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends, Header
from pymongo import ReturnDocument

from config import get_settings
from database import USERS, get_db, now
from errors import AuthError, ConflictError, ForbiddenError
from schemas import ProfileUpdate, Session, UserCreate

logger = logging.getLogger(__name__)


def hash_password(password: str, salt: Optional[str] = None) -> tuple[str, str]:
    if not salt:
        salt = secrets.token_hex(16)
    h = hashlib.sha256((salt + password).encode()).hexdigest()
    return h, salt


def verify_password(password: str, salt: str, expected_hash: str) -> bool:
    h, _ = hash_password(password, salt)
    return secrets.compare_digest(h, expected_hash)


def session_from_user(user: dict) -> Session:
    return Session(
        id=str(user["_id"]),
        email=user["email"],
        first_name=user.get("first_name", ""),
        last_name=user.get("last_name", ""),
        phone=user.get("phone") or "",
        role=user.get("role", "user"),
    )


# -------------------- Accounts --------------------

def register(db, payload: UserCreate) -> dict:
    if db[USERS].find_one({"email": payload.email}):
        raise ConflictError("Email already registered")
    pw_hash, salt = hash_password(payload.password)
    user_doc = {
        "first_name": payload.first_name,
        "last_name": payload.last_name,
        "email": payload.email,
        "phone": payload.phone,
        "role": "user",
        "password_hash": pw_hash,
        "salt": salt,
        "created_at": now(),
        "updated_at": now(),
    }
    user_doc["_id"] = db[USERS].insert_one(user_doc).inserted_id
    logger.info("Registered %s", payload.email)
    return user_doc


def login(db, email: str, password: str) -> str:
    user = db[USERS].find_one({"email": email})
    if not user or not user.get("password_hash"):
        raise AuthError("Invalid credentials")
    if not verify_password(password, user.get("salt", ""), user["password_hash"]):
        raise AuthError("Invalid credentials")
    token = secrets.token_urlsafe(32)
    expires = now() + timedelta(days=get_settings().token_ttl_days)
    db[USERS].update_one({"_id": user["_id"]}, {"$set": {"token": token, "token_expires": expires}})
    return token


def update_profile(db, user_id, payload: ProfileUpdate) -> dict:
    """Change the name and phone on an account; email and role stay as they are."""
    update = {k: v for k, v in payload.model_dump().items() if v is not None}
    update["updated_at"] = now()
    user = db[USERS].find_one_and_update(
        {"_id": user_id}, {"$set": update}, return_document=ReturnDocument.AFTER
    )
    if not user:
        raise AuthError("Account no longer exists")
    return user


def logout(db, user_id) -> None:
    db[USERS].update_one({"_id": user_id}, {"$unset": {"token": "", "token_expires": ""}})


def seed_admin(db, email: Optional[str], password: Optional[str]) -> Optional[dict]:
    """Create or promote the bootstrap admin account."""
    if not email or not password:
        return None
    user = db[USERS].find_one({"email": email})
    if user:
        if user.get("role") != "admin":
            db[USERS].update_one({"_id": user["_id"]}, {"$set": {"role": "admin", "updated_at": now()}})
            logger.info("Promoted %s to admin", email)
        return db[USERS].find_one({"_id": user["_id"]})
    pw_hash, salt = hash_password(password)
    user = {
        "first_name": "Admin",
        "last_name": "HAR DESIGN",
        "email": email,
        "phone": "",
        "role": "admin",
        "password_hash": pw_hash,
        "salt": salt,
        "created_at": now(),
        "updated_at": now(),
    }
    user["_id"] = db[USERS].insert_one(user).inserted_id
    logger.info("Seeded admin account %s", email)
    return user


# -------------------- Dependencies --------------------

def get_user_by_token(db, token: str) -> Optional[dict]:
    return db[USERS].find_one({"token": token, "token_expires": {"$gt": now()}})


def current_user(authorization: Optional[str] = Header(None), db=Depends(get_db)) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise AuthError("Missing or invalid authorization header")
    token = authorization.split(" ", 1)[1]
    user = get_user_by_token(db, token)
    if not user:
        raise AuthError("Invalid or expired token")
    return user


def current_session(user: dict = Depends(current_user)) -> Session:
    return session_from_user(user)


def require_admin(session: Session = Depends(current_session)) -> Session:
    if not session.is_admin:
        raise ForbiddenError("Admin access required")
    return session
