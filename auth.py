"""
Bearer-token auth, role guards and password reset tokens.
"""
import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

import config
import database
from errors import AuthError, ForbiddenError, NotFoundError, ValidationError
from schemas import PasswordResetToken, Role

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


# Helper functions for auth

def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None):
    to_encode = data.copy()
    expire = database.now() + (expires_delta or timedelta(minutes=config.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, config.SECRET_KEY, algorithm=config.ALGORITHM)


def token_for_user(user: dict) -> str:
    return create_access_token({"sub": str(user["_id"]), "role": user.get("role", Role.buyer.value)})


def get_current_user(token: Optional[str] = Depends(oauth2_scheme)) -> dict:
    if not token:
        raise AuthError("Not authenticated")
    try:
        payload = jwt.decode(token, config.SECRET_KEY, algorithms=[config.ALGORITHM])
    except JWTError:
        raise AuthError("Could not validate credentials")
    user_id = payload.get("sub")
    if not user_id:
        raise AuthError("Could not validate credentials")

    try:
        user = database.collection("user").find_one({"_id": database.to_object_id(user_id, "User")})
    except NotFoundError:
        user = None
    if not user:
        raise AuthError("Could not validate credentials")
    return user


def require_roles(*roles: Role):
    allowed = {Role(r).value for r in roles}

    async def guard(user: dict = Depends(get_current_user)) -> dict:
        if user.get("role") not in allowed:
            raise ForbiddenError("Forbidden")
        return user

    return guard


get_current_admin = require_roles(Role.admin)
get_current_seller = require_roles(Role.admin, Role.seller)


# Password reset

def _hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


def issue_reset_token(user: dict) -> str:
    """
    Create a single-use reset token for ``user``.

    Only the sha256 of the token is stored; the raw value leaves this function
    once and is never recoverable from the database.
    """
    token = secrets.token_hex(32)
    record = PasswordResetToken(
        token_hash=_hash_token(token),
        user_id=str(user["_id"]),
        expires_at=database.now() + timedelta(minutes=config.PASSWORD_RESET_TTL_MINUTES),
    )
    database.create_document("passwordresettoken", record)
    return token


def _load_reset_token(token: str) -> dict:
    if not token:
        raise ValidationError("Invalid token", code="INVALID_RESET_TOKEN")
    record = database.collection("passwordresettoken").find_one({"token_hash": _hash_token(token)})
    if not record:
        raise ValidationError("Invalid or expired token", code="INVALID_RESET_TOKEN")

    # The TTL monitor only sweeps about once a minute
    expires_at = record["expires_at"]
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=database.now().tzinfo)
    if database.now() > expires_at:
        database.collection("passwordresettoken").delete_one({"_id": record["_id"]})
        raise ValidationError("Token has expired", code="RESET_TOKEN_EXPIRED")
    return record


def verify_reset_token(token: str) -> bool:
    _load_reset_token(token)
    return True


def reset_password(token: str, new_password: str) -> None:
    record = _load_reset_token(token)
    users = database.collection("user")
    user_oid = database.to_object_id(record["user_id"], "User")
    res = users.update_one(
        {"_id": user_oid},
        {"$set": {"password_hash": get_password_hash(new_password), "updated_at": database.now()}},
    )
    database.collection("passwordresettoken").delete_one({"_id": record["_id"]})
    if res.matched_count == 0:
        raise NotFoundError("User")
    logger.info("Password reset for user %s", record["user_id"])
