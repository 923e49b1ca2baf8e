import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import Depends, Request, Response
from jose import JWTError, jwt
from passlib.context import CryptContext
from pymongo.database import Database

from config import Settings
from database import USERS, to_object_id
from errors import AccountBlocked, Forbidden, NotAuthenticated
from schemas import Role

log = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ANONYMOUS_NAMES = [
    "Brave Lion", "Clever Fox", "Wise Owl", "Swift Eagle", "Silent Wolf",
    "Curious Cat", "Bold Bear", "Gentle Deer", "Mighty Tiger", "Happy Dolphin",
    "Lucky Penguin", "Calm Turtle", "Shy Panda", "Eager Beaver", "Joyful Robin",
    "Noble Falcon", "Bright Hawk", "Daring Jaguar", "Fierce Panther", "Loyal Serpent",
    "Patient Shark", "Quick Sparrow", "Radiant Stallion", "Serene Swan", "Strong Whale",
    "Valiant Phoenix", "Vigilant Dragon", "Witty Griffin", "Zealous Sparrow", "Amber Wolf",
    "Azure Dragon", "Crimson Hawk", "Golden Griffin", "Jade Serpent", "Onyx Panther",
    "Ruby Falcon", "Silver Lion", "Emerald Fox", "Mystic Owl", "Ancient Turtle",
    "Hidden Badger", "Shadow Fox", "Spirit Eagle", "Astral Wolf", "Cosmic Serpent",
    "Lunar Tiger", "Solar Hawk", "Ethereal Deer", "Wandering Albatross", "Gallant Horse",
    "Humble Bee", "Keen Otter", "Jovial Jay", "Nimble Rabbit", "Quiet Mole",
]


def random_anonymous_name() -> str:
    return random.choice(ANONYMOUS_NAMES)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return pwd_context.verify(password, password_hash or "")


# ---------- Tokens ----------

def create_token(user_id: str, settings: Settings) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": issued,
        "exp": issued + timedelta(days=settings.token_ttl_days),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)


def decode_token(token: str, settings: Settings) -> str:
    """Return the user id embedded in ``token``; raises ``NotAuthenticated`` if invalid or expired."""
    try:
        data = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except JWTError:
        raise NotAuthenticated("Not authorized, token failed")
    user_id = data.get("sub")
    if not user_id:
        raise NotAuthenticated("Not authorized, token failed")
    return user_id


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        settings.cookie_name,
        token,
        max_age=settings.token_max_age,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(settings.cookie_name, httponly=True, secure=settings.cookie_secure, samesite="lax")


# ---------- Request collaborators ----------

def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_db(request: Request) -> Database:
    return request.app.state.db


def _extract_token(request: Request, settings: Settings) -> Optional[str]:
    token = request.cookies.get(settings.cookie_name)
    if token:
        return token
    authorization = request.headers.get("authorization")
    if authorization:
        scheme, _, value = authorization.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return None


def get_current_user(
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> Dict[str, Any]:
    """Session guard: resolve the caller from the session token, rejecting blocked accounts."""
    token = _extract_token(request, settings)
    if not token:
        raise NotAuthenticated("Not authorized, no token")
    user_id = to_object_id(decode_token(token, settings))
    user = db[USERS].find_one({"_id": user_id}, {"password": 0}) if user_id else None
    if user is None:
        log.info("reject: token subject %s has no user", user_id)
        raise NotAuthenticated("Not authorized, user not found")
    if user.get("isBlocked"):
        log.info("reject: blocked user %s", user["_id"])
        raise AccountBlocked()
    return user


# ---------- Role gates ----------

def role_of(user: Dict[str, Any]) -> Optional[Role]:
    try:
        return Role.parse(user.get("role"))
    except ValueError:
        return None


def is_admin(user: Dict[str, Any]) -> bool:
    return role_of(user) in (Role.ADMIN, Role.SUPERADMIN)


def is_superadmin(user: Dict[str, Any]) -> bool:
    return role_of(user) is Role.SUPERADMIN


def is_partner(user: Dict[str, Any]) -> bool:
    return role_of(user) is Role.PARTNER


def is_user(user: Dict[str, Any]) -> bool:
    return role_of(user) is not None


def _gate(predicate, message: str):
    def dependency(user: Dict[str, Any] = Depends(get_current_user)) -> Dict[str, Any]:
        if not predicate(user):
            raise Forbidden(message)
        return user

    return dependency


require_user = _gate(is_user, "Not authorized")
require_admin = _gate(is_admin, "Not authorized. Admin or Super Admin access required.")
require_superadmin = _gate(is_superadmin, "Not authorized as a Super Admin.")
require_partner = _gate(is_partner, "Not authorized as a partner")
