"""Account creation, credential checks and bearer tokens.

Tokens are ``<payload>.<signature>`` where the payload is base64url JSON
``{"uid", "iat", "jti"}`` (``iat`` in epoch milliseconds) and the signature
is HMAC-SHA256 over the encoded payload with ``Config.SECRET_KEY``. They are
validated statelessly except for two lookups: the revocation table written
by logout, and the user's ``password_changed_at``.

NOTE: ``reset_password`` sets a new password from an e-mail address alone.
This is a knowingly weak flow kept for interface compatibility; a production
deployment must replace it with a time-bounded signed reset token delivered
out of band.
"""

import base64
import hashlib
import hmac
import json
import logging
import re
import secrets
from datetime import datetime, timedelta
from typing import Optional, Tuple

from passlib.context import CryptContext
from sqlalchemy.orm import Session

from config import Config
from models.RevokedToken import RevokedToken
from models.User import Role, User
from services.media_store import MediaStore
from utils.errors import ConflictError, NotFoundError, UnauthenticatedError, ValidationError
from utils.text_utils import clean_text
from utils.time_utils import epoch_ms, utcnow

MIN_PASSWORD_LENGTH = 6
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_pwd_context: Optional[CryptContext] = None


def pwd_context() -> CryptContext:
    # scrypt is salted and memory-hard; cost comes from PASSWORD_HASH_ROUNDS
    global _pwd_context
    if _pwd_context is None:
        _pwd_context = CryptContext(
            schemes=["scrypt"],
            deprecated="auto",
            scrypt__rounds=Config.PASSWORD_HASH_ROUNDS,
        )
    return _pwd_context


def hash_password(password: str) -> str:
    return pwd_context().hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context().verify(password, password_hash)
    except (ValueError, TypeError):
        # unknown or corrupt hash format (e.g. legacy rows); treat as mismatch
        logging.warning("auth.verify unreadable password hash")
        return False


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def validate_email(email: str) -> str:
    email = normalize_email(email)
    if not email or not EMAIL_RE.match(email) or len(email) > 255:
        raise ValidationError("A valid email address is required")
    return email


def validate_password(password: Optional[str]) -> str:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return password


def validate_full_name(full_name: Optional[str]) -> str:
    name = clean_text(full_name)
    if not name or not 2 <= len(name) <= 100:
        raise ValidationError("Full name must be between 2 and 100 characters")
    return name


# ---------- Tokens ----------

def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(payload: str) -> str:
    digest = hmac.new(
        key=Config.get_secret_key().encode(),
        msg=payload.encode(),
        digestmod=hashlib.sha256,
    ).digest()
    return _b64encode(digest)


def issue_token(user: User, issued_at: Optional[datetime] = None) -> str:
    claims = {
        "uid": user.id,
        "iat": epoch_ms(issued_at or utcnow()),
        "jti": secrets.token_hex(16),
    }
    payload = _b64encode(json.dumps(claims, separators=(",", ":")).encode())
    return f"{payload}.{_sign(payload)}"


def decode_token(token: str) -> dict:
    """Check the signature and expiry of a token and return its claims.

    Raises UnauthenticatedError for anything malformed, forged or expired.
    """
    try:
        payload, signature = token.split(".", 1)
    except (AttributeError, ValueError):
        raise UnauthenticatedError("Invalid token")

    if not hmac.compare_digest(_sign(payload), signature):
        raise UnauthenticatedError("Invalid token")

    try:
        claims = json.loads(_b64decode(payload))
        uid, iat, jti = str(claims["uid"]), int(claims["iat"]), str(claims["jti"])
    except (ValueError, KeyError, TypeError):
        raise UnauthenticatedError("Invalid token")

    if iat + Config.TOKEN_TTL_SECONDS * 1000 < epoch_ms(utcnow()):
        raise UnauthenticatedError("Token expired")
    return {"uid": uid, "iat": iat, "jti": jti}


def token_expiry(claims: dict) -> datetime:
    return datetime(1970, 1, 1) + timedelta(milliseconds=claims["iat"]) + timedelta(seconds=Config.TOKEN_TTL_SECONDS)


def authenticate(db: Session, token: Optional[str]) -> Tuple[User, dict]:
    """Resolve a bearer token to its user. Every failure is `unauthenticated`."""
    if not token:
        raise UnauthenticatedError("Access token required")
    claims = decode_token(token)

    if db.get(RevokedToken, claims["jti"]) is not None:
        raise UnauthenticatedError("Token has been revoked")

    user = db.get(User, claims["uid"])
    if user is None:
        raise UnauthenticatedError("User not found")
    if user.password_changed_at is not None and claims["iat"] < epoch_ms(user.password_changed_at):
        raise UnauthenticatedError("Token issued before the last password change")
    return user, claims


# ---------- Operations ----------

def _auth_payload(user: User) -> dict:
    return {"token": issue_token(user), "user": user.to_dict()}


def signup(db: Session, media: MediaStore, full_name: str, email: str, password: str, avatar=None) -> dict:
    full_name = validate_full_name(full_name)
    email = validate_email(email)
    validate_password(password)

    if db.query(User.id).filter(User.email == email).first():
        logging.info("auth.signup conflict email=%s", email)
        raise ConflictError("Email already in use")

    avatar_path = media.save(avatar, "avatars") if avatar is not None else None
    user = User(
        full_name=full_name,
        email=email,
        password_hash=hash_password(password),
        avatar_path=avatar_path,
        role=Role.admin if email in Config.ADMINS else Role.user,
        last_login_at=utcnow(),
    )
    try:
        db.add(user)
        db.commit()
    except Exception:
        db.rollback()
        media.delete(avatar_path)
        raise

    logging.info("auth.signup success user_id=%s role=%s", user.id, user.role.value)
    return _auth_payload(user)


def login(db: Session, email: str, password: str) -> dict:
    email = normalize_email(email)
    user = db.query(User).filter(User.email == email).first() if email else None
    # same message for unknown email and wrong password
    if user is None or not password or not verify_password(password, user.password_hash):
        logging.info("auth.login rejected email=%s", email)
        raise UnauthenticatedError("Invalid email or password")

    user.last_login_at = utcnow()
    db.commit()
    logging.info("auth.login success user_id=%s", user.id)
    return _auth_payload(user)


def logout(db: Session, user: User, claims: dict) -> None:
    now = utcnow()
    db.query(RevokedToken).filter(RevokedToken.expires_at < now).delete(synchronize_session=False)
    if db.get(RevokedToken, claims["jti"]) is None:
        db.add(RevokedToken(jti=claims["jti"], user_id=user.id, expires_at=token_expiry(claims)))
    db.commit()
    logging.info("auth.logout user_id=%s", user.id)


def reset_password(db: Session, email: str, new_password: str) -> None:
    """KNOWN WEAK: replaces the password given only the e-mail address."""
    email = validate_email(email)
    validate_password(new_password)

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        raise NotFoundError("No account found with this email address")

    user.password_hash = hash_password(new_password)
    user.password_changed_at = utcnow()
    db.commit()
    logging.warning("auth.reset_password applied without out-of-band verification user_id=%s", user.id)


def update_profile(db: Session, media: MediaStore, user: User, full_name: Optional[str] = None, avatar=None) -> dict:
    old_avatar = None
    new_avatar = None
    if full_name is not None:
        user.full_name = validate_full_name(full_name)
    if avatar is not None:
        new_avatar = media.save(avatar, "avatars")
        old_avatar, user.avatar_path = user.avatar_path, new_avatar
    try:
        db.commit()
    except Exception:
        db.rollback()
        media.delete(new_avatar)
        raise
    media.delete(old_avatar)
    logging.info("auth.profile updated user_id=%s", user.id)
    return user.to_dict()
