"""Request-scoped dependencies: bearer auth, role gate, media store."""

import json
from typing import Optional

from fastapi import Depends, Request
from starlette.datastructures import UploadFile
from sqlalchemy.orm import Session

from database import get_db
from models.User import User
from services import auth_service
from services.media_store import MediaStore
from utils.errors import ForbiddenError, ValidationError


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request, db: Session = Depends(get_db)) -> User:
    user, claims = auth_service.authenticate(db, bearer_token(request))
    request.state.token_claims = claims
    request.state.user_id = user.id
    return user


def get_optional_user(request: Request, db: Session = Depends(get_db)) -> Optional[User]:
    """The caller when a bearer token is present; anonymous otherwise.

    A token that is present but invalid is still rejected.
    """
    token = bearer_token(request)
    if token is None:
        return None
    return get_current_user(request, db)


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError("Admin access required")
    return user


def get_media() -> MediaStore:
    # built per request so UPLOAD_DIR / MAX_UPLOAD_BYTES changes apply immediately
    return MediaStore()


async def read_payload(request: Request, file_fields=()):
    """Parse a JSON or multipart body into (fields, uploads).

    Blank multipart fields are treated as absent. Only the named file fields
    are returned as uploads.
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("multipart/form-data") or content_type.startswith("application/x-www-form-urlencoded"):
        form = await request.form()
        fields, uploads = {}, {}
        for key, value in form.multi_items():
            if isinstance(value, UploadFile):
                if key in file_fields and value.filename:
                    uploads[key] = value
            elif value.strip() != "":
                fields[key] = value
        return fields, uploads

    body = await request.body()
    if not body.strip():
        return {}, {}
    try:
        payload = json.loads(body)
    except ValueError:
        raise ValidationError("Request body must be valid JSON")
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload, {}
