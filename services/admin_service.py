"""Elevated operations over users, trips and the catalog.

Bulk operations work entity by entity, each in its own transaction; a failure
is recorded in the report and the loop carries on.
"""

import logging
import time
from typing import Callable, List, Optional, Tuple

from pydantic import BaseModel, Field
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from database import ping
from models.Trip import Privacy, Trip
from models.User import Role, User
from services.auth_service import validate_email, validate_full_name
from services.media_store import MediaStore
from services.realtime import TRIP_DELETED, TRIP_UPDATED, Event, bus
from services.trip_service import status_predicate
from utils.errors import AppError, ConflictError, NotFoundError, ValidationError
from utils.query_utils import clamp_limit, contains
from utils.time_utils import isoformat, today, utcnow
from utils.validation import parse_input

STARTED_AT = time.monotonic()


class AdminUserPatch(BaseModel):
    full_name: Optional[str] = Field(None, max_length=100)
    email: Optional[str] = Field(None, max_length=255)
    role: Optional[Role] = None


# ---------- Users ----------

def list_users(db: Session, q: Optional[str] = None, role: Optional[str] = None,
               limit: Optional[int] = 20, offset: int = 0) -> dict:
    query = db.query(User)
    if q and q.strip():
        term = q.strip()
        query = query.filter(or_(contains(User.full_name, term), contains(User.email, term)))
    if role:
        try:
            query = query.filter(User.role == Role(role))
        except ValueError:
            raise ValidationError(f"Unknown role: {role}")

    total = query.count()
    limit = clamp_limit(limit)
    users = query.order_by(User.created_at.desc()).offset(max(offset, 0)).limit(limit).all() if limit else []

    counts = {}
    if users:
        counts = dict(
            db.query(Trip.owner_user_id, func.count(Trip.id))
            .filter(Trip.owner_user_id.in_([u.id for u in users]))
            .group_by(Trip.owner_user_id)
            .all()
        )
    return {
        "users": [dict(u.to_dict(), trip_count=counts.get(u.id, 0), last_login_at=isoformat(u.last_login_at)) for u in users],
        "total": total,
        "limit": limit,
        "offset": offset,
    }


def get_user_row(db: Session, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


def update_user(db: Session, actor: User, user_id: str, payload) -> dict:
    patch = parse_input(AdminUserPatch, payload).model_dump(exclude_unset=True)
    user = get_user_row(db, user_id)

    if "full_name" in patch:
        user.full_name = validate_full_name(patch["full_name"])
    if "email" in patch:
        email = validate_email(patch["email"])
        taken = db.query(User.id).filter(User.email == email, User.id != user.id).first()
        if taken:
            raise ConflictError("Email already in use")
        user.email = email
    if patch.get("role") is not None:
        if user.id == actor.id and patch["role"] != Role.admin:
            raise ValidationError("You cannot remove your own admin role")
        user.role = patch["role"]

    db.commit()
    logging.info("admin.user_update user_id=%s by=%s fields=%s", user.id, actor.id, sorted(patch))
    return user.to_dict()


def delete_user(db: Session, media: MediaStore, actor: User, user_id: str) -> Tuple[dict, List[Event]]:
    if user_id == actor.id:
        raise ValidationError("You cannot delete your own account")
    user = get_user_row(db, user_id)

    trips = db.query(Trip.id, Trip.cover_photo_path).filter(Trip.owner_user_id == user.id).all()
    files = [user.avatar_path] + [cover for _, cover in trips]
    db.delete(user)
    try:
        db.commit()
    except Exception:
        db.rollback()
        raise

    for path in files:
        media.delete(path)
    logging.info("admin.user_delete user_id=%s by=%s trips=%s", user_id, actor.id, len(trips))
    events = [Event(TRIP_DELETED, trip_id, actor.id, {"trip_id": trip_id}) for trip_id, _ in trips]
    return {"message": "User deleted successfully", "id": user_id, "deleted_trips": len(trips)}, events


def bulk_delete_users(db: Session, media: MediaStore, actor: User, user_ids: List[str]) -> Tuple[dict, List[Event]]:
    succeeded, failed, events = [], [], []
    for user_id in user_ids:
        try:
            _, user_events = delete_user(db, media, actor, user_id)
        except AppError as e:
            db.rollback()
            failed.append({"id": user_id, "error": e.kind, "message": e.message})
            continue
        except SQLAlchemyError:
            db.rollback()
            logging.exception("admin.bulk_delete failed user_id=%s", user_id)
            failed.append({"id": user_id, "error": "internal", "message": "Database error"})
            continue
        succeeded.append(user_id)
        events.extend(user_events)

    logging.info("admin.bulk_delete succeeded=%s failed=%s", len(succeeded), len(failed))
    return {"succeeded": succeeded, "failed": failed}, events


# ---------- Trips ----------

def list_trips(db: Session, q: Optional[str] = None, status: Optional[str] = None,
               privacy: Optional[str] = None, featured: Optional[bool] = None,
               limit: Optional[int] = 20, offset: int = 0) -> dict:
    query = db.query(Trip).options(joinedload(Trip.owner))
    if q and q.strip():
        term = q.strip()
        query = query.filter(or_(
            contains(Trip.title, term),
            contains(Trip.destination, term),
            Trip.owner.has(contains(User.full_name, term)),
            Trip.owner.has(contains(User.email, term)),
        ))
    if status:
        query = query.filter(status_predicate(status, today()))
    if privacy:
        try:
            query = query.filter(Trip.privacy == Privacy(privacy))
        except ValueError:
            raise ValidationError(f"Unknown privacy: {privacy}")
    if featured is not None:
        query = query.filter(Trip.is_featured.is_(featured))

    total = query.count()
    limit = clamp_limit(limit)
    trips = query.order_by(Trip.created_at.desc(), Trip.id.desc()).offset(max(offset, 0)).limit(limit).all() if limit else []

    on = today()
    rows = []
    for trip in trips:
        data = trip.to_dict(on)
        data["owner_name"] = trip.owner.full_name if trip.owner else None
        data["owner_email"] = trip.owner.email if trip.owner else None
        rows.append(data)
    return {"trips": rows, "total": total, "limit": limit, "offset": offset}


def feature_trip(db: Session, actor: User, trip_id: int, featured: bool = True) -> Tuple[dict, List[Event]]:
    trip = db.query(Trip).filter(Trip.id == trip_id).with_for_update().first()
    if trip is None:
        raise NotFoundError("Trip not found")
    trip.is_featured = bool(featured)
    db.commit()
    logging.info("admin.trip_feature trip_id=%s featured=%s by=%s", trip.id, trip.is_featured, actor.id)
    return trip.to_dict(today()), [Event(TRIP_UPDATED, trip.id, actor.id, {"fields": ["is_featured"]})]


# ---------- Catalog ----------

def bulk_create(db: Session, create: Callable, payloads: List[dict]) -> dict:
    """Create catalog rows one by one, committing each; report per entry."""
    succeeded, failed = [], []
    for index, payload in enumerate(payloads):
        try:
            row = create(db, payload)
            db.commit()
        except AppError as e:
            db.rollback()
            failed.append({"index": index, "error": e.kind, "message": e.message})
            continue
        except SQLAlchemyError:
            db.rollback()
            logging.exception("admin.bulk_create failed index=%s", index)
            failed.append({"index": index, "error": "internal", "message": "Database error"})
            continue
        succeeded.append(row.to_dict())

    logging.info("admin.bulk_create created=%s failed=%s", len(succeeded), len(failed))
    return {"created": succeeded, "failed": failed}


# ---------- System ----------

def system_health(db: Session) -> dict:
    database_ok = ping(db)
    return {
        "status": "ok" if database_ok else "degraded",
        "uptime_seconds": int(time.monotonic() - STARTED_AT),
        "database": "connected" if database_ok else "unreachable",
        "realtime_connections": bus.connection_count(),
        "timestamp": isoformat(utcnow()),
    }
