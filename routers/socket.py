"""WebSocket endpoint for live trip updates.

The handshake carries a bearer token (Authorization header or ``token``
query parameter). Clients then subscribe to trips they may read and receive
every committed change to them as an ``event`` message.
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
import asyncio
import json
import logging

from database import SessionLocal
from models.User import User
from services import auth_service, permissions
from services.realtime import Connection, bus
from services.trip_service import get_trip_row
from utils.errors import AppError, error_body

router = APIRouter(tags=["realtime"])

UNAUTHENTICATED_CLOSE_CODE = 4401


def _handshake_token(websocket: WebSocket):
    header = websocket.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return websocket.query_params.get("token")


def _authenticate(token):
    db = SessionLocal()
    try:
        user, _ = auth_service.authenticate(db, token)
        return user.id
    finally:
        db.close()


def _error(kind: str, message: str) -> dict:
    return dict(error_body(kind, message), type="error")


def _trip_id(message: dict):
    trip_id = message.get("trip_id")
    if isinstance(trip_id, bool) or not isinstance(trip_id, int):
        return None
    return trip_id


def _authorize_subscription(user_id: str, trip_id: int, share_token):
    """Return None when the subscription is allowed, else an error message."""
    db = SessionLocal()
    try:
        user = db.get(User, user_id)
        if user is None:
            return _error("unauthenticated", "Account no longer exists")
        trip = get_trip_row(db, trip_id)
        if trip is None or not permissions.can(user, permissions.SUBSCRIBE, trip, share_token):
            # do not reveal whether the trip exists
            return _error("not_found", "Trip not found")
        return None
    finally:
        db.close()


def _may_stay_subscribed(user_id: str, trip_id: int, share_token) -> bool:
    return _authorize_subscription(user_id, trip_id, share_token) is None


bus.authorize = _may_stay_subscribed


@router.websocket("/socket")
async def socket_endpoint(websocket: WebSocket):
    try:
        user_id = _authenticate(_handshake_token(websocket))
    except AppError as e:
        await websocket.accept()
        await websocket.close(code=UNAUTHENTICATED_CLOSE_CODE, reason=e.message)
        logging.info("realtime.handshake rejected reason=%s", e.message)
        return

    await websocket.accept()
    conn = Connection(websocket, user_id)
    bus.register(conn)
    sender = asyncio.create_task(conn.run_sender())
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                conn.enqueue(_error("validation", "Messages must be JSON objects"))
                continue
            if not isinstance(message, dict):
                conn.enqueue(_error("validation", "Messages must be JSON objects"))
                continue

            kind = message.get("type")
            if kind == "ping":
                conn.enqueue({"type": "pong"})
            elif kind in ("subscribe", "unsubscribe"):
                trip_id = _trip_id(message)
                if trip_id is None:
                    conn.enqueue(_error("validation", "trip_id must be an integer"))
                    continue
                if kind == "unsubscribe":
                    bus.unsubscribe(conn, trip_id)
                    conn.enqueue({"type": "unsubscribed", "trip_id": trip_id})
                    continue
                share_token = message.get("share_token")
                if not isinstance(share_token, str):
                    share_token = None
                denied = _authorize_subscription(user_id, trip_id, share_token)
                if denied is not None:
                    conn.enqueue(denied)
                    continue
                # ack goes out before any event for this trip
                conn.enqueue({"type": "subscribed", "trip_id": trip_id})
                bus.subscribe(conn, trip_id, share_token)
            else:
                conn.enqueue(_error("validation", f"Unknown message type: {kind}"))
    except WebSocketDisconnect:
        pass
    finally:
        bus.unregister(conn)
        conn.close()
        try:
            await asyncio.wait_for(sender, timeout=1)
        except (asyncio.TimeoutError, asyncio.CancelledError):
            sender.cancel()
