"""The one place that decides who may do what to a trip."""

import hmac
from typing import Optional

from models.Trip import Privacy, Trip
from models.User import User

READ = "read"
UPDATE = "update"
DELETE = "delete"
SHARE = "share"
EDIT_ITINERARY = "edit_itinerary"
VIEW_AGGREGATES = "view_aggregates"
SUBSCRIBE = "subscribe"

ACTIONS = (READ, UPDATE, DELETE, SHARE, EDIT_ITINERARY, VIEW_AGGREGATES, SUBSCRIBE)


def _is_owner(user: Optional[User], trip: Trip) -> bool:
    return user is not None and user.id == trip.owner_user_id


def _is_admin(user: Optional[User]) -> bool:
    return user is not None and user.is_admin


def _share_token_matches(trip: Trip, share_token: Optional[str]) -> bool:
    if not share_token or not trip.share_token:
        return False
    return hmac.compare_digest(trip.share_token, share_token)


def can(user: Optional[User], action: str, trip: Trip, share_token: Optional[str] = None) -> bool:
    """Return True when `user` (None for anonymous) may perform `action` on `trip`.

    read / subscribe: owner, admin, public trip, or matching share token.
    update / delete / view_aggregates: owner or admin.
    share / edit_itinerary: owner only.
    """
    if action not in ACTIONS:
        raise ValueError(f"unknown action: {action}")

    if action in (READ, SUBSCRIBE):
        return (
            _is_owner(user, trip)
            or _is_admin(user)
            or trip.privacy == Privacy.public
            or _share_token_matches(trip, share_token)
        )
    if action in (UPDATE, DELETE, VIEW_AGGREGATES):
        return _is_owner(user, trip) or _is_admin(user)
    return _is_owner(user, trip)
