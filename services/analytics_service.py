"""Read-only travel analytics for one user or, with user_id=None, everybody.

Date bucketing (months, seasons, status) uses trip dates as stored and
"today" in the configured server timezone, so results are deterministic for
a given database state and day.
"""

import logging
from collections import Counter, OrderedDict
from datetime import timedelta
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from database import query_one
from models.City import City
from models.ItineraryItem import ItemCategory, ItineraryItem
from models.Trip import Privacy, Trip, TripStatus, derive_status
from models.TripCity import TripCity
from models.User import Role, User
from utils.text_utils import split_destination
from utils.time_utils import isoformat, local_date, month_key, previous_months, today, utcnow

SEASONS = (
    ("Spring", "Mar-May", (3, 4, 5)),
    ("Summer", "Jun-Aug", (6, 7, 8)),
    ("Fall", "Sep-Nov", (9, 10, 11)),
    ("Winter", "Dec-Feb", (12, 1, 2)),
)

MONTHS_SHOWN = 12


def _trips(db: Session, user_id: Optional[str]) -> List[Trip]:
    q = db.query(Trip)
    if user_id is not None:
        q = q.filter(Trip.owner_user_id == user_id)
    return q.order_by(Trip.id.asc()).all()


def _item_costs(db: Session, user_id: Optional[str]) -> Dict[int, float]:
    q = db.query(ItineraryItem.trip_id, func.coalesce(func.sum(ItineraryItem.cost), 0)).join(Trip, Trip.id == ItineraryItem.trip_id)
    if user_id is not None:
        q = q.filter(Trip.owner_user_id == user_id)
    return {trip_id: float(total or 0) for trip_id, total in q.group_by(ItineraryItem.trip_id).all()}


def _spend(trip: Trip, item_costs: Dict[int, float]) -> float:
    # the budget when one was set, otherwise what the itinerary adds up to
    if trip.budget is not None:
        return float(trip.budget)
    return item_costs.get(trip.id, 0.0)


def travel_stats(db: Session, user_id: Optional[str] = None, trips: Optional[List[Trip]] = None) -> dict:
    trips = trips if trips is not None else _trips(db, user_id)
    item_costs = _item_costs(db, user_id)

    countries = set()
    cities = set()
    durations = []
    for trip in trips:
        city, country = split_destination(trip.destination)
        if city:
            cities.add(city)
        if country:
            countries.add(country)
        if trip.start_date is not None and trip.end_date is not None:
            durations.append((trip.end_date - trip.start_date).days)

    return {
        "total_trips": len(trips),
        "countries_visited": len(countries),
        "cities_visited": len(cities),
        "countries": sorted(countries),
        "cities": sorted(cities),
        "total_budget": sum(_spend(trip, item_costs) for trip in trips),
        "average_duration_days": round(sum(durations) / len(durations), 1) if durations else 0,
    }


def monthly_spending(db: Session, user_id: Optional[str] = None, trips: Optional[List[Trip]] = None) -> List[dict]:
    """The latest twelve year-months that have trips starting in them, oldest first."""
    trips = trips if trips is not None else _trips(db, user_id)
    item_costs = _item_costs(db, user_id)

    buckets = {}
    for trip in trips:
        if trip.start_date is None:
            continue
        bucket = buckets.setdefault(month_key(trip.start_date), {"amount": 0.0, "trips": 0})
        bucket["amount"] += _spend(trip, item_costs)
        bucket["trips"] += 1

    months = sorted(buckets)[-MONTHS_SHOWN:]
    return [{"month": month, "amount": buckets[month]["amount"], "trips": buckets[month]["trips"]} for month in months]


def category_breakdown(db: Session, user_id: Optional[str] = None) -> List[dict]:
    q = db.query(
        ItineraryItem.category,
        func.coalesce(func.sum(ItineraryItem.cost), 0),
        func.count(ItineraryItem.id),
    ).join(Trip, Trip.id == ItineraryItem.trip_id)
    if user_id is not None:
        q = q.filter(Trip.owner_user_id == user_id)
    rows = {category: (float(amount or 0), count) for category, amount, count in q.group_by(ItineraryItem.category).all()}
    return [
        {"category": category.value, "amount": rows.get(category, (0.0, 0))[0], "items": rows.get(category, (0.0, 0))[1]}
        for category in ItemCategory
    ]


def season_for(month: int) -> str:
    for name, _, months in SEASONS:
        if month in months:
            return name
    raise ValueError(f"invalid month: {month}")


def seasonal_trends(db: Session, user_id: Optional[str] = None, trips: Optional[List[Trip]] = None) -> List[dict]:
    trips = trips if trips is not None else _trips(db, user_id)
    counts = Counter(season_for(trip.start_date.month) for trip in trips if trip.start_date is not None)
    return [{"season": name, "months": label, "trips": counts.get(name, 0)} for name, label, _ in SEASONS]


def trip_status_rollup(db: Session, user_id: Optional[str] = None, trips: Optional[List[Trip]] = None) -> Dict[str, int]:
    trips = trips if trips is not None else _trips(db, user_id)
    on = today()
    rollup = OrderedDict((status.value, 0) for status in TripStatus)
    for trip in trips:
        rollup[derive_status(trip, on).value] += 1
    return rollup


def dashboard(db: Session, user: User) -> dict:
    trips = _trips(db, user.id)
    logging.debug("analytics.dashboard user_id=%s trips=%s", user.id, len(trips))
    return {
        "travel_stats": travel_stats(db, user.id, trips),
        "monthly_spending": monthly_spending(db, user.id, trips),
        "category_breakdown": category_breakdown(db, user.id),
        "seasonal_trends": seasonal_trends(db, user.id, trips),
        "trip_status": trip_status_rollup(db, user.id, trips),
    }


# ---------- Admin ----------

def admin_overview(db: Session) -> dict:
    totals = query_one(db, """
        SELECT
            (SELECT COUNT(*) FROM users) AS total_users,
            (SELECT COUNT(*) FROM users WHERE role = :admin) AS admin_users,
            (SELECT COUNT(*) FROM trips) AS total_trips,
            (SELECT COUNT(*) FROM trips WHERE privacy = :public) AS public_trips,
            (SELECT COUNT(*) FROM trips WHERE is_featured = :yes) AS featured_trips,
            (SELECT COUNT(*) FROM cities) AS total_cities,
            (SELECT COUNT(*) FROM activities) AS total_activities,
            (SELECT COUNT(*) FROM itinerary_items) AS total_items
    """, {"admin": Role.admin.name, "public": Privacy.public.name, "yes": True})

    trips = _trips(db, None)
    status = trip_status_rollup(db, None, trips)
    durations = [
        (trip.end_date - trip.start_date).days
        for trip in trips
        if trip.start_date is not None and trip.end_date is not None
    ]
    overview = {key: int(value or 0) for key, value in totals.items()}
    overview["completed_trips"] = status[TripStatus.completed.value]
    overview["average_duration_days"] = round(sum(durations) / len(durations), 1) if durations else 0
    return overview


def user_growth(db: Session, months: int = MONTHS_SHOWN) -> List[dict]:
    """New signups per calendar month for the `months` months ending this month, zero-filled."""
    keys = previous_months(today(), months)
    counts = Counter()
    first_month = keys[0]
    for (created_at,) in db.query(User.created_at).all():
        key = month_key(local_date(created_at))
        if key >= first_month:
            counts[key] += 1
    return [{"month": key, "new_users": counts.get(key, 0)} for key in keys]


def popular_destinations(db: Session, limit: int = 10) -> List[dict]:
    rows = (
        db.query(Trip.destination, func.count(Trip.id).label("trips"))
        .filter(Trip.destination.isnot(None))
        .group_by(Trip.destination)
        .order_by(func.count(Trip.id).desc(), Trip.destination.asc())
        .limit(max(0, limit))
        .all()
    )
    return [{"destination": destination, "trips": count} for destination, count in rows]


def popular_cities_with_stats(db: Session, limit: int = 10) -> List[dict]:
    trip_count = func.count(TripCity.id)
    rows = (
        db.query(City, trip_count)
        .outerjoin(TripCity, TripCity.city_id == City.id)
        .group_by(City.id)
        .order_by(trip_count.desc(), City.popularity_score.desc(), City.name.asc())
        .limit(max(0, limit))
        .all()
    )
    return [dict(city.to_dict(), trip_count=count) for city, count in rows]


def recent_users(db: Session, limit: int = 5) -> List[dict]:
    users = db.query(User).order_by(User.created_at.desc()).limit(max(0, limit)).all()
    return [user.to_dict() for user in users]


def recent_trips(db: Session, limit: int = 5) -> List[dict]:
    trips = (
        db.query(Trip)
        .options(joinedload(Trip.owner))
        .order_by(Trip.created_at.desc(), Trip.id.desc())
        .limit(max(0, limit))
        .all()
    )
    on = today()
    result = []
    for trip in trips:
        data = trip.to_dict(on, include_share_token=False)
        data["owner_name"] = trip.owner.full_name if trip.owner else None
        result.append(data)
    return result


def user_analytics(db: Session) -> dict:
    active_since = utcnow() - timedelta(days=30)
    roles = dict(db.query(User.role, func.count(User.id)).group_by(User.role).all())
    return {
        "growth": user_growth(db),
        "by_role": {role.value: roles.get(role, 0) for role in Role},
        "active_last_30_days": db.query(func.count(User.id)).filter(User.last_login_at >= active_since).scalar() or 0,
        "recent_users": recent_users(db, 10),
    }


def trip_analytics(db: Session) -> dict:
    trips = _trips(db, None)

    def tally(attr):
        counts = Counter(getattr(trip, attr).value for trip in trips)
        return dict(sorted(counts.items()))

    return {
        "travel_stats": travel_stats(db, None, trips),
        "trip_status": trip_status_rollup(db, None, trips),
        "monthly_spending": monthly_spending(db, None, trips),
        "category_breakdown": category_breakdown(db, None),
        "seasonal_trends": seasonal_trends(db, None, trips),
        "popular_destinations": popular_destinations(db),
        "by_travel_style": tally("travel_style"),
        "by_currency": tally("currency"),
        "by_privacy": tally("privacy"),
        "generated_at": isoformat(utcnow()),
    }
