#!/usr/bin/env python3
"""
Seed the city and activity catalog with a starter set.
Cities already present (same name and country) are left alone.
"""

import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

import logging

from database import SessionLocal, create_schema, init_engine, shutdown
from models.City import City
from services import catalog_service
from utils.logging_config import setup_logging

CATALOG = [
    {
        "city": {"name": "Paris", "country": "France", "cost_index": 8, "popularity_score": 98,
                 "latitude": 48.8566, "longitude": 2.3522},
        "activities": [
            {"name": "Eiffel Tower Summit", "category": "sightseeing", "cost_min": 28, "cost_max": 35,
             "rating": 4.7, "duration_hours": 2, "popularity_score": 97},
            {"name": "Louvre Museum", "category": "culture", "cost_min": 22, "cost_max": 22,
             "rating": 4.8, "duration_hours": 3, "popularity_score": 95},
            {"name": "Seine Dinner Cruise", "category": "food", "cost_min": 90, "cost_max": 180,
             "rating": 4.4, "duration_hours": 2.5, "popularity_score": 80},
        ],
    },
    {
        "city": {"name": "Kyoto", "country": "Japan", "cost_index": 7, "popularity_score": 90,
                 "latitude": 35.0116, "longitude": 135.7681},
        "activities": [
            {"name": "Fushimi Inari Hike", "category": "adventure", "cost_min": 0, "cost_max": 0,
             "rating": 4.9, "duration_hours": 3, "popularity_score": 93},
            {"name": "Tea Ceremony", "category": "culture", "cost_min": 30, "cost_max": 60,
             "rating": 4.6, "duration_hours": 1.5, "popularity_score": 75},
            {"name": "Nishiki Market Tasting", "category": "food", "cost_min": 20, "cost_max": 50,
             "rating": 4.5, "duration_hours": 2, "popularity_score": 78},
        ],
    },
    {
        "city": {"name": "Cape Town", "country": "South Africa", "cost_index": 5, "popularity_score": 82,
                 "latitude": -33.9249, "longitude": 18.4241},
        "activities": [
            {"name": "Table Mountain Cableway", "category": "sightseeing", "cost_min": 20, "cost_max": 25,
             "rating": 4.7, "duration_hours": 2, "popularity_score": 88},
            {"name": "Cape Peninsula Drive", "category": "adventure", "cost_min": 60, "cost_max": 120,
             "rating": 4.8, "duration_hours": 8, "popularity_score": 70},
        ],
    },
    {
        "city": {"name": "New York", "country": "United States", "cost_index": 9, "popularity_score": 96,
                 "latitude": 40.7128, "longitude": -74.0060},
        "activities": [
            {"name": "Broadway Show", "category": "nightlife", "cost_min": 80, "cost_max": 250,
             "rating": 4.8, "duration_hours": 3, "popularity_score": 90},
            {"name": "Fifth Avenue Shopping", "category": "shopping", "cost_min": 0, "cost_max": 500,
             "rating": 4.2, "duration_hours": 4, "popularity_score": 72},
        ],
    },
]


def seed(session) -> int:
    created = 0
    for entry in CATALOG:
        data = entry["city"]
        city = session.query(City).filter(City.name == data["name"], City.country == data["country"]).first()
        if city is not None:
            print(f"⏭️  {data['name']}, {data['country']} already present")
            continue
        city = catalog_service.create_city(session, data)
        for activity in entry["activities"]:
            catalog_service.create_activity(session, dict(activity, city_id=city.id))
        session.commit()
        created += 1
        print(f"✅ {city.name}, {city.country}: {len(entry['activities'])} activities")
    return created


if __name__ == "__main__":
    setup_logging()
    init_engine()
    create_schema()
    session = SessionLocal()
    try:
        count = seed(session)
        logging.info("catalog.seed created_cities=%s", count)
    except Exception:
        session.rollback()
        logging.exception("catalog.seed failed")
        sys.exit(1)
    finally:
        session.close()
        shutdown()
