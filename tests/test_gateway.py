"""Cross-cutting HTTP behaviour: error envelope, caching headers, request replay."""

from datetime import timedelta

from config import Config
from models.ClientRequest import ClientRequest
from utils.time_utils import utcnow


class TestEnvelope:
    def test_unknown_route(self, client):
        response = client.get("/api/nowhere")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_body_validation_is_400(self, client, owner):
        response = client.post("/api/trips", json={"title": 5}, headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "database": "connected"}


class TestCacheHeaders:
    def test_reads_revalidate(self, client, owner):
        response = client.get("/api/trips", headers=owner["headers"])
        assert response.headers["Cache-Control"] == "no-cache"

    def test_writes_are_not_stored(self, client, owner):
        response = client.post("/api/trips", json={"title": "Oslo"}, headers=owner["headers"])
        assert response.headers["Cache-Control"] == "no-store"


class TestClientRequestReplay:
    def test_retried_create_runs_once(self, client, owner):
        headers = dict(owner["headers"], **{"X-Client-Request-Id": "req-1"})
        first = client.post("/api/trips", json={"title": "Oslo"}, headers=headers)
        second = client.post("/api/trips", json={"title": "Oslo"}, headers=headers)
        assert first.status_code == second.status_code == 201
        assert first.json()["id"] == second.json()["id"]
        assert client.get("/api/trips", headers=owner["headers"]).json()["total"] == 1

    def test_distinct_ids_are_distinct_requests(self, client, owner):
        for request_id in ("req-a", "req-b"):
            headers = dict(owner["headers"], **{"X-Client-Request-Id": request_id})
            client.post("/api/trips", json={"title": "Oslo"}, headers=headers)
        assert client.get("/api/trips", headers=owner["headers"]).json()["total"] == 2

    def test_key_is_scoped_to_caller(self, client, owner, other):
        for user in (owner, other):
            headers = dict(user["headers"], **{"X-Client-Request-Id": "shared"})
            client.post("/api/trips", json={"title": "Oslo"}, headers=headers)
        assert client.get("/api/trips", headers=other["headers"]).json()["total"] == 1

    def test_expired_request_id_is_not_replayed(self, client, owner, db_session):
        headers = dict(owner["headers"], **{"X-Client-Request-Id": "req-old"})
        client.post("/api/trips", json={"title": "Oslo"}, headers=headers)

        stale = utcnow() - timedelta(seconds=Config.CLIENT_REQUEST_TTL_SECONDS + 60)
        db_session.query(ClientRequest).update({ClientRequest.created_at: stale}, synchronize_session=False)
        db_session.commit()

        response = client.post("/api/trips", json={"title": "Oslo"}, headers=headers)
        assert response.status_code == 201
        assert client.get("/api/trips", headers=owner["headers"]).json()["total"] == 2

        # storing the fresh response pruned the stale row
        rows = db_session.query(ClientRequest).all()
        assert len(rows) == 1
        assert rows[0].created_at > stale


class TestBookings:
    def test_stub_search(self, client, owner):
        response = client.get("/api/flights/search?origin=LIS&destination=KIX", headers=owner["headers"])
        assert response.json() == {"results": [], "provider": "stub"}
        assert client.get("/api/hotels/search?city=Kyoto", headers=owner["headers"]).json()["results"] == []

    def test_requires_auth(self, client):
        assert client.get("/api/hotels/search").status_code == 401
