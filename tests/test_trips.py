"""Trip CRUD, listing, sharing and the per-trip aggregates."""

from datetime import date, timedelta


KYOTO = {
    "title": "Kyoto",
    "start_date": "2025-04-10",
    "end_date": "2025-04-17",
    "budget": 120000,
    "currency": "INR",
    "travel_style": "leisure",
    "group_size": 2,
    "privacy": "public",
}


class TestCreateAndRead:
    def test_create_then_summary_is_empty(self, client, owner):
        response = client.post("/api/trips", json=KYOTO, headers=owner["headers"])
        assert response.status_code == 201
        trip = response.json()
        for key, value in KYOTO.items():
            assert trip[key] == value

        summary = client.get(f"/api/trips/{trip['id']}/summary", headers=owner["headers"]).json()
        assert summary["cities"] == 0
        assert summary["items"] == 0
        assert summary["total"] == 0

    def test_get_round_trips_fields(self, client, owner, make_trip):
        trip = make_trip(owner["headers"], **KYOTO, destination="kyoto ,  JAPAN")
        fetched = client.get(f"/api/trips/{trip['id']}", headers=owner["headers"]).json()
        for key, value in KYOTO.items():
            assert fetched[key] == value
        assert fetched["destination"] == "Kyoto, Japan"
        assert fetched["owner"]["full_name"] == "Olivia Owner"

    def test_end_before_start_rejected(self, client, owner):
        response = client.post("/api/trips", json={"title": "Backwards", "start_date": "2025-05-02", "end_date": "2025-05-01"}, headers=owner["headers"])
        assert response.status_code == 400
        assert response.json()["error"] == "validation"

    def test_blank_title_rejected(self, client, owner):
        response = client.post("/api/trips", json={"title": "   "}, headers=owner["headers"])
        assert response.status_code == 400

    def test_unknown_currency_rejected(self, client, owner):
        response = client.post("/api/trips", json={"title": "X", "currency": "JPY"}, headers=owner["headers"])
        assert response.status_code == 400

    def test_create_requires_authentication(self, client):
        assert client.post("/api/trips", json={"title": "Nope"}).status_code == 401

    def test_private_trip_hidden_from_others(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="private")
        response = client.get(f"/api/trips/{trip['id']}", headers=other["headers"])
        assert response.status_code == 404
        assert client.get(f"/api/trips/{trip['id']}").status_code == 404

    def test_public_trip_readable_anonymously_without_share_token(self, client, owner, make_trip):
        trip = make_trip(owner["headers"], privacy="public")
        client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"])
        response = client.get(f"/api/trips/{trip['id']}")
        assert response.status_code == 200
        assert "share_token" not in response.json()

    def test_admin_can_read_private_trip(self, client, owner, admin, make_trip):
        trip = make_trip(owner["headers"], privacy="private")
        assert client.get(f"/api/trips/{trip['id']}", headers=admin["headers"]).status_code == 200


class TestListing:
    def test_only_own_trips_listed(self, client, owner, other, make_trip):
        make_trip(owner["headers"], title="Mine")
        make_trip(other["headers"], title="Theirs", privacy="public")
        body = client.get("/api/trips", headers=owner["headers"]).json()
        assert body["total"] == 1
        assert all(t["owner_user_id"] == owner["user"]["id"] for t in body["trips"])

    def test_limit_zero_returns_empty_page_with_total(self, client, owner, make_trip):
        for n in range(3):
            make_trip(owner["headers"], title=f"Trip {n}")
        body = client.get("/api/trips?limit=0", headers=owner["headers"]).json()
        assert body["trips"] == []
        assert body["total"] == 3

    def test_pagination(self, client, owner, make_trip):
        for n in range(5):
            make_trip(owner["headers"], title=f"Trip {n}")
        body = client.get("/api/trips?limit=2&offset=2", headers=owner["headers"]).json()
        assert len(body["trips"]) == 2
        assert body["total"] == 5

    def test_status_filter_uses_derived_status(self, client, owner, make_trip):
        today = date.today()
        make_trip(owner["headers"], title="Someday")
        make_trip(owner["headers"], title="Soon", start_date=str(today + timedelta(days=30)), end_date=str(today + timedelta(days=35)))
        make_trip(owner["headers"], title="Now", start_date=str(today - timedelta(days=2)), end_date=str(today + timedelta(days=2)))
        make_trip(owner["headers"], title="Past", start_date=str(today - timedelta(days=40)), end_date=str(today - timedelta(days=30)))

        def titles(status):
            body = client.get(f"/api/trips?status={status}", headers=owner["headers"]).json()
            return [t["title"] for t in body["trips"]]

        assert titles("planning") == ["Someday"]
        assert titles("upcoming") == ["Soon"]
        assert titles("in-progress") == ["Now"]
        assert titles("completed") == ["Past"]

    def test_every_trip_lands_in_exactly_its_derived_bucket(self, client, owner, make_trip):
        today = date.today()
        make_trip(owner["headers"], title="Ended, never started", end_date=str(today - timedelta(days=3)))
        make_trip(owner["headers"], title="Ends later", end_date=str(today + timedelta(days=3)))
        make_trip(owner["headers"], title="Open ended", start_date=str(today - timedelta(days=3)))
        done = make_trip(owner["headers"], title="Marked done", start_date=str(today + timedelta(days=10)))
        client.put(f"/api/trips/{done['id']}", json={"status": "completed"}, headers=owner["headers"])

        trips = client.get("/api/trips?limit=100", headers=owner["headers"]).json()["trips"]
        derived = {t["id"]: t["status"] for t in trips}
        assert derived[done["id"]] == "completed"

        seen = {}
        for status in ("planning", "upcoming", "in-progress", "completed"):
            body = client.get(f"/api/trips?status={status}", headers=owner["headers"]).json()
            for trip in body["trips"]:
                assert trip["id"] not in seen
                seen[trip["id"]] = status
        assert seen == derived

    def test_unknown_status_filter(self, client, owner):
        assert client.get("/api/trips?status=someday", headers=owner["headers"]).status_code == 400

    def test_search(self, client, owner, make_trip):
        make_trip(owner["headers"], title="Alps hike", destination="Zermatt, Switzerland")
        make_trip(owner["headers"], title="Beach week", destination="Goa, India")
        body = client.get("/api/trips?q=switz", headers=owner["headers"]).json()
        assert [t["title"] for t in body["trips"]] == ["Alps hike"]


class TestUpdateAndDelete:
    def test_owner_updates(self, client, owner, make_trip):
        trip = make_trip(owner["headers"])
        response = client.put(f"/api/trips/{trip['id']}", json={"title": "Kyoto & Nara", "budget": 5000}, headers=owner["headers"])
        assert response.status_code == 200
        assert response.json()["title"] == "Kyoto & Nara"
        assert response.json()["budget"] == 5000

    def test_update_keeps_date_order(self, client, owner, make_trip):
        trip = make_trip(owner["headers"], start_date="2025-04-10", end_date="2025-04-17")
        response = client.put(f"/api/trips/{trip['id']}", json={"end_date": "2025-04-01"}, headers=owner["headers"])
        assert response.status_code == 400

    def test_explicit_completion(self, client, owner, make_trip):
        trip = make_trip(owner["headers"])
        response = client.put(f"/api/trips/{trip['id']}", json={"status": "completed"}, headers=owner["headers"])
        assert response.json()["status"] == "completed"

    def test_non_owner_cannot_update_public_trip(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="public")
        response = client.put(f"/api/trips/{trip['id']}", json={"title": "Hijacked"}, headers=other["headers"])
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_delete(self, client, owner, make_trip, add_item):
        trip = make_trip(owner["headers"])
        add_item(owner["headers"], trip["id"], title="Temple")
        assert client.delete(f"/api/trips/{trip['id']}", headers=owner["headers"]).status_code == 200
        assert client.get(f"/api/trips/{trip['id']}", headers=owner["headers"]).status_code == 404


class TestSharing:
    def test_share_link_rotation(self, client, owner, make_trip):
        trip = make_trip(owner["headers"], privacy="private")
        first = client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"]).json()
        token1 = first["share_token"]
        assert first["share_url"].endswith(f"/trips/shared/{token1}")

        shared = client.get(f"/api/trips/shared/{token1}")
        assert shared.status_code == 200
        assert shared.json()["read_only"] is True
        assert shared.json()["title"] == "Kyoto"
        assert "share_token" not in shared.json()

        token2 = client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"]).json()["share_token"]
        assert token2 != token1
        assert client.get(f"/api/trips/shared/{token1}").status_code == 404
        assert client.get(f"/api/trips/shared/{token2}").status_code == 200

    def test_share_token_grants_read_only(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="private")
        token = client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"]).json()["share_token"]

        assert client.get(f"/api/trips/{trip['id']}?share_token={token}").status_code == 200
        response = client.put(f"/api/trips/{trip['id']}", json={"title": "X"}, headers=other["headers"])
        assert response.status_code == 404

    def test_only_owner_shares(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="public")
        assert client.post(f"/api/trips/{trip['id']}/share", headers=other["headers"]).status_code == 403


class TestAggregates:
    def test_cost_breakdown(self, client, owner, make_trip, add_item):
        trip = make_trip(owner["headers"])
        for category, cost in (("flight", 30000), ("hotel", 40000), ("restaurant", 8000), ("activity", 5000)):
            add_item(owner["headers"], trip["id"], title=category, category=category, cost=cost)

        response = client.get(f"/api/trips/{trip['id']}/cost-breakdown", headers=owner["headers"])
        assert response.json() == {
            "flight": 30000, "hotel": 40000, "restaurant": 8000, "activity": 5000,
            "transport": 0, "other": 0, "total": 83000,
        }

    def test_rollups_follow_itinerary(self, client, owner, make_trip, add_item):
        trip = make_trip(owner["headers"], budget=1000)
        add_item(owner["headers"], trip["id"], cost=100)
        add_item(owner["headers"], trip["id"], cost=250)

        fetched = client.get(f"/api/trips/{trip['id']}", headers=owner["headers"]).json()
        assert fetched["total_cost"] == 350
        assert fetched["activity_count"] == 2
        assert fetched["summary"]["remaining_budget"] == 650

    def test_aggregates_not_for_readers(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="public")
        assert client.get(f"/api/trips/{trip['id']}/summary", headers=other["headers"]).status_code == 403


class TestTripCities:
    def _city(self, client, admin, name="Kyoto", country="Japan"):
        response = client.post("/api/admin/cities", json={"name": name, "country": country}, headers=admin["headers"])
        assert response.status_code == 201
        return response.json()

    def test_add_reorder_remove(self, client, owner, admin, make_trip):
        trip = make_trip(owner["headers"])
        kyoto = self._city(client, admin)
        osaka = self._city(client, admin, "Osaka")
        tid = trip["id"]

        assert client.post(f"/api/trips/{tid}/cities", json={"city_id": kyoto["id"]}, headers=owner["headers"]).status_code == 201
        assert client.post(f"/api/trips/{tid}/cities", json={"city_id": osaka["id"]}, headers=owner["headers"]).status_code == 201
        duplicate = client.post(f"/api/trips/{tid}/cities", json={"city_id": osaka["id"]}, headers=owner["headers"])
        assert duplicate.status_code == 409

        reordered = client.put(f"/api/trips/{tid}/cities/reorder", json={"city_ids": [osaka["id"], kyoto["id"]]}, headers=owner["headers"])
        assert [c["city_id"] for c in reordered.json()["cities"]] == [osaka["id"], kyoto["id"]]

        client.delete(f"/api/trips/{tid}/cities/{osaka['id']}", headers=owner["headers"])
        cities = client.get(f"/api/trips/{tid}/cities", headers=owner["headers"]).json()["cities"]
        assert [(c["city_id"], c["arrival_order"]) for c in cities] == [(kyoto["id"], 0)]
        assert client.get(f"/api/trips/{tid}", headers=owner["headers"]).json()["city_count"] == 1

    def test_reorder_must_be_permutation(self, client, owner, admin, make_trip):
        trip = make_trip(owner["headers"])
        kyoto = self._city(client, admin)
        client.post(f"/api/trips/{trip['id']}/cities", json={"city_id": kyoto["id"]}, headers=owner["headers"])
        response = client.put(f"/api/trips/{trip['id']}/cities/reorder", json={"city_ids": []}, headers=owner["headers"])
        assert response.status_code == 409
