"""Admin surface: gating, user management, trip moderation and export."""

from io import BytesIO

from openpyxl import load_workbook


class TestGate:
    def test_non_admin_forbidden(self, client, owner):
        response = client.get("/api/admin/dashboard", headers=owner["headers"])
        assert response.status_code == 403
        assert response.json()["error"] == "forbidden"

    def test_anonymous_unauthenticated(self, client):
        assert client.get("/api/admin/users").status_code == 401

    def test_dashboard(self, client, admin, owner, make_trip):
        make_trip(owner["headers"], privacy="public")
        body = client.get("/api/admin/dashboard", headers=admin["headers"]).json()
        assert body["overview"]["total_users"] == 2
        assert body["overview"]["total_trips"] == 1
        assert body["overview"]["public_trips"] == 1
        assert len(body["user_growth"]) == 12
        assert body["system_health"]["database"] == "connected"


class TestUsers:
    def test_list_and_search(self, client, admin, owner, other):
        body = client.get("/api/admin/users?q=oscar", headers=admin["headers"]).json()
        assert [u["email"] for u in body["users"]] == ["other@example.com"]
        assert client.get("/api/admin/users?role=admin", headers=admin["headers"]).json()["total"] == 1

    def test_promote_user(self, client, admin, owner):
        response = client.put(f"/api/admin/users/{owner['user']['id']}", json={"role": "admin"}, headers=admin["headers"])
        assert response.status_code == 200
        assert response.json()["user"]["role"] == "admin"
        assert client.get("/api/admin/users", headers=owner["headers"]).status_code == 200

    def test_admin_cannot_demote_self(self, client, admin):
        response = client.put(f"/api/admin/users/{admin['user']['id']}", json={"role": "user"}, headers=admin["headers"])
        assert response.status_code == 400

    def test_admin_cannot_delete_self(self, client, admin):
        assert client.delete(f"/api/admin/users/{admin['user']['id']}", headers=admin["headers"]).status_code == 400

    def test_delete_user_cascades(self, client, admin, owner, make_trip, add_item):
        trip = make_trip(owner["headers"], privacy="public")
        add_item(owner["headers"], trip["id"])
        response = client.delete(f"/api/admin/users/{owner['user']['id']}", headers=admin["headers"])
        assert response.status_code == 200
        assert response.json()["deleted_trips"] == 1
        assert client.get(f"/api/trips/{trip['id']}", headers=admin["headers"]).status_code == 404
        assert client.get("/api/auth/profile", headers=owner["headers"]).status_code == 401

    def test_bulk_delete_partial_success(self, client, admin, owner, other):
        response = client.post("/api/admin/users/bulk-delete", json={
            "user_ids": [owner["user"]["id"], "missing-user", admin["user"]["id"], other["user"]["id"]],
        }, headers=admin["headers"])
        assert response.status_code == 200
        body = response.json()
        assert body["succeeded"] == [owner["user"]["id"], other["user"]["id"]]
        failures = {f["id"]: f["error"] for f in body["failed"]}
        assert failures == {"missing-user": "not_found", admin["user"]["id"]: "validation"}


class TestTrips:
    def test_list_filters(self, client, admin, owner, make_trip):
        make_trip(owner["headers"], title="Open", privacy="public")
        make_trip(owner["headers"], title="Closed", privacy="private")
        body = client.get("/api/admin/trips?privacy=private", headers=admin["headers"]).json()
        assert [t["title"] for t in body["trips"]] == ["Closed"]
        assert body["trips"][0]["owner_email"] == "owner@example.com"

    def test_feature_trip(self, client, admin, owner, make_trip):
        trip = make_trip(owner["headers"])
        response = client.put(f"/api/admin/trips/{trip['id']}/feature", json={"featured": True}, headers=admin["headers"])
        assert response.json()["is_featured"] is True
        featured = client.get("/api/admin/trips?featured=true", headers=admin["headers"]).json()
        assert [t["id"] for t in featured["trips"]] == [trip["id"]]

    def test_export_spreadsheet(self, client, admin, owner, make_trip):
        make_trip(owner["headers"], title="Exported trip", destination="Porto, Portugal")
        response = client.get("/api/admin/trips/export", headers=admin["headers"])
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/vnd.openxmlformats")
        assert "attachment; filename=GlobeTrotter_Trips_" in response.headers["content-disposition"]

        sheet = load_workbook(BytesIO(response.content)).active
        assert sheet["B4"].value == "Title"
        assert sheet["B5"].value == "Exported trip"
        assert sheet["E5"].value == "Porto, Portugal"


class TestSystem:
    def test_health(self, client, admin):
        body = client.get("/api/admin/system/health", headers=admin["headers"]).json()
        assert body["database"] == "connected"
        assert body["realtime_connections"] == 0
        assert body["uptime_seconds"] >= 0

    def test_analytics(self, client, admin, owner, make_trip):
        make_trip(owner["headers"])
        users = client.get("/api/admin/analytics/users", headers=admin["headers"]).json()
        assert users["by_role"] == {"user": 1, "admin": 1}
        trips = client.get("/api/admin/analytics/trips", headers=admin["headers"]).json()
        assert trips["travel_stats"]["total_trips"] == 1
