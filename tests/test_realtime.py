"""Live updates over /socket: subscription rules, ordering and timestamps."""

from datetime import datetime, timedelta

import pytest
from starlette.websockets import WebSocketDisconnect

from services.realtime import ITINERARY_ADD, Event, bus, format_timestamp
from utils.time_utils import utcnow


def _parse(stamp: str) -> datetime:
    return datetime.strptime(stamp, "%Y-%m-%dT%H:%M:%S.%fZ")


def _subscribe(ws, trip_id, **extra):
    ws.send_json(dict(type="subscribe", trip_id=trip_id, **extra))
    return ws.receive_json()


class TestBus:
    def test_timestamps_strictly_increase(self):
        envelopes = bus.publish(Event(ITINERARY_ADD, 1, "u1", {"n": n}) for n in range(200))
        stamps = [e["server_timestamp"] for e in envelopes]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)

    def test_envelope_shape(self):
        envelope = bus.publish([Event(ITINERARY_ADD, 7, "u1", {"item": {"id": 3}})])[0]
        assert envelope["type"] == "event"
        assert envelope["event"] == "itinerary.add"
        assert envelope["trip_id"] == 7
        assert envelope["actor_user_id"] == "u1"
        assert len(envelope["event_id"]) == 36

    def test_format_is_fixed_width(self):
        assert format_timestamp(datetime(2025, 1, 2, 3, 4, 5)) == "2025-01-02T03:04:05.000000Z"


class TestSocket:
    def test_bad_token_closes_with_4401(self, client):
        with client.websocket_connect("/socket?token=garbage") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == 4401

    def test_missing_token_closes_with_4401(self, client):
        with client.websocket_connect("/socket") as ws:
            with pytest.raises(WebSocketDisconnect) as exc:
                ws.receive_json()
        assert exc.value.code == 4401

    def test_ping(self, client, owner):
        with client.websocket_connect("/socket", headers=owner["headers"]) as ws:
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_invalid_messages(self, client, owner):
        with client.websocket_connect(f"/socket?token={owner['token']}") as ws:
            ws.send_text("not json")
            assert ws.receive_json()["error"] == "validation"
            ws.send_json({"type": "subscribe", "trip_id": "seven"})
            assert ws.receive_json()["error"] == "validation"
            ws.send_json({"type": "dance"})
            assert ws.receive_json()["type"] == "error"

    def test_cannot_subscribe_to_private_trip(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="private")
        with client.websocket_connect("/socket", headers=other["headers"]) as ws:
            reply = _subscribe(ws, trip["id"])
            assert reply == {"type": "error", "error": "not_found", "message": "Trip not found"}

    def test_share_token_allows_subscription(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="private")
        token = client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"]).json()["share_token"]
        with client.websocket_connect("/socket", headers=other["headers"]) as ws:
            assert _subscribe(ws, trip["id"], share_token=token) == {"type": "subscribed", "trip_id": trip["id"]}

    def test_reorder_is_broadcast_with_increasing_timestamps(self, client, owner, other, make_trip, add_item):
        trip = make_trip(owner["headers"], privacy="public")
        ids = [add_item(owner["headers"], trip["id"], title=t)["id"] for t in "ABC"]
        new_order = [ids[2], ids[0], ids[1]]

        with client.websocket_connect("/socket", headers=owner["headers"]) as ws_a, \
                client.websocket_connect("/socket", headers=other["headers"]) as ws_b:
            assert _subscribe(ws_a, trip["id"])["type"] == "subscribed"
            assert _subscribe(ws_b, trip["id"])["type"] == "subscribed"

            before = utcnow() - timedelta(seconds=1)
            response = client.put(f"/api/trips/{trip['id']}/itinerary/reorder", json={"item_ids": new_order}, headers=owner["headers"])
            assert response.status_code == 200
            after = utcnow() + timedelta(seconds=1)

            first = ws_b.receive_json()
            assert first["event"] == "itinerary.reorder"
            assert first["trip_id"] == trip["id"]
            assert first["actor_user_id"] == owner["user"]["id"]
            assert first["data"]["order"] == new_order
            assert before <= _parse(first["server_timestamp"]) <= after
            assert ws_a.receive_json()["event_id"] == first["event_id"]

            client.put(f"/api/trips/{trip['id']}/itinerary/reorder", json={"item_ids": new_order}, headers=owner["headers"])
            second = ws_b.receive_json()
            assert second["event"] == "itinerary.reorder"
            assert second["server_timestamp"] > first["server_timestamp"]
            assert second["event_id"] != first["event_id"]

    def test_events_arrive_in_commit_order(self, client, owner, make_trip):
        trip = make_trip(owner["headers"])
        with client.websocket_connect("/socket", headers=owner["headers"]) as ws:
            _subscribe(ws, trip["id"])
            titles = ["one", "two", "three"]
            for title in titles:
                client.post(f"/api/trips/{trip['id']}/itinerary", json={"title": title}, headers=owner["headers"])
            events = [ws.receive_json() for _ in titles]
            assert [e["data"]["item"]["title"] for e in events] == titles
            assert [e["data"]["item"]["order_index"] for e in events] == [0, 1, 2]

    def test_unsubscribe_stops_events(self, client, owner, make_trip):
        trip = make_trip(owner["headers"])
        with client.websocket_connect("/socket", headers=owner["headers"]) as ws:
            _subscribe(ws, trip["id"])
            ws.send_json({"type": "unsubscribe", "trip_id": trip["id"]})
            assert ws.receive_json() == {"type": "unsubscribed", "trip_id": trip["id"]}
            client.post(f"/api/trips/{trip['id']}/itinerary", json={"title": "quiet"}, headers=owner["headers"])
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}

    def test_trip_deletion_ends_subscription(self, client, owner, make_trip):
        trip = make_trip(owner["headers"])
        with client.websocket_connect("/socket", headers=owner["headers"]) as ws:
            _subscribe(ws, trip["id"])
            client.delete(f"/api/trips/{trip['id']}", headers=owner["headers"])
            event = ws.receive_json()
            assert event["event"] == "trip.deleted"
            assert bus.subscribers(trip["id"]) == []


class TestAccessChanges:
    def test_rotated_share_token_ends_subscription(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="private")
        old_token = client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"]).json()["share_token"]

        with client.websocket_connect("/socket", headers=owner["headers"]) as ws_owner, \
                client.websocket_connect("/socket", headers=other["headers"]) as ws_guest:
            _subscribe(ws_owner, trip["id"])
            assert _subscribe(ws_guest, trip["id"], share_token=old_token)["type"] == "subscribed"

            client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"])
            notice = ws_guest.receive_json()
            assert notice["type"] == "unsubscribed"
            assert notice["trip_id"] == trip["id"]
            assert notice["error"] == "forbidden"

            client.post(f"/api/trips/{trip['id']}/itinerary", json={"title": "Secret dinner"}, headers=owner["headers"])
            ws_guest.send_json({"type": "ping"})
            assert ws_guest.receive_json() == {"type": "pong"}

            assert ws_owner.receive_json()["event"] == "trip.updated"
            assert ws_owner.receive_json()["data"]["item"]["title"] == "Secret dinner"

    def test_going_private_ends_public_subscriptions(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="public")
        with client.websocket_connect("/socket", headers=other["headers"]) as ws:
            _subscribe(ws, trip["id"])
            client.put(f"/api/trips/{trip['id']}", json={"privacy": "private"}, headers=owner["headers"])
            assert ws.receive_json()["type"] == "unsubscribed"

            client.post(f"/api/trips/{trip['id']}/itinerary", json={"title": "Private hotel"}, headers=owner["headers"])
            ws.send_json({"type": "ping"})
            assert ws.receive_json() == {"type": "pong"}
            assert bus.subscribers(trip["id"]) == []

    def test_share_token_holder_survives_going_private(self, client, owner, other, make_trip):
        trip = make_trip(owner["headers"], privacy="public")
        token = client.post(f"/api/trips/{trip['id']}/share", headers=owner["headers"]).json()["share_token"]
        with client.websocket_connect("/socket", headers=other["headers"]) as ws:
            _subscribe(ws, trip["id"], share_token=token)
            client.put(f"/api/trips/{trip['id']}", json={"privacy": "private"}, headers=owner["headers"])
            event = ws.receive_json()
            assert event["event"] == "trip.updated"
            assert event["data"]["fields"] == ["privacy"]
