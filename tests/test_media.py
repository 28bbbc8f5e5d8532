"""Upload size and type limits, storage layout and cleanup."""

from io import BytesIO
from types import SimpleNamespace

import pytest

from config import Config
from services.media_store import MediaStore
from utils.errors import PayloadTooLargeError, ValidationError


def _upload(data: bytes, content_type: str = "image/png"):
    return SimpleNamespace(content_type=content_type, file=BytesIO(data))


class TestMediaStore:
    def test_exact_limit_is_accepted(self, tmp_path):
        store = MediaStore(upload_dir=str(tmp_path), max_bytes=16)
        url = store.save(_upload(b"x" * 16), "avatars")
        assert url.startswith("/uploads/avatars/") and url.endswith(".png")
        assert store.path_for(url).read_bytes() == b"x" * 16

    def test_one_byte_over_is_too_large(self, tmp_path):
        store = MediaStore(upload_dir=str(tmp_path), max_bytes=16)
        with pytest.raises(PayloadTooLargeError):
            store.save(_upload(b"x" * 17), "avatars")
        assert not (tmp_path / "avatars").exists() or not any((tmp_path / "avatars").iterdir())

    def test_rejects_non_images(self, tmp_path):
        store = MediaStore(upload_dir=str(tmp_path), max_bytes=16)
        with pytest.raises(ValidationError):
            store.save(_upload(b"%PDF", "application/pdf"), "trip-covers")

    def test_rejects_empty(self, tmp_path):
        store = MediaStore(upload_dir=str(tmp_path), max_bytes=16)
        with pytest.raises(ValidationError):
            store.save(_upload(b""), "trip-covers")

    def test_delete_and_foreign_paths(self, tmp_path):
        store = MediaStore(upload_dir=str(tmp_path), max_bytes=16)
        url = store.save(_upload(b"abc", "image/webp"), "trip-covers")
        assert store.delete(url) is True
        assert store.delete(url) is False
        assert store.path_for("/uploads/avatars/../../etc/passwd") is None
        assert store.path_for("https://example.com/a.png") is None


class TestUploadEndpoints:
    def test_signup_avatar_at_and_over_limit(self, client, monkeypatch):
        monkeypatch.setattr(Config, "MAX_UPLOAD_BYTES", 32)
        ok = client.post(
            "/api/auth/signup",
            data={"full_name": "Pat", "email": "pat@example.com", "password": "secret1"},
            files={"avatar": ("me.png", b"p" * 32, "image/png")},
        )
        assert ok.status_code == 201
        assert ok.json()["user"]["avatar_path"].startswith("/uploads/avatars/")

        too_big = client.post(
            "/api/auth/signup",
            data={"full_name": "Sam", "email": "sam@example.com", "password": "secret1"},
            files={"avatar": ("me.png", b"p" * 33, "image/png")},
        )
        assert too_big.status_code == 413
        assert too_big.json()["error"] == "payload_too_large"
        # the account was not created
        login = client.post("/api/auth/login", json={"email": "sam@example.com", "password": "secret1"})
        assert login.status_code == 401

    def test_trip_cover_replaced_and_removed(self, client, owner):
        response = client.post(
            "/api/trips",
            data={"title": "Lisbon", "privacy": "public"},
            files={"cover_photo": ("cover.jpg", b"jpegbytes", "image/jpeg")},
            headers=owner["headers"],
        )
        assert response.status_code == 201
        trip = response.json()
        store = MediaStore()
        first = store.path_for(trip["cover_photo_path"])
        assert first.exists()

        updated = client.put(
            f"/api/trips/{trip['id']}",
            data={"title": "Lisbon"},
            files={"cover_photo": ("cover.gif", b"gifbytes", "image/gif")},
            headers=owner["headers"],
        ).json()
        second = store.path_for(updated["cover_photo_path"])
        assert second.exists()
        assert not first.exists()

        client.delete(f"/api/trips/{trip['id']}", headers=owner["headers"])
        assert not second.exists()

    def test_unsupported_type_is_validation(self, client, owner):
        response = client.post(
            "/api/trips",
            data={"title": "Doc"},
            files={"cover_photo": ("notes.txt", b"hello", "text/plain")},
            headers=owner["headers"],
        )
        assert response.status_code == 400
