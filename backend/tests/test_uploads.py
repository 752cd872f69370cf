"""
Image upload tests against the temporary UPLOAD_FOLDER.
"""

import io
import os

import pytest

from merch_admin.services import storage_service
from merch_admin.services.storage_service import StorageError


class TestStorageService:
    def test_upload_and_delete(self, app):
        with app.app_context():
            result = storage_service.upload(b"\x89PNG fake", "tour poster.png")

            assert result.path.endswith("-tour_poster.png")
            assert result.url == f"/uploads/{result.path}"
            assert os.path.exists(storage_service.resolve_path(result.path))
            assert storage_service.path_from_url(result.url) == result.path

            assert storage_service.delete(result.path) is True
            assert storage_service.delete(result.path) is False

    def test_rejects_non_images(self, app):
        with app.app_context():
            with pytest.raises(StorageError):
                storage_service.upload(b"#!/bin/sh", "script.sh")

    def test_rejects_path_escape(self, app):
        with app.app_context():
            with pytest.raises(StorageError):
                storage_service.resolve_path("../config.py")

    def test_foreign_url(self, app):
        with app.app_context():
            assert storage_service.path_from_url("https://cdn.example.com/a.png") is None


class TestUploadRoutes:
    def test_upload_then_serve(self, client, manager_headers):
        resp = client.post(
            "/api/uploads",
            data={"file": (io.BytesIO(b"GIF89a"), "logo.gif")},
            headers=manager_headers,
            content_type="multipart/form-data",
        )
        assert resp.status_code == 201
        url = resp.get_json()["url"]

        served = client.get(url)
        assert served.status_code == 200
        assert served.data == b"GIF89a"

    def test_missing_file(self, client, manager_headers):
        resp = client.post("/api/uploads", data={}, headers=manager_headers, content_type="multipart/form-data")
        assert resp.status_code == 400
