"""Integration tests for the /api/v1/storage endpoints."""

from __future__ import annotations

import pytest

pytestmark = pytest.mark.usefixtures("services")

KEY = "audio/user_owner/1-take.wav"


@pytest.fixture
async def upload_url(services) -> str:
    grant = await services.object_store.presign_write(KEY, "audio/wav", 60)
    return grant.url


class TestUpload:
    async def test_put_with_grant_stores_object(self, client, upload_url, wav_bytes) -> None:
        resp = await client.put(upload_url, content=wav_bytes)

        assert resp.status_code == 201
        body = resp.json()
        assert body["key"] == KEY
        assert body["size_bytes"] == len(wav_bytes)
        assert body["content_type"].startswith("audio/")

    async def test_put_with_bad_grant_is_400(self, client, wav_bytes) -> None:
        resp = await client.put(f"/api/v1/storage/{KEY}?grant=forged", content=wav_bytes)

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_put_without_grant_is_422(self, client, wav_bytes) -> None:
        resp = await client.put(f"/api/v1/storage/{KEY}", content=wav_bytes)

        assert resp.status_code == 422

    async def test_put_non_audio_body_is_400(self, client, upload_url) -> None:
        resp = await client.put(upload_url, content=b"<html>definitely not audio</html>" * 20)

        assert resp.status_code == 400


class TestRead:
    async def test_get_returns_bytes(self, client, upload_url, wav_bytes) -> None:
        await client.put(upload_url, content=wav_bytes)

        resp = await client.get(f"/api/v1/storage/{KEY}")

        assert resp.status_code == 200
        assert resp.content == wav_bytes
        assert resp.headers["content-type"].startswith("audio/")

    async def test_range_request_returns_partial_content(
        self, client, upload_url, wav_bytes
    ) -> None:
        await client.put(upload_url, content=wav_bytes)

        resp = await client.get(f"/api/v1/storage/{KEY}", headers={"Range": "bytes=0-99"})

        assert resp.status_code == 206
        assert resp.content == wav_bytes[:100]

    async def test_metadata_probes_audio(self, client, upload_url, wav_bytes) -> None:
        await client.put(upload_url, content=wav_bytes)

        resp = await client.get(f"/api/v1/storage/{KEY}/metadata")

        assert resp.status_code == 200
        audio = resp.json()["audio"]
        assert audio["sample_rate"] == 8000
        assert audio["channels"] == 1

    async def test_missing_object_is_404(self, client) -> None:
        resp = await client.get("/api/v1/storage/audio/nobody/missing.mp3")

        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_traversal_key_is_rejected(self, client) -> None:
        resp = await client.get("/api/v1/storage/audio/%2E%2E/%2E%2E/secret")

        assert resp.status_code in (400, 404)
