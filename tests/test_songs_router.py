"""Integration tests for the /api/v1/songs endpoints.

Services run against SQLite (see the ``services`` fixture); uploads go
through the real grant-protected storage endpoint.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient

from lyrics_vault.jobs.dispatcher import EVENT_GENERATE_EMBEDDINGS

pytestmark = pytest.mark.usefixtures("services")

T0 = datetime(2024, 1, 1, tzinfo=UTC)


async def _upload_song(client: AsyncClient, headers: dict, wav_bytes: bytes, **extra) -> dict:
    grant = await client.post(
        "/api/v1/songs/uploads",
        json={"audio": {"filename": "take one.wav", "content_type": "audio/wav"}},
        headers=headers,
    )
    assert grant.status_code == 200
    audio = grant.json()["audio"]

    stored = await client.put(audio["upload_url"], content=wav_bytes)
    assert stored.status_code == 201

    return await client.post(
        "/api/v1/songs",
        json={
            "title": "Wishing Well",
            "artist": "Juice WRLD",
            "audio_key": audio["key"],
            **extra,
        },
        headers=headers,
    )


class TestUpload:
    async def test_grant_then_commit_creates_song(
        self, client, auth_headers, wav_bytes, services
    ) -> None:
        resp = await _upload_song(client, auth_headers, wav_bytes, duration_seconds=1.0)

        assert resp.status_code == 201
        body = resp.json()
        assert body["title"] == "Wishing Well"
        assert body["artist"] == "Juice WRLD"
        assert body["uploaded_by_id"] == "user_owner"
        assert body["play_count"] == 0
        assert body["audio_url"].startswith("http://test/api/v1/storage/audio/user_owner/")
        services.dispatcher.publish.assert_called_once_with(
            EVENT_GENERATE_EMBEDDINGS, {"song_id": body["id"]}
        )

    async def test_grant_requires_auth(self, client) -> None:
        resp = await client.post(
            "/api/v1/songs/uploads", json={"audio": {"filename": "a.mp3"}}
        )

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHENTICATED"

    async def test_grant_rejects_non_audio(self, client, auth_headers) -> None:
        resp = await client.post(
            "/api/v1/songs/uploads",
            json={"audio": {"filename": "a.txt", "content_type": "text/plain"}},
            headers=auth_headers,
        )

        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_commit_without_uploaded_object_fails(self, client, auth_headers) -> None:
        resp = await client.post(
            "/api/v1/songs",
            json={"title": "Ghost", "artist": "Nobody", "audio_key": "audio/user_owner/1-missing.mp3"},
            headers=auth_headers,
        )

        assert resp.status_code == 400

    async def test_commit_with_someone_elses_key_fails(self, client, auth_headers) -> None:
        resp = await client.post(
            "/api/v1/songs",
            json={"title": "Stolen", "artist": "Nobody", "audio_key": "audio/user_other/1-x.mp3"},
            headers=auth_headers,
        )

        assert resp.status_code == 400

    async def test_commit_requires_artist(self, client, auth_headers) -> None:
        resp = await client.post(
            "/api/v1/songs",
            json={"title": "Untitled", "audio_key": "audio/user_owner/1-a.mp3"},
            headers=auth_headers,
        )

        assert resp.status_code == 422

    async def test_recommit_of_stored_key_keeps_first_song_audio(
        self, client, auth_headers, wav_bytes, services
    ) -> None:
        first = await _upload_song(client, auth_headers, wav_bytes)
        assert first.status_code == 201
        song = first.json()
        key = song["audio_url"].split("/api/v1/storage/", 1)[1]

        retry = await client.post(
            "/api/v1/songs",
            json={"title": "   ", "artist": "Juice WRLD", "audio_key": key},
            headers=auth_headers,
        )

        assert retry.status_code == 400
        assert retry.json()["error"]["code"] == "VALIDATION_ERROR"
        assert await services.object_store.exists(key)
        audio = await client.get(song["audio_url"].removeprefix("http://test"))
        assert audio.status_code == 200


class TestListAndDetail:
    async def test_list_pagination_contract(self, client, make_song) -> None:
        for i in range(3):
            await make_song(title=f"Song {i}", created_at=T0 + timedelta(days=i))

        resp = await client.get("/api/v1/songs", params={"page": 1, "pageSize": 2})

        assert resp.status_code == 200
        body = resp.json()
        assert [s["title"] for s in body["data"]] == ["Song 2", "Song 1"]
        assert body["pagination"] == {
            "page": 1,
            "pageSize": 2,
            "totalItems": 3,
            "totalPages": 2,
        }

    async def test_list_clamps_page_size(self, client, make_song) -> None:
        await make_song()

        resp = await client.get("/api/v1/songs", params={"pageSize": 1000})

        assert resp.json()["pagination"]["pageSize"] == 100

    async def test_list_search_and_uploader_filter(self, client, make_song) -> None:
        await make_song(title="Lucid Dreams")
        await make_song(title="Lucid Remix", uploaded_by_id="user_other")
        await make_song(title="Robbery")

        resp = await client.get(
            "/api/v1/songs", params={"search": "lucid", "uploadedBy": "user_other"}
        )

        assert [s["title"] for s in resp.json()["data"]] == ["Lucid Remix"]

    async def test_detail_includes_ordered_lyrics(self, client, make_song) -> None:
        song = await make_song(lyrics="first\nsecond")

        resp = await client.get(f"/api/v1/songs/{song.id}")

        assert resp.status_code == 200
        lines = resp.json()["lyrics"]["lines"]
        assert [(ln["text"], ln["order_index"]) for ln in lines] == [
            ("first", 0),
            ("second", 1),
        ]

    async def test_detail_not_found_envelope(self, client) -> None:
        resp = await client.get(f"/api/v1/songs/{uuid.uuid4()}")

        assert resp.status_code == 404
        error = resp.json()["error"]
        assert error["code"] == "NOT_FOUND"
        assert "message" in error

    async def test_lyrics_endpoint_is_204_without_lyrics(self, client, make_song) -> None:
        song = await make_song()

        resp = await client.get(f"/api/v1/songs/{song.id}/lyrics")

        assert resp.status_code == 204

    async def test_lyrics_endpoint_returns_lines(self, client, make_song) -> None:
        song = await make_song(lyrics="a\nb\nc")

        resp = await client.get(f"/api/v1/songs/{song.id}/lyrics")

        assert resp.status_code == 200
        assert resp.json()["full_text"] == "a\nb\nc"


class TestMutations:
    async def test_play_increments(self, client, make_song, auth_headers) -> None:
        song = await make_song()

        first = await client.post(f"/api/v1/songs/{song.id}/play", headers=auth_headers)
        second = await client.post(f"/api/v1/songs/{song.id}/play", headers=auth_headers)

        assert first.json()["play_count"] == 1
        assert second.json()["play_count"] == 2

    async def test_play_requires_auth(self, client, make_song) -> None:
        song = await make_song()

        resp = await client.post(f"/api/v1/songs/{song.id}/play")

        assert resp.status_code == 401

    async def test_invalid_token_is_rejected(self, client, make_song) -> None:
        song = await make_song()

        resp = await client.post(
            f"/api/v1/songs/{song.id}/play", headers={"Authorization": "Bearer not-a-jwt"}
        )

        assert resp.status_code == 401

    async def test_owner_can_patch(self, client, make_song, auth_headers) -> None:
        song = await make_song()

        resp = await client.patch(
            f"/api/v1/songs/{song.id}", json={"title": "Renamed"}, headers=auth_headers
        )

        assert resp.status_code == 200
        assert resp.json()["title"] == "Renamed"
        assert resp.json()["artist"] == "Juice WRLD"

    async def test_non_owner_patch_is_forbidden(
        self, client, make_song, other_auth_headers
    ) -> None:
        song = await make_song()

        resp = await client.patch(
            f"/api/v1/songs/{song.id}", json={"title": "Hijack"}, headers=other_auth_headers
        )

        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "FORBIDDEN"

    async def test_owner_delete_removes_song_and_objects(
        self, client, auth_headers, wav_bytes, services
    ) -> None:
        created = (await _upload_song(client, auth_headers, wav_bytes)).json()
        key = created["audio_url"].split("/api/v1/storage/", 1)[1]

        resp = await client.delete(f"/api/v1/songs/{created['id']}", headers=auth_headers)

        assert resp.status_code == 204
        assert (await client.get(f"/api/v1/songs/{created['id']}")).status_code == 404
        assert not await services.object_store.exists(key)
        services.index.delete_for_song.assert_awaited_once()

    async def test_non_owner_delete_changes_nothing(
        self, client, make_song, other_auth_headers, services
    ) -> None:
        song = await make_song()

        resp = await client.delete(f"/api/v1/songs/{song.id}", headers=other_auth_headers)

        assert resp.status_code == 403
        assert (await client.get(f"/api/v1/songs/{song.id}")).status_code == 200
        services.index.delete_for_song.assert_not_awaited()
