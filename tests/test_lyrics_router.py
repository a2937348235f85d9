"""Integration tests for lyrics authoring and enrichment trigger endpoints."""

from __future__ import annotations

import uuid

import pytest

from lyrics_vault.jobs.dispatcher import (
    EVENT_GENERATE_EMBEDDINGS,
    EVENT_GENERATE_LYRICS,
    EVENT_SYNC_LYRICS,
)
from lyrics_vault.models import JobKind, JobStatus

pytestmark = pytest.mark.usefixtures("services")


def _published(services) -> tuple[str, dict]:
    services.dispatcher.publish.assert_called_once()
    event_name, payload = services.dispatcher.publish.call_args.args
    return event_name, payload


class TestManualLyrics:
    async def test_create_with_lines(self, client, make_song, auth_headers) -> None:
        song = await make_song()

        resp = await client.post(
            f"/api/v1/songs/{song.id}/lyrics",
            json={
                "full_text": "one\ntwo",
                "lines": [
                    {"text": "two", "start_time": 3.0, "order_index": 1},
                    {"text": "one", "start_time": 0.0, "end_time": 3.0, "order_index": 0},
                ],
            },
            headers=auth_headers,
        )

        assert resp.status_code == 201
        body = resp.json()
        assert body["is_generated"] is False
        assert [ln["text"] for ln in body["lines"]] == ["one", "two"]

    async def test_create_twice_is_rejected(self, client, make_song, auth_headers) -> None:
        song = await make_song(lyrics="existing")

        resp = await client.post(
            f"/api/v1/songs/{song.id}/lyrics", json={"full_text": "new"}, headers=auth_headers
        )

        assert resp.status_code == 400

    async def test_create_requires_auth(self, client, make_song) -> None:
        song = await make_song()

        resp = await client.post(f"/api/v1/songs/{song.id}/lyrics", json={"full_text": "x"})

        assert resp.status_code == 401

    async def test_update_marks_verified(self, client, make_song, auth_headers, services) -> None:
        song = await make_song(lyrics="a\nb")
        lyrics = await services.lyrics.get_by_song_id(song.id)

        resp = await client.put(
            f"/api/v1/lyrics/{lyrics.id}", json={"is_verified": True}, headers=auth_headers
        )

        assert resp.status_code == 200
        assert resp.json()["is_verified"] is True
        assert len(resp.json()["lines"]) == 2

    async def test_update_unknown_is_404(self, client, auth_headers) -> None:
        resp = await client.put(
            f"/api/v1/lyrics/{uuid.uuid4()}", json={"is_verified": True}, headers=auth_headers
        )

        assert resp.status_code == 404

    async def test_delete(self, client, make_song, auth_headers) -> None:
        song = await make_song(lyrics="a")
        detail = (await client.get(f"/api/v1/songs/{song.id}")).json()

        resp = await client.delete(
            f"/api/v1/lyrics/{detail['lyrics']['id']}", headers=auth_headers
        )

        assert resp.status_code == 204
        assert (await client.get(f"/api/v1/songs/{song.id}/lyrics")).status_code == 204


class TestJobTriggers:
    async def test_generate_publishes_song_context(
        self, client, make_song, auth_headers, services
    ) -> None:
        song = await make_song(duration_seconds=200.0)

        resp = await client.post(
            f"/api/v1/songs/{song.id}/lyrics/generate",
            json={"beat_times": [0.0, 2.39]},
            headers=auth_headers,
        )

        assert resp.status_code == 202
        assert resp.json() == {
            "status": "started",
            "event": EVENT_GENERATE_LYRICS,
            "song_id": str(song.id),
            "run_id": "run_test",
        }
        event_name, payload = _published(services)
        assert event_name == EVENT_GENERATE_LYRICS
        assert payload["audio_url"] == song.audio_url
        assert payload["title"] == "Lucid Dreams"
        assert payload["duration_seconds"] == 200.0
        assert payload["beat_times"] == [0.0, 2.39]

    async def test_generate_without_body(self, client, make_song, auth_headers, services) -> None:
        song = await make_song()

        resp = await client.post(
            f"/api/v1/songs/{song.id}/lyrics/generate", headers=auth_headers
        )

        assert resp.status_code == 202
        _, payload = _published(services)
        assert payload["beat_times"] is None

    async def test_generate_unknown_song_is_404(self, client, auth_headers, services) -> None:
        resp = await client.post(
            f"/api/v1/songs/{uuid.uuid4()}/lyrics/generate", headers=auth_headers
        )

        assert resp.status_code == 404
        services.dispatcher.publish.assert_not_called()

    async def test_sync_falls_back_to_stored_text(
        self, client, make_song, auth_headers, services
    ) -> None:
        song = await make_song(lyrics="stored\ntext")

        resp = await client.post(f"/api/v1/songs/{song.id}/lyrics/sync", headers=auth_headers)

        assert resp.status_code == 202
        event_name, payload = _published(services)
        assert event_name == EVENT_SYNC_LYRICS
        assert payload["full_text"] == "stored\ntext"

    async def test_sync_prefers_body_text(self, client, make_song, auth_headers, services) -> None:
        song = await make_song(lyrics="stored")

        await client.post(
            f"/api/v1/songs/{song.id}/lyrics/sync",
            json={"full_text": "fresh"},
            headers=auth_headers,
        )

        _, payload = _published(services)
        assert payload["full_text"] == "fresh"

    async def test_sync_without_any_text_is_400(
        self, client, make_song, auth_headers, services
    ) -> None:
        song = await make_song()

        resp = await client.post(f"/api/v1/songs/{song.id}/lyrics/sync", headers=auth_headers)

        assert resp.status_code == 400
        services.dispatcher.publish.assert_not_called()

    async def test_embeddings_trigger(self, client, make_song, auth_headers, services) -> None:
        song = await make_song()

        resp = await client.post(
            f"/api/v1/songs/{song.id}/embeddings/generate", headers=auth_headers
        )

        assert resp.status_code == 202
        assert _published(services) == (EVENT_GENERATE_EMBEDDINGS, {"song_id": str(song.id)})


class TestJobStatus:
    async def test_lists_ledger_rows(self, client, make_song, services) -> None:
        song = await make_song()
        await services.ledger.record_transition(
            song.id, JobKind.GENERATE_LYRICS, "run_a", JobStatus.FAILED, error="boom"
        )

        resp = await client.get(f"/api/v1/songs/{song.id}/jobs")

        assert resp.status_code == 200
        [job] = resp.json()
        assert job["run_id"] == "run_a"
        assert job["status"] == JobStatus.FAILED.value
        assert job["error"] == "boom"

    async def test_unknown_song_is_404(self, client) -> None:
        resp = await client.get(f"/api/v1/songs/{uuid.uuid4()}/jobs")

        assert resp.status_code == 404
