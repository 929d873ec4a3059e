"""Tests for chunk upload endpoints."""

import asyncio
import logging

import pytest
from conftest import AUTH_HEADERS, stream_of

from copilot.exceptions import TransientStorageError
from copilot.services.upload import TicketState, normalize_mime_type


def presign(client, session_id: str, index: int, mime_type: str = "audio/wav"):
    return client.post(
        "/api/v1/get-presigned-url",
        json={"sessionId": session_id, "chunkNumber": index, "mimeType": mime_type},
        headers=AUTH_HEADERS,
    )


def upload(client, session_id: str, index: int, payload: bytes, mime_type: str = "audio/wav") -> dict:
    ticket = presign(client, session_id, index, mime_type).json()
    response = client.put(ticket["writeDestination"], content=payload, headers=AUTH_HEADERS)
    assert response.status_code == 200
    return ticket


def notify(client, session_id: str, index: int, gcs_path: str, is_last: bool = False):
    return client.post(
        "/api/v1/notify-chunk-uploaded",
        json={
            "sessionId": session_id,
            "gcsPath": gcs_path,
            "chunkNumber": index,
            "isLast": is_last,
            "mimeType": "audio/wav",
            "selectedTemplateId": "template_123",
        },
        headers=AUTH_HEADERS,
    )


class TestPresignedUrl:
    def test_issues_distinct_destinations(self, client, recording):
        """Test a ticket carries separate write and read destinations."""
        response = presign(client, recording.id, 0)
        assert response.status_code == 200
        data = response.json()
        assert data["writeDestination"].startswith("http://testserver/api/v1/uploads/")
        assert data["readDestination"] == f"http://testserver/api/v1/sessions/{recording.id}/chunks/0"
        assert data["writeDestination"] != data["readDestination"]
        assert data["gcsPath"] == f"sessions/{recording.id}/chunk_0.wav"
        assert data["url"] == data["writeDestination"]
        assert data["publicUrl"] == data["readDestination"]

    def test_alias_route_and_chunk_index_field(self, client, recording):
        """Test the alias route and the chunkIndex field name."""
        response = client.post(
            "/api/v1/presigned-url",
            json={"sessionId": recording.id, "chunkIndex": 3, "mimeType": "audio/webm;codecs=opus"},
            headers=AUTH_HEADERS,
        )
        assert response.status_code == 200
        assert response.json()["gcsPath"] == f"sessions/{recording.id}/chunk_3.webm"

    def test_negative_index_rejected(self, client, recording):
        """Test negative indices are rejected."""
        response = presign(client, recording.id, -1)
        assert response.status_code == 400
        assert response.json()["retryable"] is False

    def test_index_above_maximum_rejected(self, client, components, recording):
        """Test indices above the configured maximum are rejected."""
        maximum = components.settings.MAX_CHUNK_INDEX
        assert presign(client, recording.id, maximum).status_code == 200
        response = presign(client, recording.id, maximum + 1)
        assert response.status_code == 400
        assert response.json()["retryable"] is False

    def test_missing_index_rejected(self, client, recording):
        """Test a ticket request without an index is rejected."""
        response = client.post(
            "/api/v1/get-presigned-url",
            json={"sessionId": recording.id, "mimeType": "audio/wav"},
            headers=AUTH_HEADERS,
        )
        assert response.status_code == 400

    def test_non_integer_index_rejected(self, client, recording):
        """Test non-integer indices are rejected."""
        response = client.post(
            "/api/v1/get-presigned-url",
            json={"sessionId": recording.id, "chunkNumber": "first", "mimeType": "audio/wav"},
            headers=AUTH_HEADERS,
        )
        assert response.status_code == 400

    @pytest.mark.parametrize("mime_type", ["", "text/plain", "application/pdf"])
    def test_bad_mime_type_rejected(self, client, recording, mime_type):
        """Test empty and non-audio MIME types are rejected."""
        assert presign(client, recording.id, 0, mime_type).status_code == 400

    def test_unknown_session(self, client):
        """Test an unknown session is a 404."""
        response = presign(client, "session_missing", 0)
        assert response.status_code == 404

    def test_requires_bearer_token(self, client, recording):
        """Test requests without a bearer token are refused."""
        response = client.post(
            "/api/v1/get-presigned-url",
            json={"sessionId": recording.id, "chunkNumber": 0, "mimeType": "audio/wav"},
        )
        assert response.status_code == 401


class TestUpload:
    def test_upload_then_read_back(self, client, recording):
        """Test an uploaded chunk is served at its read destination."""
        ticket = upload(client, recording.id, 0, b"RIFF-chunk-0")
        response = client.get(ticket["readDestination"], headers=AUTH_HEADERS)
        assert response.status_code == 200
        assert response.content == b"RIFF-chunk-0"
        assert response.headers["content-type"].startswith("audio/")

    def test_upload_response(self, client, recording):
        """Test the upload response describes the stored chunk."""
        ticket = presign(client, recording.id, 2).json()
        response = client.put(ticket["writeDestination"], content=b"abc", headers=AUTH_HEADERS)
        assert response.json() == {
            "sessionId": recording.id,
            "chunkIndex": 2,
            "gcsPath": f"sessions/{recording.id}/chunk_2.wav",
            "sizeBytes": 3,
        }

    def test_ticket_is_single_use(self, client, recording):
        """Test a ticket cannot be written twice."""
        ticket = upload(client, recording.id, 0, b"first")
        response = client.put(ticket["writeDestination"], content=b"second", headers=AUTH_HEADERS)
        assert response.status_code == 409

    def test_unknown_ticket(self, client):
        """Test an unknown ticket is forbidden."""
        response = client.put("/api/v1/uploads/not-a-ticket", content=b"x", headers=AUTH_HEADERS)
        assert response.status_code == 403

    def test_expired_ticket(self, client, components, clock, recording):
        """Test an expired ticket is forbidden."""
        ticket = presign(client, recording.id, 0).json()
        clock.advance(components.settings.TICKET_TTL_SECONDS + 1)
        response = client.put(ticket["writeDestination"], content=b"x", headers=AUTH_HEADERS)
        assert response.status_code == 403

    def test_oversized_chunk_keeps_ticket_usable(self, client, components, recording):
        """Test an oversized chunk is refused and the ticket can be retried."""
        ticket = presign(client, recording.id, 0).json()
        too_big = b"x" * (components.settings.max_chunk_bytes + 1)
        response = client.put(ticket["writeDestination"], content=too_big, headers=AUTH_HEADERS)
        assert response.status_code == 413
        assert components.store.locate(recording.id) == []

        response = client.put(ticket["writeDestination"], content=b"fits", headers=AUTH_HEADERS)
        assert response.status_code == 200

    def test_missing_chunk_is_404(self, client, recording):
        """Test reading an absent chunk is a 404."""
        response = client.get(f"/api/v1/sessions/{recording.id}/chunks/9", headers=AUTH_HEADERS)
        assert response.status_code == 404


class TestInterruptedUpload:
    def test_interrupted_stream_is_retryable(self, components, recording):
        """Test a dropped upload is retryable with the same ticket."""
        async def dropped():
            yield b"half a chunk"
            raise ConnectionAbortedError("client went away")

        coordinator = components.coordinator
        ticket = coordinator.issue_ticket(recording.id, 0, "audio/wav")

        with pytest.raises(TransientStorageError) as excinfo:
            asyncio.run(coordinator.accept(ticket.token, dropped()))
        assert excinfo.value.retryable is True
        assert ticket.state == TicketState.ISSUED
        assert components.store.locate(recording.id) == []

        ref = asyncio.run(coordinator.accept(ticket.token, stream_of(b"whole chunk")))
        assert ref.size_bytes == len(b"whole chunk")
        assert ticket.state == TicketState.USED


class TestNotify:
    def test_full_recording(self, client, components, recording):
        """Test a two-chunk recording completes and plays back in order."""
        first = upload(client, recording.id, 0, b"<0>")
        response = notify(client, recording.id, 0, first["gcsPath"])
        assert response.status_code == 200
        assert response.json() == {"status": "recording", "duplicate": False}

        second = upload(client, recording.id, 1, b"<1>")
        response = notify(client, recording.id, 1, second["gcsPath"], is_last=True)
        assert response.json()["status"] == "completed"

        audio = client.get(f"/api/v1/sessions/{recording.id}/audio", headers=AUTH_HEADERS)
        assert audio.status_code == 200
        assert audio.content == b"<0><1>"
        assert len(components.engine.pending()) == 1

    def test_duplicate_notification(self, client, recording):
        """Test a repeated notification is flagged as a duplicate."""
        ticket = upload(client, recording.id, 0, b"<0>")
        notify(client, recording.id, 0, ticket["gcsPath"])
        response = notify(client, recording.id, 0, ticket["gcsPath"])
        assert response.status_code == 200
        assert response.json() == {"status": "recording", "duplicate": True}

    def test_late_payload_completes_finalizing_session(self, client, recording):
        """Test a payload landing after its notification completes the session."""
        ticket = upload(client, recording.id, 1, b"<1>")
        notify(client, recording.id, 1, ticket["gcsPath"], is_last=True)
        # Notified before its bytes landed
        response = notify(client, recording.id, 0, f"sessions/{recording.id}/chunk_0.wav")
        assert response.json()["status"] == "finalizing"

        upload(client, recording.id, 0, b"<0>")
        session = client.get(f"/api/v1/sessions/{recording.id}", headers=AUTH_HEADERS).json()
        assert session["status"] == "completed"
        assert session["missing_chunks"] == []

    def test_index_above_maximum_rejected(self, client, components, recording):
        """Test a notification past the index bound is rejected and not recorded."""
        index = components.settings.MAX_CHUNK_INDEX + 1
        response = notify(client, recording.id, index, f"sessions/{recording.id}/chunk_{index}.wav", is_last=True)
        assert response.status_code == 400
        assert components.ledger.chunks_for(recording.id) == []

    def test_notification_before_payload_is_logged(self, client, recording, caplog):
        """Test a notification ahead of its payload is accepted and logged."""
        with caplog.at_level(logging.INFO, logger="copilot.services.upload"):
            response = notify(client, recording.id, 0, f"sessions/{recording.id}/chunk_0.wav")
        assert response.json() == {"status": "recording", "duplicate": False}
        assert "notified before its payload landed" in caplog.text

    def test_missing_gcs_path(self, client, recording):
        """Test a notification without a storage path is rejected."""
        response = client.post(
            "/api/v1/notify-chunk-uploaded",
            json={"sessionId": recording.id, "chunkNumber": 0},
            headers=AUTH_HEADERS,
        )
        assert response.status_code == 400

    def test_unknown_session(self, client):
        """Test an unknown session is a 404."""
        response = notify(client, "session_missing", 0, "sessions/session_missing/chunk_0.wav")
        assert response.status_code == 404

    def test_audio_before_any_upload(self, client, recording):
        """Test audio for a session without chunks is a 404."""
        response = client.get(f"/api/v1/sessions/{recording.id}/audio", headers=AUTH_HEADERS)
        assert response.status_code == 404


def test_normalize_mime_type():
    """Test MIME types are lowercased and stripped of parameters."""
    assert normalize_mime_type("Audio/MP4; codecs=mp4a") == "audio/mp4"
    assert normalize_mime_type("audio/amr") == "audio/amr"
