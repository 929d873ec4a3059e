"""Tests for the chunk arrival ledger."""

from concurrent.futures import ThreadPoolExecutor

import pytest

from copilot.services.ledger import ChunkNotification, InMemoryChunkLedger, SqlChunkLedger


@pytest.fixture(name="ledger", params=["memory", "sql"])
def ledger_fixture(request, db_session_factory):
    if request.param == "memory":
        return InMemoryChunkLedger()
    return SqlChunkLedger(db_session_factory)


class TestRecord:
    def test_orders_by_index_regardless_of_arrival(self, ledger):
        """Test entries come back in index order whatever the arrival order."""
        for index in (2, 0, 3, 1):
            ledger.record(ChunkNotification(session_id="s1", chunk_index=index))
        assert [n.chunk_index for n in ledger.chunks_for("s1")] == [0, 1, 2, 3]

    def test_duplicate_is_not_appended(self, ledger):
        """Test a repeated index is reported and not stored twice."""
        notification = ChunkNotification(session_id="s1", chunk_index=0, storage_path="sessions/s1/chunk_0.wav")
        assert ledger.record(notification) is True
        assert ledger.record(notification) is False
        assert len(ledger.chunks_for("s1")) == 1

    def test_sessions_are_separate(self, ledger):
        """Test entries are kept per session."""
        ledger.record(ChunkNotification(session_id="s1", chunk_index=0))
        ledger.record(ChunkNotification(session_id="s2", chunk_index=0, is_last=True))
        assert len(ledger.chunks_for("s1")) == 1
        assert ledger.chunks_for("missing") == []

    def test_has_terminal(self, ledger):
        """Test the terminal flag is found once recorded."""
        ledger.record(ChunkNotification(session_id="s1", chunk_index=0))
        assert ledger.has_terminal("s1") is False
        ledger.record(ChunkNotification(session_id="s1", chunk_index=1, is_last=True))
        assert ledger.has_terminal("s1") is True

    def test_fields_round_trip(self, ledger):
        """Test every notification field is kept."""
        ledger.record(
            ChunkNotification(
                session_id="s1",
                chunk_index=0,
                is_last=True,
                storage_path="sessions/s1/chunk_0.wav",
                public_url="http://testserver/api/v1/sessions/s1/chunks/0",
                mime_type="audio/wav",
                total_chunks_client=1,
                template_id="template_123",
                model="fast",
            )
        )
        (entry,) = ledger.chunks_for("s1")
        assert entry.storage_path == "sessions/s1/chunk_0.wav"
        assert entry.mime_type == "audio/wav"
        assert entry.template_id == "template_123"
        assert entry.received_at.tzinfo is not None


def test_concurrent_records_for_one_session():
    """Pipelined uploads notify concurrently; every index lands exactly once."""
    ledger = InMemoryChunkLedger()
    notifications = [ChunkNotification(session_id="s1", chunk_index=i % 50) for i in range(200)]

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(ledger.record, notifications))

    assert sum(results) == 50
    assert [n.chunk_index for n in ledger.chunks_for("s1")] == list(range(50))
