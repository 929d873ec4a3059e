"""Chunk store: write-once-per-attempt persistence of raw chunk payloads.

Objects are keyed ``sessions/<session_id>/chunk_<index><ext>``. A write either
commits the whole payload or leaves nothing visible to ``get``/``locate``.
"""

import asyncio
import logging
import mimetypes
import os
import re
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass
from pathlib import Path

import aiofiles

from copilot.exceptions import ChunkNotFoundError, ChunkTooLargeError, TransientStorageError, ValidationError

logger = logging.getLogger(__name__)

READ_BLOCK_SIZE = 1024 * 64  # 64KB blocks

SESSION_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")
CHUNK_NAME_PATTERN = re.compile(r"^chunk_(\d+)(\.[A-Za-z0-9]+)?$")

MIME_EXTENSIONS = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/wave": ".wav",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
    "audio/aac": ".aac",
    "audio/x-aac": ".aac",
    "audio/webm": ".webm",
    "audio/ogg": ".ogg",
    "audio/flac": ".flac",
    "audio/x-flac": ".flac",
    "audio/3gpp": ".3gp",
    "video/mp4": ".mp4",
}


def extension_for(mime_type: str | None) -> str:
    """File extension used for a chunk of the given MIME type."""
    if not mime_type:
        return ".bin"
    base = mime_type.split(";", 1)[0].strip().lower()
    return MIME_EXTENSIONS.get(base) or mimetypes.guess_extension(base) or ".bin"


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)


def chunk_key(session_id: str, chunk_index: int, mime_type: str | None = None) -> str:
    return f"sessions/{session_id}/chunk_{chunk_index}{extension_for(mime_type)}"


def check_address(session_id: str, chunk_index: int) -> None:
    """Reject ids that could escape the session namespace."""
    if not isinstance(session_id, str) or not SESSION_ID_PATTERN.match(session_id):
        raise ValidationError(f"Invalid session id '{session_id}'")
    if isinstance(chunk_index, bool) or not isinstance(chunk_index, int) or chunk_index < 0:
        raise ValidationError(f"Invalid chunk index '{chunk_index}'")


@dataclass(frozen=True)
class StorageRef:
    """Reference to a committed chunk object."""

    session_id: str
    chunk_index: int
    key: str
    size_bytes: int
    location: str | None = None


class ChunkStore(ABC):
    """Durable storage of chunk payloads addressed by (session id, chunk index)."""

    def __init__(self, max_chunk_bytes: int | None = None) -> None:
        self.max_chunk_bytes = max_chunk_bytes

    @abstractmethod
    async def put(
        self,
        session_id: str,
        chunk_index: int,
        stream: AsyncIterator[bytes],
        *,
        mime_type: str | None = None,
    ) -> StorageRef:
        """Stream a payload into storage and commit it atomically. Overwrites an existing object."""

    @abstractmethod
    def get(self, session_id: str, chunk_index: int) -> Iterator[bytes]:
        """Iterate over a committed payload. Raises ChunkNotFoundError."""

    @abstractmethod
    def locate(self, session_id: str) -> list[StorageRef]:
        """All committed chunks of a session, ascending by index."""

    def exists(self, session_id: str, chunk_index: int) -> bool:
        return any(ref.chunk_index == chunk_index for ref in self.locate(session_id))

    def _check_size(self, session_id: str, chunk_index: int, size: int) -> None:
        if self.max_chunk_bytes is not None and size > self.max_chunk_bytes:
            raise ChunkTooLargeError(
                f"Chunk {chunk_index} of session '{session_id}' exceeds {self.max_chunk_bytes // (1024 * 1024)}MB"
            )


class LocalChunkStore(ChunkStore):
    """Chunk objects as files under a root directory, one directory per session.

    Payload blocks are written with ``aiofiles``; fsync, lookup and rename run
    in a worker thread so one session's commit never stalls the event loop.
    """

    def __init__(self, root: str | Path, max_chunk_bytes: int | None = None) -> None:
        super().__init__(max_chunk_bytes)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _session_dir(self, session_id: str) -> Path:
        return self.root / "sessions" / session_id

    def _chunk_files(self, session_id: str) -> dict[int, tuple[Path, os.stat_result]]:
        """Newest committed file per chunk index."""
        session_dir = self._session_dir(session_id)
        if not session_dir.is_dir():
            return {}

        files: dict[int, tuple[Path, os.stat_result]] = {}
        for path in session_dir.iterdir():
            match = CHUNK_NAME_PATTERN.match(path.name)
            if not match:
                continue
            try:
                stat = path.stat()
            except FileNotFoundError:
                continue
            index = int(match.group(1))
            # A re-upload under another MIME type briefly leaves two files
            current = files.get(index)
            if current is None or stat.st_mtime_ns > current[1].st_mtime_ns:
                files[index] = (path, stat)
        return files

    def _find(self, session_id: str, chunk_index: int) -> Path | None:
        entry = self._chunk_files(session_id).get(chunk_index)
        return entry[0] if entry else None

    def _commit(self, session_id: str, chunk_index: int, temp_path: Path, final_path: Path) -> None:
        # Same index re-uploaded under another MIME type
        previous = self._find(session_id, chunk_index)
        os.replace(temp_path, final_path)
        if previous is not None and previous != final_path:
            _discard(previous)

    async def put(
        self,
        session_id: str,
        chunk_index: int,
        stream: AsyncIterator[bytes],
        *,
        mime_type: str | None = None,
    ) -> StorageRef:
        check_address(session_id, chunk_index)
        key = chunk_key(session_id, chunk_index, mime_type)
        final_path = self.root / key
        temp_path = final_path.parent / f".{final_path.name}.{uuid.uuid4().hex}.part"
        size = 0
        committed = False

        try:
            await asyncio.to_thread(final_path.parent.mkdir, parents=True, exist_ok=True)
            async with aiofiles.open(temp_path, "wb") as f:
                async for block in stream:
                    if not block:
                        continue
                    size += len(block)
                    self._check_size(session_id, chunk_index, size)
                    await f.write(block)
                await f.flush()
                await asyncio.to_thread(os.fsync, f.fileno())

            await asyncio.to_thread(self._commit, session_id, chunk_index, temp_path, final_path)
            committed = True
        except OSError as e:
            logger.warning("Write of %s failed: %s", key, e)
            raise TransientStorageError(f"Could not store chunk {chunk_index}: {e}") from e
        finally:
            if not committed:
                await asyncio.to_thread(_discard, temp_path)

        logger.info("Committed %s (%d bytes)", key, size)
        return StorageRef(session_id, chunk_index, key, size, str(final_path))

    def get(self, session_id: str, chunk_index: int) -> Iterator[bytes]:
        check_address(session_id, chunk_index)
        path = self._find(session_id, chunk_index)
        if path is None:
            raise ChunkNotFoundError(session_id, chunk_index)
        return self._read_blocks(path)

    @staticmethod
    def _read_blocks(path: Path) -> Iterator[bytes]:
        with open(path, "rb") as f:
            while True:
                block = f.read(READ_BLOCK_SIZE)
                if not block:
                    break
                yield block

    def locate(self, session_id: str) -> list[StorageRef]:
        check_address(session_id, 0)
        refs = [
            StorageRef(session_id, index, path.relative_to(self.root).as_posix(), stat.st_size, str(path))
            for index, (path, stat) in self._chunk_files(session_id).items()
        ]
        return sorted(refs, key=lambda ref: ref.chunk_index)

    def exists(self, session_id: str, chunk_index: int) -> bool:
        check_address(session_id, chunk_index)
        return self._find(session_id, chunk_index) is not None


class InMemoryChunkStore(ChunkStore):
    """Chunk objects held in a dict. Payloads are assembled off to the side and swapped in on commit."""

    def __init__(self, max_chunk_bytes: int | None = None) -> None:
        super().__init__(max_chunk_bytes)
        self._lock = threading.Lock()
        self._objects: dict[tuple[str, int], tuple[str, bytes]] = {}

    async def put(
        self,
        session_id: str,
        chunk_index: int,
        stream: AsyncIterator[bytes],
        *,
        mime_type: str | None = None,
    ) -> StorageRef:
        check_address(session_id, chunk_index)
        key = chunk_key(session_id, chunk_index, mime_type)
        blocks = []
        size = 0
        async for block in stream:
            size += len(block)
            self._check_size(session_id, chunk_index, size)
            blocks.append(block)

        with self._lock:
            self._objects[(session_id, chunk_index)] = (key, b"".join(blocks))
        logger.info("Committed %s (%d bytes) in memory", key, size)
        return StorageRef(session_id, chunk_index, key, size)

    def get(self, session_id: str, chunk_index: int) -> Iterator[bytes]:
        with self._lock:
            entry = self._objects.get((session_id, chunk_index))
        if entry is None:
            raise ChunkNotFoundError(session_id, chunk_index)
        return iter([entry[1]])

    def locate(self, session_id: str) -> list[StorageRef]:
        with self._lock:
            items = [(index, key, len(data)) for (sid, index), (key, data) in self._objects.items() if sid == session_id]
        return [StorageRef(session_id, index, key, size) for index, key, size in sorted(items)]

    def exists(self, session_id: str, chunk_index: int) -> bool:
        with self._lock:
            return (session_id, chunk_index) in self._objects
