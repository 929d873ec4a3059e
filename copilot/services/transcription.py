"""Transcription engine adapters.

The ingestion core only hands a completed recording over; producing text is
the engine's business. Results come back through ``TranscriptSink``.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

from copilot.services.chunk_store import StorageRef

logger = logging.getLogger(__name__)


class TranscriptSink(Protocol):
    def on_transcript_ready(self, session_id: str, text: str) -> None: ...

    def on_transcript_failed(self, session_id: str, reason: str) -> None: ...


@dataclass
class Submission:
    session_id: str
    audio_refs: list[StorageRef]
    submitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class TranscriptionEngine(ABC):
    def __init__(self) -> None:
        self._sink: TranscriptSink | None = None

    def bind(self, sink: TranscriptSink) -> None:
        """Register the receiver of transcription results."""
        self._sink = sink

    @abstractmethod
    def submit(self, session_id: str, audio_refs: list[StorageRef]) -> None:
        """Hand over a completed recording. Must return without waiting for the transcript."""

    def shutdown(self) -> None:
        pass


class ExternalTranscriptionEngine(TranscriptionEngine):
    """Queues submissions for an out-of-process engine that reports back over HTTP."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self.submissions: list[Submission] = []

    def submit(self, session_id: str, audio_refs: list[StorageRef]) -> None:
        with self._lock:
            self.submissions.append(Submission(session_id, list(audio_refs)))
        logger.info("Queued session %s for transcription (%d chunks)", session_id, len(audio_refs))

    def pending(self) -> list[Submission]:
        with self._lock:
            return list(self.submissions)


class WhisperTranscriptionEngine(TranscriptionEngine):
    """Transcribes chunk files in order with faster-whisper on a background worker."""

    def __init__(self, model_size: str = "base") -> None:
        super().__init__()
        self.model_size = model_size
        self._model = None
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="whisper")

    def _get_model(self):
        """Lazy-load the whisper model."""
        if self._model is None:
            from faster_whisper import WhisperModel

            self._model = WhisperModel(self.model_size, device="cpu", compute_type="int8")
        return self._model

    def submit(self, session_id: str, audio_refs: list[StorageRef]) -> None:
        self._executor.submit(self.transcribe, session_id, list(audio_refs))
        logger.info("Submitted session %s to whisper (%d chunks)", session_id, len(audio_refs))

    def transcribe(self, session_id: str, audio_refs: list[StorageRef]) -> str | None:
        """Transcribe every chunk in index order and report the joined text to the sink."""
        try:
            start_time = time.time()
            model = self._get_model()
            texts = []
            for ref in sorted(audio_refs, key=lambda r: r.chunk_index):
                if ref.location is None:
                    raise RuntimeError(f"Chunk {ref.chunk_index} has no local file")
                segments_iter, _info = model.transcribe(ref.location, beam_size=5)
                texts.extend(seg.text.strip() for seg in segments_iter)
            full_text = " ".join(t for t in texts if t)
            logger.info("Transcribed session %s in %.2fs", session_id, time.time() - start_time)
        except Exception as e:
            logger.exception("Transcription of session %s failed", session_id)
            if self._sink is not None:
                self._sink.on_transcript_failed(session_id, f"Transcription failed: {e}")
            return None

        if self._sink is not None:
            self._sink.on_transcript_ready(session_id, full_text)
        return full_text

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
