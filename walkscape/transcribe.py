"""Speech-to-subtitle client for a Whisper-style transcription endpoint."""

import os
import re
from dataclasses import dataclass, field
from typing import Optional

import requests

from .config import CONFIG
from .errors import TransportError
from .logger import Logger, NullLogger
from .models import SubtitleCue
from .subtitles import cues_to_srt

WORDS_PER_CUE = 8
SENTENCE_END_RE = re.compile(r"[.!?]")

# Extra context for the status codes users actually hit
STATUS_HINTS = {
    401: "invalid API key",
    402: "payment required, no credits",
    429: "rate limit exceeded",
}


@dataclass
class TranscriptionResult:
    cues: list[SubtitleCue] = field(default_factory=list)
    source: str = "none"
    duration: Optional[float] = None
    warning: Optional[str] = None

    def srt(self) -> str:
        return cues_to_srt(self.cues)


def words_to_cues(words: list[dict], words_per_cue: int = WORDS_PER_CUE) -> list[SubtitleCue]:
    """Group word timestamps into cues of up to words_per_cue words, breaking at sentence ends"""
    cues = []
    current: list[dict] = []
    for i, word in enumerate(words):
        current.append(word)
        text = word.get("word", "")
        if len(current) >= words_per_cue or SENTENCE_END_RE.search(text) or i == len(words) - 1:
            cues.append(SubtitleCue(
                start_seconds=float(current[0]["start"]),
                end_seconds=float(current[-1]["end"]),
                text=" ".join(w.get("word", "").strip() for w in current),
                index=len(cues) + 1,
            ))
            current = []
    return cues


def segments_to_cues(segments: list[dict]) -> list[SubtitleCue]:
    return [
        SubtitleCue(float(s["start"]), float(s["end"]), s.get("text", "").strip(), i)
        for i, s in enumerate(segments, start=1)
    ]


def split_text(text: str, duration: float) -> list[SubtitleCue]:
    """Spread sentences of an untimed transcript evenly over duration"""
    sentences = [s.strip() for s in re.split(r"[.!?]+", text) if s.strip()]
    if not sentences:
        return []
    step = duration / len(sentences)
    return [
        SubtitleCue(i * step, (i + 1) * step, sentence, i + 1)
        for i, sentence in enumerate(sentences)
    ]


def cues_from_verbose_json(doc: dict) -> list[SubtitleCue]:
    """Word timestamps when present, then segments, then an even split of the text"""
    if doc.get("words"):
        return words_to_cues(doc["words"])
    if doc.get("segments"):
        return segments_to_cues(doc["segments"])
    return split_text(doc.get("text") or "", float(doc.get("duration") or 30))


class Transcriber:
    """Posts audio files to the transcription endpoint and returns subtitle cues"""

    def __init__(self, api_key: Optional[str], session: Optional[requests.Session] = None,
                 url: Optional[str] = None, model: Optional[str] = None,
                 timeout: Optional[float] = None, logger: Optional[Logger] = None):
        self.api_key = api_key
        self.session = session or requests.Session()
        self.url = url or CONFIG["transcription_url"]
        self.model = model or CONFIG["transcription_model"]
        self.timeout = timeout or CONFIG["http_timeout"]
        self.logger = logger or NullLogger()

    def transcribe(self, path: str, language: str = "it") -> TranscriptionResult:
        """Transcribe one audio file; without an API key nothing is sent"""
        if not self.api_key:
            self.logger.warn("OPENAI_API_KEY not set, skipping transcription", {"file": path})
            return TranscriptionResult(warning="Transcription unavailable: OPENAI_API_KEY not set")

        with open(path, "rb") as f:
            try:
                response = self.session.post(
                    self.url,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                    data={
                        "model": self.model,
                        "language": language.split("-")[0],
                        "response_format": "verbose_json",
                        "timestamp_granularities[]": "word",
                    },
                    files={"file": (os.path.basename(path), f)},
                    timeout=self.timeout,
                )
            except requests.RequestException as e:
                raise TransportError(f"Transcription request failed: {e}") from e

        if not response.ok:
            hint = STATUS_HINTS.get(response.status_code)
            message = f"Transcription API returned {response.status_code}"
            if hint:
                message += f" ({hint})"
            raise TransportError(message, status=response.status_code)

        try:
            doc = response.json()
        except ValueError as e:
            raise TransportError(f"Transcription response is not JSON: {e}") from e

        cues = cues_from_verbose_json(doc)
        self.logger.log("Transcribed audio", {"file": path, "cues": len(cues), "duration": doc.get("duration")})
        return TranscriptionResult(cues=cues, source="whisper", duration=doc.get("duration"))
