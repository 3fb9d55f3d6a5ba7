"""Quota-aware serialization of the local tour cache.

Every write walks the degrade ladder until the payload fits:

1. the working set as-is
2. large inline track payloads stripped (filename kept, marker set)
3. essential projection of every tour, all inline binaries dropped

A QuotaError from the store itself triggers one more essential-projection
write; if that fails too the caller gets a PersistenceError. No step ever
removes a region, track or subtitle record.
"""

import copy
import json
from dataclasses import dataclass, field
from typing import Optional

from .config import CONFIG
from .errors import PersistenceError, QuotaError
from .logger import Logger, NullLogger
from .storage import KeyValueStore

# Inline payload field -> filename field and fallback filename config key
_PAYLOADS = {
    "audioDataUrl": ("audioFilename", "removed_audio_filename"),
    "imageDataUrl": ("imageFilename", "removed_image_filename"),
}

_ESSENTIAL_TOUR_KEYS = ("id", "slug", "title", "description", "locale", "published", "parentTourId")
_ESSENTIAL_REGION_KEYS = ("id", "name", "lat", "lng", "radiusM", "sort")
_ESSENTIAL_TRACK_KEYS = (
    "kind", "frequency", "audioUrl", "audioKey", "subtitleId",
    "title", "description", "transcript", "audioFilename", "imageFilename", "removedDueToSize",
)

STEP_FULL = 1
STEP_STRIPPED = 2
STEP_ESSENTIAL = 3
STEP_LAST_RESORT = 4


def serialize(docs: list[dict]) -> str:
    return json.dumps(docs, separators=(",", ":"), ensure_ascii=False)


def payload_size(text: str) -> int:
    return len(text.encode("utf-8"))


def _iter_tracks(doc: dict):
    for entries in (doc.get("tracks") or {}).values():
        for track in (entries or {}).values():
            if isinstance(track, dict):
                yield track


def _drop_payload(track: dict, payload_key: str):
    filename_key, fallback = _PAYLOADS[payload_key]
    del track[payload_key]
    track[filename_key] = track.get(filename_key) or CONFIG[fallback]
    track["removedDueToSize"] = True


def strip_large_payloads(docs: list[dict], threshold: int) -> list[dict]:
    """Copy of docs with every inline track payload longer than threshold removed"""
    result = copy.deepcopy(docs)
    for doc in result:
        for track in _iter_tracks(doc):
            for payload_key in _PAYLOADS:
                value = track.get(payload_key)
                if value and len(value) > threshold:
                    _drop_payload(track, payload_key)
    return result


def essential_projection(docs: list[dict]) -> list[dict]:
    """Identity, geometry and track text of each tour; inline binaries dropped"""
    result = []
    for doc in docs:
        tour = {k: doc[k] for k in _ESSENTIAL_TOUR_KEYS if k in doc}
        tour["regions"] = [
            {k: r[k] for k in _ESSENTIAL_REGION_KEYS if k in r}
            for r in doc.get("regions") or []
        ]
        tracks = {}
        for locale, entries in (doc.get("tracks") or {}).items():
            tracks[locale] = {}
            for region_id, track in (entries or {}).items():
                track = track or {}
                projected = {k: track[k] for k in _ESSENTIAL_TRACK_KEYS if k in track}
                for payload_key, (filename_key, fallback) in _PAYLOADS.items():
                    if track.get(payload_key):
                        projected[filename_key] = track.get(filename_key) or CONFIG[fallback]
                        projected["removedDueToSize"] = True
                tracks[locale][region_id] = projected
        tour["tracks"] = tracks
        tour["subtitles"] = copy.deepcopy(doc.get("subtitles") or {})
        if doc.get("tourImageDataUrl") or doc.get("tourImageFilename"):
            tour["tourImageFilename"] = doc.get("tourImageFilename") or CONFIG["removed_image_filename"]
        result.append(tour)
    return result


def strip_all_media(docs: list[dict]) -> list[dict]:
    """Copy of docs with every inline payload removed, markers left in place"""
    result = strip_large_payloads(docs, threshold=0)
    for doc in result:
        if doc.pop("tourImageDataUrl", None):
            doc["tourImageFilename"] = doc.get("tourImageFilename") or CONFIG["removed_image_filename"]
    return result


def record_counts(docs: list[dict]) -> dict:
    return {
        "tours": len(docs),
        "regions": sum(len(d.get("regions") or []) for d in docs),
        "tracks": sum(sum(len(m or {}) for m in (d.get("tracks") or {}).values()) for d in docs),
        "subtitles": sum(sum(len(m or {}) for m in (d.get("subtitles") or {}).values()) for d in docs),
    }


@dataclass
class WriteReport:
    """Outcome of one cache write"""
    step: int
    bytes: int
    sizes: list[int] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return self.step > STEP_FULL


class PersistenceOptimizer:
    """Keeps the local cache within its quota"""

    def __init__(self, store: KeyValueStore, key: Optional[str] = None,
                 quota_bytes: Optional[int] = None, payload_threshold: Optional[int] = None,
                 logger: Optional[Logger] = None):
        self.store = store
        self.key = key or CONFIG["cache_key"]
        self.quota_bytes = quota_bytes if quota_bytes is not None else CONFIG["cache_quota_bytes"]
        self.payload_threshold = (payload_threshold if payload_threshold is not None
                                  else CONFIG["payload_threshold"])
        self.logger = logger or NullLogger()

    def plan(self, docs: list[dict]) -> tuple[int, list[dict], list[int]]:
        """Walk the ladder without writing: (step, docs to write, size at each step tried)"""
        sizes = [payload_size(serialize(docs))]
        if sizes[-1] <= self.quota_bytes:
            return STEP_FULL, docs, sizes

        stripped = strip_large_payloads(docs, self.payload_threshold)
        sizes.append(payload_size(serialize(stripped)))
        if sizes[-1] <= self.quota_bytes:
            return STEP_STRIPPED, stripped, sizes

        essential = essential_projection(stripped)
        sizes.append(payload_size(serialize(essential)))
        return STEP_ESSENTIAL, essential, sizes

    def write(self, docs: list[dict]) -> WriteReport:
        """Persist the working set; raises PersistenceError if nothing fits"""
        step, to_write, sizes = self.plan(docs)
        if step > STEP_FULL:
            self.logger.warn("Cache over quota, degraded payload", {
                "step": step, "sizes": sizes, "quota": self.quota_bytes,
            })
        payload = serialize(to_write)
        try:
            self.store.set(self.key, payload)
            return WriteReport(step=step, bytes=payload_size(payload), sizes=sizes)
        except QuotaError as e:
            self.logger.warn("Store rejected cache write, retrying with essential data", {"error": str(e)})

        essential = essential_projection(to_write) if step < STEP_ESSENTIAL else to_write
        payload = serialize(essential)
        sizes.append(payload_size(payload))
        try:
            self.store.set(self.key, payload)
        except QuotaError as e:
            self.logger.error("Failed to save even essential data", {"error": str(e)})
            raise PersistenceError(
                "Unable to save tours: remove some audio or image files to free space") from e
        return WriteReport(step=STEP_LAST_RESORT, bytes=sizes[-1], sizes=sizes)

    def read(self) -> list[dict]:
        """Raw tour documents currently in the cache"""
        raw = self.store.get(self.key)
        if not raw:
            return []
        try:
            docs = json.loads(raw)
        except json.JSONDecodeError as e:
            self.logger.error("Local cache is not valid JSON", {"error": str(e)})
            return []
        if not isinstance(docs, list):
            self.logger.error("Local cache is not a list of tours", {"type": type(docs).__name__})
            return []
        return [d for d in docs if isinstance(d, dict)]

    def storage_info(self) -> dict:
        raw = self.store.get(self.key) or ""
        used = payload_size(raw)
        return {
            "bytes": used,
            "quota": self.quota_bytes,
            "percent": round(used / self.quota_bytes * 100, 1) if self.quota_bytes else 0.0,
        }

    def clear_media(self) -> WriteReport:
        """Strip every inline payload from the cache, keeping the markers"""
        return self.write(strip_all_media(self.read()))
