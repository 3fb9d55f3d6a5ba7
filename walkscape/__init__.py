"""Walkscape - geolocated audio walking tours."""

from .config import CONFIG, Settings, load_settings
from .errors import (
    WalkscapeError,
    ValidationError,
    NotFound,
    QuotaError,
    PersistenceError,
    TransportError,
    PlaybackError,
    DisplayError,
    Result,
    DeleteReport,
)
from .models import (
    Location,
    Region,
    Track,
    SubtitleFile,
    SubtitleCue,
    Tour,
    TourSummary,
    BundleManifest,
    normalize,
)
from .logger import Logger, NullLogger
from .subtitles import parse_srt, timecode_to_seconds, active_cue, SubtitleSynchronizer
from .storage import KeyValueStore, MemoryStore, SQLiteStore
from .persistence import PersistenceOptimizer, WriteReport, strip_large_payloads, essential_projection
from .remote import (
    StorageLocator,
    ObjectStore,
    SupabaseObjectStore,
    InMemoryObjectStore,
    RemoteCatalog,
    parse_manifest,
    build_catalog,
)
from .repository import TourRepository
from .publish import PublishPipeline, PublishResult, validate_for_publish
from .geo import planar_distance, haversine_distance, retry_with_backoff
from .geofence import GeofenceMonitor, RegionEnter
from .audio import SilentBackend, FFplayBackend
from .playback import PlayerState, PlaybackController, reduce
from .gps import GPS, GPSRecorder, GPSPlayback, FixedPosition, PositionWatch, trace_through_regions
from .debug_gui import DebugServer, WebSocketGPS
from .transcribe import Transcriber, TranscriptionResult
from .app import Player
from .__main__ import main

__all__ = [
    "CONFIG",
    "Settings",
    "load_settings",
    "WalkscapeError",
    "ValidationError",
    "NotFound",
    "QuotaError",
    "PersistenceError",
    "TransportError",
    "PlaybackError",
    "DisplayError",
    "Result",
    "DeleteReport",
    "Location",
    "Region",
    "Track",
    "SubtitleFile",
    "SubtitleCue",
    "Tour",
    "TourSummary",
    "BundleManifest",
    "normalize",
    "Logger",
    "NullLogger",
    "parse_srt",
    "timecode_to_seconds",
    "active_cue",
    "SubtitleSynchronizer",
    "KeyValueStore",
    "MemoryStore",
    "SQLiteStore",
    "PersistenceOptimizer",
    "WriteReport",
    "strip_large_payloads",
    "essential_projection",
    "StorageLocator",
    "ObjectStore",
    "SupabaseObjectStore",
    "InMemoryObjectStore",
    "RemoteCatalog",
    "parse_manifest",
    "build_catalog",
    "TourRepository",
    "PublishPipeline",
    "PublishResult",
    "validate_for_publish",
    "planar_distance",
    "haversine_distance",
    "retry_with_backoff",
    "GeofenceMonitor",
    "RegionEnter",
    "SilentBackend",
    "FFplayBackend",
    "PlayerState",
    "PlaybackController",
    "reduce",
    "GPS",
    "GPSRecorder",
    "GPSPlayback",
    "FixedPosition",
    "PositionWatch",
    "trace_through_regions",
    "DebugServer",
    "WebSocketGPS",
    "Transcriber",
    "TranscriptionResult",
    "Player",
    "main",
]
