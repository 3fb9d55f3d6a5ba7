"""Configuration settings for Walkscape."""

import os
from dataclasses import dataclass
from typing import Optional

CONFIG = {
    "gps_poll_interval": 3,  # seconds
    "tick_interval": 0.25,  # seconds between playback clock polls
    "log_interval": 10,  # seconds between STATE log entries
    "meters_per_degree": 111000,  # planar approximation used by the geofence
    "default_radius_m": 120,  # meters
    "default_locale": "it-IT",
    "default_tone_frequency": 440,  # Hz
    "tone_duration": 15.0,  # seconds
    # Local cache
    "cache_key": "WS_CMS_TOURS",
    "cache_quota_bytes": 5 * 1024 * 1024,  # browser-storage class quota
    "payload_threshold": 100000,  # chars - inline data URLs above this get stripped first
    "removed_audio_filename": "removed-large-file.mp3",
    "removed_image_filename": "removed-large-file.jpg",
    # Editor upload limits
    "max_audio_upload_bytes": 2 * 1024 * 1024,
    "max_image_upload_bytes": 1 * 1024 * 1024,
    # Remote catalog
    "http_timeout": 30,  # seconds
    "transcription_url": "https://api.openai.com/v1/audio/transcriptions",
    "transcription_model": "whisper-1",
    "index_filename": "index.json",
    "manifest_filename": "manifest.json",
    # Local-only bundle manifest
    "bundle_playback": {"dwellSecDefault": 4, "crossfadeMs": 600},
    # Supported tour languages for locale copies
    "locales": ["it-IT", "en-US", "fr-FR", "de-DE", "es-ES"],
}


@dataclass
class Settings:
    """Environment-derived settings"""
    storage_url: Optional[str] = None
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    cache_path: str = "walkscape_cache.db"


def load_settings(environ: Optional[dict] = None) -> Settings:
    """Read settings from the environment (call load_dotenv() first to honour .env)"""
    env = os.environ if environ is None else environ
    return Settings(
        storage_url=env.get("STORAGE_URL") or None,
        supabase_url=(env.get("SUPABASE_URL") or env.get("NEXT_PUBLIC_SUPABASE_URL") or None),
        supabase_key=env.get("SUPABASE_SERVICE_ROLE_KEY") or None,
        openai_api_key=env.get("OPENAI_API_KEY") or None,
        cache_path=env.get("WALKSCAPE_CACHE", "walkscape_cache.db"),
    )
