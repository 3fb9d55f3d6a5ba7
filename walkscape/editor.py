"""Authoring operations on tours: regions, tracks, media and language copies."""

import base64
import mimetypes
import os
import time
import uuid
from typing import Any, Optional

from .config import CONFIG
from .errors import NotFound, ValidationError
from .models import Region, SubtitleFile, Tour, Track, normalize
from .subtitles import parse_srt

# Track fields an author may set directly
EDITABLE_TRACK_FIELDS = {"kind", "frequency", "audio_url", "subtitle_id", "title", "description", "transcript"}


def seed_tour(slug: str = "bandite-demo", locale: Optional[str] = None) -> Tour:
    """Demo tour with three regions in Turin, each bound to a test tone"""
    locale = locale or CONFIG["default_locale"]
    base = CONFIG["default_tone_frequency"]
    regions = [
        {"id": str(uuid.uuid4()), "lat": 45.0749, "lng": 7.6774, "radiusM": 120, "sort": 1},
        {"id": str(uuid.uuid4()), "lat": 45.0705, "lng": 7.6868, "radiusM": 120, "sort": 2},
        {"id": str(uuid.uuid4()), "lat": 45.0567, "lng": 7.6861, "radiusM": 140, "sort": 3},
    ]
    return normalize({
        "id": str(uuid.uuid4()),
        "slug": slug,
        "title": "BANDITE - Demo Tour",
        "locale": locale,
        "priceEUR": 3.99,
        "published": False,
        "description": "Passeggiata sonora geolocalizzata.",
        "locales": [{"code": locale, "title": "BANDITE (IT)", "description": "Passeggiata sonora geolocalizzata."}],
        "regions": regions,
        "tracks": {locale: {
            r["id"]: {"kind": "tone", "frequency": base + 110 * i, "title": f"Tappa {i + 1}"}
            for i, r in enumerate(regions)
        }},
        "vouchers": [],
    })


def _language_tag(locale: str) -> str:
    return locale.split("-")[0]


def copy_for_locale(tour: Tour, locale: str) -> Tour:
    """Full copy of a tour for another language.

    The copy gets a new id, ``-xx`` slug suffix and `` (XX)`` title
    suffix, points at the root tour through parent_tour_id, starts
    unpublished and has empty track/subtitle maps for its locale.
    """
    if locale == tour.locale:
        raise ValidationError(f"Tour is already in {locale}", field="locale")
    tag = _language_tag(locale)
    title = f"{tour.title} ({tag.upper()})"
    description = tour.description or (tour.locales[0].get("description") if tour.locales else "") or ""
    return normalize({
        "id": str(uuid.uuid4()),
        "slug": f"{tour.slug}-{tag.lower()}",
        "title": title,
        "locale": locale,
        "parentTourId": tour.parent_tour_id or tour.id,
        "published": False,
        "description": tour.description,
        "priceEUR": tour.price_eur,
        "locales": [{"code": locale, "title": title, "description": description}],
        "regions": [r.to_dict() for r in tour.regions],
        "tracks": {locale: {}},
        "subtitles": {locale: {}},
        "tourImageDataUrl": tour.tour_image_data_url,
        "tourImageFilename": tour.tour_image_filename,
        "vouchers": [],
    })


def available_locales(tour: Tour, tours: list[Tour]) -> list[str]:
    """Supported locales with no variant of this tour yet"""
    root = tour.parent_tour_id or tour.id
    taken = {t.locale for t in tours if t.id == root or t.parent_tour_id == root}
    taken.add(tour.locale)
    return [code for code in CONFIG["locales"] if code not in taken]


def _require_region(tour: Tour, region_id: str) -> Region:
    region = tour.get_region(region_id)
    if region is None:
        raise NotFound(f"Region {region_id} not in tour {tour.id}")
    return region


def add_region(tour: Tour, lat: float, lng: float, radius_m: Optional[float] = None,
               name: Optional[str] = None) -> Region:
    """Append a region after the current last one; every locale gets an empty track"""
    radius = CONFIG["default_radius_m"] if radius_m is None else radius_m
    if radius <= 0:
        raise ValidationError(f"Radius must be positive, got {radius}", field="radiusM")
    region = Region(
        id=str(uuid.uuid4()),
        lat=lat,
        lng=lng,
        radius_m=float(radius),
        sort=max((r.sort for r in tour.regions), default=0) + 1,
        name=name,
    )
    tour.regions.append(region)
    for entries in tour.tracks.values():
        entries[region.id] = Track()
    return region


def delete_region(tour: Tour, region_id: str) -> Region:
    """Remove a region and its tracks in every locale"""
    region = _require_region(tour, region_id)
    tour.regions = [r for r in tour.regions if r.id != region_id]
    for entries in tour.tracks.values():
        entries.pop(region_id, None)
    return region


def move_region(tour: Tour, region_id: str, direction: str) -> bool:
    """Swap a region with its neighbour in sort order; sorts are renumbered 1..n"""
    if direction not in ("up", "down"):
        raise ValidationError(f"Direction must be 'up' or 'down', got {direction!r}", field="direction")
    _require_region(tour, region_id)
    ordered = tour.ordered_regions()
    index = next(i for i, r in enumerate(ordered) if r.id == region_id)
    target = index - 1 if direction == "up" else index + 1
    if target < 0 or target >= len(ordered):
        return False
    ordered[index], ordered[target] = ordered[target], ordered[index]
    for sort, region in enumerate(ordered, start=1):
        region.sort = sort
    tour.regions = ordered
    return True


def _track(tour: Tour, region_id: str, locale: Optional[str]) -> Track:
    _require_region(tour, region_id)
    entries = tour.tracks.setdefault(locale or tour.locale, {})
    return entries.setdefault(region_id, Track())


def update_track_field(tour: Tour, region_id: str, field: str, value: Any,
                       locale: Optional[str] = None) -> Track:
    """Set one authoring field on the region's track, creating the track if needed"""
    if field not in EDITABLE_TRACK_FIELDS:
        raise ValidationError(f"Track field {field!r} is not editable", field=field)
    track = _track(tour, region_id, locale)
    if field == "kind" and value not in ("tone", "audio", None):
        raise ValidationError(f"Unknown track kind {value!r}", field="kind")
    if field == "frequency" and value is not None:
        value = float(value)
        if value <= 0:
            raise ValidationError("Frequency must be positive", field="frequency")
    if field == "subtitle_id" and value and value not in tour.subtitles.get(locale or tour.locale, {}):
        raise ValidationError(f"Unknown subtitle {value}", field="subtitleId")
    setattr(track, field, value)
    if field == "frequency" and value and track.kind is None:
        track.kind = "tone"
    return track


def read_upload(path: str, limit: int) -> bytes:
    """File contents, rejecting anything over limit bytes"""
    size = os.path.getsize(path)
    if size > limit:
        raise ValidationError(
            f"{os.path.basename(path)} is {size / 1024 / 1024:.2f}MB, limit is {limit / 1024 / 1024:.0f}MB",
            field="file",
        )
    with open(path, "rb") as f:
        return f.read()


def to_data_url(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def attach_audio(tour: Tour, region_id: str, path: str, locale: Optional[str] = None,
                 now: Optional[float] = None) -> Track:
    """Embed an audio file in the region's track, keyed under local:// until uploaded"""
    data = read_upload(path, CONFIG["max_audio_upload_bytes"])
    mime = mimetypes.guess_type(path)[0] or "audio/mpeg"
    filename = f"{region_id}-{int((now or time.time()) * 1000)}.mp3"
    track = _track(tour, region_id, locale)
    track.kind = "audio"
    track.audio_data_url = to_data_url(data, mime)
    track.audio_filename = filename
    track.audio_key = f"local://{filename}"
    track.removed_due_to_size = False
    return track


def attach_image(tour: Tour, region_id: str, path: str, locale: Optional[str] = None,
                 now: Optional[float] = None) -> Track:
    data = read_upload(path, CONFIG["max_image_upload_bytes"])
    mime = mimetypes.guess_type(path)[0] or "image/jpeg"
    ext = os.path.splitext(path)[1] or ".jpg"
    filename = f"{region_id}-{int((now or time.time()) * 1000)}{ext}"
    track = _track(tour, region_id, locale)
    track.image_data_url = to_data_url(data, mime)
    track.image_filename = filename
    track.image_key = f"local://{filename}"
    return track


def attach_tour_image(tour: Tour, path: str):
    data = read_upload(path, CONFIG["max_image_upload_bytes"])
    mime = mimetypes.guess_type(path)[0] or "image/jpeg"
    tour.tour_image_data_url = to_data_url(data, mime)
    tour.tour_image_filename = os.path.basename(path)


def attach_subtitle(tour: Tour, region_id: str, srt: str, name: Optional[str] = None,
                    locale: Optional[str] = None) -> SubtitleFile:
    """Store SRT content for the locale and link it from the region's track"""
    if not parse_srt(srt):
        raise ValidationError("Subtitle file contains no valid cues", field="content")
    locale = locale or tour.locale
    track = _track(tour, region_id, locale)
    subtitle = SubtitleFile(
        id=track.subtitle_id or f"sub-{uuid.uuid4().hex[:8]}",
        name=name or f"{region_id}.srt",
        content=srt,
        language=locale,
    )
    tour.subtitles.setdefault(locale, {})[subtitle.id] = subtitle
    track.subtitle_id = subtitle.id
    return subtitle
