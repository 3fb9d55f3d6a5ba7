"""Data classes for Walkscape tours.

Wire form (cache, manifests, index) uses the camelCase keys of the tour
document; the dataclasses use snake_case. ``normalize`` is the single
boundary function that turns a raw document into a total ``Tour``.
"""

import re
import uuid
from dataclasses import dataclass, field, asdict
from typing import Any, Optional

from .config import CONFIG
from .errors import ValidationError

SLUG_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]*$")


@dataclass
class Location:
    lat: float
    lng: float
    accuracy: Optional[float] = None
    timestamp: Optional[float] = None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict) -> "Location":
        return cls(
            lat=d["lat"],
            lng=d["lng"] if "lng" in d else d["lon"],
            accuracy=d.get("accuracy"),
            timestamp=d.get("timestamp"),
        )


@dataclass
class Region:
    """A circular geofence"""
    id: str
    lat: float
    lng: float
    radius_m: float
    sort: int
    name: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"id": self.id, "lat": self.lat, "lng": self.lng,
             "radiusM": self.radius_m, "sort": self.sort}
        if self.name is not None:
            d["name"] = self.name
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Region":
        if not isinstance(d, dict):
            raise ValidationError("Region must be an object", field="regions")
        region_id = d.get("id")
        radius = d.get("radiusM")
        if radius is None:
            radius = CONFIG["default_radius_m"]
        radius = _number(radius, region_id, "radiusM")
        if radius <= 0:
            raise ValidationError(f"Region {region_id} has non-positive radius {radius}", field="radiusM")
        # Player-shaped regions carry a center object
        source = d if "lat" in d else d.get("center")
        if not isinstance(source, dict):
            source = {}
        sort = d.get("sort")
        name = d.get("name")
        return cls(
            id=str(region_id or f"region-{uuid.uuid4()}"),
            lat=_number(source.get("lat"), region_id, "lat"),
            lng=_number(source.get("lng"), region_id, "lng"),
            radius_m=radius,
            sort=int(_number(sort, region_id, "sort")) if sort is not None else 1,
            name=name if isinstance(name, str) else None,
        )


def _number(value, region_id, field_name: str) -> float:
    """Coerce a region field to float; ValidationError on anything else"""
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Region {region_id} is missing a numeric {field_name}", field=field_name)
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Region {region_id} has invalid {field_name} {value!r}", field=field_name) from e


# snake_case attribute -> camelCase wire key
_TRACK_FIELDS = {
    "kind": "kind",
    "frequency": "frequency",
    "audio_url": "audioUrl",
    "audio_key": "audioKey",
    "subtitle_id": "subtitleId",
    "title": "title",
    "description": "description",
    "transcript": "transcript",
    "audio_data_url": "audioDataUrl",
    "audio_filename": "audioFilename",
    "image_data_url": "imageDataUrl",
    "image_filename": "imageFilename",
    "image_key": "imageKey",
    "removed_due_to_size": "removedDueToSize",
}


@dataclass
class Track:
    """Audio (or synthetic tone) bound to one region in one locale"""
    kind: Optional[str] = None  # 'tone' | 'audio'
    frequency: Optional[float] = None
    audio_url: Optional[str] = None
    audio_key: Optional[str] = None
    subtitle_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    transcript: Optional[str] = None
    audio_data_url: Optional[str] = None
    audio_filename: Optional[str] = None
    image_data_url: Optional[str] = None
    image_filename: Optional[str] = None
    image_key: Optional[str] = None
    removed_due_to_size: bool = False
    extra: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = dict(self.extra)
        for attr, key in _TRACK_FIELDS.items():
            value = getattr(self, attr)
            if value is None or (attr == "removed_due_to_size" and not value):
                continue
            d[key] = value
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "Track":
        known = set(_TRACK_FIELDS.values())
        kwargs = {attr: d.get(key) for attr, key in _TRACK_FIELDS.items()}
        kwargs["removed_due_to_size"] = bool(kwargs["removed_due_to_size"])
        track = cls(**kwargs, extra={k: v for k, v in d.items() if k not in known})
        if track.kind is None:
            track.kind = "audio" if track.has_audio_reference() else ("tone" if track.frequency else None)
        return track

    def has_audio_reference(self) -> bool:
        return bool(self.audio_url or self.audio_data_url or self.audio_key)

    def playable_source(self, resolve_key=None) -> Optional[tuple[str, Any]]:
        """Return ('tone', hz) or ('audio', url), or None when nothing is playable.

        ``resolve_key`` maps a storage key to a fetchable URL; keys with the
        ``local://`` scheme only resolve through an inline data URL.
        """
        if self.kind == "tone":
            if self.frequency:
                return ("tone", float(self.frequency))
            return None
        if self.audio_url:
            return ("audio", self.audio_url)
        if self.audio_data_url:
            return ("audio", self.audio_data_url)
        if self.audio_key and not self.audio_key.startswith("local://") and resolve_key:
            url = resolve_key(self.audio_key)
            if url:
                return ("audio", url)
        return None


@dataclass
class SubtitleFile:
    id: str
    name: str
    content: str
    language: str

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "content": self.content, "language": self.language}

    @classmethod
    def from_dict(cls, d: dict, subtitle_id: str, locale: str) -> "SubtitleFile":
        return cls(
            id=str(d.get("id") or subtitle_id),
            name=d.get("name") or f"{subtitle_id}.srt",
            content=d.get("content") or "",
            language=d.get("language") or locale,
        )

    def cues(self) -> list["SubtitleCue"]:
        from .subtitles import parse_srt
        return parse_srt(self.content)


@dataclass(frozen=True)
class SubtitleCue:
    start_seconds: float
    end_seconds: float
    text: str
    index: int = 0


@dataclass
class Tour:
    id: str
    slug: str
    title: str
    locale: str
    regions: list[Region] = field(default_factory=list)
    tracks: dict[str, dict[str, Track]] = field(default_factory=dict)
    subtitles: dict[str, dict[str, SubtitleFile]] = field(default_factory=dict)
    published: bool = False
    parent_tour_id: Optional[str] = None
    description: str = ""
    price_eur: float = 0.0
    locales: list[dict] = field(default_factory=list)
    tour_image_data_url: Optional[str] = None
    tour_image_filename: Optional[str] = None
    vouchers: list = field(default_factory=list)

    def ordered_regions(self) -> list[Region]:
        """Regions by ascending sort; sorted() is stable so ties keep insertion order"""
        return sorted(self.regions, key=lambda r: r.sort)

    def get_region(self, region_id: str) -> Optional[Region]:
        return next((r for r in self.regions if r.id == region_id), None)

    def track_for(self, region_id: str, locale: Optional[str] = None) -> Optional[Track]:
        return self.tracks.get(locale or self.locale, {}).get(region_id)

    def subtitle_for(self, track: Track, locale: Optional[str] = None) -> Optional[SubtitleFile]:
        """Subtitle explicitly linked by the track's subtitleId, if any"""
        if not track.subtitle_id:
            return None
        return self.subtitles.get(locale or self.locale, {}).get(track.subtitle_id)

    def record_counts(self) -> dict:
        return {
            "regions": len(self.regions),
            "tracks": sum(len(m) for m in self.tracks.values()),
            "subtitles": sum(len(m) for m in self.subtitles.values()),
        }

    def to_dict(self) -> dict:
        d = {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "locale": self.locale,
            "published": self.published,
            "description": self.description,
            "priceEUR": self.price_eur,
            "locales": [dict(l) for l in self.locales],
            "regions": [r.to_dict() for r in self.regions],
            "tracks": {loc: {rid: t.to_dict() for rid, t in m.items()} for loc, m in self.tracks.items()},
            "subtitles": {loc: {sid: s.to_dict() for sid, s in m.items()} for loc, m in self.subtitles.items()},
            "vouchers": list(self.vouchers),
        }
        if self.parent_tour_id:
            d["parentTourId"] = self.parent_tour_id
        if self.tour_image_data_url:
            d["tourImageDataUrl"] = self.tour_image_data_url
        if self.tour_image_filename:
            d["tourImageFilename"] = self.tour_image_filename
        return d

    def summary(self, manifest_url: str = "", updated_at: str = "") -> "TourSummary":
        return TourSummary(
            slug=self.slug,
            title=self.title,
            description=self.description,
            price_eur=self.price_eur,
            locales=[dict(l) for l in self.locales],
            published=self.published,
            updated_at=updated_at,
            manifest_url=manifest_url,
        )


def _tour_locale(raw: dict) -> str:
    if raw.get("locale"):
        return raw["locale"]
    locales = raw.get("locales") or []
    if locales and isinstance(locales[0], dict) and locales[0].get("code"):
        return locales[0]["code"]
    if locales and isinstance(locales[0], str):
        return locales[0]
    return CONFIG["default_locale"]


def normalize(raw: Any) -> Tour:
    """Build a total Tour from a raw document (or re-check an existing Tour).

    All containers exist afterwards, the tour's own locale has a track and
    subtitle map, and the referential invariants hold. Violations raise
    ValidationError.
    """
    if isinstance(raw, Tour):
        raw = raw.to_dict()
    if not isinstance(raw, dict):
        raise ValidationError("Tour document must be an object")

    slug = str(raw.get("slug") or "")
    if slug and not SLUG_RE.match(slug):
        raise ValidationError(f"Slug {slug!r} is not URL-safe", field="slug")

    locale = _tour_locale(raw)

    regions = [Region.from_dict(r) for r in (raw.get("regions") or [])]
    seen = set()
    for region in regions:
        if region.id in seen:
            raise ValidationError(f"Duplicate region id {region.id}", field="regions")
        seen.add(region.id)

    subtitles: dict[str, dict[str, SubtitleFile]] = {}
    for loc, entries in (raw.get("subtitles") or {}).items():
        subtitles[loc] = {
            sid: SubtitleFile.from_dict(s or {}, sid, loc) for sid, s in (entries or {}).items()
        }
    subtitles.setdefault(locale, {})

    tracks: dict[str, dict[str, Track]] = {}
    for loc, entries in (raw.get("tracks") or {}).items():
        tracks[loc] = {}
        for region_id, t in (entries or {}).items():
            if region_id not in seen:
                raise ValidationError(
                    f"Track for locale {loc} references unknown region {region_id}", field="tracks")
            track = Track.from_dict(t or {})
            if track.subtitle_id and track.subtitle_id not in subtitles.get(loc, {}):
                raise ValidationError(
                    f"Track {region_id} references unknown subtitle {track.subtitle_id}",
                    field="subtitleId")
            tracks[loc][region_id] = track
    tracks.setdefault(locale, {})

    locales = raw.get("locales") or []
    locales = [l if isinstance(l, dict) else {"code": l} for l in locales]

    tour_id = raw.get("id") or slug or str(uuid.uuid4())
    return Tour(
        id=str(tour_id),
        slug=slug,
        title=raw.get("title") or "",
        locale=locale,
        regions=regions,
        tracks=tracks,
        subtitles=subtitles,
        published=bool(raw.get("published", False)),
        parent_tour_id=raw.get("parentTourId"),
        description=raw.get("description") or "",
        price_eur=float(raw.get("priceEUR") or 0),
        locales=locales,
        tour_image_data_url=raw.get("tourImageDataUrl"),
        tour_image_filename=raw.get("tourImageFilename"),
        vouchers=list(raw.get("vouchers") or []),
    )


@dataclass
class TourSummary:
    """One entry of the shared index document"""
    slug: str
    title: str
    description: str = ""
    price_eur: float = 0.0
    locales: list = field(default_factory=list)
    published: bool = True
    updated_at: str = ""
    manifest_url: str = ""

    def to_dict(self) -> dict:
        return {
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "priceEUR": self.price_eur,
            "locales": self.locales,
            "published": self.published,
            "updatedAt": self.updated_at,
            "manifestUrl": self.manifest_url,
        }

    @classmethod
    def from_dict(cls, d: dict) -> "TourSummary":
        return cls(
            slug=d["slug"],
            title=d.get("title") or "",
            description=d.get("description") or "",
            price_eur=float(d.get("priceEUR") or 0),
            locales=list(d.get("locales") or []),
            published=bool(d.get("published", True)),
            updated_at=d.get("updatedAt") or "",
            manifest_url=d.get("manifestUrl") or "",
        )


@dataclass
class ManifestFile:
    path: str
    bytes: int
    sha256: str


@dataclass
class BundleManifest:
    """Lightweight bundle form of a manifest"""
    version: int
    files: list[ManifestFile] = field(default_factory=list)
    dwell_sec_default: float = 4
    crossfade_ms: int = 600

    def to_dict(self) -> dict:
        return {
            "version": self.version,
            "files": [asdict(f) for f in self.files],
            "playback": {"dwellSecDefault": self.dwell_sec_default, "crossfadeMs": self.crossfade_ms},
        }

    @classmethod
    def from_dict(cls, d: dict) -> "BundleManifest":
        playback = d.get("playback") or {}
        return cls(
            version=int(d.get("version") or 0),
            files=[ManifestFile(path=f["path"], bytes=int(f.get("bytes") or 0), sha256=f.get("sha256") or "")
                   for f in d.get("files") or []],
            dwell_sec_default=playback.get("dwellSecDefault", 4),
            crossfade_ms=playback.get("crossfadeMs", 600),
        )
