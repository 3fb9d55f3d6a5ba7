"""Remote canonical catalog: storage locator, object stores and manifest/index documents."""

import base64
import json
import time
from dataclasses import dataclass
from typing import Optional, Protocol, Union
from urllib.parse import quote

import requests

from .config import CONFIG
from .errors import DeleteReport, NotFound, TransportError, ValidationError
from .logger import Logger, NullLogger
from .models import BundleManifest, ManifestFile, Tour, TourSummary, normalize


@dataclass(frozen=True)
class StorageLocator:
    """Parsed ``scheme://bucket[/prefix]`` locator"""
    scheme: str
    bucket: str
    prefix: str = ""

    @classmethod
    def parse(cls, url: Optional[str]) -> Optional["StorageLocator"]:
        """Return None for an absent or invalid locator (local-only mode)"""
        if not url or "://" not in url:
            return None
        scheme, _, rest = url.partition("://")
        bucket, _, prefix = rest.partition("/")
        if not scheme or not bucket:
            return None
        return cls(scheme=scheme, bucket=bucket, prefix=prefix.strip("/"))

    def path(self, *parts: str) -> str:
        segments = [self.prefix] if self.prefix else []
        segments.extend(p.strip("/") for p in parts if p)
        return "/".join(segments)

    def https_base(self) -> str:
        """Public HTTPS base for s3:// locators"""
        base = f"https://{self.bucket}.s3.amazonaws.com"
        return f"{base}/{self.prefix}" if self.prefix else base


class ObjectStore(Protocol):
    def download(self, path: str) -> bytes: ...

    def upload(self, path: str, body: bytes, content_type: str = "application/json") -> None: ...

    def delete(self, path: str) -> None: ...

    def list(self, prefix: str, limit: int = 100) -> list[dict]: ...

    def public_url(self, path: str) -> str: ...


class SupabaseObjectStore:
    """Object store speaking the Supabase Storage REST API"""

    def __init__(self, base_url: str, service_key: str, bucket: str,
                 session: Optional[requests.Session] = None, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.bucket = bucket
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        })
        self.timeout = timeout or CONFIG["http_timeout"]

    def _object_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/{self.bucket}/{quote(path)}"

    def _request(self, method: str, url: str, path: str, **kwargs) -> requests.Response:
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e
        if response.status_code == 404 or (
                response.status_code == 400 and "not found" in response.text.lower()):
            raise NotFound(path)
        if not response.ok:
            raise TransportError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status=response.status_code,
            )
        return response

    def download(self, path: str) -> bytes:
        return self._request("GET", self._object_url(path), path).content

    def upload(self, path: str, body: bytes, content_type: str = "application/json"):
        self._request("POST", self._object_url(path), path, data=body,
                      headers={"Content-Type": content_type, "x-upsert": "true"})

    def delete(self, path: str):
        self._request("DELETE", self._object_url(path), path)

    def list(self, prefix: str, limit: int = 100) -> list[dict]:
        url = f"{self.base_url}/storage/v1/object/list/{self.bucket}"
        response = self._request("POST", url, prefix, json={
            "prefix": prefix, "limit": limit, "sortBy": {"column": "name", "order": "asc"},
        })
        return response.json()

    def public_url(self, path: str) -> str:
        return f"{self.base_url}/storage/v1/object/public/{self.bucket}/{path}"


class InMemoryObjectStore:
    """Object store kept in a dict; ``failing`` paths raise TransportError"""

    def __init__(self, bucket: str = "memory"):
        self.bucket = bucket
        self.objects: dict[str, bytes] = {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def _check(self, op: str, path: str):
        self.calls.append((op, path))
        if path in self.failing:
            raise TransportError(f"{op} {path} failed")

    def download(self, path: str) -> bytes:
        self._check("download", path)
        if path not in self.objects:
            raise NotFound(path)
        return self.objects[path]

    def upload(self, path: str, body: bytes, content_type: str = "application/json"):
        self._check("upload", path)
        self.objects[path] = body

    def delete(self, path: str):
        self._check("delete", path)
        if path not in self.objects:
            raise NotFound(path)
        del self.objects[path]

    def list(self, prefix: str, limit: int = 100) -> list[dict]:
        self._check("list", prefix)
        names = sorted(p for p in self.objects if p.startswith(prefix))
        return [{"name": p, "metadata": {"size": len(self.objects[p])}} for p in names[:limit]]

    def public_url(self, path: str) -> str:
        return f"memory://{self.bucket}/{path}"


def encode_data_url(doc: dict) -> str:
    body = base64.b64encode(json.dumps(doc).encode("utf-8")).decode("ascii")
    return f"data:application/json;base64,{body}"


def decode_data_url(url: str) -> dict:
    header, _, body = url.partition(",")
    if not header.startswith("data:") or not body:
        raise ValidationError("Not a data URL", field="url")
    raw = base64.b64decode(body) if header.endswith(";base64") else body.encode("utf-8")
    return json.loads(raw)


def local_bundle_manifest() -> BundleManifest:
    """Self-contained manifest served when no remote store is configured"""
    playback = CONFIG["bundle_playback"]
    return BundleManifest(
        version=int(time.time() * 1000),
        files=[ManifestFile(path="regions.geojson", bytes=2048, sha256="mock")],
        dwell_sec_default=playback["dwellSecDefault"],
        crossfade_ms=playback["crossfadeMs"],
    )


def parse_manifest(doc: dict) -> Union[Tour, BundleManifest]:
    """Parse either manifest form without knowing which one is in use"""
    if not isinstance(doc, dict):
        raise ValidationError("Manifest must be an object")
    if isinstance(doc.get("tour"), dict):
        doc = doc["tour"]
    if "regions" in doc:
        return normalize(doc)
    if "files" in doc or "playback" in doc:
        return BundleManifest.from_dict(doc)
    raise ValidationError("Manifest is neither a tour document nor a bundle manifest")


def _load_json(body: bytes, path: str):
    try:
        return json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise TransportError(f"{path} is not valid JSON: {e}") from e


def upsert_summary(summaries: list[TourSummary], summary: TourSummary) -> list[TourSummary]:
    """Replace the entry with the same slug in place, or append; drops stray duplicates"""
    result = []
    placed = False
    for existing in summaries:
        if existing.slug == summary.slug:
            if not placed:
                result.append(summary)
                placed = True
            continue
        result.append(existing)
    if not placed:
        result.append(summary)
    return result


class RemoteCatalog:
    """Read/write surface over the shared catalog of published tours"""

    def __init__(self, locator: Optional[StorageLocator], store: Optional[ObjectStore],
                 logger: Optional[Logger] = None):
        self.locator = locator
        self.store = store if locator else None
        self.logger = logger or NullLogger()

    @property
    def configured(self) -> bool:
        return self.store is not None

    def _require_store(self) -> ObjectStore:
        if self.store is None:
            raise TransportError("Remote storage not configured (set STORAGE_URL)")
        return self.store

    def index_path(self) -> str:
        return self.locator.path(CONFIG["index_filename"])

    def manifest_path(self, slug: str) -> str:
        return self.locator.path(slug, CONFIG["manifest_filename"])

    def read_index(self) -> list[TourSummary]:
        store = self._require_store()
        path = self.index_path()
        try:
            doc = _load_json(store.download(path), path)
        except NotFound:
            return []
        if not isinstance(doc, dict) or not isinstance(doc.get("tours") or [], list):
            raise TransportError(f"{path} is not an index document")
        return [TourSummary.from_dict(t) for t in doc.get("tours") or []
                if isinstance(t, dict) and t.get("slug")]

    def write_index(self, summaries: list[TourSummary]):
        store = self._require_store()
        body = json.dumps({"tours": [s.to_dict() for s in summaries]}, indent=2)
        store.upload(self.index_path(), body.encode("utf-8"))

    def list_tours(self) -> list[TourSummary]:
        """Summaries from the shared index; empty in local-only mode"""
        if not self.configured:
            return []
        return self.read_index()

    def get_manifest(self, slug: str) -> Union[Tour, BundleManifest]:
        store = self._require_store()
        path = self.manifest_path(slug)
        return parse_manifest(_load_json(store.download(path), path))

    def get_tour(self, slug: str) -> Tour:
        """Full tour document for slug; raises NotFound"""
        if not self.configured:
            raise NotFound(slug)
        manifest = self.get_manifest(slug)
        if not isinstance(manifest, Tour):
            raise ValidationError(f"Manifest for {slug} is a bundle manifest, not a tour", field="manifest")
        return manifest

    def fetch_published_tours(self) -> list[Tour]:
        """Every tour in the index, skipping manifests that fail to load"""
        tours = []
        for summary in self.list_tours():
            try:
                tour = self.get_tour(summary.slug)
            except (NotFound, TransportError, ValidationError) as e:
                self.logger.warn("Failed to load manifest", {"slug": summary.slug, "error": str(e)})
                continue
            tour.published = True
            tours.append(tour)
        return tours

    def write_manifest(self, tour: Tour) -> str:
        """Upload the tour document; returns its storage path"""
        store = self._require_store()
        path = self.manifest_path(tour.slug)
        store.upload(path, json.dumps(tour.to_dict(), indent=2).encode("utf-8"))
        return path

    def publish_tour(self, tour: Tour, updated_at: str = "") -> TourSummary:
        """Write the manifest, then upsert the tour's entry in the index.

        The two writes are not atomic. When the index update fails the
        manifest stays behind, reachable by slug but missing from listings;
        that is logged and the TransportError propagates.
        """
        tour = normalize(tour)
        tour.published = True
        manifest_path = self.write_manifest(tour)
        self.logger.log("Wrote manifest", {"slug": tour.slug, "path": manifest_path})

        summary = tour.summary(manifest_url=manifest_path, updated_at=updated_at)
        try:
            self.write_index(upsert_summary(self.read_index(), summary))
        except TransportError:
            self.logger.error("Index update failed; manifest is orphaned until republished", {
                "slug": tour.slug, "manifest": manifest_path,
            })
            raise
        return summary

    def delete_assets(self, keys: list[str]) -> DeleteReport:
        """Delete each key independently, reporting failures per key"""
        report = DeleteReport()
        if not keys:
            return report
        try:
            store = self._require_store()
        except TransportError as e:
            report.errors.extend({"key": k, "error": str(e)} for k in keys)
            return report
        for key in keys:
            try:
                store.delete(key)
                report.deleted.append(key)
            except (NotFound, TransportError) as e:
                report.errors.append({"key": key, "error": str(e) or type(e).__name__})
        if report.errors:
            self.logger.warn("Some files failed to delete", report.to_dict()["summary"])
        return report

    def public_url(self, path: str) -> Optional[str]:
        if not self.configured:
            return None
        if self.locator.scheme == "s3":
            return f"https://{self.locator.bucket}.s3.amazonaws.com/{path}"
        return self.store.public_url(path)

    def bundle_manifest(self, slug: str, locale: str) -> dict:
        """``{version, url}`` for a per-locale bundle; inline data document when local-only"""
        if self.configured:
            if self.locator.scheme == "s3":
                url = f"{self.locator.https_base()}/{slug}/{locale}/{CONFIG['manifest_filename']}"
            else:
                url = self.store.public_url(self.locator.path(slug, locale, CONFIG["manifest_filename"]))
            return {"version": int(time.time() * 1000), "url": url}
        manifest = local_bundle_manifest()
        return {"version": manifest.version, "url": encode_data_url(manifest.to_dict())}

    def status(self) -> dict:
        """Connectivity probe listing a handful of objects under the prefix"""
        if not self.configured:
            return {"status": "error", "message": "STORAGE_URL not configured"}
        try:
            objects = self.store.list(self.locator.prefix, limit=10)
        except (NotFound, TransportError) as e:
            return {"status": "error", "message": str(e),
                    "bucket": self.locator.bucket, "prefix": self.locator.prefix}
        return {
            "status": "success",
            "bucket": self.locator.bucket,
            "prefix": self.locator.prefix,
            "totalObjects": len(objects),
            "sampleObjects": [o.get("name") for o in objects[:5]],
        }


def build_catalog(storage_url: Optional[str], supabase_url: Optional[str] = None,
                  supabase_key: Optional[str] = None, logger: Optional[Logger] = None) -> RemoteCatalog:
    """Catalog for the configured locator, falling back to local-only mode"""
    logger = logger or NullLogger()
    locator = StorageLocator.parse(storage_url)
    if locator is None:
        if storage_url:
            logger.warn("Invalid storage locator, running local-only", {"storage_url": storage_url})
        return RemoteCatalog(None, None, logger=logger)
    if not supabase_url or not supabase_key:
        logger.warn("Storage credentials missing, running local-only")
        return RemoteCatalog(None, None, logger=logger)
    store = SupabaseObjectStore(supabase_url, supabase_key, locator.bucket)
    return RemoteCatalog(locator, store, logger=logger)
