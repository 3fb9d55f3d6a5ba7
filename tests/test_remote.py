import json

import pytest
import requests

from walkscape.errors import NotFound, TransportError, ValidationError
from walkscape.models import BundleManifest, Tour
from walkscape.remote import (
    RemoteCatalog,
    StorageLocator,
    SupabaseObjectStore,
    build_catalog,
    decode_data_url,
    encode_data_url,
    parse_manifest,
)

from conftest import make_tour_dict


class FakeResponse:
    def __init__(self, status_code=200, body=b"", payload=None):
        self.status_code = status_code
        self.content = body
        self.text = body.decode("utf-8") if isinstance(body, bytes) else str(body)
        self._payload = payload

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses=None, error=None):
        self.headers = {}
        self.responses = list(responses or [])
        self.error = error
        self.requests = []

    def request(self, method, url, timeout=None, **kwargs):
        self.requests.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.responses.pop(0)


def test_locator_parse():
    locator = StorageLocator.parse("supabase://tours/cms/")
    assert (locator.scheme, locator.bucket, locator.prefix) == ("supabase", "tours", "cms")
    assert locator.path("centro", "manifest.json") == "cms/centro/manifest.json"

    bare = StorageLocator.parse("s3://bucket")
    assert bare.prefix == ""
    assert bare.path("index.json") == "index.json"
    assert bare.https_base() == "https://bucket.s3.amazonaws.com"


@pytest.mark.parametrize("url", [None, "", "not-a-url", "://bucket", "s3://"])
def test_invalid_locator_means_local_only(url):
    assert StorageLocator.parse(url) is None


def test_catalog_paths(catalog):
    assert catalog.index_path() == "cms/index.json"
    assert catalog.manifest_path("centro-storico") == "cms/centro-storico/manifest.json"


def test_missing_index_reads_as_empty(catalog):
    assert catalog.list_tours() == []


def test_manifest_round_trip_through_store(catalog, object_store):
    tour = Tour(id="t", slug="centro", title="Centro", locale="it-IT")
    path = catalog.write_manifest(tour)
    assert path in object_store.objects
    assert catalog.get_tour("centro").title == "Centro"


def test_get_tour_not_found(catalog, local_catalog):
    with pytest.raises(NotFound):
        catalog.get_tour("missing")
    with pytest.raises(NotFound):
        local_catalog.get_tour("missing")


def test_parse_manifest_accepts_both_forms():
    tour = parse_manifest({"tour": make_tour_dict()})
    assert isinstance(tour, Tour)
    assert tour.slug == "centro-storico"

    assert isinstance(parse_manifest(make_tour_dict()), Tour)

    bundle = parse_manifest({"version": 3, "files": [], "playback": {"dwellSecDefault": 4}})
    assert isinstance(bundle, BundleManifest)
    assert bundle.version == 3


def test_parse_manifest_rejects_unknown_shape():
    with pytest.raises(ValidationError):
        parse_manifest({"hello": "world"})
    with pytest.raises(ValidationError):
        parse_manifest(["not", "an", "object"])


def test_fetch_published_skips_broken_manifests(catalog, object_store):
    catalog.write_manifest(Tour(id="a", slug="good", title="Good", locale="it-IT"))
    object_store.objects["cms/broken/manifest.json"] = b"{oops"
    catalog.write_index([
        Tour(id="a", slug="good", title="Good", locale="it-IT").summary(),
        Tour(id="b", slug="broken", title="Broken", locale="it-IT").summary(),
        Tour(id="c", slug="gone", title="Gone", locale="it-IT").summary(),
    ])

    tours = catalog.fetch_published_tours()

    assert [t.slug for t in tours] == ["good"]
    assert tours[0].published


def test_local_only_bundle_manifest_is_inline():
    manifest = RemoteCatalog(None, None).bundle_manifest("centro", "it-IT")
    doc = decode_data_url(manifest["url"])
    assert doc["files"][0]["path"] == "regions.geojson"
    assert doc["playback"] == {"dwellSecDefault": 4, "crossfadeMs": 600}
    assert doc["version"] == manifest["version"]


def test_bundle_manifest_urls(catalog):
    assert catalog.bundle_manifest("centro", "it-IT")["url"] == "memory://tours/cms/centro/it-IT/manifest.json"

    s3 = RemoteCatalog(StorageLocator.parse("s3://media/tours"), catalog.store)
    assert s3.bundle_manifest("centro", "en-US")["url"] == (
        "https://media.s3.amazonaws.com/tours/centro/en-US/manifest.json")


def test_data_url_round_trip_and_rejects_garbage():
    assert decode_data_url(encode_data_url({"a": [1, 2]})) == {"a": [1, 2]}
    assert decode_data_url('data:application/json,{"b":1}') == {"b": 1}
    with pytest.raises(ValidationError):
        decode_data_url("https://example.com/x.json")


def test_status(catalog, object_store, local_catalog):
    object_store.objects["cms/index.json"] = b"{}"
    status = catalog.status()
    assert status["status"] == "success"
    assert status["totalObjects"] == 1
    assert status["sampleObjects"] == ["cms/index.json"]

    object_store.failing.add("cms")
    assert catalog.status()["status"] == "error"
    assert local_catalog.status()["status"] == "error"


def test_supabase_download_and_auth_headers():
    session = FakeSession([FakeResponse(200, b'{"tours": []}')])
    store = SupabaseObjectStore("https://proj.supabase.co/", "secret", "tours", session=session)

    assert store.download("cms/index.json") == b'{"tours": []}'
    method, url, _ = session.requests[0]
    assert method == "GET"
    assert url == "https://proj.supabase.co/storage/v1/object/tours/cms/index.json"
    assert session.headers["Authorization"] == "Bearer secret"


def test_supabase_upload_upserts():
    session = FakeSession([FakeResponse(200)])
    store = SupabaseObjectStore("https://proj.supabase.co", "k", "tours", session=session)
    store.upload("cms/a/manifest.json", b"{}")
    _, _, kwargs = session.requests[0]
    assert kwargs["headers"]["x-upsert"] == "true"
    assert kwargs["data"] == b"{}"


def test_supabase_not_found():
    session = FakeSession([FakeResponse(404, b"missing"), FakeResponse(400, b'{"error":"Object not found"}')])
    store = SupabaseObjectStore("https://proj.supabase.co", "k", "tours", session=session)
    with pytest.raises(NotFound):
        store.download("cms/index.json")
    with pytest.raises(NotFound):
        store.download("cms/index.json")


def test_supabase_server_error_is_transport_error():
    session = FakeSession([FakeResponse(500, b"boom")])
    store = SupabaseObjectStore("https://proj.supabase.co", "k", "tours", session=session)
    with pytest.raises(TransportError) as exc:
        store.delete("cms/a.mp3")
    assert exc.value.status == 500


def test_supabase_connection_error_is_transport_error():
    session = FakeSession(error=requests.ConnectionError("refused"))
    store = SupabaseObjectStore("https://proj.supabase.co", "k", "tours", session=session)
    with pytest.raises(TransportError):
        store.list("cms")


def test_supabase_list_posts_prefix():
    session = FakeSession([FakeResponse(200, payload=[{"name": "index.json"}])])
    store = SupabaseObjectStore("https://proj.supabase.co", "k", "tours", session=session)
    assert store.list("cms", limit=5) == [{"name": "index.json"}]
    method, url, kwargs = session.requests[0]
    assert (method, url) == ("POST", "https://proj.supabase.co/storage/v1/object/list/tours")
    assert kwargs["json"]["prefix"] == "cms"
    assert kwargs["json"]["limit"] == 5


def test_build_catalog():
    assert not build_catalog(None).configured
    assert not build_catalog("nonsense").configured
    assert not build_catalog("supabase://tours/cms").configured
    catalog = build_catalog("supabase://tours/cms", "https://proj.supabase.co", "key")
    assert catalog.configured
    assert isinstance(catalog.store, SupabaseObjectStore)
    assert catalog.public_url("cms/index.json") == (
        "https://proj.supabase.co/storage/v1/object/public/tours/cms/index.json")


def test_index_document_shape(catalog, object_store):
    catalog.write_index([Tour(id="a", slug="a", title="A", locale="it-IT").summary(manifest_url="cms/a/manifest.json")])
    doc = json.loads(object_store.objects["cms/index.json"])
    assert doc["tours"][0]["slug"] == "a"
    assert doc["tours"][0]["manifestUrl"] == "cms/a/manifest.json"


def test_publish_tour_upserts_by_slug(catalog, object_store):
    catalog.publish_tour(make_tour_dict(), updated_at="2024-01-01T00:00:00+00:00")
    summary = catalog.publish_tour(make_tour_dict(title="Renamed"))

    assert summary.published
    assert summary.manifest_url == "cms/centro-storico/manifest.json"
    tours = json.loads(object_store.objects["cms/index.json"])["tours"]
    assert [(t["slug"], t["title"]) for t in tours] == [("centro-storico", "Renamed")]
    assert catalog.get_tour("centro-storico").published


@pytest.mark.parametrize("body", [b"[]", b'"tours"', b'{"tours": {"a": 1}}'])
def test_index_that_is_not_an_object_is_transport_error(catalog, object_store, body):
    object_store.objects["cms/index.json"] = body
    with pytest.raises(TransportError):
        catalog.read_index()


def test_index_skips_entries_without_slug(catalog, object_store):
    object_store.objects["cms/index.json"] = json.dumps({"tours": [
        "stray", {"title": "No slug"}, {"slug": "a", "title": "A"},
    ]}).encode()
    assert [s.slug for s in catalog.read_index()] == ["a"]
