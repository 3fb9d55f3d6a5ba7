import json

import pytest

from walkscape.errors import TransportError, ValidationError
from walkscape.models import Tour, TourSummary
from walkscape.publish import PublishPipeline, validate_for_publish
from walkscape.remote import upsert_summary

from conftest import make_tour_dict


def _index(object_store):
    return json.loads(object_store.objects["cms/index.json"])["tours"]


def test_publish_writes_manifest_then_index(catalog, object_store):
    result = PublishPipeline(catalog).publish(make_tour_dict())

    assert result.ok
    assert [op for op, _ in object_store.calls] == ["upload", "download", "upload"]
    assert object_store.calls[0] == ("upload", "cms/centro-storico/manifest.json")
    manifest = json.loads(object_store.objects["cms/centro-storico/manifest.json"])
    assert manifest["published"] is True
    assert _index(object_store)[0]["slug"] == "centro-storico"
    assert result.manifest_url == "memory://tours/cms/centro-storico/manifest.json"


def test_publish_without_title_writes_nothing(catalog, object_store):
    pipeline = PublishPipeline(catalog)
    with pytest.raises(ValidationError) as exc:
        pipeline.publish(make_tour_dict(title=""))
    assert exc.value.field == "title"
    assert object_store.calls == []


def test_publish_without_regions_rejected(catalog, object_store):
    with pytest.raises(ValidationError):
        PublishPipeline(catalog).publish(make_tour_dict(regions=[], tracks={}))
    assert object_store.calls == []


def test_validate_for_publish_requires_slug():
    with pytest.raises(ValidationError) as exc:
        validate_for_publish(Tour(id="x", slug="", title="T", locale="it-IT"))
    assert exc.value.field == "slug"


def test_republish_replaces_index_entry(catalog, object_store):
    pipeline = PublishPipeline(catalog)
    pipeline.publish(make_tour_dict(slug="first", tour_id="a"))
    pipeline.publish(make_tour_dict(slug="second", tour_id="b"))
    pipeline.publish(make_tour_dict(slug="first", tour_id="a", title="First, revised"))

    index = _index(object_store)
    assert [t["slug"] for t in index] == ["first", "second"]
    assert index[0]["title"] == "First, revised"


def test_upsert_summary_drops_duplicates():
    a = TourSummary(slug="a", title="A")
    b = TourSummary(slug="b", title="B")
    stale = [a, b, TourSummary(slug="a", title="A again")]
    merged = upsert_summary(stale, TourSummary(slug="a", title="New"))
    assert [(s.slug, s.title) for s in merged] == [("a", "New"), ("b", "B")]
    assert [s.slug for s in upsert_summary([a], b)] == ["a", "b"]


def test_index_failure_leaves_orphan_manifest(catalog, object_store):
    object_store.failing.add("cms/index.json")
    with pytest.raises(TransportError):
        PublishPipeline(catalog).publish(make_tour_dict())
    assert "cms/centro-storico/manifest.json" in object_store.objects


def test_publish_marks_local_draft_published(catalog, repository):
    repository.upsert(make_tour_dict())
    PublishPipeline(catalog, repository=repository).publish(repository.get("tour-1"))
    assert repository.local_tours()[0].published


def test_publish_local_only_raises_transport_error(local_catalog):
    with pytest.raises(TransportError):
        PublishPipeline(local_catalog).publish(make_tour_dict())


def test_publish_many_reports_per_tour(catalog):
    results = PublishPipeline(catalog).publish_many([
        make_tour_dict(slug="good", tour_id="a"),
        make_tour_dict(slug="untitled", tour_id="b", title=""),
    ])
    assert [r.slug for r in results] == ["good", "untitled"]
    assert results[0].ok
    assert results[1].error.kind == "ValidationError"
    assert results[1].error.field == "title"
