import base64

import pytest

from walkscape import editor
from walkscape.errors import NotFound, ValidationError
from walkscape.models import normalize

from conftest import SAMPLE_SRT


def test_seed_tour():
    tour = editor.seed_tour()
    assert tour.slug == "bandite-demo"
    assert tour.price_eur == 3.99
    assert [r.sort for r in tour.ordered_regions()] == [1, 2, 3]
    frequencies = [tour.track_for(r.id).frequency for r in tour.ordered_regions()]
    assert frequencies == [440, 550, 660]


def test_copy_for_locale(tour):
    copy = editor.copy_for_locale(tour, "en-US")
    assert copy.id != tour.id
    assert copy.slug == "centro-storico-en"
    assert copy.title == "Centro Storico (EN)"
    assert copy.parent_tour_id == "tour-1"
    assert not copy.published
    assert copy.tracks == {"en-US": {}}
    assert copy.subtitles == {"en-US": {}}
    assert [r.id for r in copy.regions] == ["r1", "r2"]


def test_copy_of_copy_points_at_root(tour):
    english = editor.copy_for_locale(tour, "en-US")
    french = editor.copy_for_locale(english, "fr-FR")
    assert french.parent_tour_id == "tour-1"


def test_copy_to_same_locale_rejected(tour):
    with pytest.raises(ValidationError):
        editor.copy_for_locale(tour, "it-IT")


def test_available_locales(tour):
    english = editor.copy_for_locale(tour, "en-US")
    assert editor.available_locales(tour, [tour, english]) == ["fr-FR", "de-DE", "es-ES"]


def test_add_region_appends_with_empty_tracks(tour):
    region = editor.add_region(tour, 45.01, 7.01, name="Ponte")
    assert region.sort == 3
    assert region.radius_m == 120
    assert tour.track_for(region.id).kind is None
    normalize(tour)


def test_add_region_rejects_bad_radius(tour):
    with pytest.raises(ValidationError):
        editor.add_region(tour, 45.0, 7.0, radius_m=-5)


def test_delete_region_drops_tracks(tour):
    editor.delete_region(tour, "r1")
    assert [r.id for r in tour.regions] == ["r2"]
    assert "r1" not in tour.tracks["it-IT"]
    with pytest.raises(NotFound):
        editor.delete_region(tour, "r1")


def test_move_region(tour):
    assert editor.move_region(tour, "r2", "up")
    assert [(r.id, r.sort) for r in tour.ordered_regions()] == [("r2", 1), ("r1", 2)]
    assert not editor.move_region(tour, "r2", "up")
    with pytest.raises(ValidationError):
        editor.move_region(tour, "r2", "sideways")


def test_update_track_field(tour):
    track = editor.update_track_field(tour, "r1", "frequency", "523.25")
    assert track.frequency == 523.25
    editor.update_track_field(tour, "r1", "title", "Piazza Castello")
    assert tour.track_for("r1").title == "Piazza Castello"


def test_update_track_field_validation(tour):
    with pytest.raises(ValidationError):
        editor.update_track_field(tour, "r1", "audio_data_url", "data:,x")
    with pytest.raises(ValidationError):
        editor.update_track_field(tour, "r1", "kind", "video")
    with pytest.raises(ValidationError):
        editor.update_track_field(tour, "r1", "frequency", 0)
    with pytest.raises(ValidationError):
        editor.update_track_field(tour, "r1", "subtitle_id", "missing")
    with pytest.raises(NotFound):
        editor.update_track_field(tour, "nope", "title", "x")


def test_attach_audio(tour, tmp_path):
    path = tmp_path / "intro.mp3"
    path.write_bytes(b"ID3fake")
    track = editor.attach_audio(tour, "r1", str(path), now=1700000000.0)

    assert track.kind == "audio"
    assert track.audio_filename == "r1-1700000000000.mp3"
    assert track.audio_key == "local://r1-1700000000000.mp3"
    header, body = track.audio_data_url.split(",", 1)
    assert header == "data:audio/mpeg;base64"
    assert base64.b64decode(body) == b"ID3fake"


def test_attach_audio_over_limit(tour, tmp_path):
    path = tmp_path / "huge.mp3"
    path.write_bytes(b"0" * (2 * 1024 * 1024 + 1))
    with pytest.raises(ValidationError) as exc:
        editor.attach_audio(tour, "r1", str(path))
    assert exc.value.field == "file"


def test_attach_images(tour, tmp_path):
    path = tmp_path / "cover.png"
    path.write_bytes(b"\x89PNG")
    track = editor.attach_image(tour, "r2", str(path), now=1.0)
    assert track.image_filename == "r2-1000.png"
    assert track.image_data_url.startswith("data:image/png;base64,")

    editor.attach_tour_image(tour, str(path))
    assert tour.tour_image_filename == "cover.png"


def test_attach_subtitle_links_track(tour):
    subtitle = editor.attach_subtitle(tour, "r1", SAMPLE_SRT, name="intro.srt")
    track = tour.track_for("r1")
    assert track.subtitle_id == subtitle.id
    assert tour.subtitle_for(track).name == "intro.srt"
    normalize(tour)


def test_attach_subtitle_replaces_existing(tour):
    subtitle = editor.attach_subtitle(tour, "r2", SAMPLE_SRT)
    assert subtitle.id == "s1"
    assert len(tour.subtitles["it-IT"]) == 1


def test_attach_subtitle_rejects_empty_srt(tour):
    with pytest.raises(ValidationError):
        editor.attach_subtitle(tour, "r1", "no cues here")
