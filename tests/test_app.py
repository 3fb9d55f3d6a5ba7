import json

import pytest

from walkscape.app import Player, recording_player, simulated_player
from walkscape.audio import SilentBackend
from walkscape.gps import FixedPosition, GPSPlayback, GPSRecorder, PositionWatch, trace_through_regions
from walkscape.logger import NullLogger
from walkscape.models import Location, normalize

from conftest import FakeBackend


@pytest.fixture
def walk_tour():
    # regions far enough apart that the walk leaves r1 before reaching r2
    return normalize({
        "id": "walk",
        "slug": "walk",
        "title": "Walk",
        "regions": [
            {"id": "r1", "lat": 45.0, "lng": 7.0, "radiusM": 60, "sort": 1},
            {"id": "r2", "lat": 45.005, "lng": 7.0, "radiusM": 60, "sort": 2},
        ],
        "tracks": {"it-IT": {
            "r1": {"kind": "tone", "frequency": 440},
            "r2": {"kind": "audio", "audioUrl": "https://cdn.example.com/r2.mp3"},
        }},
    })


@pytest.fixture
def player(walk_tour):
    return Player(walk_tour, backend=FakeBackend(), logger=NullLogger())


def test_walk_plays_every_region_in_order(player, walk_tour):
    player.set_gps_source(GPSPlayback.from_locations(trace_through_regions(walk_tour)))
    assert player.initialize()
    assert player.controller.state.active_region_id == "r1"

    while not player.gps_source.is_finished():
        assert player.update()

    assert player.regions_visited == ["r1", "r2"]
    assert player.backend.max_live == 1
    assert player.controller.state.active_region_id == "r2"

    player.backend.finish()
    assert player.update() is False


def test_initialize_with_start_location(player):
    player.start_location = (45.005, 7.0)
    assert player.initialize()
    assert player.regions_visited == ["r2"]


def test_initialize_without_regions():
    tour = normalize({"slug": "empty", "title": "Empty"})
    player = Player(tour, backend=FakeBackend(), logger=NullLogger())
    assert not player.initialize()


def test_commands(player):
    player.handle_command({"name": "next"})
    assert player.controller.state.active_region_id == "r1"
    # standing in the manually selected region does not restart it
    player.apply_location(Location(45.0, 7.0))
    assert [c for c in player.backend.calls if c[0] == "tone"] == [("tone", 440.0, 15.0)]

    player.handle_command({"name": "pause"})
    assert player.controller.state.status == "paused"
    player.handle_command({"name": "resume"})
    player.handle_command({"name": "seek", "delta": "5"})
    assert player.controller.state.current_time == 5.0
    player.handle_command({"name": "next"})
    assert player.controller.state.active_region_id == "r2"
    assert player.monitor.active_region_id == "r2"
    player.handle_command({"name": "stop"})
    assert player.controller.state.status == "idle"


def test_direction_and_state(player):
    player.apply_location(Location(45.0, 7.0, accuracy=5.0))
    assert player.direction_text().startswith("north, ")
    player.set_gps_source(FixedPosition(45.0, 7.0))
    state = player.get_state()
    assert state["player"]["activeRegionId"] == "r1"
    assert state["visited"] == 1
    assert state["location"]["accuracy"] == 5.0
    assert state["gps_status"].startswith("Fixed position")
    json.dumps(state)


def test_direction_none_when_all_visited(player):
    player.regions_visited = ["r1", "r2"]
    player.current_location = Location(45.0, 7.0)
    assert player.direction_text() is None


def test_poll_interval_follows_playback(player, walk_tour):
    player.set_gps_source(GPSPlayback.from_locations(trace_through_regions(walk_tour), interval=2.0, speed=4.0))
    player.gps_source.get_location()
    assert player.get_poll_interval() == 0.5


def test_wait_keeps_clock_moving(player):
    ticks = []
    player.controller.tick = lambda: ticks.append(1)
    player._wait(0.05, sleep=lambda s: None)
    assert ticks


def test_simulated_player(walk_tour):
    player = simulated_player(walk_tour, logger=NullLogger())
    assert isinstance(player.backend, SilentBackend)
    assert isinstance(player.gps_source, GPSPlayback)


def test_recording_player_saves_on_close(player, tmp_path):
    path = tmp_path / "trace.json"
    player.set_gps_source(FixedPosition(45.0, 7.0))
    recording_player(player, str(path))
    assert isinstance(player.gps_source, GPSRecorder)

    with PositionWatch(player.gps_source) as watch:
        watch.poll()

    with open(path) as f:
        assert len(json.load(f)["trace"]) == 1
