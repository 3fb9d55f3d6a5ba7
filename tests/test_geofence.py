import pytest

from walkscape.geo import bearing_between, bearing_to_compass, haversine_distance, planar_distance, retry_with_backoff
from walkscape.geofence import GeofenceMonitor
from walkscape.models import Location, Region

from conftest import R2_LAT


def _regions():
    return [
        Region(id="r1", lat=45.0, lng=7.0, radius_m=120, sort=1),
        Region(id="r2", lat=R2_LAT, lng=7.0, radius_m=120, sort=2),
        Region(id="far", lat=45.01, lng=7.0, radius_m=50, sort=3),
    ]


def test_overlap_goes_to_first_region_in_list():
    monitor = GeofenceMonitor(_regions())
    # 40 m north of r1 and only 10 m from r2
    event = monitor.update(Location(lat=45.0 + 40 / 111000, lng=7.0))
    assert event.region.id == "r1"
    assert event.previous_region_id is None


def test_tie_break_is_list_order_not_distance():
    regions = _regions()
    monitor = GeofenceMonitor([regions[1], regions[0]])
    # closer to r1 but r2 is listed first
    event = monitor.update(Location(lat=45.0 + 10 / 111000, lng=7.0))
    assert event.region.id == "r2"


def test_repeated_samples_inside_active_region_do_not_retrigger():
    entered = []
    monitor = GeofenceMonitor(_regions(), on_enter=entered.append)
    for step in range(10):
        monitor.update(Location(lat=45.0 - step / 111000, lng=7.0 + step / 111000))
    assert [e.region.id for e in entered] == ["r1"]


def test_reentry_only_after_another_region():
    monitor = GeofenceMonitor(_regions())
    assert monitor.update(Location(45.0 - 100 / 111000, 7.0)).region.id == "r1"
    # leaving every region emits nothing and keeps r1 active
    assert monitor.update(Location(45.005, 7.0)) is None
    assert monitor.active_region_id == "r1"
    assert monitor.update(Location(45.0 - 100 / 111000, 7.0)) is None

    event = monitor.update(Location(45.01, 7.0))
    assert event.region.id == "far"
    assert event.previous_region_id == "r1"
    assert monitor.update(Location(45.0 - 100 / 111000, 7.0)).region.id == "r1"


def test_sample_outside_all_regions():
    monitor = GeofenceMonitor(_regions())
    assert monitor.update(Location(46.0, 8.0)) is None
    assert monitor.active_region_id is None
    assert monitor.last_location == Location(46.0, 8.0)


def test_mark_active_suppresses_position_trigger():
    monitor = GeofenceMonitor(_regions())
    monitor.mark_active("r1")
    assert monitor.update(Location(45.0 - 100 / 111000, 7.0)) is None


def test_set_regions_forgets_active_region():
    monitor = GeofenceMonitor(_regions())
    monitor.update(Location(45.0 - 100 / 111000, 7.0))
    monitor.set_regions(_regions()[:1])
    assert monitor.active_region_id is None
    assert monitor.update(Location(45.0 - 100 / 111000, 7.0)).region.id == "r1"


def test_boundary_is_inside():
    region = Region(id="edge", lat=0.0, lng=0.0, radius_m=55500, sort=1)
    monitor = GeofenceMonitor([region])
    assert monitor.locate(0.5, 0.0)[0] is region


def test_planar_distance_scale():
    assert planar_distance(45.0, 7.0, R2_LAT, 7.0) == pytest.approx(50.0)


def test_haversine_one_degree_latitude():
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)


def test_bearing_and_compass():
    assert bearing_to_compass(bearing_between(45.0, 7.0, 45.1, 7.0)) == "north"
    assert bearing_to_compass(bearing_between(45.0, 7.0, 45.0, 7.1)) == "east"
    assert bearing_to_compass(350) == "north"


def test_retry_with_backoff_stops_on_success():
    attempts = []
    sleeps = []

    def flaky():
        attempts.append(1)
        return "ok" if len(attempts) == 3 else None

    assert retry_with_backoff(flaky, max_time=60, sleep=sleeps.append) == "ok"
    assert sleeps == [1.0, 2.0]


def test_retry_with_backoff_gives_up():
    assert retry_with_backoff(lambda: None, max_time=0, sleep=lambda s: None) is None
