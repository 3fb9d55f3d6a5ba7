"""Distances, bearings and retry helpers for position handling."""

import math
import time
from typing import Callable, Optional

from .config import CONFIG

EARTH_RADIUS_M = 6371000
COMPASS_POINTS = ("north", "northeast", "east", "southeast", "south", "southwest", "west", "northwest")


def planar_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Flat-earth distance in meters; fine at city-walk scale, not geodesically exact"""
    return math.hypot(lat2 - lat1, lng2 - lng1) * CONFIG["meters_per_degree"]


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters"""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = rlat2 - rlat1
    dlng = math.radians(lng2 - lng1)
    h = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlng / 2) ** 2
    return 2 * EARTH_RADIUS_M * math.asin(min(1.0, math.sqrt(h)))


def bearing_between(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Initial bearing in degrees clockwise from north, 0 to 360"""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlng = math.radians(lng2 - lng1)
    east = math.sin(dlng) * math.cos(rlat2)
    north = math.cos(rlat1) * math.sin(rlat2) - math.sin(rlat1) * math.cos(rlat2) * math.cos(dlng)
    return math.degrees(math.atan2(east, north)) % 360


def bearing_to_compass(bearing: float) -> str:
    """Nearest of the eight compass points"""
    return COMPASS_POINTS[int(round(bearing / 45)) % len(COMPASS_POINTS)]


def path_length(points: list[tuple[float, float]]) -> float:
    """Length in meters of the polyline through points"""
    return sum(
        haversine_distance(a[0], a[1], b[0], b[1])
        for a, b in zip(points, points[1:])
    )


def retry_with_backoff(func: Callable, max_time: float = 30.0, initial_delay: float = 1.0,
                       max_delay: float = 8.0, description: str = "operation",
                       sleep: Callable[[float], None] = time.sleep) -> Optional[object]:
    """Call func until it returns something truthy or max_time has passed.

    The wait doubles after each failure, capped at max_delay and at the time
    left. Returns the first truthy result, or None on giving up.
    """
    deadline = time.time() + max_time
    delay = initial_delay
    attempts = 0
    while True:
        attempts += 1
        result = func()
        if result:
            return result
        remaining = deadline - time.time()
        if remaining <= 0:
            print(f"Giving up on {description} after {attempts} attempts")
            return None
        wait = min(delay, remaining, max_delay)
        print(f"Retrying {description} in {wait:.1f}s (attempt {attempts})...")
        sleep(wait)
        delay = min(delay * 2, max_delay)
