"""Geofence monitor turning position samples into region-enter events."""

from dataclasses import dataclass
from typing import Callable, Optional

from .geo import planar_distance
from .logger import Logger, NullLogger
from .models import Location, Region


@dataclass(frozen=True)
class RegionEnter:
    region: Region
    previous_region_id: Optional[str]
    distance: float


class GeofenceMonitor:
    """Emits an enter event when a sample lands in a region other than the active one.

    When several circles contain the sample the first region in list order
    wins, not the nearest one. Samples outside every region, or inside the
    already active one, emit nothing; there is no explicit exit event.
    """

    def __init__(self, regions: Optional[list[Region]] = None,
                 on_enter: Optional[Callable[[RegionEnter], None]] = None,
                 logger: Optional[Logger] = None):
        self.regions: list[Region] = list(regions or [])
        self.on_enter = on_enter
        self.logger = logger or NullLogger()
        self.active_region_id: Optional[str] = None
        self.last_location: Optional[Location] = None

    def set_regions(self, regions: list[Region]):
        """Swap the region snapshot (tour change) and forget the active region"""
        self.regions = list(regions)
        self.active_region_id = None

    def locate(self, lat: float, lng: float) -> Optional[tuple[Region, float]]:
        """First region whose circle contains the point, with the distance to its center"""
        for region in self.regions:
            distance = planar_distance(lat, lng, region.lat, region.lng)
            if distance <= region.radius_m:
                return region, distance
        return None

    def update(self, location: Location) -> Optional[RegionEnter]:
        """Process one position sample"""
        self.last_location = location
        match = self.locate(location.lat, location.lng)
        if match is None:
            return None
        region, distance = match
        if region.id == self.active_region_id:
            return None

        event = RegionEnter(region=region, previous_region_id=self.active_region_id, distance=distance)
        self.active_region_id = region.id
        self.logger.log("Entered region", {
            "region": region.id, "previous": event.previous_region_id, "distance": round(distance, 1),
        })
        if self.on_enter:
            self.on_enter(event)
        return event

    def mark_active(self, region_id: Optional[str]):
        """Record a manual selection so the same region is not re-triggered by position"""
        self.active_region_id = region_id
