"""Main Walkscape player application."""

import time
from typing import Callable, Optional

from .audio import AudioBackend, SilentBackend, default_backend
from .config import CONFIG
from .debug_gui import DebugServer, WebSocketGPS
from .geo import bearing_between, bearing_to_compass, haversine_distance, retry_with_backoff
from .geofence import GeofenceMonitor
from .gps import GPS, GPSPlayback, GPSRecorder, PositionSource, PositionWatch, trace_through_regions
from .logger import Logger
from .models import Location, Region, Tour
from .playback import PlaybackController, PlayerState


class Player:
    """Walks a tour: position samples drive the geofence, which drives playback"""

    def __init__(self, tour: Tour, locale: Optional[str] = None,
                 backend: Optional[AudioBackend] = None,
                 log_path: Optional[str] = None,
                 start_location: Optional[tuple[float, float]] = None,
                 resolve_key: Optional[Callable[[str], Optional[str]]] = None,
                 debug_gui: bool = False,
                 logger: Optional[Logger] = None):
        self.tour = tour
        self.start_location = start_location  # (lat, lng) tuple for testing

        self.debug_server: Optional[DebugServer] = None
        if debug_gui:
            self.debug_server = DebugServer()
            self.debug_server.start()
            self.debug_server.send_tour(tour)
            SilentBackend.set_callback(self.debug_server.send_subtitle)

        # debug GUI mirrors every log line
        log_callback = self.debug_server.send_log if self.debug_server else None
        self.logger = logger or Logger(log_path, callback=log_callback)
        if log_callback and self.logger.callback is None:
            self.logger.callback = log_callback

        self.backend = backend or default_backend()
        self.controller = PlaybackController(
            self.backend, tour, locale=locale, resolve_key=resolve_key,
            logger=self.logger, on_change=self._on_state_change,
        )
        self.monitor = GeofenceMonitor(tour.regions, on_enter=self.controller.on_region_enter,
                                       logger=self.logger)

        self.current_location: Optional[Location] = None
        self.regions_visited: list[str] = []
        self.last_log_update = 0
        self.start_time = 0

        # Position source (can be swapped for recording/playback)
        self.gps_source: PositionSource = WebSocketGPS(self.debug_server) if self.debug_server else GPS()
        self._watch: Optional[PositionWatch] = None

    def set_gps_source(self, source: PositionSource):
        """Set position source (GPS, GPSRecorder, GPSPlayback, FixedPosition)"""
        self.gps_source = source

    def _on_state_change(self, state: PlayerState):
        if state.active_region_id and state.active_region_id not in self.regions_visited:
            self.regions_visited.append(state.active_region_id)
        if self.debug_server:
            self.debug_server.send_state(self.get_state())

    def next_unvisited_region(self) -> Optional[Region]:
        for region in self.tour.ordered_regions():
            if region.id not in self.regions_visited:
                return region
        return None

    def direction_text(self) -> Optional[str]:
        """Direction to the next unvisited region: '{compass}, {distance}'"""
        region = self.next_unvisited_region()
        if region is None or self.current_location is None:
            return None
        loc = self.current_location
        distance = haversine_distance(loc.lat, loc.lng, region.lat, region.lng)
        compass = bearing_to_compass(bearing_between(loc.lat, loc.lng, region.lat, region.lng))
        return f"{compass}, {int(distance)}"

    def get_state(self) -> dict:
        """Snapshot of position, playback and progress; JSON-serializable"""
        state = {
            "tour": self.tour.slug,
            "player": self.controller.state.to_dict(),
            "visited": len(self.regions_visited),
            "regions": len(self.tour.regions),
            "next": self.direction_text(),
            "gps_status": self.gps_source.get_status(),
        }
        if self.current_location:
            state["location"] = {
                "lat": self.current_location.lat,
                "lng": self.current_location.lng,
                "accuracy": self.current_location.accuracy,
            }
        return state

    def periodic_update(self):
        """Log and broadcast state every log_interval seconds"""
        now = time.time()
        if now - self.last_log_update >= CONFIG["log_interval"]:
            self.logger.log("STATE", self.get_state())
            self.last_log_update = now

    def _poll(self, timeout: int = 30) -> Optional[Location]:
        if self._watch is not None:
            return self._watch.poll(timeout)
        return self.gps_source.get_location(timeout)

    def initialize(self) -> bool:
        """Get the first fix and apply it to the geofence"""
        self.logger.log("Starting tour", {
            "tour": self.tour.slug, "regions": len(self.tour.regions), "locale": self.controller.locale,
        })
        if not self.tour.regions:
            self.logger.warn("Tour has no regions")
            return False

        if self.start_location:
            lat, lng = self.start_location
            location = Location(lat=lat, lng=lng, accuracy=0, timestamp=time.time())
            self.logger.log("Using provided start location", {"lat": lat, "lng": lng})
        else:
            print("Getting position fix...")

            def try_gps():
                loc = self._poll(timeout=10)
                if not loc:
                    self.logger.log("Position attempt failed")
                return loc

            location = retry_with_backoff(
                try_gps,
                max_time=30.0,
                initial_delay=1.0,
                max_delay=8.0,
                description="position fix"
            )
            if not location:
                self.logger.error("Could not get position after retries")
                return False

        self.logger.log("Got position fix", {"lat": location.lat, "lng": location.lng,
                                             "accuracy": location.accuracy})
        self.apply_location(location)
        self.start_time = time.time()
        return True

    def apply_location(self, location: Location):
        self.current_location = location
        self.monitor.update(location)

    def handle_command(self, command: dict):
        """Apply a player command coming from the debug GUI"""
        name = command.get("name")
        if name == "pause":
            self.controller.pause()
        elif name == "resume":
            self.controller.resume()
        elif name == "stop":
            self.controller.stop()
        elif name == "seek":
            self.controller.seek(float(command.get("delta", 0)))
        elif name == "dismiss":
            self.controller.dismiss_notice()
        elif name in ("next", "previous"):
            region = self.controller.next_region() if name == "next" else self.controller.previous_region()
            if region is not None:
                self.monitor.mark_active(region.id)

    def update(self) -> bool:
        """One position poll; returns False when the tour is finished"""
        self.periodic_update()
        if self.debug_server:
            for command in self.debug_server.pending_commands():
                self.handle_command(command)

        location = self._poll()
        if location:
            self.apply_location(location)
        self.controller.tick()

        if self.debug_server:
            self.debug_server.send_state(self.get_state())

        finished = (len(self.regions_visited) == len(self.tour.regions)
                    and not self.controller.state.active)
        return not finished

    def get_poll_interval(self) -> float:
        """Seconds until the next position poll"""
        if isinstance(self.gps_source, GPSPlayback):
            return self.gps_source.get_poll_interval()
        return CONFIG["gps_poll_interval"]

    def is_playback_finished(self) -> bool:
        if isinstance(self.gps_source, GPSPlayback):
            return self.gps_source.is_finished() and not self.controller.state.active
        return False

    def _wait(self, interval: float, sleep=time.sleep):
        """Sleep until the next poll while keeping the playback clock moving"""
        deadline = time.time() + interval
        while True:
            remaining = deadline - time.time()
            if remaining <= 0:
                return
            sleep(min(CONFIG["tick_interval"], remaining))
            self.controller.tick()

    def summary(self) -> dict:
        return {
            "tour": self.tour.slug,
            "visited": list(self.regions_visited),
            "regions": len(self.tour.regions),
            "duration": time.time() - self.start_time if self.start_time else 0,
        }

    def run(self):
        """Run the tour until every region was heard, playback ends or Ctrl+C"""
        print(f"\n=== Walkscape: {self.tour.title} ===")
        print(f"Regions: {len(self.tour.regions)}")
        if isinstance(self.gps_source, GPSPlayback):
            print(f"Replaying {self.gps_source.name} at {self.gps_source.speed}x")
        print("Press Ctrl+C to stop\n")

        try:
            with PositionWatch(self.gps_source, self.logger) as watch:
                self._watch = watch
                if not self.initialize():
                    return
                while self.update():
                    if self.is_playback_finished():
                        print("\nTrace replay finished")
                        self.logger.log("Trace replay finished")
                        break
                    self._wait(self.get_poll_interval())
        except KeyboardInterrupt:
            print("\nTour interrupted")
            self.logger.log("Tour interrupted by user")
        finally:
            self._watch = None
            self.controller.stop()
            summary = self.summary()
            self.logger.log("Tour summary", summary)
            print("\nTour summary:")
            print(f"  Regions heard: {len(summary['visited'])}/{summary['regions']}")
            print(f"  Walked for {summary['duration']/60:.1f} minutes")
            if self.debug_server:
                self.debug_server.stop()
            self.logger.close()


def simulated_player(tour: Tour, locale: Optional[str] = None, speed: float = 4.0,
                     logger: Optional[Logger] = None) -> Player:
    """Player walking a synthetic trace through every region with a silent backend"""
    player = Player(tour, locale=locale, backend=SilentBackend(default_duration=20.0), logger=logger)
    player.set_gps_source(GPSPlayback.from_locations(trace_through_regions(tour), interval=5.0, speed=speed))
    return player


def recording_player(player: Player, record_path: str) -> Player:
    player.set_gps_source(GPSRecorder(player.gps_source, record_path))
    return player
