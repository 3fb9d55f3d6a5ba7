"""Position sources: device GPS, recorded traces and synthetic walks."""

import json
import subprocess
import time
from datetime import datetime
from typing import Optional, Protocol

from .config import CONFIG
from .logger import Logger, NullLogger
from .models import Location, Tour

# Bounds for the wait between trace samples, in seconds
MIN_TRACE_INTERVAL = 0.1
MAX_TRACE_INTERVAL = 5.0


class PositionSource(Protocol):
    def get_location(self, timeout: int = 30) -> Optional[Location]: ...

    def get_status(self) -> str: ...


class GPS:
    """Device position from the Termux ``termux-location`` command"""

    def __init__(self, command: Optional[list[str]] = None):
        self.command = command or ["termux-location", "-p", "gps", "-r", "once"]
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0
        self.last_error: Optional[str] = None

    def _read(self, timeout: int) -> dict:
        """Raw fix from the command; raises RuntimeError describing the failure"""
        try:
            proc = subprocess.run(self.command, capture_output=True, text=True, timeout=timeout)
        except subprocess.TimeoutExpired:
            raise RuntimeError("timeout")
        except FileNotFoundError:
            raise RuntimeError(f"{self.command[0]} not installed")
        if proc.returncode != 0:
            raise RuntimeError((proc.stderr or "").strip() or "unknown error")
        output = (proc.stdout or "").strip()
        if not output:
            raise RuntimeError("empty response")
        try:
            fix = json.loads(output)
            fix["latitude"], fix["longitude"]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise RuntimeError(f"bad response: {e}")
        return fix

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        try:
            fix = self._read(timeout)
        except RuntimeError as e:
            self.consecutive_failures += 1
            self.last_error = str(e)
            return None
        self.last_location = Location(
            lat=fix["latitude"], lng=fix["longitude"],
            accuracy=fix.get("accuracy"), timestamp=time.time(),
        )
        self.consecutive_failures = 0
        self.last_error = None
        return self.last_location

    def get_status(self) -> str:
        if self.consecutive_failures:
            return f"GPS: {self.consecutive_failures} consecutive failures ({self.last_error})"
        accuracy = self.last_location.accuracy if self.last_location else None
        return f"GPS OK, accuracy {accuracy:.0f}m" if accuracy else "GPS OK"


class FixedPosition:
    """Always reports the same point"""

    def __init__(self, lat: float, lng: float):
        self.location = Location(lat=lat, lng=lng, accuracy=0.0)

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        return Location(lat=self.location.lat, lng=self.location.lng,
                        accuracy=self.location.accuracy, timestamp=time.time())

    def get_status(self) -> str:
        return f"Fixed position {self.location.lat:.6f}, {self.location.lng:.6f}"


class GPSRecorder:
    """Wraps a source and writes every poll, failed ones included, to a JSON trace"""

    def __init__(self, gps: PositionSource, record_path: str):
        self.gps = gps
        self.record_path = record_path
        self.trace: list[dict] = []
        self.started = time.time()

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        location = self.gps.get_location(timeout)
        now = time.time()
        self.trace.append({
            "elapsed": now - self.started,
            "timestamp": now,
            "location": location.to_dict() if location else None,
            "status": self.gps.get_status(),
        })
        return location

    def get_status(self) -> str:
        return self.gps.get_status()

    def save(self):
        document = {"recorded_at": datetime.now().isoformat(), "trace": self.trace}
        with open(self.record_path, "w") as f:
            json.dump(document, f, indent=2)
        print(f"Position trace saved to {self.record_path} ({len(self.trace)} samples)")

    def close(self):
        self.save()


class GPSPlayback:
    """Replays a recorded trace one sample per poll"""

    def __init__(self, trace: list[dict], speed: float = 1.0, name: str = "trace"):
        self.trace = trace
        self.speed = speed
        self.name = name
        self.index = 0
        self.last_location: Optional[Location] = None
        self.consecutive_failures = 0

    @classmethod
    def from_file(cls, playback_path: str, speed: float = 1.0) -> "GPSPlayback":
        with open(playback_path) as f:
            trace = json.load(f)["trace"]
        print(f"Loaded position trace from {playback_path} ({len(trace)} samples)")
        return cls(trace, speed=speed, name=playback_path)

    @classmethod
    def from_locations(cls, locations: list[Location], interval: float = 1.0,
                       speed: float = 1.0) -> "GPSPlayback":
        trace = [{"elapsed": i * interval, "location": loc.to_dict()} for i, loc in enumerate(locations)]
        return cls(trace, speed=speed, name="synthetic")

    def is_finished(self) -> bool:
        return self.index >= len(self.trace)

    def get_location(self, timeout: int = 30) -> Optional[Location]:
        if self.is_finished():
            return None
        sample = self.trace[self.index].get("location")
        self.index += 1
        if not sample:
            self.consecutive_failures += 1
            return None
        self.last_location = Location.from_dict(sample)
        self.consecutive_failures = 0
        return self.last_location

    def get_poll_interval(self) -> float:
        """Recorded gap to the next sample, scaled by speed"""
        if self.index == 0 or self.is_finished():
            return CONFIG["gps_poll_interval"] / self.speed
        gap = self.trace[self.index].get("elapsed", 0) - self.trace[self.index - 1].get("elapsed", 0)
        return min(MAX_TRACE_INTERVAL, max(MIN_TRACE_INTERVAL, gap / self.speed))

    def get_status(self) -> str:
        progress = f"{self.index}/{len(self.trace)}"
        if self.consecutive_failures:
            return f"Playback: {self.consecutive_failures} failures ({progress})"
        return f"Playback OK ({progress})"


def trace_through_regions(tour: Tour, steps_between: int = 4) -> list[Location]:
    """Synthetic walk from region to region in sort order.

    Each region center appears twice so a dwell is visible, with
    ``steps_between`` interpolated points on every leg.
    """
    regions = tour.ordered_regions()
    locations: list[Location] = []
    for i, region in enumerate(regions):
        center = Location(lat=region.lat, lng=region.lng, accuracy=5.0)
        locations.extend([center, Location(lat=region.lat, lng=region.lng, accuracy=5.0)])
        if i + 1 < len(regions):
            nxt = regions[i + 1]
            for step in range(1, steps_between + 1):
                f = step / (steps_between + 1)
                locations.append(Location(
                    lat=region.lat + (nxt.lat - region.lat) * f,
                    lng=region.lng + (nxt.lng - region.lng) * f,
                    accuracy=5.0,
                ))
    return locations


class PositionWatch:
    """Context manager around a position source.

    The source is released on every exit path; sources with a ``close``
    method (the recorder) get it called exactly once.
    """

    def __init__(self, source: PositionSource, logger: Optional[Logger] = None):
        self.source = source
        self.logger = logger or NullLogger()
        self.active = False
        self.samples = 0

    def __enter__(self) -> "PositionWatch":
        self.active = True
        self.logger.log("Position watch started", {"source": type(self.source).__name__})
        return self

    def poll(self, timeout: int = 30) -> Optional[Location]:
        if not self.active:
            raise RuntimeError("Position watch is not active")
        location = self.source.get_location(timeout)
        if location is not None:
            self.samples += 1
        return location

    def close(self):
        if not self.active:
            return
        self.active = False
        close = getattr(self.source, "close", None)
        if close is not None:
            close()
        self.logger.log("Position watch stopped", {"samples": self.samples})

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False
