"""Playback state machine driven by region selection and session time."""

from dataclasses import dataclass, replace
from typing import Callable, Optional

from .audio import AudioBackend
from .config import CONFIG
from .errors import PlaybackError
from .geofence import RegionEnter
from .logger import Logger, NullLogger
from .models import Region, SubtitleCue, Tour, Track
from .subtitles import SubtitleSynchronizer, parse_srt, tone_cues

IDLE = "idle"
PLAYING = "playing"
PAUSED = "paused"


@dataclass(frozen=True)
class PlayerState:
    status: str = IDLE
    active_region_id: Optional[str] = None
    active_track: Optional[Track] = None
    current_time: float = 0.0
    duration: Optional[float] = None
    subtitle_cues: tuple = ()
    active_cue: Optional[SubtitleCue] = None
    notice: Optional[str] = None
    session: int = 0

    @property
    def active(self) -> bool:
        return self.status in (PLAYING, PAUSED)

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "activeRegionId": self.active_region_id,
            "currentTime": round(self.current_time, 2),
            "duration": self.duration,
            "subtitle": self.active_cue.text if self.active_cue else None,
            "notice": self.notice,
        }


# Actions

@dataclass(frozen=True)
class Start:
    region_id: str
    track: Track
    cues: tuple
    duration: Optional[float]


@dataclass(frozen=True)
class Silent:
    """Region entered but nothing playable is bound to it"""
    region_id: str
    track: Optional[Track] = None


@dataclass(frozen=True)
class Pause:
    pass


@dataclass(frozen=True)
class Resume:
    pass


@dataclass(frozen=True)
class Seek:
    time: float


@dataclass(frozen=True)
class Stop:
    pass


@dataclass(frozen=True)
class TimeUpdate:
    time: float
    cue: Optional[SubtitleCue]


@dataclass(frozen=True)
class Ended:
    pass


@dataclass(frozen=True)
class Failed:
    message: str
    region_id: Optional[str] = None


@dataclass(frozen=True)
class DismissNotice:
    pass


def _clamp(t: float, duration: Optional[float]) -> float:
    t = max(0.0, t)
    if duration is not None:
        t = min(t, duration)
    return t


def reduce(state: PlayerState, action) -> PlayerState:
    """Next player state; pure, never touches the audio backend"""
    if isinstance(action, Start):
        return PlayerState(
            status=PLAYING,
            active_region_id=action.region_id,
            active_track=action.track,
            duration=action.duration,
            subtitle_cues=tuple(action.cues),
            session=state.session + 1,
        )
    if isinstance(action, Silent):
        return PlayerState(
            active_region_id=action.region_id,
            active_track=action.track,
            session=state.session + 1,
        )
    if isinstance(action, Pause):
        return replace(state, status=PAUSED) if state.status == PLAYING else state
    if isinstance(action, Resume):
        return replace(state, status=PLAYING) if state.status == PAUSED else state
    if isinstance(action, Seek):
        if not state.active:
            return state
        return replace(state, current_time=_clamp(action.time, state.duration))
    if isinstance(action, Stop):
        return replace(state, status=IDLE, current_time=0.0, duration=None,
                       subtitle_cues=(), active_cue=None)
    if isinstance(action, TimeUpdate):
        if not state.active:
            return state
        return replace(state, current_time=_clamp(action.time, state.duration), active_cue=action.cue)
    if isinstance(action, Ended):
        if not state.active:
            return state
        return replace(state, status=IDLE, current_time=state.duration or state.current_time,
                       subtitle_cues=(), active_cue=None)
    if isinstance(action, Failed):
        return PlayerState(
            active_region_id=action.region_id or state.active_region_id,
            notice=action.message,
            session=state.session + 1,
        )
    if isinstance(action, DismissNotice):
        return replace(state, notice=None)
    raise TypeError(f"Unknown player action {action!r}")


class PlaybackController:
    """Owns the audio backend; every state change goes through reduce().

    At most one session exists at a time: selecting a region always stops
    the current one first.
    """

    def __init__(self, backend: AudioBackend, tour: Optional[Tour] = None,
                 locale: Optional[str] = None,
                 resolve_key: Optional[Callable[[str], Optional[str]]] = None,
                 logger: Optional[Logger] = None,
                 on_change: Optional[Callable[[PlayerState], None]] = None):
        self.backend = backend
        self.resolve_key = resolve_key
        self.logger = logger or NullLogger()
        self.on_change = on_change
        self.synchronizer = SubtitleSynchronizer()
        self.tour: Optional[Tour] = None
        self.locale: Optional[str] = None
        self._state = PlayerState()
        if tour is not None:
            self.load_tour(tour, locale)

    @property
    def state(self) -> PlayerState:
        return self._state

    def dispatch(self, action) -> PlayerState:
        previous = self._state
        self._state = reduce(previous, action)
        if self._state.status != previous.status:
            self.logger.log("Player state", {
                "from": previous.status, "to": self._state.status,
                "region": self._state.active_region_id,
            })
        if self.on_change and self._state != previous:
            self.on_change(self._state)
        return self._state

    def load_tour(self, tour: Tour, locale: Optional[str] = None):
        """Switch tours; any running session is stopped"""
        self.stop()
        self.tour = tour
        self.locale = locale or tour.locale

    def _resolve_track(self, region: Region) -> Optional[Track]:
        if self.tour is None:
            return None
        return self.tour.track_for(region.id, self.locale)

    def _subtitle_cues(self, track: Track) -> list[SubtitleCue]:
        if self.tour is None:
            return []
        subtitle = self.tour.subtitle_for(track, self.locale)
        return parse_srt(subtitle.content) if subtitle else []

    def select_region(self, region: Region, track: Optional[Track] = None) -> PlayerState:
        """Start the session bound to region, replacing any active one"""
        self.stop()
        if track is None:
            track = self._resolve_track(region)
        source = track.playable_source(self.resolve_key) if track else None
        if source is None:
            self.logger.log("No playable source for region", {"region": region.id})
            return self.dispatch(Silent(region.id, track))

        kind, value = source
        try:
            if kind == "tone":
                duration = CONFIG["tone_duration"]
                self.backend.play_tone(value, duration)
                cues = tone_cues(value, duration)
            else:
                self.backend.play_file(value)
                duration = self.backend.duration()
                cues = self._subtitle_cues(track)
        except PlaybackError as e:
            self.logger.error("Playback failed", {"region": region.id, "error": str(e)})
            self.backend.stop()
            return self.dispatch(Failed(str(e), region.id))

        self.synchronizer.load(cues)
        self.logger.log("Playing", {"region": region.id, "kind": kind, "cues": len(cues)})
        return self.dispatch(Start(region.id, track, tuple(cues), duration))

    def on_region_enter(self, event: RegionEnter):
        """GeofenceMonitor callback"""
        self.select_region(event.region)

    def pause(self) -> PlayerState:
        if self._state.status == PLAYING:
            self.backend.pause()
            self.dispatch(Pause())
        return self._state

    def resume(self) -> PlayerState:
        if self._state.status == PAUSED:
            self.backend.resume()
            self.dispatch(Resume())
        return self._state

    def seek(self, delta: float) -> PlayerState:
        """Move relative to the current time, clamped to the session bounds"""
        if not self._state.active:
            return self._state
        target = _clamp(self._state.current_time + delta, self._state.duration)
        try:
            self.backend.seek(target)
        except PlaybackError as e:
            self.logger.error("Seek failed", {"error": str(e)})
            self.backend.stop()
            self.synchronizer.clear()
            return self.dispatch(Failed(str(e)))
        self.dispatch(Seek(target))
        return self.dispatch(TimeUpdate(target, self.synchronizer.update(target)))

    def stop(self) -> PlayerState:
        self.backend.stop()
        self.synchronizer.clear()
        return self.dispatch(Stop())

    def on_time_update(self, t: float, session: Optional[int] = None) -> PlayerState:
        """Session time signal; updates from an older session are ignored"""
        if session is not None and session != self._state.session:
            return self._state
        if not self._state.active:
            return self._state
        duration = self._state.duration
        if duration is not None and t >= duration:
            return self.on_ended()
        return self.dispatch(TimeUpdate(t, self.synchronizer.update(t)))

    def on_ended(self) -> PlayerState:
        self.backend.stop()
        self.synchronizer.clear()
        return self.dispatch(Ended())

    def tick(self) -> PlayerState:
        """Poll the backend clock; call from the main loop"""
        if self._state.status != PLAYING:
            return self._state
        try:
            finished = self.backend.finished()
        except PlaybackError as e:
            region_id = self._state.active_region_id
            self.logger.error("Playback failed", {"region": region_id, "error": str(e)})
            self.backend.stop()
            self.synchronizer.clear()
            return self.dispatch(Failed(str(e), region_id))
        if finished:
            return self.on_ended()
        return self.on_time_update(self.backend.position())

    def dismiss_notice(self) -> PlayerState:
        return self.dispatch(DismissNotice())

    def _step_region(self, step: int) -> Optional[Region]:
        if self.tour is None:
            return None
        regions = self.tour.ordered_regions()
        if not regions:
            return None
        ids = [r.id for r in regions]
        current = self._state.active_region_id
        if current not in ids:
            return regions[0] if step > 0 else None
        index = ids.index(current) + step
        if index < 0 or index >= len(regions):
            return None
        return regions[index]

    def next_region(self) -> Optional[Region]:
        """Select the region after the active one in sort order"""
        region = self._step_region(1)
        if region is not None:
            self.select_region(region)
        return region

    def previous_region(self) -> Optional[Region]:
        region = self._step_region(-1)
        if region is not None:
            self.select_region(region)
        return region
