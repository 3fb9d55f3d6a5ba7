"""Audio backends for tour playback."""

import base64
import os
import signal
import subprocess
import tempfile
import time
from typing import Callable, Optional, Protocol

from .errors import PlaybackError


class AudioBackend(Protocol):
    def play_tone(self, frequency: float, duration: float) -> None: ...

    def play_file(self, url: str) -> None: ...

    def pause(self) -> None: ...

    def resume(self) -> None: ...

    def seek(self, seconds: float) -> None: ...

    def stop(self) -> None: ...

    def position(self) -> float: ...

    def duration(self) -> Optional[float]: ...

    def finished(self) -> bool: ...


class SilentBackend:
    """Keeps session time without producing sound.

    Used when no player binary is installed, and by the simulator. The
    clock is injectable so tests can drive time explicitly.
    """

    callback: Optional[Callable[[str], None]] = None  # Class-level callback for debug GUI

    @classmethod
    def set_callback(cls, callback: Optional[Callable[[str], None]]):
        """Set callback function for audio events"""
        cls.callback = callback

    def __init__(self, clock: Callable[[], float] = time.monotonic, default_duration: Optional[float] = None):
        self.clock = clock
        self.default_duration = default_duration
        self.source: Optional[str] = None
        self._duration: Optional[float] = None
        self._started_at: Optional[float] = None
        self._offset = 0.0
        self._paused = False

    def _announce(self, text: str):
        if SilentBackend.callback:
            SilentBackend.callback(text)
        print(f"[AUDIO] {text}")

    def _start(self, source: str, duration: Optional[float]):
        self.source = source
        self._duration = duration
        self._offset = 0.0
        self._paused = False
        self._started_at = self.clock()

    def play_tone(self, frequency: float, duration: float):
        self._start(f"tone:{frequency:g}", duration)
        self._announce(f"tone {frequency:g} Hz for {duration:g}s")

    def play_file(self, url: str):
        self._start(url, self.default_duration)
        self._announce(f"playing {url[:60]}")

    def pause(self):
        if self._started_at is None or self._paused:
            return
        self._offset = self.position()
        self._paused = True

    def resume(self):
        if self._started_at is None or not self._paused:
            return
        self._paused = False
        self._started_at = self.clock()

    def seek(self, seconds: float):
        if self._started_at is None:
            return
        self._offset = max(0.0, seconds)
        self._started_at = self.clock()

    def stop(self):
        self.source = None
        self._started_at = None
        self._duration = None
        self._offset = 0.0
        self._paused = False

    def position(self) -> float:
        if self._started_at is None:
            return 0.0
        if self._paused:
            return self._offset
        t = self._offset + (self.clock() - self._started_at)
        if self._duration is not None:
            t = min(t, self._duration)
        return t

    def duration(self) -> Optional[float]:
        return self._duration

    def finished(self) -> bool:
        if self._started_at is None or self._duration is None:
            return False
        return self.position() >= self._duration


def probe_duration(path: str) -> Optional[float]:
    """Media duration in seconds via ffprobe, or None when unknown"""
    try:
        result = subprocess.run(
            ["ffprobe", "-v", "error", "-show_entries", "format=duration",
             "-of", "default=noprint_wrappers=1:nokey=1", path],
            capture_output=True, text=True, timeout=10,
        )
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return None
    try:
        return float(result.stdout.strip())
    except ValueError:
        return None


def materialize_data_url(url: str) -> str:
    """Write an inline ``data:`` audio payload to a temporary file and return its path"""
    header, _, body = url.partition(",")
    if not header.startswith("data:") or not body:
        raise PlaybackError("Malformed audio data URL")
    try:
        raw = base64.b64decode(body) if header.endswith(";base64") else body.encode("utf-8")
    except ValueError as e:
        raise PlaybackError(f"Undecodable audio data URL: {e}") from e
    suffix = ".mp3" if "mpeg" in header or "mp3" in header else ".audio"
    fd, path = tempfile.mkstemp(prefix="walkscape-", suffix=suffix)
    with os.fdopen(fd, "wb") as f:
        f.write(raw)
    return path


class FFplayBackend(SilentBackend):
    """Plays through an ffplay subprocess (tones via the lavfi sine source).

    Pause and resume signal the process; seek restarts it at the offset.
    Session time is still kept by the SilentBackend clock.
    """

    def __init__(self, binary: str = "ffplay", clock: Callable[[], float] = time.monotonic):
        super().__init__(clock=clock)
        self.binary = binary
        self._process: Optional[subprocess.Popen] = None
        self._input: Optional[list[str]] = None
        self._tempfile: Optional[str] = None

    def _spawn(self, args: list[str], offset: float = 0.0):
        cmd = [self.binary, "-nodisp", "-autoexit", "-loglevel", "error"]
        if offset > 0:
            cmd += ["-ss", f"{offset:.2f}"]
        try:
            self._process = subprocess.Popen(
                cmd + args, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL,
            )
        except FileNotFoundError as e:
            raise PlaybackError(f"{self.binary} not found") from e
        except OSError as e:
            raise PlaybackError(f"Could not start {self.binary}: {e}") from e

    def _kill(self):
        if self._process is None:
            return
        if self._process.poll() is None:
            self._process.terminate()
            try:
                self._process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                self._process.kill()
        self._process = None

    def _cleanup_tempfile(self):
        if self._tempfile and os.path.exists(self._tempfile):
            os.remove(self._tempfile)
        self._tempfile = None

    def play_tone(self, frequency: float, duration: float):
        self.stop()
        self._input = ["-f", "lavfi", "-i", f"sine=frequency={frequency:g}:duration={duration:g}"]
        self._spawn(self._input)
        self._start(f"tone:{frequency:g}", duration)

    def play_file(self, url: str):
        self.stop()
        if url.startswith("data:"):
            self._tempfile = materialize_data_url(url)
            path = self._tempfile
        elif url.startswith(("http://", "https://")) or os.path.exists(url):
            path = url
        else:
            raise PlaybackError(f"Audio source not found: {url}")
        self._input = ["-i", path]
        duration = probe_duration(path) if not path.startswith("http") else None
        self._spawn(self._input)
        self._start(url, duration)

    def pause(self):
        if self._process is not None and self._process.poll() is None:
            self._process.send_signal(signal.SIGSTOP)
        super().pause()

    def resume(self):
        if self._process is not None and self._process.poll() is None:
            self._process.send_signal(signal.SIGCONT)
        super().resume()

    def seek(self, seconds: float):
        if self._input is None:
            return
        was_paused = self._paused
        self._kill()
        self._spawn(self._input, offset=seconds)
        super().seek(seconds)
        if was_paused and self._process.poll() is None:
            self._process.send_signal(signal.SIGSTOP)

    def stop(self):
        self._kill()
        self._cleanup_tempfile()
        self._input = None
        super().stop()

    def finished(self) -> bool:
        """True once ffplay exits cleanly; a non-zero exit raises PlaybackError"""
        if self._process is not None and not self._paused:
            returncode = self._process.poll()
            if returncode is not None:
                if returncode != 0:
                    self._process = None
                    raise PlaybackError(f"{self.binary} exited with status {returncode}")
                return True
        return super().finished()


def default_backend(prefer_sound: bool = True) -> SilentBackend:
    """ffplay when it is on PATH, otherwise the silent clock"""
    if prefer_sound:
        for directory in os.environ.get("PATH", "").split(os.pathsep):
            if os.access(os.path.join(directory, "ffplay"), os.X_OK):
                return FFplayBackend()
    return SilentBackend()
