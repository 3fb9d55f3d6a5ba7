import base64
import os

import pytest

from walkscape.audio import FFplayBackend, SilentBackend, materialize_data_url
from walkscape.errors import PlaybackError


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


def test_silent_backend_keeps_time():
    clock = FakeClock()
    backend = SilentBackend(clock=clock)
    backend.play_tone(440, 15)
    clock.now += 4
    assert backend.position() == 4
    assert not backend.finished()

    backend.pause()
    clock.now += 10
    assert backend.position() == 4
    backend.resume()
    clock.now += 1
    assert backend.position() == 5

    backend.seek(14)
    clock.now += 5
    assert backend.position() == 15
    assert backend.finished()


def test_silent_backend_file_without_duration_never_finishes():
    clock = FakeClock()
    backend = SilentBackend(clock=clock)
    backend.play_file("https://cdn.example.com/a.mp3")
    clock.now += 1000
    assert backend.duration() is None
    assert not backend.finished()
    backend.stop()
    assert backend.position() == 0.0


def test_silent_backend_announces_through_callback():
    messages = []
    SilentBackend.set_callback(messages.append)
    try:
        SilentBackend(default_duration=3).play_file("https://cdn.example.com/a.mp3")
    finally:
        SilentBackend.set_callback(None)
    assert messages == ["playing https://cdn.example.com/a.mp3"]


def test_materialize_data_url(tmp_path):
    url = "data:audio/mpeg;base64," + base64.b64encode(b"ID3data").decode()
    path = materialize_data_url(url)
    try:
        assert path.endswith(".mp3")
        with open(path, "rb") as f:
            assert f.read() == b"ID3data"
    finally:
        os.remove(path)


def test_materialize_rejects_malformed_url():
    with pytest.raises(PlaybackError):
        materialize_data_url("https://example.com/a.mp3")
    with pytest.raises(PlaybackError):
        materialize_data_url("data:audio/mpeg;base64,@@@")


def test_ffplay_non_zero_exit_is_playback_error():
    backend = FFplayBackend(binary="false")
    backend.play_tone(440, 1)
    backend._process.wait(timeout=5)

    with pytest.raises(PlaybackError):
        backend.finished()
    backend.stop()


def test_ffplay_clean_exit_is_finished():
    backend = FFplayBackend(binary="true")
    backend.play_tone(440, 1)
    backend._process.wait(timeout=5)
    assert backend.finished()
    backend.stop()


class ExitedProcess:
    def __init__(self):
        self.signals = []

    def poll(self):
        return 0

    def send_signal(self, sig):
        self.signals.append(sig)


def test_ffplay_seek_while_paused_skips_exited_process(monkeypatch):
    backend = FFplayBackend(binary="true")
    backend.play_tone(440, 10)
    backend._process.wait(timeout=5)
    backend.pause()
    exited = ExitedProcess()
    monkeypatch.setattr(backend, "_spawn", lambda args, offset=0.0: setattr(backend, "_process", exited))

    backend.seek(4)

    assert exited.signals == []
    assert backend.position() == 4
    backend._process = None
    backend.stop()
