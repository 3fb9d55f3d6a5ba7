import pytest

from walkscape.errors import PlaybackError
from walkscape.models import normalize
from walkscape.persistence import PersistenceOptimizer
from walkscape.remote import InMemoryObjectStore, RemoteCatalog, StorageLocator
from walkscape.repository import TourRepository
from walkscape.storage import MemoryStore

# 50 m north of the first region
R2_LAT = 45.0 + 50 / 111000

SAMPLE_SRT = (
    "1\n00:00:00,000 --> 00:00:03,000\nHello\n\n"
    "2\n00:00:03,500 --> 00:00:06,000\nWorld\n"
)


def make_tour_dict(slug="centro-storico", title="Centro Storico", tour_id="tour-1", **extra):
    doc = {
        "id": tour_id,
        "slug": slug,
        "title": title,
        "locale": "it-IT",
        "published": False,
        "regions": [
            {"id": "r1", "lat": 45.0, "lng": 7.0, "radiusM": 120, "sort": 1},
            {"id": "r2", "lat": R2_LAT, "lng": 7.0, "radiusM": 120, "sort": 2},
        ],
        "tracks": {
            "it-IT": {
                "r1": {"kind": "tone", "frequency": 440},
                "r2": {"kind": "audio", "audioUrl": "https://cdn.example.com/r2.mp3", "subtitleId": "s1"},
            }
        },
        "subtitles": {
            "it-IT": {"s1": {"id": "s1", "name": "r2.srt", "content": SAMPLE_SRT, "language": "it-IT"}}
        },
    }
    doc.update(extra)
    return doc


@pytest.fixture
def tour_dict():
    return make_tour_dict()


@pytest.fixture
def tour(tour_dict):
    return normalize(tour_dict)


class FakeBackend:
    """Audio backend that records calls and tracks how many sessions are live"""

    def __init__(self, file_duration=6.0):
        self.calls = []
        self.live = 0
        self.max_live = 0
        self.file_duration = file_duration
        self._duration = None
        self._position = 0.0
        self._finished = False
        self.fail_with = None
        self.crash_with = None

    def _begin(self, duration):
        if self.fail_with:
            raise PlaybackError(self.fail_with)
        self.live += 1
        self.max_live = max(self.max_live, self.live)
        self._duration = duration
        self._position = 0.0
        self._finished = False

    def play_tone(self, frequency, duration):
        self.calls.append(("tone", frequency, duration))
        self._begin(duration)

    def play_file(self, url):
        self.calls.append(("file", url))
        self._begin(self.file_duration)

    def pause(self):
        self.calls.append(("pause",))

    def resume(self):
        self.calls.append(("resume",))

    def seek(self, seconds):
        self.calls.append(("seek", seconds))
        self._position = seconds

    def stop(self):
        self.calls.append(("stop",))
        self.live = 0
        self._duration = None

    def position(self):
        return self._position

    def duration(self):
        return self._duration

    def finished(self):
        if self.crash_with:
            raise PlaybackError(self.crash_with)
        return self._finished

    # test helpers
    def advance_to(self, t):
        self._position = t

    def finish(self):
        self._finished = True


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def object_store():
    return InMemoryObjectStore(bucket="tours")


@pytest.fixture
def catalog(object_store):
    return RemoteCatalog(StorageLocator.parse("supabase://tours/cms"), object_store)


@pytest.fixture
def local_catalog():
    return RemoteCatalog(None, None)


@pytest.fixture
def optimizer(memory_store):
    return PersistenceOptimizer(memory_store, quota_bytes=5 * 1024 * 1024)


@pytest.fixture
def repository(optimizer, catalog):
    return TourRepository(optimizer, catalog)
