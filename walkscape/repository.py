"""Tour repository merging the local draft cache with the remote catalog."""

from typing import Optional

from .errors import (
    DeleteReport, NotFound, Result, TransportError, ValidationError, WalkscapeError,
)
from .logger import Logger, NullLogger
from .models import Tour, normalize
from .persistence import PersistenceOptimizer, WriteReport
from .remote import RemoteCatalog


def asset_keys(tour: Tour) -> list[str]:
    """Remote storage keys of the binary assets a tour references"""
    keys = []
    for entries in tour.tracks.values():
        for track in entries.values():
            for key in (track.audio_key, track.image_key):
                if key and not key.startswith("local://") and key not in keys:
                    keys.append(key)
    return keys


class TourRepository:
    """Single read/write surface for tours.

    Local drafts live in an in-memory working set persisted through the
    PersistenceOptimizer on every write. Published tours come from the
    remote catalog and are only refreshed on construction or refresh().
    """

    def __init__(self, optimizer: PersistenceOptimizer, catalog: RemoteCatalog,
                 logger: Optional[Logger] = None, refresh: bool = True):
        self.optimizer = optimizer
        self.catalog = catalog
        self.logger = logger or NullLogger()
        self._local: list[Tour] = self._load_local()
        self._remote: list[Tour] = []
        self._generation = 0
        self.last_write: Optional[WriteReport] = None
        if refresh:
            self.refresh()

    def _load_local(self) -> list[Tour]:
        tours = []
        for doc in self.optimizer.read():
            try:
                tours.append(normalize(doc))
            except ValidationError as e:
                self.logger.error("Skipping invalid cached tour", {"id": doc.get("id"), "error": str(e)})
        return tours

    def _persist(self, tours: list[Tour]) -> WriteReport:
        """Write tours to the cache and only then adopt them as the working set"""
        report = self.optimizer.write([t.to_dict() for t in tours])
        self._local = tours
        self.last_write = report
        return report

    # Remote catalog

    def begin_refresh(self) -> int:
        """Start a catalog refresh; the returned token identifies its response"""
        self._generation += 1
        return self._generation

    def complete_refresh(self, generation: int, tours: list[Tour]) -> bool:
        """Apply a catalog response unless a newer refresh has started since"""
        if generation != self._generation:
            self.logger.log("Ignoring stale catalog response", {
                "generation": generation, "current": self._generation,
            })
            return False
        self._remote = [t for t in tours if t.published]
        return True

    def refresh(self) -> Result[int]:
        """Re-list the remote catalog; on failure the previous snapshot is kept"""
        generation = self.begin_refresh()
        try:
            tours = self.catalog.fetch_published_tours()
        except TransportError as e:
            self.logger.warn("Failed to load tours from remote catalog", {"error": str(e)})
            return Result.failure(e)
        self.complete_refresh(generation, tours)
        self.logger.log("Loaded remote tours", {"count": len(self._remote)})
        return Result.success(len(self._remote))

    # Reads

    def local_tours(self) -> list[Tour]:
        return list(self._local)

    def list_available(self) -> list[Tour]:
        """Local tours plus remote tours whose slug is not shadowed by a local one"""
        tours = list(self._local)
        local_slugs = {t.slug for t in self._local}
        tours.extend(t for t in self._remote if t.slug not in local_slugs)
        return tours

    def get(self, tour_id: str) -> Tour:
        for tour in self.list_available():
            if tour.id == tour_id:
                return tour
        raise NotFound(tour_id)

    def find_by_slug(self, slug: str) -> Tour:
        for tour in self.list_available():
            if tour.slug == slug:
                return tour
        raise NotFound(slug)

    def open(self, id_or_slug: str) -> Result[Tour]:
        """Look a tour up by id, then slug, as a Result for the UI layer"""
        try:
            return Result.success(self.get(id_or_slug))
        except NotFound:
            pass
        try:
            return Result.success(self.find_by_slug(id_or_slug))
        except NotFound as e:
            return Result.failure(NotFound(f"No tour with id or slug {e}"))

    def language_variants(self, tour_id: str) -> list[Tour]:
        """The tour, its parent and every sibling sharing the same parent"""
        tour = self.get(tour_id)
        root = tour.parent_tour_id or tour.id
        return [t for t in self.list_available() if t.id == root or t.parent_tour_id == root]

    # Writes

    def upsert(self, tour) -> WriteReport:
        """Write through to the local cache; never touches the remote"""
        tour = normalize(tour)
        for other in self._local:
            if other.slug and other.slug == tour.slug and other.id != tour.id:
                raise ValidationError(f"Slug {tour.slug!r} already used by tour {other.id}", field="slug")
        tours = list(self._local)
        for i, existing in enumerate(tours):
            if existing.id == tour.id:
                tours[i] = tour
                break
        else:
            tours.insert(0, tour)
        return self._persist(tours)

    def clear_media(self) -> WriteReport:
        """Drop every inline payload from the cache and reload the working set"""
        self.last_write = self.optimizer.clear_media()
        self._local = self._load_local()
        return self.last_write

    def remove(self, tour_id: str) -> Optional[DeleteReport]:
        """Remove a local tour; published tours also get their remote assets deleted"""
        tour = next((t for t in self._local if t.id == tour_id), None)
        if tour is None:
            raise NotFound(tour_id)
        self._persist([t for t in self._local if t.id != tour_id])
        if not tour.published:
            return None
        keys = asset_keys(tour)
        try:
            report = self.catalog.delete_assets(keys)
        except WalkscapeError as e:
            # Best effort: the local removal stands regardless
            self.logger.warn("Remote asset deletion failed", {"tour": tour_id, "error": str(e)})
            report = DeleteReport(errors=[{"key": k, "error": str(e)} for k in keys])
        self.logger.log("Removed tour", {"tour": tour_id, **report.to_dict()["summary"]})
        return report
