"""Promotion of local draft tours into the shared catalog."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from .errors import DisplayError, ValidationError, WalkscapeError
from .logger import Logger, NullLogger
from .models import Tour, TourSummary, normalize
from .remote import RemoteCatalog
from .repository import TourRepository


def validate_for_publish(tour: Tour):
    """Raise ValidationError naming the first missing required field"""
    if not tour.slug:
        raise ValidationError("Tour slug is required", field="slug")
    if not tour.title or not tour.title.strip():
        raise ValidationError("Tour must have a title", field="title")
    if not tour.regions:
        raise ValidationError("Tour must have at least one region", field="regions")


@dataclass
class PublishResult:
    slug: str
    summary: Optional[TourSummary] = None
    manifest_url: Optional[str] = None
    error: Optional[DisplayError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class PublishPipeline:
    """Validate, publish through the catalog, then mark the local draft published"""

    def __init__(self, catalog: RemoteCatalog, repository: Optional[TourRepository] = None,
                 logger: Optional[Logger] = None):
        self.catalog = catalog
        self.repository = repository
        self.logger = logger or NullLogger()

    def publish(self, tour) -> PublishResult:
        tour = normalize(tour)
        validate_for_publish(tour)

        summary = self.catalog.publish_tour(tour, updated_at=datetime.now(timezone.utc).isoformat())
        manifest_path = summary.manifest_url

        if self.repository is not None:
            local = next((t for t in self.repository.local_tours() if t.id == tour.id), None)
            if local is not None:
                local = normalize(local)
                local.published = True
                self.repository.upsert(local)

        manifest_url = self.catalog.public_url(manifest_path) or manifest_path
        self.logger.log("Published tour", {"slug": tour.slug, "manifestUrl": manifest_url})
        return PublishResult(slug=tour.slug, summary=summary, manifest_url=manifest_url)

    def publish_many(self, tours: list) -> list[PublishResult]:
        """Publish each tour independently and report per tour"""
        results = []
        for tour in tours:
            slug = tour.slug if isinstance(tour, Tour) else str((tour or {}).get("slug", ""))
            try:
                results.append(self.publish(tour))
            except WalkscapeError as e:
                self.logger.warn("Publish failed", {"slug": slug, "error": str(e)})
                results.append(PublishResult(slug=slug, error=DisplayError.from_exception(e)))
        return results
