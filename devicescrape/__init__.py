"""Device specification acquisition pipeline."""

__version__ = "0.1.0"

# Re-export main components for convenient imports
from devicescrape.catalogue import Catalogue, SqliteCatalogue
from devicescrape.errors import (
    AmbiguousMatchError,
    InvalidTransitionError,
    JobBusyError,
    JobNotFoundError,
    NormalizationError,
    PipelineError,
    ResolutionError,
    ScrapeError,
)
from devicescrape.job_manager import JobManager
from devicescrape.jobs import JobStep, ScrapeJob
from devicescrape.models import RawDeviceRecord
from devicescrape.normalizer import DataNormalizer
from devicescrape.resolver import SlugResolver, pick_slug
from devicescrape.schemas import CanonicalDeviceRecord
from devicescrape.scraper import scrape_comparison

__all__ = [
    # Version
    "__version__",
    # Errors
    "PipelineError",
    "ResolutionError",
    "AmbiguousMatchError",
    "ScrapeError",
    "NormalizationError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "JobBusyError",
    # Models
    "RawDeviceRecord",
    "CanonicalDeviceRecord",
    "ScrapeJob",
    "JobStep",
    # Pipeline
    "SlugResolver",
    "pick_slug",
    "scrape_comparison",
    "DataNormalizer",
    "Catalogue",
    "SqliteCatalogue",
    "JobManager",
]
