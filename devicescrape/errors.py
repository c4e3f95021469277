"""Exception taxonomy for the pipeline and the job layer."""

__all__ = [
    "PipelineError",
    "ResolutionError",
    "AmbiguousMatchError",
    "ScrapeError",
    "NormalizationError",
    "JobError",
    "JobNotFoundError",
    "InvalidTransitionError",
    "JobBusyError",
]


class PipelineError(Exception):
    """Base for failures that end a job step in the error state."""

    kind = "pipeline"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ResolutionError(PipelineError):
    """No candidate identifier could be found for the search string."""

    kind = "resolution"


class AmbiguousMatchError(ResolutionError):
    """The model picked an identifier outside the allowed option set."""

    def __init__(self, message: str, reply: str = ""):
        super().__init__(message)
        self.reply = reply


class ScrapeError(PipelineError):
    """Navigation failure, timeout or a page that could not be loaded."""

    kind = "scrape"


class NormalizationError(PipelineError):
    """Completion response was empty or failed schema validation."""

    kind = "normalization"


class JobError(Exception):
    """Base for job-layer command failures (not pipeline failures)."""


class JobNotFoundError(JobError):
    """No job exists for the given device id."""


class InvalidTransitionError(JobError):
    """The requested command is not valid in the job's current step."""

    def __init__(self, from_step: str, to_step: str, message: str = ""):
        super().__init__(message or f"Cannot move job from '{from_step}' to '{to_step}'")
        self.from_step = from_step
        self.to_step = to_step


class JobBusyError(JobError):
    """Another step is already running, or an active job exists, for this device."""
