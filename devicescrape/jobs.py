"""Scrape job steps, per-step state variants and the transition table.

A job is keyed by the catalogue device id it fills in. Each step has its own
state type carrying only the fields that are meaningful in that step, so a
job in 'error' cannot carry a stale slug_conflict device id.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Union

from devicescrape.errors import InvalidTransitionError
from devicescrape.models import AutocompleteOption, DeviceSummary

__all__ = [
    "JobStep",
    "ACTIVE_STEPS",
    "TERMINAL_STEPS",
    "TRANSITIONS",
    "Searching",
    "Selecting",
    "Scraping",
    "Done",
    "Error",
    "SlugConflict",
    "Interrupted",
    "JobState",
    "ScrapeJob",
    "can_transition",
    "check_transition",
    "state_to_dict",
    "state_from_dict",
    "utcnow",
]


class JobStep(str, Enum):
    SEARCHING = "searching"
    SELECTING = "selecting"
    SCRAPING = "scraping"
    DONE = "done"
    ERROR = "error"
    SLUG_CONFLICT = "slug_conflict"
    INTERRUPTED = "interrupted"
    # Reached by cancel; the job record is removed
    CLOSED = "closed"


ACTIVE_STEPS: FrozenSet[JobStep] = frozenset({JobStep.SEARCHING, JobStep.SELECTING, JobStep.SCRAPING})
TERMINAL_STEPS: FrozenSet[JobStep] = frozenset(
    {JobStep.DONE, JobStep.ERROR, JobStep.SLUG_CONFLICT, JobStep.INTERRUPTED}
)

TRANSITIONS: Dict[JobStep, FrozenSet[JobStep]] = {
    JobStep.SEARCHING: frozenset(
        {JobStep.SELECTING, JobStep.SCRAPING, JobStep.ERROR, JobStep.INTERRUPTED}
    ),
    JobStep.SELECTING: frozenset(
        {JobStep.SCRAPING, JobStep.DONE, JobStep.SEARCHING, JobStep.ERROR, JobStep.INTERRUPTED}
    ),
    JobStep.SCRAPING: frozenset(
        {JobStep.DONE, JobStep.ERROR, JobStep.SLUG_CONFLICT, JobStep.INTERRUPTED}
    ),
    JobStep.ERROR: frozenset({JobStep.SEARCHING, JobStep.CLOSED}),
    JobStep.INTERRUPTED: frozenset({JobStep.SEARCHING, JobStep.CLOSED}),
    JobStep.SLUG_CONFLICT: frozenset({JobStep.SCRAPING, JobStep.CLOSED}),
    JobStep.DONE: frozenset({JobStep.CLOSED}),
    JobStep.CLOSED: frozenset(),
}


def can_transition(from_step: JobStep, to_step: JobStep) -> bool:
    return to_step in TRANSITIONS.get(from_step, frozenset())


def check_transition(from_step: JobStep, to_step: JobStep) -> None:
    """Raise InvalidTransitionError unless from_step -> to_step is allowed."""
    if not can_transition(from_step, to_step):
        raise InvalidTransitionError(from_step.value, to_step.value)


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# State variants
# =============================================================================

@dataclass(frozen=True)
class Searching:
    device_name: str
    existing_matches: List[DeviceSummary] = field(default_factory=list)
    progress: Optional[str] = None

    step = JobStep.SEARCHING


@dataclass(frozen=True)
class Selecting:
    device_name: str
    existing_matches: List[DeviceSummary] = field(default_factory=list)
    options: List[AutocompleteOption] = field(default_factory=list)

    step = JobStep.SELECTING


@dataclass(frozen=True)
class Scraping:
    device_name: str
    slug: str
    progress_stage: str = "queued"
    progress_percent: int = 0
    force_unique: bool = False
    merge: bool = False

    step = JobStep.SCRAPING


@dataclass(frozen=True)
class Done:
    device_name: str
    slug: Optional[str] = None
    catalogue_device_id: Optional[str] = None
    imported_existing: bool = False

    step = JobStep.DONE


@dataclass(frozen=True)
class Error:
    device_name: str
    message: str
    slug: Optional[str] = None

    step = JobStep.ERROR


@dataclass(frozen=True)
class SlugConflict:
    device_name: str
    slug: str
    existing_device_id: str
    existing_device_name: str

    step = JobStep.SLUG_CONFLICT


@dataclass(frozen=True)
class Interrupted:
    device_name: str
    message: str = "Interrupted"
    slug: Optional[str] = None

    step = JobStep.INTERRUPTED


JobState = Union[Searching, Selecting, Scraping, Done, Error, SlugConflict, Interrupted]

_STATE_TYPES = {cls.step: cls for cls in (Searching, Selecting, Scraping, Done, Error, SlugConflict, Interrupted)}


def state_to_dict(state: JobState) -> Dict[str, Any]:
    data = asdict(state)
    data["step"] = state.step.value
    return data


def state_from_dict(data: Dict[str, Any]) -> JobState:
    """Rebuild a state variant from its stored form."""
    data = dict(data)
    cls = _STATE_TYPES[JobStep(data.pop("step"))]
    if "existing_matches" in data:
        data["existing_matches"] = [DeviceSummary(**m) for m in data["existing_matches"]]
    if "options" in data:
        data["options"] = [AutocompleteOption(**o) for o in data["options"]]
    return cls(**data)


@dataclass
class ScrapeJob:
    """Envelope stored per device: the current state plus bookkeeping."""

    device_id: str
    state: JobState
    device_type: Optional[str] = None
    attempts: int = 0
    last_log: Optional[str] = None
    created_at: str = field(default_factory=utcnow)
    updated_at: str = field(default_factory=utcnow)

    @property
    def step(self) -> JobStep:
        return self.state.step

    @property
    def device_name(self) -> str:
        return self.state.device_name

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation used by the CLI and the HTTP interface."""
        return {
            "device_id": self.device_id,
            "step": self.step.value,
            "device_type": self.device_type,
            "state": state_to_dict(self.state),
            "attempts": self.attempts,
            "last_log": self.last_log,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }
