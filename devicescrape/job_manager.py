"""Scrape job orchestration.

The JobManager is the only component with externally observable state. It
wraps resolution, scraping, normalization and the catalogue write in the job
state machine, persists every change, and turns pipeline failures into the
error state. Long-running steps go to an optional executor; without one they
run inline, which is what the tests and the CLI use.
"""

import threading
from concurrent.futures import Executor, Future
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Set

from devicescrape import db
from devicescrape.catalogue import Catalogue
from devicescrape.config import AUTO_PICK_SLUG, DB_PATH, JOB_TIMEOUTS, STALE_JOB_CHECK_INTERVAL
from devicescrape.errors import (
    InvalidTransitionError,
    JobBusyError,
    JobNotFoundError,
    PipelineError,
    ResolutionError,
    ScrapeError,
)
from devicescrape.jobs import (
    ACTIVE_STEPS,
    Done,
    Error,
    Interrupted,
    JobState,
    JobStep,
    ScrapeJob,
    Scraping,
    Searching,
    Selecting,
    SlugConflict,
    check_transition,
    utcnow,
)
from devicescrape.llm import CompletionClient
from devicescrape.logging_config import get_logger, log_scrape_event
from devicescrape.models import DeviceSummary, RawDeviceRecord
from devicescrape.normalizer import DataNormalizer
from devicescrape.resolver import SlugResolver, auto_select, pick_slug
from devicescrape.scraper import scrape_comparison

__all__ = ["JobManager", "CONFLICT_ACTIONS"]

logger = get_logger("jobs")

CONFLICT_ACTIONS = ("merge", "unique")

# Steps that hold in-process work; a restart loses it
_WORKING_STEPS = frozenset({JobStep.SEARCHING, JobStep.SCRAPING})


class JobManager:
    """Commands and background steps for scrape jobs."""

    def __init__(
        self,
        catalogue: Catalogue,
        resolver: SlugResolver,
        normalizer: DataNormalizer,
        scrape: Callable[[Sequence[str]], List[RawDeviceRecord]] = scrape_comparison,
        db_path: str = DB_PATH,
        executor: Optional[Executor] = None,
        slug_picker: Optional[CompletionClient] = None,
        auto_pick: bool = AUTO_PICK_SLUG,
    ):
        self.catalogue = catalogue
        self.resolver = resolver
        self.normalizer = normalizer
        self.scrape = scrape
        self.db_path = db_path
        self.executor = executor
        self.slug_picker = slug_picker
        self.auto_pick = auto_pick

        # Reentrant: interrupt_running runs from a signal handler on the main thread
        self._lock = threading.RLock()
        self._running: Set[str] = set()

        db.init_db(db_path)

    # =========================================================================
    # Bookkeeping
    # =========================================================================

    def _require(self, device_id: str) -> ScrapeJob:
        job = db.get_job(self.db_path, device_id)
        if job is None:
            raise JobNotFoundError(f"No job for device '{device_id}'")
        return job

    def _claim(self, device_id: str) -> None:
        with self._lock:
            if device_id in self._running:
                raise JobBusyError(f"A step is already running for device '{device_id}'")
            self._running.add(device_id)

    def _release(self, device_id: str) -> None:
        with self._lock:
            self._running.discard(device_id)

    def is_running(self, device_id: str) -> bool:
        with self._lock:
            return device_id in self._running

    def _save(self, job: ScrapeJob) -> None:
        job.updated_at = utcnow()
        db.save_job(self.db_path, job)

    def _check_current(self, job: ScrapeJob, to_step: JobStep) -> None:
        """Refuse to write over a step changed elsewhere (e.g. shutdown cleanup)."""
        stored = db.get_job(self.db_path, job.device_id)
        if stored is not None and stored.step != job.step:
            raise InvalidTransitionError(
                stored.step.value, to_step.value,
                f"Job {job.device_id} moved to '{stored.step.value}' while '{job.step.value}' was running",
            )

    @staticmethod
    def _expect(job: ScrapeJob, to_step: JobStep, *steps: JobStep) -> None:
        """Commands are narrower than the transition table: check the source step."""
        if job.step not in steps:
            raise InvalidTransitionError(job.step.value, to_step.value)

    def _transition(
        self,
        job: ScrapeJob,
        state: JobState,
        log: Optional[str] = None,
        attempts_delta: int = 0,
    ) -> ScrapeJob:
        """Move the job to a new step; raises InvalidTransitionError if not allowed."""
        from_step = job.step
        check_transition(from_step, state.step)
        self._check_current(job, state.step)
        job.state = state
        job.attempts += attempts_delta
        if log is not None:
            job.last_log = log
        self._save(job)

        log_scrape_event(
            "job_transition",
            {
                "message": f"Job {job.device_id}: {from_step.value} -> {state.step.value}",
                "device_id": job.device_id,
                "from": from_step.value,
                "to": state.step.value,
                "attempts": job.attempts,
            },
        )
        return job

    def _update(self, job: ScrapeJob, state: JobState, log: Optional[str] = None) -> None:
        """Replace the state within the same step (progress, surfaced matches)."""
        if state.step != job.step:
            raise InvalidTransitionError(job.step.value, state.step.value)
        self._check_current(job, state.step)
        job.state = state
        if log is not None:
            job.last_log = log
        self._save(job)

    def _progress(self, job: ScrapeJob, stage: str, percent: int) -> None:
        self._update(job, replace(job.state, progress_stage=stage, progress_percent=percent),
                     log=f"Scraping: {stage}")

    def _fail(self, job: ScrapeJob, message: str) -> None:
        slug = getattr(job.state, "slug", None)
        self._transition(job, Error(job.device_name, message, slug=slug), log=message, attempts_delta=1)

    def _interrupt(self, device_id: str, message: str) -> None:
        job = db.get_job(self.db_path, device_id)
        if job is None or job.step not in ACTIVE_STEPS:
            return
        slug = getattr(job.state, "slug", None)
        self._transition(job, Interrupted(job.device_name, message, slug=slug), log=message)

    def _dispatch(self, device_id: str, step: Callable[[ScrapeJob], None]) -> Optional[Future]:
        """Run a step for an already-claimed device, guarded against failures."""

        def run() -> None:
            try:
                job = self._require(device_id)
                try:
                    step(job)
                except KeyboardInterrupt:
                    self._interrupt(device_id, "Interrupted by shutdown")
                    raise
                except InvalidTransitionError as e:
                    # The job was moved on elsewhere; nothing left to record
                    logger.warning(f"Job {device_id} step abandoned: {e}")
                except PipelineError as e:
                    logger.warning(f"Job {device_id} failed: {e.message}")
                    self._fail(job, e.message)
                except Exception as e:
                    logger.exception(f"Unexpected error in job {device_id}")
                    self._fail(job, f"Unexpected error: {e}")
            finally:
                self._release(device_id)

        if self.executor is None:
            run()
            return None
        try:
            return self.executor.submit(run)
        except RuntimeError:
            # Executor already shut down
            self._release(device_id)
            raise

    def _command(self, device_id: str, change: Callable[[ScrapeJob], None],
                 step: Optional[Callable[[ScrapeJob], None]] = None) -> ScrapeJob:
        """Claim the device, apply a synchronous state change, then dispatch the step."""
        self._claim(device_id)
        try:
            job = self._require(device_id)
            change(job)
        except BaseException:
            self._release(device_id)
            raise

        if step is None:
            self._release(device_id)
        else:
            self._dispatch(device_id, step)
        return db.get_job(self.db_path, device_id) or job

    # =========================================================================
    # Steps
    # =========================================================================

    def _run_search(self, job: ScrapeJob, include_site: bool = True) -> None:
        name = job.device_name

        def surface(matches: List[DeviceSummary]) -> None:
            self._update(
                job,
                Searching(name, existing_matches=matches, progress="searching_site"),
                log=f"Found {len(matches)} existing device(s)",
            )

        resolution = self.resolver.resolve(
            name, job.device_type, include_site=include_site, on_fast_matches=surface
        )
        matches, options = resolution.fast_matches, resolution.options

        if not matches and not options:
            raise ResolutionError(f"No devices found for '{name}'")

        if not matches:
            slug = auto_select(options)
            if slug is None and self.auto_pick and self.slug_picker is not None:
                try:
                    slug = pick_slug(name, options, self.slug_picker)
                except ResolutionError as e:
                    logger.warning(f"Automatic pick failed for '{name}', asking for a choice: {e.message}")
            if slug is not None:
                self._transition(job, Scraping(name, slug), log=f"Selected {slug}")
                self._run_scrape(job)
                return

        self._transition(
            job,
            Selecting(name, existing_matches=matches, options=options),
            log=f"{len(matches)} existing device(s), {len(options)} option(s)",
        )

    def _run_scrape(self, job: ScrapeJob) -> None:
        state = job.state
        assert isinstance(state, Scraping)
        name, slug = job.device_name, state.slug

        if state.merge:
            device_id = self.catalogue.create_or_import_device(job.device_id, slug, job.device_type)
            self._transition(
                job,
                Done(name, slug=slug, catalogue_device_id=device_id, imported_existing=True),
                log=f"Merged with existing device {device_id}",
            )
            return

        if not state.force_unique:
            owner = self.catalogue.get_device_by_slug(slug)
            if owner is not None and owner.id != job.device_id:
                self._transition(
                    job,
                    SlugConflict(name, slug, existing_device_id=owner.id, existing_device_name=owner.name),
                    log=f"Slug {slug} already belongs to {owner.name}",
                )
                return

        self._progress(job, "fetching", 10)
        records = self.scrape([slug])
        record = next((r for r in records if r.slug == slug), None)
        if record is None:
            raise ScrapeError(f"Comparison page returned no column for '{slug}'")

        self._progress(job, "saving_raw", 40)
        db.save_raw_document(self.db_path, slug, record.raw_html)

        self._progress(job, "normalizing", 60)
        canonical = self.normalizer.normalize(record)

        self._progress(job, "saving", 90)
        device_id = self.catalogue.create_or_import_device(job.device_id, canonical, job.device_type)

        self._transition(
            job,
            Done(name, slug=slug, catalogue_device_id=device_id),
            log=f"Imported {canonical.name}",
        )

    # =========================================================================
    # Commands
    # =========================================================================

    def start_job(
        self,
        device_id: str,
        search_string: str,
        device_type: Optional[str] = None,
        search_site: bool = True,
    ) -> ScrapeJob:
        """Create a job and start searching.

        A finished job for the same device is replaced.

        Raises:
            JobBusyError: If the device already has an active job
            ValueError: If the search string is empty
        """
        search_string = search_string.strip()
        if not search_string:
            raise ValueError("Search string must not be empty")

        self._claim(device_id)
        try:
            existing = db.get_job(self.db_path, device_id)
            if existing is not None and existing.step in ACTIVE_STEPS:
                raise JobBusyError(
                    f"Device '{device_id}' already has a job in step '{existing.step.value}'"
                )
            job = ScrapeJob(device_id=device_id, state=Searching(search_string), device_type=device_type)
            self._save(job)
        except BaseException:
            self._release(device_id)
            raise

        log_scrape_event(
            "job_started",
            {"message": f"Job {device_id} started for '{search_string}'", "device_id": device_id},
        )
        self._dispatch(device_id, lambda j: self._run_search(j, include_site=search_site))
        return db.get_job(self.db_path, device_id) or job

    def confirm_slug(self, device_id: str, slug: str) -> ScrapeJob:
        """selecting -> scraping with a human-chosen slug."""
        slug = slug.strip()
        if not slug:
            raise ValueError("Slug must not be empty")

        def change(job: ScrapeJob) -> None:
            self._expect(job, JobStep.SCRAPING, JobStep.SELECTING)
            self._transition(job, Scraping(job.device_name, slug), log=f"Confirmed {slug}")

        return self._command(device_id, change, self._run_scrape)

    def import_existing(self, device_id: str, slug: str) -> ScrapeJob:
        """selecting -> done by reusing a catalogue device instead of scraping."""

        def change(job: ScrapeJob) -> None:
            self._expect(job, JobStep.DONE, JobStep.SELECTING)
            try:
                catalogue_id = self.catalogue.create_or_import_device(device_id, slug, job.device_type)
            except PipelineError as e:
                self._fail(job, e.message)
                return
            self._transition(
                job,
                Done(job.device_name, slug=slug, catalogue_device_id=catalogue_id, imported_existing=True),
                log=f"Imported existing device {catalogue_id}",
            )

        return self._command(device_id, change)

    def search_comparison_site(self, device_id: str) -> ScrapeJob:
        """selecting -> searching, now including the comparison site."""
        matches: List[DeviceSummary] = []

        def change(job: ScrapeJob) -> None:
            self._expect(job, JobStep.SEARCHING, JobStep.SELECTING)
            if isinstance(job.state, Selecting):
                matches.extend(job.state.existing_matches)
            self._transition(job, Searching(job.device_name, existing_matches=matches,
                                            progress="searching_site"))

        return self._command(device_id, change, lambda j: self._run_search(j, include_site=True))

    def retry(self, device_id: str, search_string: Optional[str] = None) -> ScrapeJob:
        """error|interrupted -> searching; counts as an attempt."""

        def change(job: ScrapeJob) -> None:
            self._expect(job, JobStep.SEARCHING, JobStep.ERROR, JobStep.INTERRUPTED)
            name = (search_string or "").strip() or job.device_name
            self._transition(job, Searching(name), log=f"Retrying '{name}'", attempts_delta=1)

        return self._command(device_id, change, lambda j: self._run_search(j, include_site=True))

    def resolve_conflict(self, device_id: str, action: str) -> ScrapeJob:
        """slug_conflict -> scraping, either merging or keeping a separate device."""
        if action not in CONFLICT_ACTIONS:
            raise ValueError(f"Unknown conflict action '{action}', expected one of {CONFLICT_ACTIONS}")

        def change(job: ScrapeJob) -> None:
            state = job.state
            if not isinstance(state, SlugConflict):
                raise InvalidTransitionError(job.step.value, JobStep.SCRAPING.value)
            self._transition(
                job,
                Scraping(job.device_name, state.slug,
                         merge=action == "merge", force_unique=action == "unique"),
                log=f"Conflict resolved: {action}",
            )

        return self._command(device_id, change, self._run_scrape)

    def cancel(self, device_id: str) -> None:
        """Close a finished job; the record is removed."""

        def change(job: ScrapeJob) -> None:
            check_transition(job.step, JobStep.CLOSED)
            db.delete_job(self.db_path, device_id)
            log_scrape_event(
                "job_closed",
                {"message": f"Job {device_id} closed from {job.step.value}", "device_id": device_id,
                 "from": job.step.value, "to": JobStep.CLOSED.value},
            )

        self._claim(device_id)
        try:
            change(self._require(device_id))
        finally:
            self._release(device_id)

    def get_job(self, device_id: str) -> ScrapeJob:
        return self._require(device_id)

    def list_jobs(self, steps: Optional[List[str]] = None) -> List[ScrapeJob]:
        return db.list_jobs(self.db_path, steps)

    # =========================================================================
    # Recovery
    # =========================================================================

    def recover_interrupted(self) -> int:
        """Mark jobs whose in-process work was lost by a restart as interrupted.

        Jobs waiting for a human choice (selecting) are left alone.
        """
        count = 0
        for job in db.list_jobs(self.db_path, [s.value for s in _WORKING_STEPS]):
            if self.is_running(job.device_id):
                continue
            self._interrupt(job.device_id, "Interrupted by restart")
            count += 1
        if count:
            logger.warning(f"Marked {count} job(s) as interrupted after restart")
        return count

    def mark_stale_as_interrupted(self, now: Optional[datetime] = None,
                                  timeouts: Optional[Dict[str, int]] = None) -> int:
        """Interrupt active jobs without an update for longer than their step timeout."""
        now = now or datetime.now(timezone.utc)
        timeouts = timeouts or JOB_TIMEOUTS
        count = 0
        for job in db.list_jobs(self.db_path, [s.value for s in ACTIVE_STEPS]):
            if self.is_running(job.device_id):
                continue
            limit = timeouts.get(job.step.value)
            if limit is None:
                continue
            age = (now - datetime.fromisoformat(job.updated_at)).total_seconds()
            if age > limit:
                self._interrupt(job.device_id, f"Timed out after {int(age)}s in {job.step.value}")
                count += 1
        return count

    def start_stale_sweep(self, interval: float = STALE_JOB_CHECK_INTERVAL) -> threading.Event:
        """Run mark_stale_as_interrupted every `interval` seconds on a daemon thread.

        Only a process that runs job steps should sweep; reads never do. Set
        the returned event to stop the sweep.
        """
        stop = threading.Event()

        def sweep() -> None:
            while not stop.wait(interval):
                try:
                    count = self.mark_stale_as_interrupted()
                except Exception:
                    logger.exception("Stale job sweep failed")
                    continue
                if count:
                    logger.warning(f"Interrupted {count} stale job(s)")

        threading.Thread(target=sweep, name="stale-job-sweep", daemon=True).start()
        return stop

    def interrupt_running(self) -> int:
        """Mark every job with a running step as interrupted (shutdown cleanup)."""
        with self._lock:
            running = list(self._running)
        for device_id in running:
            self._interrupt(device_id, "Interrupted by shutdown")
        return len(running)
