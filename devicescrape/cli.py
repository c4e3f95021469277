"""Command-line interface for the scrape pipeline."""

import argparse
import json
import logging
import sys
from typing import Any, List, Optional

from devicescrape.app import build_job_manager, create_app
from devicescrape.config import DB_PATH, FLASK_DEBUG, FLASK_HOST, FLASK_PORT, MAX_CONCURRENT_JOBS
from devicescrape.errors import JobError, PipelineError
from devicescrape.job_manager import CONFLICT_ACTIONS, JobManager
from devicescrape.jobs import JobStep, ScrapeJob
from devicescrape.logging_config import get_logger, setup_logging
from devicescrape.scraper import scrape_comparison
from devicescrape.shutdown import get_shutdown_handler

__all__ = ["main", "parse_args", "show_status"]

logger = get_logger("cli")


def _print_json(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def show_status(job: ScrapeJob) -> None:
    """Print a one-job summary."""
    print(f"\n{'='*50}")
    print(f"Device: {job.device_id}  ({job.device_name})")
    print(f"{'='*50}")
    print(f"Step:     {job.step.value}")
    print(f"Attempts: {job.attempts}")
    if job.last_log:
        print(f"Last log: {job.last_log}")

    state = job.state
    for match in getattr(state, "existing_matches", []):
        print(f"  existing: {match.id} {match.name} ({match.slug})")
    for option in getattr(state, "options", []):
        print(f"  option:   {option.slug}  {option.name}")
    if job.step == JobStep.SCRAPING:
        print(f"Progress: {state.progress_stage} {state.progress_percent}%")
    elif job.step == JobStep.SLUG_CONFLICT:
        print(f"Slug {state.slug} belongs to {state.existing_device_name} ({state.existing_device_id})")
        print(f"Resolve with: resolve {job.device_id} {{{'|'.join(CONFLICT_ACTIONS)}}}")
    elif job.step == JobStep.DONE:
        print(f"Catalogue device: {state.catalogue_device_id} ({state.slug})")
    print()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Device specification scraper with a resumable job state machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Start a job for catalogue device 42 and run it to the next stop
  python -m devicescrape import 42 "Galaxy S24 Ultra" --device-type smartphone

  # Pick one of the offered slugs
  python -m devicescrape confirm 42 samsung-galaxy-s24-ultra

  # Keep a separate record when the slug is already in the catalogue
  python -m devicescrape resolve 42 unique

  # Scrape a comparison page without touching the catalogue
  python -m devicescrape compare apple-iphone-15 samsung-galaxy-s24

  # Serve the job status API
  python -m devicescrape serve --port 5000
        """,
    )
    parser.add_argument(
        "--db",
        default=DB_PATH,
        help=f"SQLite database path (default: {DB_PATH})",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Log debug messages to the console",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("import", help="Start a job for a catalogue device")
    p.add_argument("device_id")
    p.add_argument("search_string")
    p.add_argument("--device-type", help="Restrict existing matches to this device type")
    p.add_argument(
        "--no-site",
        action="store_true",
        help="Only look at existing catalogue devices unless none match",
    )

    p = sub.add_parser("status", help="Show one job")
    p.add_argument("device_id")
    p.add_argument("--json", action="store_true", help="Print the raw job record")

    p = sub.add_parser("jobs", help="List jobs")
    p.add_argument("--step", nargs="+", choices=[s.value for s in JobStep if s != JobStep.CLOSED])

    p = sub.add_parser("confirm", help="Confirm a slug for a job waiting in 'selecting'")
    p.add_argument("device_id")
    p.add_argument("slug")

    p = sub.add_parser("import-existing", help="Reuse an existing catalogue device")
    p.add_argument("device_id")
    p.add_argument("slug")

    p = sub.add_parser("search", help="Search the comparison site for a job in 'selecting'")
    p.add_argument("device_id")

    p = sub.add_parser("retry", help="Retry a failed or interrupted job")
    p.add_argument("device_id")
    p.add_argument("--search-string", help="Search with a different name")

    p = sub.add_parser("cancel", help="Close a job")
    p.add_argument("device_id")

    p = sub.add_parser("resolve", help="Resolve a slug conflict")
    p.add_argument("device_id")
    p.add_argument("action", choices=CONFLICT_ACTIONS)

    p = sub.add_parser("compare", help="Scrape up to four slugs and print the raw records")
    p.add_argument("slugs", nargs="+")

    p = sub.add_parser("serve", help="Run the job status API")
    p.add_argument("--host", default=FLASK_HOST)
    p.add_argument("--port", type=int, default=FLASK_PORT)
    p.add_argument("--workers", type=int, default=MAX_CONCURRENT_JOBS)

    return parser.parse_args(argv)


def _run_command(args: argparse.Namespace, manager: JobManager) -> None:
    if args.command == "import":
        job = manager.start_job(args.device_id, args.search_string, args.device_type,
                                search_site=not args.no_site)
    elif args.command == "status":
        job = manager.get_job(args.device_id)
        if args.json:
            _print_json(job.to_dict())
            return
    elif args.command == "jobs":
        jobs = manager.list_jobs(args.step)
        if not jobs:
            print("No jobs")
        for job in jobs:
            print(f"  {job.device_id}: {job.step.value:<14} {job.device_name}"
                  f"  (attempts: {job.attempts}, updated: {job.updated_at})")
        return
    elif args.command == "confirm":
        job = manager.confirm_slug(args.device_id, args.slug)
    elif args.command == "import-existing":
        job = manager.import_existing(args.device_id, args.slug)
    elif args.command == "search":
        job = manager.search_comparison_site(args.device_id)
    elif args.command == "retry":
        job = manager.retry(args.device_id, args.search_string)
    elif args.command == "cancel":
        manager.cancel(args.device_id)
        print(f"Closed job {args.device_id}")
        return
    elif args.command == "resolve":
        job = manager.resolve_conflict(args.device_id, args.action)
    else:
        raise ValueError(f"Unknown command '{args.command}'")

    show_status(job)


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for CLI."""
    args = parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    handler = get_shutdown_handler().install()

    if args.command == "compare":
        try:
            records = scrape_comparison(args.slugs)
        except PipelineError as e:
            logger.error(e.message)
            return 1
        for record in records:
            _print_json(record.to_prompt_dict())
        return 0

    if args.command == "serve":
        manager = build_job_manager(args.db, workers=args.workers)
        manager.recover_interrupted()
        handler.register_cleanup(manager.interrupt_running)
        handler.register_cleanup(manager.start_stale_sweep().set)
        app = create_app(manager)
        app.run(host=args.host, port=args.port, debug=FLASK_DEBUG)
        return 0

    # Steps run inline so the command returns at the job's next stop. Restart
    # recovery and the stale sweep are left to `serve`, which may share the database.
    manager = build_job_manager(args.db)
    handler.register_cleanup(manager.interrupt_running)

    try:
        _run_command(args, manager)
    except KeyboardInterrupt:
        print("Interrupted; resume with: retry <device_id>", file=sys.stderr)
        return 130
    except (JobError, PipelineError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
