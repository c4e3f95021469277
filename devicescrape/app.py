"""Flask app serving the job status API."""

from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from flask import Flask, Response, jsonify

from devicescrape.api import api
from devicescrape.catalogue import SqliteCatalogue
from devicescrape.config import (
    DB_PATH,
    FLASK_DEBUG,
    FLASK_HOST,
    FLASK_PORT,
    MAX_CONCURRENT_JOBS,
    SLUG_PICK_MODEL,
)
from devicescrape.job_manager import JobManager
from devicescrape.llm import OpenAICompletionClient
from devicescrape.logging_config import get_logger
from devicescrape.normalizer import DataNormalizer
from devicescrape.resolver import SlugResolver
from devicescrape.shutdown import register_cleanup

__all__ = ["create_app", "build_job_manager", "run"]

logger = get_logger("app")


def build_job_manager(db_path: str = DB_PATH, workers: Optional[int] = None) -> JobManager:
    """Wire the production pipeline: SQLite catalogue, site resolver, OpenAI models.

    With workers, steps run on a thread pool; without, they run inline.
    """
    catalogue = SqliteCatalogue(db_path)
    executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="scrape-job") if workers else None
    return JobManager(
        catalogue=catalogue,
        resolver=SlugResolver(catalogue),
        normalizer=DataNormalizer(OpenAICompletionClient()),
        db_path=db_path,
        executor=executor,
        slug_picker=OpenAICompletionClient(model=SLUG_PICK_MODEL),
    )


def create_app(manager: Optional[JobManager] = None) -> Flask:
    """Create the Flask app around a job manager (built from config if omitted)."""
    app = Flask(__name__)

    if manager is None:
        manager = build_job_manager(workers=MAX_CONCURRENT_JOBS)
        recovered = manager.recover_interrupted()
        if recovered:
            logger.info(f"Recovered {recovered} interrupted job(s) from previous run")
        register_cleanup(manager.interrupt_running)
        register_cleanup(manager.start_stale_sweep().set)

    app.extensions["job_manager"] = manager
    app.register_blueprint(api)

    @app.route("/health", methods=["GET"])
    def health() -> Response:
        return jsonify({"status": "ok"})

    return app


def run() -> None:
    app = create_app()
    app.run(host=FLASK_HOST, port=FLASK_PORT, debug=FLASK_DEBUG)


if __name__ == "__main__":
    run()
