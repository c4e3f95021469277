"""Job status API consumed by the catalogue dashboard.

Every command returns the job as it stands right after the command; long
steps continue in the background and are observed by polling GET.
"""

from typing import Any, Dict, Tuple, Union

from flask import Blueprint, Response, current_app, jsonify, request

from devicescrape.errors import InvalidTransitionError, JobBusyError, JobNotFoundError
from devicescrape.job_manager import JobManager
from devicescrape.logging_config import get_logger

__all__ = ["api"]

logger = get_logger("api")

# Create blueprint for API
api = Blueprint("api", __name__, url_prefix="/api")

ApiResponse = Union[Tuple[Response, int], Response]


def _manager() -> JobManager:
    return current_app.extensions["job_manager"]


def _payload() -> Dict[str, Any]:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _string_field(data: Dict[str, Any], name: str, required: bool = True) -> str:
    value = data.get(name)
    if value is None and not required:
        return ""
    if not isinstance(value, str) or (required and not value.strip()):
        raise ValueError(f"{name} is required and must be a string")
    return value.strip()


@api.errorhandler(JobNotFoundError)
def _not_found(e: JobNotFoundError) -> ApiResponse:
    return jsonify({"error": str(e)}), 404


@api.errorhandler(InvalidTransitionError)
def _invalid_transition(e: InvalidTransitionError) -> ApiResponse:
    return jsonify({"error": str(e), "from": e.from_step, "to": e.to_step}), 409


@api.errorhandler(JobBusyError)
def _busy(e: JobBusyError) -> ApiResponse:
    return jsonify({"error": str(e)}), 409


@api.errorhandler(ValueError)
def _bad_request(e: ValueError) -> ApiResponse:
    return jsonify({"error": str(e)}), 400


@api.route("/jobs", methods=["GET"])
def list_jobs() -> Response:
    """List jobs, optionally filtered with ?step=searching&step=error."""
    steps = request.args.getlist("step") or None
    jobs = _manager().list_jobs(steps)
    return jsonify({"jobs": [job.to_dict() for job in jobs]})


@api.route("/jobs", methods=["POST"])
def start_job() -> ApiResponse:
    """Start a job.

    Request JSON:
        {
            "device_id": "catalogue device id",
            "search_string": "Galaxy S24 Ultra",
            "device_type": "smartphone",      // optional
            "search_site": true               // optional, default true
        }
    """
    data = _payload()
    device_id = _string_field(data, "device_id")
    search_string = _string_field(data, "search_string")
    device_type = _string_field(data, "device_type", required=False) or None
    search_site = data.get("search_site", True)
    if not isinstance(search_site, bool):
        raise ValueError("search_site must be a boolean")

    job = _manager().start_job(device_id, search_string, device_type, search_site)
    return jsonify(job.to_dict()), 202


@api.route("/jobs/<device_id>", methods=["GET"])
def get_job(device_id: str) -> Response:
    return jsonify(_manager().get_job(device_id).to_dict())


@api.route("/jobs/<device_id>", methods=["DELETE"])
def cancel_job(device_id: str) -> ApiResponse:
    _manager().cancel(device_id)
    return jsonify({"device_id": device_id, "step": "closed"}), 200


@api.route("/jobs/<device_id>/retry", methods=["POST"])
def retry_job(device_id: str) -> ApiResponse:
    data = _payload()
    search_string = _string_field(data, "search_string", required=False) or None
    return jsonify(_manager().retry(device_id, search_string).to_dict()), 202


@api.route("/jobs/<device_id>/confirm", methods=["POST"])
def confirm_slug(device_id: str) -> ApiResponse:
    slug = _string_field(_payload(), "slug")
    return jsonify(_manager().confirm_slug(device_id, slug).to_dict()), 202


@api.route("/jobs/<device_id>/import-existing", methods=["POST"])
def import_existing(device_id: str) -> Response:
    slug = _string_field(_payload(), "slug")
    return jsonify(_manager().import_existing(device_id, slug).to_dict())


@api.route("/jobs/<device_id>/search", methods=["POST"])
def search_comparison_site(device_id: str) -> ApiResponse:
    return jsonify(_manager().search_comparison_site(device_id).to_dict()), 202


@api.route("/jobs/<device_id>/resolve-conflict", methods=["POST"])
def resolve_conflict(device_id: str) -> ApiResponse:
    """Request JSON: {"action": "merge" | "unique"}"""
    action = _string_field(_payload(), "action")
    return jsonify(_manager().resolve_conflict(device_id, action).to_dict()), 202


@api.route("/device-types", methods=["GET"])
def device_types() -> Response:
    return jsonify({"device_types": _manager().catalogue.get_device_types()})
