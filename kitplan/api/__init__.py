# Package
from flask import Blueprint, jsonify

from kitplan.errors import KitplanError
from kitplan.logging_config import get_logger

logger = get_logger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.errorhandler(KitplanError)
def handle_kitplan_error(exc: KitplanError):
    """Domain errors become JSON responses with the error kind's status code."""
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("Request failed", error_type=exc.__class__.__name__, error=exc.message, **exc.details)
    return jsonify(exc.to_dict()), exc.status_code


from kitplan.api import routes
