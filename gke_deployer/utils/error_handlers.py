"""Error reporting for deploy failures."""

# Third-party imports
import structlog

# Local application imports
from ..models.errors import DeployException, ErrorResponse, ErrorType

logger = structlog.get_logger(__name__)

# Failures caused by the deploy target rather than by the step's input
_TARGET_ERROR_TYPES = {
    ErrorType.VERIFICATION_TIMEOUT,
    ErrorType.VERIFICATION_TARGET,
    ErrorType.AFTER_APPLY,
}


def handle_deploy_exception(exc: DeployException) -> ErrorResponse:
    """Log a DeployException and convert it to the standard error report."""

    log_data = {
        "error_type": exc.error_type.value,
        "exit_status": exc.exit_status,
        "message": exc.message,
        "run_id": exc.run_id,
    }

    # Add details if present
    if exc.details:
        log_data["details"] = [{"field": d.field, "message": d.message, "code": d.code} for d in exc.details]

    if exc.error_type == ErrorType.VALIDATION:
        logger.warning("Deploy configuration rejected", **log_data)
    elif exc.error_type in _TARGET_ERROR_TYPES:
        logger.error("Deploy applied but did not complete", **log_data)
    else:
        logger.error("Deploy failed", **log_data)

    return exc.to_response()
