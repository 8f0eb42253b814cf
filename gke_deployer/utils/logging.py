"""Logging configuration for the GKE deployer."""

# Standard library imports
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any

# Third-party imports
import structlog

# Local application imports
from .._version import __version__
from ..config import LoggingConfig, settings

REDACTED = "[REDACTED]"

# Event keys whose values are never written to a log
SENSITIVE_KEYS = frozenset(
    {
        "token",
        "access_token",
        "kubeconfig",
        "certificate-authority-data",
        "certificate_authority_data",
        "ca_data",
        "client_key",
        "client-key-data",
        "env",
        "env_overlay",
    }
)


def setup_logging(level: str | None = None, log_format: str | None = None) -> None:
    """Configure structlog over stdlib logging for the deploy step.

    Args:
        level: Overrides the configured log level
        log_format: Overrides the configured format (json or console)
    """
    overrides = {}
    if level:
        overrides["level"] = level
    if log_format:
        overrides["format"] = log_format.lower()
    config = settings.logging.model_copy(update=overrides)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(_rotating_file_handler(config))

    logging.basicConfig(format="%(message)s", level=config.level_number, handlers=handlers, force=True)

    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            redact_secrets,
            add_service_context,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    configure_third_party_loggers(config.third_party_level_number)


def _rotating_file_handler(config: LoggingConfig) -> logging.Handler:
    """File handler with size-based rotation; lines match the stderr rendering."""
    log_file_path = Path(config.file)
    log_file_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        filename=log_file_path,
        maxBytes=config.max_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
        encoding="utf-8",
    )
    file_handler.setLevel(config.level_number)
    return file_handler


def configure_third_party_loggers(level: int = logging.WARNING) -> None:
    """Keep client library chatter (and request dumps) out of deploy logs."""
    for name in ("kubernetes", "urllib3", "google", "google.auth", "google.api_core"):
        logging.getLogger(name).setLevel(level)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: REDACTED if str(k).lower() in SENSITIVE_KEYS else _redact(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(v) for v in value)
    return value


def redact_secrets(logger, method_name, event_dict):
    """Mask credential material in log entries, including nested dicts."""
    for key in list(event_dict):
        if key.lower() in SENSITIVE_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(event_dict[key], (dict, list, tuple)):
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def add_service_context(logger, method_name, event_dict):
    """Add service context information to log entries."""
    event_dict["service"] = "gke-deployer"
    event_dict["version"] = __version__
    return event_dict


def get_logger(name: str = None) -> structlog.BoundLogger:
    """Get a configured logger instance."""
    return structlog.get_logger(name)
