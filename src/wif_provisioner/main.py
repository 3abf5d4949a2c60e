"""Runtime wiring for the WIF provisioner.

KEYLESS ARCHITECTURE:
The provisioner creates the identities clusters use instead of key files,
and it refuses to run on key files itself:
- Google credentials come from Application Default Credentials only
- Service account key files are rejected unless explicitly allowed (exit 2)
- Tokens are short-lived and never persisted
"""

from __future__ import annotations

import json
import logging
import sys
from collections.abc import Callable
from datetime import UTC, datetime

from .config import ConfigurationError, ProvisionConfig
from .gcp_client import GcpClient, GoogleCloudClient
from .models import WifConfigSpec
from .orchestrator import SequenceAbortError, provision_wif_configuration
from .security import CredentialsError, KeyfileViolationError, get_credentials

LOG_HANDLER_NAME = "wif-provisioner"

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CREDENTIAL_VIOLATION = 2

# LogRecord attributes that are not user-supplied ``extra`` fields
_RESERVED_RECORD_ATTRS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_ATTRS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(log_format: str = "json", verbose: bool = False) -> None:
    """Configure logging on stdout.

    Args:
        log_format: "json" for structured output, "text" for humans.
        verbose: Log at DEBUG instead of INFO.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if verbose else logging.INFO)

    if any(h.name == LOG_HANDLER_NAME for h in root_logger.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(LOG_HANDLER_NAME)
    if log_format == "text":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    # Reduce noise from Google client libraries
    logging.getLogger("google").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def build_gcp_client(config: ProvisionConfig) -> GcpClient:
    """Create the Google Cloud client after the keyless credential check."""
    credentials, _ = get_credentials(config.allow_service_account_keys)
    return GoogleCloudClient(credentials)


def run_provisioning(
    spec: WifConfigSpec,
    config: ProvisionConfig,
    client_factory: Callable[[ProvisionConfig], GcpClient] = build_gcp_client,
) -> int:
    """Provision one WIF configuration and translate the result to an exit code.

    Returns:
        0 on success, 1 on provisioning or configuration failure, 2 when a
        service account key file is configured and not allowed.
    """
    logger = logging.getLogger(__name__)

    try:
        client = client_factory(config)
        provision_wif_configuration(spec, config, client)

    except KeyfileViolationError as e:
        # SECURITY: key file credentials are fatal
        logger.critical("Security violation: key file credentials", extra={"error": str(e)})
        return EXIT_CREDENTIAL_VIOLATION

    except CredentialsError as e:
        logger.error("Failed to resolve Google credentials", extra={"error": str(e)})
        return EXIT_FAILURE

    except ConfigurationError as e:
        logger.error("Configuration error", extra={"error": str(e)})
        return EXIT_FAILURE

    except OSError as e:
        logger.error(
            "Failed to write dry run files",
            extra={"output_dir": str(config.output_dir), "error": str(e)},
        )
        return EXIT_FAILURE

    except SequenceAbortError as e:
        logger.error(
            "Provisioning aborted",
            extra={
                "step": e.step.value,
                "error": str(e),
                "wif_config_id": e.wif_config_id,
            },
        )
        logger.error(e.cleanup_hint)
        return EXIT_FAILURE

    return EXIT_OK
