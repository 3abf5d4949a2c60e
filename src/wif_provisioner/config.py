"""Configuration management with validation.

The provisioning run receives one explicit ProvisionConfig value. Nothing is
read from process-wide state after construction, and invalid values raise
ConfigurationError immediately rather than failing halfway through a run.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path


class BindFailurePolicy(str, Enum):
    """What a role-bind or access-attach failure does to sibling accounts."""

    ABORT = "abort"  # stop at the first failing account
    CONTINUE = "continue"  # attempt every account, then fail the run


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Resource defaults shared with the backend
POOL_DESCRIPTION = "Created by the OCM CLI"
OPENSHIFT_AUDIENCE = "openshift"
SUBJECT_ATTRIBUTE_MAPPING = {"google.subject": "assertion.sub"}
DEFAULT_IMPERSONATOR_SERVICE_ACCOUNT = "osd-impersonator@sda-ccs-3.iam.gserviceaccount.com"

# Cloud API sentinels
DELETED_STATE = "DELETED"
ACTIVE_STATE = "ACTIVE"
ENTITY_NOT_FOUND_MESSAGE = "Requested entity was not found"

# Timeouts
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60

# Security constraints
MAX_RECORD_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max local record
MAX_DISPLAY_NAME_LENGTH = 32

# Input validation patterns
VALID_DISPLAY_NAME_PATTERN = r"^[a-z][a-z0-9-]*[a-z0-9]$"
VALID_PROJECT_ID_PATTERN = r"^[a-z][a-z0-9-]{4,28}[a-z0-9]$"
VALID_SERVICE_ACCOUNT_EMAIL_PATTERN = r"^[a-z][a-z0-9-]{4,28}[a-z0-9]@[a-z0-9.-]+$"


@dataclass(frozen=True)
class ProvisionConfig:
    """Options for a single provisioning run.

    Passed explicitly into the orchestrator entry point. All fields are
    validated at construction time.
    """

    display_name: str
    project_id: str

    dry_run: bool = False
    output_dir: Path | None = None

    bind_failure_policy: BindFailurePolicy = BindFailurePolicy.ABORT
    impersonator_service_account: str = DEFAULT_IMPERSONATOR_SERVICE_ACCOUNT

    # Permit service account key files as Application Default Credentials
    allow_service_account_keys: bool = False

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.display_name:
            errors.append("display name is required")
        elif len(self.display_name) > MAX_DISPLAY_NAME_LENGTH:
            errors.append(
                f"display name exceeds maximum length of {MAX_DISPLAY_NAME_LENGTH}: "
                f"{self.display_name}"
            )
        elif not re.match(VALID_DISPLAY_NAME_PATTERN, self.display_name):
            errors.append(
                f"display name must match pattern {VALID_DISPLAY_NAME_PATTERN}: "
                f"{self.display_name}"
            )

        if not self.project_id:
            errors.append("project ID is required")
        elif not re.match(VALID_PROJECT_ID_PATTERN, self.project_id):
            errors.append(f"project ID is not a valid Google Cloud project ID: {self.project_id}")

        if not re.match(VALID_SERVICE_ACCOUNT_EMAIL_PATTERN, self.impersonator_service_account):
            errors.append(
                "impersonator must be a service account email: "
                f"{self.impersonator_service_account}"
            )

        if self.output_dir is not None:
            if not self.output_dir.exists():
                errors.append(f"Directory {self.output_dir} does not exist")
            elif not self.output_dir.is_dir():
                errors.append(f"file {self.output_dir} exists and is not a directory")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def impersonator_principal(self) -> str:
        """IAM member string for the impersonator service account."""
        return f"serviceAccount:{self.impersonator_service_account}"

    @classmethod
    def from_env(cls, **overrides: object) -> ProvisionConfig:
        """Load configuration from environment variables.

        Keyword overrides (typically command line options) win over the
        environment when they are not None.

        Environment Variables:
            WIF_DISPLAY_NAME: User-defined name for all created resources
            GCP_PROJECT_ID: ID of the Google Cloud project
            DRY_RUN: If "true", only report what would be created (default: false)
            OUTPUT_DIR: Directory for generated files in dry run mode
            BIND_FAILURE_POLICY: "abort" (default) or "continue"
            IMPERSONATOR_SERVICE_ACCOUNT: Email of the impersonating service account
            ALLOW_SERVICE_ACCOUNT_KEYS: Permit key-file credentials (default: false)
        """

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_policy(value: str | None) -> BindFailurePolicy:
            if not value:
                return BindFailurePolicy.ABORT
            try:
                return BindFailurePolicy(value.lower())
            except ValueError as e:
                valid = [p.value for p in BindFailurePolicy]
                raise ConfigurationError(
                    f"BIND_FAILURE_POLICY must be one of {valid}: {value}"
                ) from e

        output_dir = os.environ.get("OUTPUT_DIR")
        values: dict[str, object] = {
            "display_name": os.environ.get("WIF_DISPLAY_NAME", ""),
            "project_id": os.environ.get("GCP_PROJECT_ID", ""),
            "dry_run": get_bool("DRY_RUN", False),
            "output_dir": Path(output_dir).resolve() if output_dir else None,
            "bind_failure_policy": get_policy(os.environ.get("BIND_FAILURE_POLICY")),
            "impersonator_service_account": os.environ.get(
                "IMPERSONATOR_SERVICE_ACCOUNT", DEFAULT_IMPERSONATOR_SERVICE_ACCOUNT
            ),
            "allow_service_account_keys": get_bool("ALLOW_SERVICE_ACCOUNT_KEYS", False),
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(**values)  # type: ignore[arg-type]
