"""Credential resolution with keyless enforcement.

Workload Identity Federation exists so that clusters never hold long-lived
service account keys. The provisioner holds itself to the same rule:

SECURITY INVARIANTS:
1. Credentials come from Application Default Credentials (gcloud user login,
   attached service account, or an external account configuration)
2. A service account key file is refused unless explicitly allowed
3. Tokens are short-lived and never written anywhere by this tool
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

import google.auth
from google.auth.credentials import Credentials
from google.auth.exceptions import DefaultCredentialsError

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPE = "https://www.googleapis.com/auth/cloud-platform"

CREDENTIALS_ENV_VAR = "GOOGLE_APPLICATION_CREDENTIALS"
SERVICE_ACCOUNT_KEY_TYPE = "service_account"


class KeyfileViolationError(Exception):
    """Raised when a service account key file is used without permission."""

    pass


class CredentialsError(Exception):
    """Raised when no usable Google credentials can be found."""

    pass


def _credentials_file_type(path: Path) -> str | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    if not isinstance(data, dict):
        return None
    return data.get("type")


def enforce_keyless_credentials(allow_service_account_keys: bool = False) -> None:
    """Refuse service account key files configured for Application Default Credentials.

    Raises:
        KeyfileViolationError: If GOOGLE_APPLICATION_CREDENTIALS points at a key file.
    """
    credentials_path = os.environ.get(CREDENTIALS_ENV_VAR)
    if not credentials_path:
        return

    if _credentials_file_type(Path(credentials_path)) != SERVICE_ACCOUNT_KEY_TYPE:
        return

    if allow_service_account_keys:
        logger.warning(
            "Using service account key file credentials",
            extra={"security_event": "keyfile_allowed", "env_var": CREDENTIALS_ENV_VAR},
        )
        return

    logger.critical(
        "Service account key file detected",
        extra={
            "security_event": "keyfile_detected",
            "env_var": CREDENTIALS_ENV_VAR,
            "action": "run_blocked",
        },
    )
    raise KeyfileViolationError(
        f"{CREDENTIALS_ENV_VAR} points at a service account key file. "
        "Authenticate with 'gcloud auth application-default login' or an attached "
        "identity instead, or set ALLOW_SERVICE_ACCOUNT_KEYS=true."
    )


def get_credentials(allow_service_account_keys: bool = False) -> tuple[Credentials, str | None]:
    """Resolve Application Default Credentials after the keyless check.

    Returns:
        Tuple of (credentials, default project ID or None).

    Raises:
        KeyfileViolationError: If a key file is configured and not allowed.
        CredentialsError: If no credentials are available.
    """
    enforce_keyless_credentials(allow_service_account_keys)
    try:
        credentials, project_id = google.auth.default(scopes=[CLOUD_PLATFORM_SCOPE])
    except DefaultCredentialsError as e:
        raise CredentialsError(f"failed to initiate GCP client: {e}") from e

    logger.info(
        "Resolved Google credentials",
        extra={"credential_type": type(credentials).__name__, "default_project": project_id},
    )
    return credentials, project_id
