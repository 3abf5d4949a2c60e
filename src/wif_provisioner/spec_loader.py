"""Local WIF configuration record loading with validation.

SECURITY: Files are size-checked before they are read, and parsing uses
``yaml.safe_load``. JSON records load through the same path since JSON is
valid YAML.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_RECORD_FILE_SIZE_BYTES
from .models import WifConfigOutput, WifConfigSpec

logger = logging.getLogger(__name__)


class SpecLoadError(Exception):
    """Raised when a record file cannot be loaded or fails validation."""

    pass


def _format_validation_error(path: Path, error: ValidationError) -> str:
    errors = []
    for item in error.errors():
        loc = ".".join(str(x) for x in item["loc"])
        errors.append(f"  - {loc}: {item['msg']}")
    return f"Validation failed for {path}:\n" + "\n".join(errors)


def load_wif_config(path: Path) -> WifConfigSpec:
    """Load the desired state for one WIF configuration from a file.

    Two shapes are accepted: a backend record (``metadata``/``spec``/``status``,
    as returned by the API) or a flat desired-state document with
    ``displayName``, ``projectId``, ``poolId`` and the rest at the top level.

    Raises:
        SpecLoadError: If the file is missing, too large, unparsable, or invalid.
    """
    if not path.exists():
        raise SpecLoadError(f"Record file not found: {path}")

    # SECURITY: Check file size before reading
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat record file {path}: {e}") from e

    if file_size > MAX_RECORD_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Record file exceeds maximum size of {MAX_RECORD_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read record file {path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML or JSON in {path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Record file must contain a mapping: {path}")

    try:
        if "status" in raw_data or "metadata" in raw_data:
            spec = WifConfigOutput.model_validate(raw_data).desired_state()
        else:
            spec = WifConfigSpec.model_validate(raw_data)
    except ValidationError as e:
        raise SpecLoadError(_format_validation_error(path, e)) from e
    except ValueError as e:
        raise SpecLoadError(f"Incomplete record in {path}: {e}") from e

    logger.info(
        "Loaded WIF configuration '%s' from %s",
        spec.display_name,
        path,
    )
    return spec
