"""Existence probes for cloud resources.

A probe is one read call whose outcome is returned as a value. The IAM API
answers 404 for several conditions, and only the "entity not found" message
means the resource is safe to create; every other failure is OTHER_ERROR so
that callers never mistake a permission problem for a missing resource.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .config import DELETED_STATE, ENTITY_NOT_FOUND_MESSAGE
from .gcp_client import CloudApiError

logger = logging.getLogger(__name__)


class ProbeState(str, Enum):
    NOT_FOUND = "notFound"
    ACTIVE = "active"
    SOFT_DELETED = "softDeleted"
    OTHER_ERROR = "otherError"


@dataclass(frozen=True)
class ProbeResult:
    """Point-in-time observation of one resource."""

    state: ProbeState
    resource: dict[str, Any] = field(default_factory=dict)
    detail: CloudApiError | None = None

    @classmethod
    def failure(cls, error: CloudApiError) -> ProbeResult:
        return cls(state=ProbeState.OTHER_ERROR, detail=error)


def is_entity_not_found(error: CloudApiError) -> bool:
    return error.code == 404 and ENTITY_NOT_FOUND_MESSAGE in error.message


def classify(resource: dict[str, Any]) -> ProbeState:
    """Classify a successfully read resource by its lifecycle state."""
    if resource.get("state") == DELETED_STATE:
        return ProbeState.SOFT_DELETED
    return ProbeState.ACTIVE


def probe(read: Callable[[str], dict[str, Any]], resource_name: str) -> ProbeResult:
    """Read a resource once and classify the result.

    Args:
        read: Client method returning the resource body or raising CloudApiError.
        resource_name: Full resource name passed to ``read``.

    Returns:
        ProbeResult; errors are carried in the result, never raised.
    """
    try:
        resource = read(resource_name)
    except CloudApiError as e:
        if is_entity_not_found(e):
            return ProbeResult(state=ProbeState.NOT_FOUND)
        logger.debug(
            "Probe failed",
            extra={"resource": resource_name, "code": e.code, "error": e.message},
        )
        return ProbeResult.failure(e)

    return ProbeResult(state=classify(resource), resource=resource)
