"""Per-step reconciliation outcomes."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ReconciliationOutcome:
    """Result of one reconciler invocation.

    Consumed by the orchestrator immediately and then discarded.
    """

    resource: str
    created: bool = False
    skipped: bool = False
    restored: bool = False  # soft-deleted resource was undeleted
    dry_run: bool = False
    warnings: list[str] = field(default_factory=list)
    error: Exception | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def action(self) -> str:
        if self.error is not None:
            return "failed"
        if self.dry_run:
            return "planned"
        if self.created:
            return "created"
        if self.restored:
            return "restored"
        if self.skipped:
            return "unchanged"
        return "updated"


class ReconciliationError(Exception):
    """A reconciler step failed for one resource.

    The underlying CloudApiError, when there is one, is kept as ``__cause__``.
    """

    def __init__(self, message: str, resource: str, cause: Exception | None = None) -> None:
        super().__init__(message)
        self.resource = resource
        self.__cause__ = cause
