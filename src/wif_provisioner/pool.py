"""Workload identity pool reconciliation."""

from __future__ import annotations

import logging

from .config import ACTIVE_STATE, POOL_DESCRIPTION
from .dry_run import DryRunPlan
from .gcp_client import CloudApiError, GcpClient
from .models import WifConfigSpec
from .outcome import ReconciliationError, ReconciliationOutcome
from .probe import ProbeState, probe

logger = logging.getLogger(__name__)


class PoolReconciler:
    """Ensures the workload identity pool exists and is active.

    State machine per invocation:
    - NOT_FOUND: create the pool
    - SOFT_DELETED: undelete it
    - ACTIVE: nothing to do
    - OTHER_ERROR: report the probe error
    """

    def __init__(self, client: GcpClient, plan: DryRunPlan | None = None) -> None:
        self._client = client
        self._plan = plan

    def ensure_pool(self, spec: WifConfigSpec) -> ReconciliationOutcome:
        outcome = ReconciliationOutcome(resource=spec.pool_name)

        if self._plan is not None:
            self._plan_pool(self._plan, spec)
            outcome.dry_run = True
            return outcome

        result = probe(self._client.get_pool, spec.pool_name)

        match result.state:
            case ProbeState.NOT_FOUND:
                body = {
                    "displayName": spec.pool_id,
                    "description": POOL_DESCRIPTION,
                    "state": ACTIVE_STATE,
                    "disabled": False,
                }
                try:
                    self._client.create_pool(spec.pool_parent, spec.pool_id, body)
                except CloudApiError as e:
                    outcome.error = ReconciliationError(
                        f"failed to create workload identity pool {spec.pool_id}: {e}",
                        spec.pool_name,
                        e,
                    )
                    return outcome
                logger.info(
                    "Workload identity pool created",
                    extra={"pool": spec.pool_id, "project": spec.project_id},
                )
                outcome.created = True

            case ProbeState.SOFT_DELETED:
                logger.info("Workload identity pool was deleted", extra={"pool": spec.pool_id})
                try:
                    self._client.undelete_pool(spec.pool_name)
                except CloudApiError as e:
                    outcome.error = ReconciliationError(
                        f"failed to undelete workload identity pool {spec.pool_id}: {e}",
                        spec.pool_name,
                        e,
                    )
                    return outcome
                logger.info("Workload identity pool undeleted", extra={"pool": spec.pool_id})
                outcome.restored = True

            case ProbeState.ACTIVE:
                logger.info(
                    "Workload identity pool already exists", extra={"pool": spec.pool_id}
                )
                outcome.skipped = True

            case ProbeState.OTHER_ERROR:
                outcome.error = ReconciliationError(
                    "failed to check if there is existing workload identity pool "
                    f"{spec.pool_id}: {result.detail}",
                    spec.pool_name,
                    result.detail,
                )

        return outcome

    def _plan_pool(self, plan: DryRunPlan, spec: WifConfigSpec) -> None:
        plan.record(
            spec.pool_name,
            f"Would have created workload identity pool {spec.pool_id}",
            [
                "gcloud",
                "iam",
                "workload-identity-pools",
                "create",
                spec.pool_id,
                f"--project={spec.project_id}",
                "--location=global",
                f"--display-name={spec.pool_id}",
                f"--description={POOL_DESCRIPTION}",
            ],
        )
