"""Provisioning sequence for a WIF configuration.

Steps run in dependency order: pool, provider, then service accounts with
their role bindings and access grants. The first failed step stops the
sequence; nothing already created is rolled back. Every reconciler is
create-or-skip, so re-running after cleanup (or even without it) is the
recovery path.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import Enum

from .backend import WifConfigBackend
from .config import ConfigurationError, ProvisionConfig
from .dry_run import DryRunPlan
from .gcp_client import GcpClient
from .models import WifConfigOutput, WifConfigSpec
from .outcome import ReconciliationOutcome
from .pool import PoolReconciler
from .provider import ProviderReconciler
from .service_accounts import ServiceAccountReconciler

logger = logging.getLogger(__name__)


class ProvisioningStep(str, Enum):
    POOL = "workload identity pool"
    PROVIDER = "workload identity provider"
    SERVICE_ACCOUNTS = "IAM service accounts"


class SequenceAbortError(Exception):
    """A provisioning step failed and the remaining steps were not attempted."""

    def __init__(
        self,
        step: ProvisioningStep,
        cause: Exception,
        wif_config_id: str | None = None,
    ) -> None:
        self.step = step
        self.cause = cause
        self.wif_config_id = wif_config_id
        super().__init__(f"Failed to create {step.value}: {cause}")
        self.__cause__ = cause

    @property
    def cleanup_hint(self) -> str:
        target = f"'{self.wif_config_id}'" if self.wif_config_id else "this configuration"
        return (
            f"To clean up, delete WIF configuration {target} and its cloud resources "
            "before retrying"
        )


class Provisioner:
    """Runs the reconcilers for one WIF configuration.

    Holds only its collaborators; every call to provision() probes the cloud
    afresh and keeps nothing afterwards.
    """

    def __init__(self, config: ProvisionConfig, client: GcpClient) -> None:
        self._config = config
        self._client = client

    def provision(self, spec: WifConfigSpec) -> None:
        """Drive the project's IAM state to match ``spec``.

        Raises:
            ConfigurationError: If the spec targets a different project.
            SequenceAbortError: If a step fails.
        """
        if spec.project_id != self._config.project_id:
            raise ConfigurationError(
                f"WIF configuration targets project {spec.project_id}, "
                f"but the run is configured for {self._config.project_id}"
            )

        plan = DryRunPlan() if self._config.dry_run else None
        pools = PoolReconciler(self._client, plan)
        providers = ProviderReconciler(self._client, plan)
        accounts = ServiceAccountReconciler(
            self._client,
            impersonator=self._config.impersonator_principal,
            failure_policy=self._config.bind_failure_policy,
            plan=plan,
        )

        steps: list[tuple[ProvisioningStep, Callable[[WifConfigSpec], ReconciliationOutcome]]] = [
            (ProvisioningStep.POOL, pools.ensure_pool),
            (ProvisioningStep.PROVIDER, providers.ensure_provider),
            (ProvisioningStep.SERVICE_ACCOUNTS, accounts.ensure_service_accounts),
        ]

        logger.info(
            "Provisioning workload identity configuration",
            extra={
                "display_name": spec.display_name,
                "project": spec.project_id,
                "wif_config_id": spec.wif_config_id,
                "dry_run": self._config.dry_run,
            },
        )

        for step, reconcile in steps:
            outcome = reconcile(spec)
            self._log_outcome(step, outcome)

            if outcome.error is not None:
                logger.error(
                    "Aborting provisioning",
                    extra={"step": step.value, "error": str(outcome.error)},
                )
                raise SequenceAbortError(step, outcome.error, spec.wif_config_id)

        if plan is not None and self._config.output_dir is not None:
            plan.write(self._config.output_dir)

        logger.info(
            "Workload identity configuration provisioned",
            extra={"display_name": spec.display_name, "dry_run": self._config.dry_run},
        )

    def _log_outcome(self, step: ProvisioningStep, outcome: ReconciliationOutcome) -> None:
        logger.info(
            "Step complete",
            extra={
                "step": step.value,
                "resource": outcome.resource,
                "action": outcome.action,
                "warning_count": len(outcome.warnings),
                "decision": "continue" if outcome.success else "abort",
            },
        )


def provision_wif_configuration(
    spec: WifConfigSpec, config: ProvisionConfig, client: GcpClient
) -> None:
    """Provision one WIF configuration. See Provisioner.provision()."""
    Provisioner(config, client).provision(spec)


def update_wif_configuration(
    backend: WifConfigBackend, key: str, template_refs: list[str]
) -> WifConfigOutput:
    """Update a WIF configuration record's template references.

    Only the backend record changes; no cloud resources are touched.

    Raises:
        WifConfigLookupError: If ``key`` matches no record or more than one.
    """
    record = backend.find_wif_config(key)
    updated = backend.update_wif_config(record.id, template_refs)
    logger.info(
        "WIF configuration updated",
        extra={"wif_config_id": record.id, "template_refs": template_refs},
    )
    return updated
