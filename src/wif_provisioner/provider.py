"""Workload identity pool provider reconciliation.

Providers are treated as immutable once created: an existing provider is
never updated, so a changed issuer URL requires deleting the provider out of
band before re-running.
"""

from __future__ import annotations

import logging

from .config import OPENSHIFT_AUDIENCE, POOL_DESCRIPTION, SUBJECT_ATTRIBUTE_MAPPING
from .dry_run import JWKS_FILENAME, DryRunPlan
from .gcp_client import CloudApiError, GcpClient
from .models import WifConfigSpec
from .outcome import ReconciliationError, ReconciliationOutcome
from .probe import ProbeState, probe

logger = logging.getLogger(__name__)


def build_provider_body(spec: WifConfigSpec) -> dict[str, object]:
    """OIDC provider definition for the configuration's issuer.

    The token's ``sub`` claim (``system:serviceaccount:<namespace>:<name>``) is
    mapped onto ``google.subject``, which the per-account federation bindings
    match on.
    """
    return {
        "displayName": spec.effective_provider_id,
        "description": POOL_DESCRIPTION,
        "disabled": False,
        "oidc": {
            "allowedAudiences": [OPENSHIFT_AUDIENCE],
            "issuerUri": spec.issuer_url,
            "jwksJson": spec.jwks,
        },
        "attributeMapping": dict(SUBJECT_ATTRIBUTE_MAPPING),
    }


class ProviderReconciler:
    """Ensures the OIDC provider is registered under the pool."""

    def __init__(self, client: GcpClient, plan: DryRunPlan | None = None) -> None:
        self._client = client
        self._plan = plan

    def ensure_provider(self, spec: WifConfigSpec) -> ReconciliationOutcome:
        provider_id = spec.effective_provider_id
        outcome = ReconciliationOutcome(resource=spec.provider_name)

        if self._plan is not None:
            self._plan_provider(self._plan, spec)
            outcome.dry_run = True
            return outcome

        result = probe(self._client.get_provider, spec.provider_name)

        if result.state == ProbeState.OTHER_ERROR:
            outcome.error = ReconciliationError(
                f"failed to check if there is existing workload identity provider "
                f"{provider_id} in pool {spec.pool_id}: {result.detail}",
                spec.provider_name,
                result.detail,
            )
            return outcome

        if result.state != ProbeState.NOT_FOUND:
            logger.info(
                "Workload identity provider already exists",
                extra={"provider": provider_id, "pool": spec.pool_id},
            )
            outcome.skipped = True
            return outcome

        try:
            self._client.create_provider(spec.pool_name, provider_id, build_provider_body(spec))
        except CloudApiError as e:
            outcome.error = ReconciliationError(
                f"failed to create workload identity provider {provider_id}: {e}",
                spec.provider_name,
                e,
            )
            return outcome

        logger.info(
            "Workload identity provider created",
            extra={"provider": provider_id, "pool": spec.pool_id, "issuer": spec.issuer_url},
        )
        outcome.created = True
        return outcome

    def _plan_provider(self, plan: DryRunPlan, spec: WifConfigSpec) -> None:
        jwks_file = plan.add_file(JWKS_FILENAME, spec.jwks)
        mapping = ",".join(f"{k}={v}" for k, v in SUBJECT_ATTRIBUTE_MAPPING.items())
        plan.record(
            spec.provider_name,
            f"Would have created workload identity provider for {spec.pool_id} "
            f"with issuerURL {spec.issuer_url}",
            [
                "gcloud",
                "iam",
                "workload-identity-pools",
                "providers",
                "create-oidc",
                spec.effective_provider_id,
                f"--project={spec.project_id}",
                "--location=global",
                f"--workload-identity-pool={spec.pool_id}",
                f"--display-name={spec.effective_provider_id}",
                f"--description={POOL_DESCRIPTION}",
                f"--issuer-uri={spec.issuer_url}",
                f"--jwk-json-path={jwks_file}",
                f"--allowed-audiences={OPENSHIFT_AUDIENCE}",
                f"--attribute-mapping={mapping}",
            ],
        )
