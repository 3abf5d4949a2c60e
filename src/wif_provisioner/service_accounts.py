"""IAM service account reconciliation.

Accounts are processed in two passes over the full list: every account is
created first, because role bindings and access grants may reference any of
them. Both passes are strictly sequential.

Unsupported policy (custom roles, unknown access methods) is reported as a
warning and skipped; it never fails the account or its siblings. A failed
bind or attach fails the run, and BindFailurePolicy decides whether the
remaining accounts are still attempted first.
"""

from __future__ import annotations

import logging

from .config import POOL_DESCRIPTION, BindFailurePolicy
from .dry_run import DryRunPlan
from .gcp_client import (
    SERVICE_ACCOUNT_TOKEN_CREATOR_ROLE,
    WORKLOAD_IDENTITY_USER_ROLE,
    CloudApiError,
    GcpClient,
    federation_principal,
)
from .models import AccessMethod, ServiceAccountSpec, WifConfigSpec
from .outcome import ReconciliationError, ReconciliationOutcome

logger = logging.getLogger(__name__)


def service_account_display_name(spec: WifConfigSpec, account: ServiceAccountSpec) -> str:
    return f"{spec.display_name}-{account.id}"


def service_account_description(spec: WifConfigSpec) -> str:
    return f"{POOL_DESCRIPTION} for WIF config {spec.display_name}"


def custom_role_warning(account: ServiceAccountSpec, role_id: str) -> str:
    return (
        f"Skipping role {role_id!r} for service account {account.id!r} "
        "as custom roles are not yet supported"
    )


def unsupported_method_warning(account: ServiceAccountSpec) -> str:
    return (
        f"{account.access_method!r} is not a supported access type "
        f"for service account {account.id!r}"
    )


def no_subjects_warning(account: ServiceAccountSpec) -> str:
    return f"service account {account.id!r} has no Kubernetes service accounts to federate"


class ServiceAccountReconciler:
    """Ensures service accounts exist with their roles and access method."""

    def __init__(
        self,
        client: GcpClient,
        *,
        impersonator: str,
        failure_policy: BindFailurePolicy = BindFailurePolicy.ABORT,
        plan: DryRunPlan | None = None,
    ) -> None:
        self._client = client
        self._impersonator = impersonator
        self._failure_policy = failure_policy
        self._plan = plan

    def ensure_service_accounts(self, spec: WifConfigSpec) -> ReconciliationOutcome:
        resource = f"projects/{spec.project_id}/serviceAccounts"
        outcome = ReconciliationOutcome(resource=resource)

        if self._plan is not None:
            for account in spec.service_accounts:
                self._plan_account(self._plan, spec, account)
            outcome.warnings = list(self._plan.warnings)
            outcome.dry_run = True
            return outcome

        # Pass 1: existence
        for account in spec.service_accounts:
            try:
                created = self._create_if_absent(spec, account)
            except CloudApiError as e:
                outcome.error = ReconciliationError(
                    f"failed to create IAM service account {account.id}: {e}",
                    resource,
                    e,
                )
                return outcome
            outcome.created = outcome.created or created

        # Pass 2: bind and attach
        changed = False
        failures: list[ReconciliationError] = []
        for account in spec.service_accounts:
            try:
                changed = self._bind_and_attach(spec, account, outcome.warnings) or changed
            except ReconciliationError as e:
                logger.error(
                    "Failed to configure service account",
                    extra={"service_account": account.id, "error": str(e)},
                )
                if self._failure_policy == BindFailurePolicy.ABORT:
                    outcome.error = e
                    return outcome
                failures.append(e)

        if failures:
            details = "; ".join(str(f) for f in failures)
            outcome.error = ReconciliationError(
                f"{len(failures)} of {len(spec.service_accounts)} service accounts "
                f"failed: {details}",
                resource,
                failures[0],
            )
            return outcome

        outcome.skipped = not outcome.created and not changed
        return outcome

    def _create_if_absent(self, spec: WifConfigSpec, account: ServiceAccountSpec) -> bool:
        """Create the account, treating "already exists" as success.

        Returns:
            True if the account was created by this call.
        """
        try:
            self._client.create_service_account(
                spec.project_id,
                account.id,
                service_account_display_name(spec, account),
                service_account_description(spec),
            )
        except CloudApiError as e:
            if not e.already_exists:
                raise
            logger.info(
                "IAM service account already exists", extra={"service_account": account.id}
            )
            return False

        logger.info("IAM service account created", extra={"service_account": account.id})
        return True

    def _bind_and_attach(
        self, spec: WifConfigSpec, account: ServiceAccountSpec, warnings: list[str]
    ) -> bool:
        """Bind predefined roles, then attach the access method.

        Returns:
            True if any IAM policy changed.

        Raises:
            ReconciliationError: If a bind or attach call fails.
        """
        resource = account.email(spec.project_id)
        changed = False

        for role in account.roles:
            if not role.predefined:
                message = custom_role_warning(account, role.id)
                logger.warning(message, extra={"service_account": account.id, "role": role.id})
                warnings.append(message)
                continue
            try:
                changed = (
                    self._client.bind_role(account.id, spec.project_id, role.resource_name)
                    or changed
                )
            except CloudApiError as e:
                raise ReconciliationError(
                    f"failed to bind role {role.resource_name} to {account.id}: {e}",
                    resource,
                    e,
                ) from e
        logger.info("Roles bound", extra={"service_account": account.id})

        try:
            match account.method:
                case AccessMethod.IMPERSONATE:
                    changed = (
                        self._client.attach_impersonator(
                            account.id, spec.project_id, self._impersonator
                        )
                        or changed
                    )
                case AccessMethod.FEDERATE:
                    changed = (
                        self._client.attach_federation(account, spec.pool_id, spec.project_id)
                        or changed
                    )
                    if not account.subjects():
                        message = no_subjects_warning(account)
                        logger.warning(message, extra={"service_account": account.id})
                        warnings.append(message)
                        return changed
                case None:
                    message = unsupported_method_warning(account)
                    logger.warning(message, extra={"service_account": account.id})
                    warnings.append(message)
                    return changed
        except CloudApiError as e:
            raise ReconciliationError(
                f"failed to grant {account.access_method} access to {account.id}: {e}",
                resource,
                e,
            ) from e

        logger.info(
            "Access granted",
            extra={"service_account": account.id, "access_method": account.access_method},
        )
        return changed

    def _plan_account(
        self, plan: DryRunPlan, spec: WifConfigSpec, account: ServiceAccountSpec
    ) -> None:
        email = account.email(spec.project_id)
        plan.record(
            email,
            f"Would have created service account {account.id}",
            [
                "gcloud",
                "iam",
                "service-accounts",
                "create",
                account.id,
                f"--display-name={service_account_display_name(spec, account)}",
                f"--description={service_account_description(spec)}",
                f"--project={spec.project_id}",
            ],
        )

        for role in account.roles:
            if not role.predefined:
                plan.warn(custom_role_warning(account, role.id))
                continue
            plan.record(
                email,
                f"Would have bound role {role.resource_name} to {account.id}",
                [
                    "gcloud",
                    "projects",
                    "add-iam-policy-binding",
                    spec.project_id,
                    f"--member=serviceAccount:{email}",
                    f"--role={role.resource_name}",
                    "--condition=None",
                ],
            )

        match account.method:
            case AccessMethod.IMPERSONATE:
                members = [self._impersonator]
                role_name = SERVICE_ACCOUNT_TOKEN_CREATOR_ROLE
                description = (
                    f"Would have attached impersonator {self._impersonator} to {account.id}"
                )
            case AccessMethod.FEDERATE:
                project_number = spec.project_number or plan.variable(
                    "PROJECT_NUMBER",
                    [
                        "gcloud",
                        "projects",
                        "describe",
                        spec.project_id,
                        "--format=value(projectNumber)",
                    ],
                )
                members = [
                    federation_principal(project_number, spec.pool_id, s)
                    for s in account.subjects()
                ]
                role_name = WORKLOAD_IDENTITY_USER_ROLE
                description = (
                    f"Would have attached workload identity pool {spec.pool_id} to {account.id}"
                )
            case None:
                plan.warn(unsupported_method_warning(account))
                return

        if not members:
            plan.warn(no_subjects_warning(account))
            return

        for member in members:
            plan.record(
                email,
                description,
                [
                    "gcloud",
                    "iam",
                    "service-accounts",
                    "add-iam-policy-binding",
                    email,
                    f"--member={member}",
                    f"--role={role_name}",
                    f"--project={spec.project_id}",
                ],
            )
