"""Pydantic models for WIF configuration records.

These models provide:
1. Type-safe parsing of backend API responses and local record files
2. Validation at the boundary (fail fast, fail loudly)
3. Conversion to the desired-state spec consumed by the reconcilers
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, field_validator

# =============================================================================
# Access Methods
# =============================================================================


class AccessMethod(str, Enum):
    """Supported ways of granting a cluster access to a service account."""

    IMPERSONATE = "impersonate"
    FEDERATE = "federate"

    @classmethod
    def parse(cls, value: str) -> AccessMethod | None:
        """Map a wire value to an access method, or None when unsupported.

        Values match exactly. The backend names federation "wif"; "federate"
        is accepted as well.
        """
        if value == "wif":
            return cls.FEDERATE
        try:
            return cls(value)
        except ValueError:
            return None


# =============================================================================
# Service Accounts
# =============================================================================


class _RecordModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class RoleRef(_RecordModel):
    """IAM role required by a service account."""

    id: Annotated[str, Field(min_length=1)]
    predefined: bool = True

    @property
    def resource_name(self) -> str:
        """Role resource name, e.g. ``roles/viewer``."""
        if self.id.startswith("roles/"):
            return self.id
        return f"roles/{self.id}"


class SecretRef(_RecordModel):
    """Kubernetes secret holding the generated credentials."""

    name: str
    namespace: str


class CredentialRequest(_RecordModel):
    """Kubernetes identities whose tokens are federated onto a service account."""

    secret_ref: SecretRef = Field(alias="secretRef")
    service_account_names: list[str] = Field(default_factory=list, alias="serviceAccountNames")

    def subjects(self) -> list[str]:
        """Token subjects in ``system:serviceaccount:<namespace>:<name>`` form."""
        namespace = self.secret_ref.namespace
        return [f"system:serviceaccount:{namespace}:{name}" for name in self.service_account_names]


class ServiceAccountSpec(_RecordModel):
    """A Google service account the configuration requires.

    ``access_method`` keeps the raw wire value: an unsupported method is a
    warning at reconciliation time, not a parse failure.
    """

    id: Annotated[str, Field(min_length=1, max_length=30)]
    roles: list[RoleRef] = Field(default_factory=list)
    access_method: str = Field("", alias="accessMethod")
    credential_request: CredentialRequest | None = Field(None, alias="credentialRequest")

    @field_validator("roles")
    @classmethod
    def validate_unique_roles(cls, v: list[RoleRef]) -> list[RoleRef]:
        # A predefined entry wins over a custom one for the same role
        unique: dict[str, RoleRef] = {}
        for role in v:
            kept = unique.get(role.resource_name)
            if kept is None or (role.predefined and not kept.predefined):
                unique[role.resource_name] = role
        return list(unique.values())

    @property
    def method(self) -> AccessMethod | None:
        """Recognized access method, or None if unsupported."""
        return AccessMethod.parse(self.access_method)

    def email(self, project_id: str) -> str:
        """Service account email within the given project."""
        return f"{self.id}@{project_id}.iam.gserviceaccount.com"

    def subjects(self) -> list[str]:
        """Federated token subjects; empty without a credential request."""
        if self.credential_request is None:
            return []
        return self.credential_request.subjects()


# =============================================================================
# Desired State
# =============================================================================


class WifConfigSpec(_RecordModel):
    """Desired state for one WIF configuration, read-only to the reconcilers."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, frozen=True)

    display_name: str = Field(alias="displayName")
    project_id: str = Field(alias="projectId")
    pool_id: str = Field(alias="poolId")
    provider_id: str = Field("", alias="providerId")
    issuer_url: str = Field(alias="issuerUrl")
    jwks: str
    service_accounts: list[ServiceAccountSpec] = Field(
        default_factory=list, alias="serviceAccounts"
    )
    project_number: str | None = Field(None, alias="projectNumber")
    wif_config_id: str | None = Field(None, alias="wifConfigId")

    @field_validator("service_accounts")
    @classmethod
    def validate_unique_ids(cls, v: list[ServiceAccountSpec]) -> list[ServiceAccountSpec]:
        ids = [sa.id for sa in v]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"service account IDs must be unique: {duplicates}")
        return v

    @property
    def effective_provider_id(self) -> str:
        return self.provider_id or self.pool_id

    @property
    def pool_parent(self) -> str:
        return f"projects/{self.project_id}/locations/global"

    @property
    def pool_name(self) -> str:
        return f"{self.pool_parent}/workloadIdentityPools/{self.pool_id}"

    @property
    def provider_name(self) -> str:
        return f"{self.pool_name}/providers/{self.effective_provider_id}"


# =============================================================================
# Backend Records
# =============================================================================


class WifConfigInput(_RecordModel):
    """User-provided part of a WIF configuration."""

    display_name: str = Field(alias="displayName")
    project_id: str = Field(alias="projectId")


class WifConfigMetadata(_RecordModel):
    id: str = ""
    display_name: str = Field("", alias="displayName")
    template_refs: list[str] = Field(default_factory=list, alias="templateRefs")


class WorkloadIdentityPoolData(_RecordModel):
    """Pool and provider material resolved by the backend."""

    pool_id: str = Field(alias="poolId")
    project_id: str = Field(alias="projectId")
    project_number: str | None = Field(None, alias="projectNumber")
    issuer_url: str = Field(alias="issuerUrl")
    jwks: str = ""
    identity_provider_id: str = Field("", alias="identityProviderId")


class WifConfigStatus(_RecordModel):
    state: str = ""
    summary: str = ""
    workload_identity_pool_data: WorkloadIdentityPoolData | None = Field(
        None, alias="workloadIdentityPoolData"
    )
    service_accounts: list[ServiceAccountSpec] = Field(
        default_factory=list, alias="serviceAccounts"
    )


class WifConfigOutput(_RecordModel):
    """A WIF configuration record as returned by the backend API."""

    metadata: WifConfigMetadata | None = None
    spec: WifConfigInput | None = None
    status: WifConfigStatus | None = None

    @property
    def id(self) -> str:
        return self.metadata.id if self.metadata else ""

    @property
    def display_name(self) -> str:
        if self.metadata and self.metadata.display_name:
            return self.metadata.display_name
        return self.spec.display_name if self.spec else ""

    def desired_state(self) -> WifConfigSpec:
        """Convert the record into the spec the reconcilers consume.

        Raises:
            ValueError: If the record has not been resolved by the backend yet.
        """
        if self.spec is None:
            raise ValueError(f"WIF configuration '{self.id}' has no spec")
        if self.status is None or self.status.workload_identity_pool_data is None:
            raise ValueError(
                f"WIF configuration '{self.id}' has no workload identity pool data"
            )

        pool = self.status.workload_identity_pool_data
        return WifConfigSpec(
            display_name=self.spec.display_name,
            project_id=pool.project_id or self.spec.project_id,
            pool_id=pool.pool_id,
            provider_id=pool.identity_provider_id,
            issuer_url=pool.issuer_url,
            jwks=pool.jwks,
            service_accounts=self.status.service_accounts,
            project_number=pool.project_number,
            wif_config_id=self.id or None,
        )


class WifConfigList(_RecordModel):
    items: list[WifConfigOutput] = Field(default_factory=list)
    page: int = 0
    size: int = 0
    total: int = 0
