"""Builders for WIF configuration records used across tests."""

from __future__ import annotations

from typing import Any

from wif_provisioner.models import WifConfigSpec

PROJECT_ID = "my-project-123"
DISPLAY_NAME = "my-wif"
POOL_ID = "my-wif-pool"
ISSUER_URL = "https://oidc.example.com/my-wif"
JWKS = '{"keys":[{"kty":"RSA","kid":"k1","n":"abc","e":"AQAB"}]}'


def service_account(
    account_id: str = "sa1",
    roles: list[str] | None = None,
    access_method: str = "wif",
    namespace: str = "openshift-machine-api",
    names: list[str] | None = None,
    custom_roles: list[str] | None = None,
) -> dict[str, Any]:
    """Service account entry in backend wire format."""
    predefined = roles if roles is not None else ["viewer"]
    role_refs = [{"id": r, "predefined": True} for r in predefined]
    role_refs += [{"id": r, "predefined": False} for r in custom_roles or []]
    entry: dict[str, Any] = {"id": account_id, "roles": role_refs, "accessMethod": access_method}
    if access_method in ("wif", "federate"):
        entry["credentialRequest"] = {
            "secretRef": {"name": f"{account_id}-credentials", "namespace": namespace},
            "serviceAccountNames": names if names is not None else ["machine-api-controllers"],
        }
    return entry


def make_spec(
    service_accounts: list[dict[str, Any]] | None = None, **overrides: Any
) -> WifConfigSpec:
    data: dict[str, Any] = {
        "displayName": DISPLAY_NAME,
        "projectId": PROJECT_ID,
        "poolId": POOL_ID,
        "issuerUrl": ISSUER_URL,
        "jwks": JWKS,
        "serviceAccounts": (
            service_accounts if service_accounts is not None else [service_account()]
        ),
        "wifConfigId": "2abc",
    }
    data.update(overrides)
    return WifConfigSpec.model_validate(data)


def backend_record(
    wif_config_id: str = "2abc",
    service_accounts: list[dict[str, Any]] | None = None,
    with_pool_data: bool = True,
) -> dict[str, Any]:
    """WIF configuration record as the backend API returns it."""
    status: dict[str, Any] = {
        "state": "ready",
        "summary": "WIF configuration is ready",
        "serviceAccounts": (
            service_accounts if service_accounts is not None else [service_account()]
        ),
    }
    if with_pool_data:
        status["workloadIdentityPoolData"] = {
            "poolId": POOL_ID,
            "projectId": PROJECT_ID,
            "projectNumber": "123456789012",
            "issuerUrl": ISSUER_URL,
            "jwks": JWKS,
            "identityProviderId": "",
        }
    return {
        "metadata": {"id": wif_config_id, "displayName": DISPLAY_NAME},
        "spec": {"displayName": DISPLAY_NAME, "projectId": PROJECT_ID},
        "status": status,
    }
