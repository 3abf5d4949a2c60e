"""Tests for WIF configuration record models."""

import pytest
from gcp_mock.records import ISSUER_URL, POOL_ID, PROJECT_ID, backend_record, service_account
from pydantic import ValidationError

from wif_provisioner.models import (
    AccessMethod,
    CredentialRequest,
    RoleRef,
    ServiceAccountSpec,
    WifConfigList,
    WifConfigOutput,
    WifConfigSpec,
)


class TestAccessMethod:
    @pytest.mark.parametrize(
        "value,expected",
        [
            ("impersonate", AccessMethod.IMPERSONATE),
            ("federate", AccessMethod.FEDERATE),
            ("wif", AccessMethod.FEDERATE),
            (" wif ", None),
            ("IMPERSONATE", None),
            ("vault", None),
            ("", None),
        ],
    )
    def test_parse(self, value: str, expected: AccessMethod | None) -> None:
        assert AccessMethod.parse(value) == expected


class TestServiceAccountSpec:
    """Tests for service account parsing."""

    def test_unknown_access_method_parses(self) -> None:
        """Test that an unsupported method is kept, not rejected."""
        account = ServiceAccountSpec.model_validate(service_account(access_method="vault"))

        assert account.access_method == "vault"
        assert account.method is None

    def test_duplicate_roles_are_collapsed(self) -> None:
        account = ServiceAccountSpec.model_validate(
            service_account(roles=["viewer", "viewer", "editor"])
        )

        assert [r.resource_name for r in account.roles] == ["roles/viewer", "roles/editor"]

    def test_predefined_role_wins_over_custom_duplicate(self) -> None:
        account = ServiceAccountSpec.model_validate(
            {
                "id": "sa1",
                "roles": [
                    {"id": "roles/viewer", "predefined": False},
                    {"id": "viewer", "predefined": True},
                ],
                "accessMethod": "wif",
            }
        )

        assert len(account.roles) == 1
        assert account.roles[0].predefined is True

    def test_subjects_without_credential_request(self) -> None:
        assert ServiceAccountSpec(id="sa1", access_method="federate").subjects() == []

    def test_role_resource_name(self) -> None:
        assert RoleRef(id="viewer").resource_name == "roles/viewer"
        assert RoleRef(id="roles/viewer").resource_name == "roles/viewer"

    def test_email(self) -> None:
        account = ServiceAccountSpec(id="sa1")

        assert account.email("p-123456") == "sa1@p-123456.iam.gserviceaccount.com"

    def test_account_id_length_limit(self) -> None:
        with pytest.raises(ValidationError):
            ServiceAccountSpec(id="a" * 31)

    def test_credential_request_subjects(self) -> None:
        request = CredentialRequest.model_validate(
            {
                "secretRef": {"name": "creds", "namespace": "openshift-image-registry"},
                "serviceAccountNames": ["registry", "pruner"],
            }
        )

        assert request.subjects() == [
            "system:serviceaccount:openshift-image-registry:registry",
            "system:serviceaccount:openshift-image-registry:pruner",
        ]


class TestWifConfigSpec:
    def test_resource_names(self) -> None:
        spec = WifConfigSpec(
            display_name="my-wif",
            project_id=PROJECT_ID,
            pool_id=POOL_ID,
            issuer_url=ISSUER_URL,
            jwks="{}",
        )

        assert spec.pool_name == (
            f"projects/{PROJECT_ID}/locations/global/workloadIdentityPools/{POOL_ID}"
        )
        assert spec.provider_name == f"{spec.pool_name}/providers/{POOL_ID}"

    def test_duplicate_service_account_ids_rejected(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            WifConfigSpec.model_validate(
                {
                    "displayName": "my-wif",
                    "projectId": PROJECT_ID,
                    "poolId": POOL_ID,
                    "issuerUrl": ISSUER_URL,
                    "jwks": "{}",
                    "serviceAccounts": [service_account("sa1"), service_account("sa1")],
                }
            )

        assert "must be unique" in str(exc_info.value)


class TestWifConfigOutput:
    """Tests for backend record conversion."""

    def test_desired_state(self) -> None:
        record = WifConfigOutput.model_validate(backend_record())

        spec = record.desired_state()

        assert spec.display_name == "my-wif"
        assert spec.project_id == PROJECT_ID
        assert spec.pool_id == POOL_ID
        assert spec.effective_provider_id == POOL_ID
        assert spec.project_number == "123456789012"
        assert spec.wif_config_id == "2abc"
        assert [sa.id for sa in spec.service_accounts] == ["sa1"]

    def test_desired_state_without_pool_data(self) -> None:
        record = WifConfigOutput.model_validate(backend_record(with_pool_data=False))

        with pytest.raises(ValueError, match="no workload identity pool data"):
            record.desired_state()

    def test_unknown_fields_are_ignored(self) -> None:
        data = backend_record()
        data["kind"] = "WifConfig"
        data["href"] = "/api/clusters_mgmt/v1/gcp/wif_configs/2abc"

        record = WifConfigOutput.model_validate(data)

        assert record.id == "2abc"

    def test_list(self) -> None:
        listing = WifConfigList.model_validate(
            {"page": 1, "size": 1, "total": 3, "items": [backend_record()]}
        )

        assert listing.total == 3
        assert listing.items[0].display_name == "my-wif"
