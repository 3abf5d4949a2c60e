"""Tests for the Google Cloud client adapter.

The REST session and the generated gRPC clients are replaced with mocks;
these tests cover request construction and error translation only.
"""

from __future__ import annotations

import json
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
import requests
from gcp_mock.records import make_spec
from google.api_core.exceptions import AlreadyExists, PermissionDenied
from google.iam.v1 import policy_pb2

from wif_provisioner.gcp_client import (
    IAM_API_BASE_URL,
    CloudApiError,
    GoogleCloudClient,
    add_policy_member,
    federation_principal,
)

POOL_NAME = "projects/my-project-123/locations/global/workloadIdentityPools/my-wif-pool"


def make_response(status_code: int, body: object = None) -> requests.Response:
    response = requests.Response()
    response.status_code = status_code
    response.reason = "Not Found" if status_code == 404 else "OK"
    response._content = b"" if body is None else json.dumps(body).encode()
    return response


@pytest.fixture
def session() -> MagicMock:
    return MagicMock(spec=requests.Session)


@pytest.fixture
def iam() -> MagicMock:
    return MagicMock()


@pytest.fixture
def projects() -> MagicMock:
    projects = MagicMock()
    projects.get_project.return_value = SimpleNamespace(name="projects/987654321")
    return projects


@pytest.fixture
def gcp(session: MagicMock, iam: MagicMock, projects: MagicMock) -> GoogleCloudClient:
    return GoogleCloudClient(
        MagicMock(), session=session, iam_client=iam, projects_client=projects
    )


class TestCloudApiError:
    def test_message_format(self) -> None:
        error = CloudApiError(404, "Requested entity was not found.")

        assert str(error) == "googleapi: Error 404: Requested entity was not found."

    def test_from_response(self) -> None:
        response = make_response(
            404,
            {
                "error": {
                    "code": 404,
                    "message": "Requested entity was not found.",
                    "status": "NOT_FOUND",
                }
            },
        )

        error = CloudApiError.from_response(response)

        assert error.code == 404
        assert error.message == "Requested entity was not found."
        assert error.status == "NOT_FOUND"

    def test_from_response_without_body(self) -> None:
        error = CloudApiError.from_response(make_response(404))

        assert error.code == 404
        assert error.message == "Not Found"

    def test_from_grpc(self) -> None:
        error = CloudApiError.from_grpc(PermissionDenied("caller lacks iam.serviceAccounts.create"))

        assert error.code == 403
        assert "iam.serviceAccounts.create" in error.message
        assert not error.already_exists

    def test_conflict_is_already_exists(self) -> None:
        assert CloudApiError.from_grpc(AlreadyExists("exists")).already_exists


class TestPoolsAndProviders:
    """Tests for the REST calls."""

    def test_get_pool(self, gcp: GoogleCloudClient, session: MagicMock) -> None:
        session.request.return_value = make_response(200, {"name": POOL_NAME, "state": "ACTIVE"})

        body = gcp.get_pool(POOL_NAME)

        assert body["state"] == "ACTIVE"
        args, kwargs = session.request.call_args
        assert args == ("GET", f"{IAM_API_BASE_URL}/{POOL_NAME}")
        assert kwargs["timeout"] == 60

    def test_create_pool(self, gcp: GoogleCloudClient, session: MagicMock) -> None:
        session.request.return_value = make_response(200, {"name": f"{POOL_NAME}/operations/1"})
        parent = "projects/my-project-123/locations/global"

        gcp.create_pool(parent, "my-wif-pool", {"displayName": "my-wif-pool"})

        args, kwargs = session.request.call_args
        assert args == ("POST", f"{IAM_API_BASE_URL}/{parent}/workloadIdentityPools")
        assert kwargs["params"] == {"workloadIdentityPoolId": "my-wif-pool"}
        assert kwargs["json"] == {"displayName": "my-wif-pool"}

    def test_undelete_pool(self, gcp: GoogleCloudClient, session: MagicMock) -> None:
        session.request.return_value = make_response(200, {})

        gcp.undelete_pool(POOL_NAME)

        args, _ = session.request.call_args
        assert args == ("POST", f"{IAM_API_BASE_URL}/{POOL_NAME}:undelete")

    def test_create_provider(self, gcp: GoogleCloudClient, session: MagicMock) -> None:
        session.request.return_value = make_response(200, {})

        gcp.create_provider(POOL_NAME, "oidc", {})

        args, kwargs = session.request.call_args
        assert args == ("POST", f"{IAM_API_BASE_URL}/{POOL_NAME}/providers")
        assert kwargs["params"] == {"workloadIdentityPoolProviderId": "oidc"}

    def test_error_response_is_translated(
        self, gcp: GoogleCloudClient, session: MagicMock
    ) -> None:
        body = {
            "error": {"code": 403, "message": "Permission denied", "status": "PERMISSION_DENIED"}
        }
        session.request.return_value = make_response(403, body)

        with pytest.raises(CloudApiError) as exc_info:
            gcp.get_pool(POOL_NAME)

        assert exc_info.value.code == 403

    def test_transport_error_is_translated(
        self, gcp: GoogleCloudClient, session: MagicMock
    ) -> None:
        session.request.side_effect = requests.Timeout("read timed out")

        with pytest.raises(CloudApiError) as exc_info:
            gcp.get_pool(POOL_NAME)

        assert exc_info.value.code == 0
        assert "read timed out" in exc_info.value.message


class TestServiceAccounts:
    """Tests for the gRPC-backed calls."""

    def test_create_service_account(self, gcp: GoogleCloudClient, iam: MagicMock) -> None:
        iam.create_service_account.return_value = SimpleNamespace(
            name="projects/my-project-123/serviceAccounts/sa1",
            email="sa1@my-project-123.iam.gserviceaccount.com",
            unique_id="1234",
        )

        result = gcp.create_service_account("my-project-123", "sa1", "my-wif-sa1", "desc")

        assert result["email"] == "sa1@my-project-123.iam.gserviceaccount.com"
        request = iam.create_service_account.call_args.kwargs["request"]
        assert request.account_id == "sa1"
        assert request.service_account.display_name == "my-wif-sa1"

    def test_create_conflict_is_already_exists(
        self, gcp: GoogleCloudClient, iam: MagicMock
    ) -> None:
        iam.create_service_account.side_effect = AlreadyExists("sa1 already exists")

        with pytest.raises(CloudApiError) as exc_info:
            gcp.create_service_account("my-project-123", "sa1", "my-wif-sa1", "desc")

        assert exc_info.value.already_exists

    def test_bind_role_is_idempotent(self, gcp: GoogleCloudClient, projects: MagicMock) -> None:
        policy = policy_pb2.Policy()
        projects.get_iam_policy.return_value = policy

        first = gcp.bind_role("sa1", "my-project-123", "roles/viewer")
        second = gcp.bind_role("sa1", "my-project-123", "roles/viewer")

        assert first is True
        assert second is False
        assert projects.set_iam_policy.call_count == 1
        assert list(policy.bindings[0].members) == [
            "serviceAccount:sa1@my-project-123.iam.gserviceaccount.com"
        ]

    def test_bind_role_reads_and_writes_policy_version_3(
        self, gcp: GoogleCloudClient, projects: MagicMock
    ) -> None:
        policy = policy_pb2.Policy(version=1)
        projects.get_iam_policy.return_value = policy

        gcp.bind_role("sa1", "my-project-123", "roles/viewer")

        projects.get_iam_policy.assert_called_once_with(
            request={
                "resource": "projects/my-project-123",
                "options": {"requested_policy_version": 3},
            }
        )
        written = projects.set_iam_policy.call_args.kwargs["request"]["policy"]
        assert written.version == 3

    def test_bind_role_error_is_translated(
        self, gcp: GoogleCloudClient, projects: MagicMock
    ) -> None:
        projects.get_iam_policy.side_effect = PermissionDenied("no getIamPolicy")

        with pytest.raises(CloudApiError):
            gcp.bind_role("sa1", "my-project-123", "roles/viewer")

    def test_attach_impersonator(self, gcp: GoogleCloudClient, iam: MagicMock) -> None:
        policy = policy_pb2.Policy()
        iam.get_iam_policy.return_value = policy

        changed = gcp.attach_impersonator(
            "sa1", "my-project-123", "serviceAccount:osd-impersonator@x.iam.gserviceaccount.com"
        )

        assert changed is True
        request = iam.get_iam_policy.call_args.kwargs["request"]
        assert request["resource"] == (
            "projects/my-project-123/serviceAccounts/sa1@my-project-123.iam.gserviceaccount.com"
        )
        assert request["options"] == {"requested_policy_version": 3}
        assert policy.bindings[0].role == "roles/iam.serviceAccountTokenCreator"
        assert iam.set_iam_policy.call_args.kwargs["request"]["policy"].version == 3

    def test_attach_federation_uses_project_number(
        self, gcp: GoogleCloudClient, iam: MagicMock, projects: MagicMock
    ) -> None:
        policy = policy_pb2.Policy()
        iam.get_iam_policy.return_value = policy
        account = make_spec().service_accounts[0]

        gcp.attach_federation(account, "my-wif-pool", "my-project-123")
        gcp.attach_federation(account, "my-wif-pool", "my-project-123")

        assert policy.bindings[0].role == "roles/iam.workloadIdentityUser"
        assert list(policy.bindings[0].members) == [
            federation_principal(
                "987654321",
                "my-wif-pool",
                "system:serviceaccount:openshift-machine-api:machine-api-controllers",
            )
        ]
        # Project number is looked up once
        projects.get_project.assert_called_once_with(name="projects/my-project-123")

    def test_attach_federation_without_subjects_grants_nothing(
        self, gcp: GoogleCloudClient, iam: MagicMock, projects: MagicMock
    ) -> None:
        account = make_spec().service_accounts[0].model_copy(update={"credential_request": None})

        changed = gcp.attach_federation(account, "my-wif-pool", "my-project-123")

        assert changed is False
        iam.get_iam_policy.assert_not_called()
        iam.set_iam_policy.assert_not_called()
        projects.get_project.assert_not_called()


class TestAddPolicyMember:
    def test_conditional_binding_is_not_reused(self) -> None:
        policy = policy_pb2.Policy()
        binding = policy.bindings.add(role="roles/viewer", members=["user:a@example.com"])
        binding.condition.expression = "request.time < timestamp('2030-01-01T00:00:00Z')"

        changed = add_policy_member(policy, "roles/viewer", "user:a@example.com")

        assert changed is True
        assert len(policy.bindings) == 2
