"""Google Cloud IAM client used by the reconcilers.

Workload identity pools and providers are only exposed through the IAM REST
API, so they are called through an authorized ``requests`` session. Service
accounts and IAM policies go through the generated ``google-cloud-iam`` and
``google-cloud-resource-manager`` clients.

Every Google error is translated into CloudApiError here, so the layers above
branch on one error type and never parse transport-specific exceptions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Protocol

import requests
from google.api_core.exceptions import GoogleAPICallError
from google.auth.transport.requests import AuthorizedSession
from google.cloud import iam_admin_v1, resourcemanager_v3
from google.iam.v1 import policy_pb2

from .config import DEFAULT_REQUEST_TIMEOUT_SECONDS

if TYPE_CHECKING:
    from google.auth.credentials import Credentials

    from .models import ServiceAccountSpec

logger = logging.getLogger(__name__)

IAM_API_BASE_URL = "https://iam.googleapis.com/v1"

SERVICE_ACCOUNT_TOKEN_CREATOR_ROLE = "roles/iam.serviceAccountTokenCreator"
WORKLOAD_IDENTITY_USER_ROLE = "roles/iam.workloadIdentityUser"

# gRPC status names for the HTTP codes callers branch on
ALREADY_EXISTS_STATUS = "ALREADY_EXISTS"
NOT_FOUND_STATUS = "NOT_FOUND"

# Policy version read and written; conditional bindings need 3
IAM_POLICY_VERSION = 3


class CloudApiError(Exception):
    """A failed Google Cloud API call.

    Attributes:
        code: HTTP status code (0 when the request never got a response).
        message: Error message returned by the API.
        status: Canonical status name, e.g. ``NOT_FOUND``, when known.
    """

    def __init__(self, code: int, message: str, status: str | None = None) -> None:
        self.code = code
        self.message = message
        self.status = status
        super().__init__(f"googleapi: Error {code}: {message}" if code else message)

    @property
    def already_exists(self) -> bool:
        return self.code == 409 or self.status == ALREADY_EXISTS_STATUS

    @classmethod
    def from_response(cls, response: requests.Response) -> CloudApiError:
        """Build an error from a REST response carrying a Google error body."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        error = body.get("error", {}) if isinstance(body, dict) else {}
        if not isinstance(error, dict):
            error = {}
        message = error.get("message") or response.reason or "unknown error"
        return cls(response.status_code, message, error.get("status"))

    @classmethod
    def from_grpc(cls, error: GoogleAPICallError) -> CloudApiError:
        status = error.grpc_status_code.name if error.grpc_status_code is not None else None
        return cls(error.code or 0, error.message, status)


class GcpClient(Protocol):
    """Cloud calls the reconcilers depend on."""

    def get_pool(self, name: str) -> dict[str, Any]: ...

    def create_pool(self, parent: str, pool_id: str, body: dict[str, Any]) -> dict[str, Any]: ...

    def undelete_pool(self, name: str) -> dict[str, Any]: ...

    def get_provider(self, name: str) -> dict[str, Any]: ...

    def create_provider(
        self, parent: str, provider_id: str, body: dict[str, Any]
    ) -> dict[str, Any]: ...

    def get_project_number(self, project_id: str) -> str: ...

    def create_service_account(
        self, project_id: str, account_id: str, display_name: str, description: str
    ) -> dict[str, Any]: ...

    def bind_role(self, account_id: str, project_id: str, role: str) -> bool: ...

    def attach_impersonator(self, account_id: str, project_id: str, impersonator: str) -> bool: ...

    def attach_federation(
        self, account: ServiceAccountSpec, pool_id: str, project_id: str
    ) -> bool: ...


def add_policy_member(policy: policy_pb2.Policy, role: str, member: str) -> bool:
    """Add a member to a role binding in place.

    Returns:
        True if the policy changed, False if the member was already bound.
    """
    for binding in policy.bindings:
        if binding.role == role and not binding.HasField("condition"):
            if member in binding.members:
                return False
            binding.members.append(member)
            return True
    policy.bindings.add(role=role, members=[member])
    return True


def federation_principal(project_number: str, pool_id: str, subject: str) -> str:
    """IAM member for a federated token subject in a workload identity pool."""
    return (
        f"principal://iam.googleapis.com/projects/{project_number}"
        f"/locations/global/workloadIdentityPools/{pool_id}/subject/{subject}"
    )


def policy_request(resource: str) -> dict[str, Any]:
    """GetIamPolicy request asking for the version that includes conditions."""
    return {"resource": resource, "options": {"requested_policy_version": IAM_POLICY_VERSION}}


class GoogleCloudClient:
    """GcpClient backed by the Google Cloud APIs.

    Each method performs its calls synchronously; nothing is retried.
    """

    def __init__(
        self,
        credentials: Credentials,
        *,
        session: requests.Session | None = None,
        iam_client: iam_admin_v1.IAMClient | None = None,
        projects_client: resourcemanager_v3.ProjectsClient | None = None,
        timeout: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self._session = session or AuthorizedSession(credentials)
        self._iam = iam_client or iam_admin_v1.IAMClient(credentials=credentials)
        self._projects = projects_client or resourcemanager_v3.ProjectsClient(
            credentials=credentials
        )
        self._timeout = timeout
        self._project_numbers: dict[str, str] = {}

    # -------------------------------------------------------------------------
    # Workload identity pools and providers (REST)
    # -------------------------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{IAM_API_BASE_URL}/{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=body, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise CloudApiError(0, f"{method} {url} failed: {e}") from e

        if not response.ok:
            raise CloudApiError.from_response(response)
        if not response.content:
            return {}
        return response.json()

    def get_pool(self, name: str) -> dict[str, Any]:
        return self._request("GET", name)

    def create_pool(self, parent: str, pool_id: str, body: dict[str, Any]) -> dict[str, Any]:
        return self._request(
            "POST",
            f"{parent}/workloadIdentityPools",
            params={"workloadIdentityPoolId": pool_id},
            body=body,
        )

    def undelete_pool(self, name: str) -> dict[str, Any]:
        return self._request("POST", f"{name}:undelete", body={})

    def get_provider(self, name: str) -> dict[str, Any]:
        return self._request("GET", name)

    def create_provider(
        self, parent: str, provider_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return self._request(
            "POST",
            f"{parent}/providers",
            params={"workloadIdentityPoolProviderId": provider_id},
            body=body,
        )

    # -------------------------------------------------------------------------
    # Projects and service accounts (gRPC)
    # -------------------------------------------------------------------------

    def get_project_number(self, project_id: str) -> str:
        if project_id not in self._project_numbers:
            try:
                project = self._projects.get_project(name=f"projects/{project_id}")
            except GoogleAPICallError as e:
                raise CloudApiError.from_grpc(e) from e
            self._project_numbers[project_id] = project.name.split("/")[-1]
        return self._project_numbers[project_id]

    def create_service_account(
        self, project_id: str, account_id: str, display_name: str, description: str
    ) -> dict[str, Any]:
        request = iam_admin_v1.CreateServiceAccountRequest(
            name=f"projects/{project_id}",
            account_id=account_id,
            service_account=iam_admin_v1.ServiceAccount(
                display_name=display_name,
                description=description,
            ),
        )
        try:
            account = self._iam.create_service_account(request=request)
        except GoogleAPICallError as e:
            raise CloudApiError.from_grpc(e) from e
        return {"name": account.name, "email": account.email, "uniqueId": account.unique_id}

    def bind_role(self, account_id: str, project_id: str, role: str) -> bool:
        resource = f"projects/{project_id}"
        member = f"serviceAccount:{account_id}@{project_id}.iam.gserviceaccount.com"
        try:
            policy = self._projects.get_iam_policy(request=policy_request(resource))
            if not add_policy_member(policy, role, member):
                return False
            policy.version = IAM_POLICY_VERSION
            self._projects.set_iam_policy(request={"resource": resource, "policy": policy})
        except GoogleAPICallError as e:
            raise CloudApiError.from_grpc(e) from e
        logger.debug("Bound role", extra={"role": role, "member": member})
        return True

    def _grant_on_service_account(
        self, account_id: str, project_id: str, role: str, members: list[str]
    ) -> bool:
        resource = (
            f"projects/{project_id}/serviceAccounts/"
            f"{account_id}@{project_id}.iam.gserviceaccount.com"
        )
        try:
            policy = self._iam.get_iam_policy(request=policy_request(resource))
            changed = False
            for member in members:
                changed = add_policy_member(policy, role, member) or changed
            if not changed:
                return False
            policy.version = IAM_POLICY_VERSION
            self._iam.set_iam_policy(request={"resource": resource, "policy": policy})
        except GoogleAPICallError as e:
            raise CloudApiError.from_grpc(e) from e
        return True

    def attach_impersonator(self, account_id: str, project_id: str, impersonator: str) -> bool:
        return self._grant_on_service_account(
            account_id, project_id, SERVICE_ACCOUNT_TOKEN_CREATOR_ROLE, [impersonator]
        )

    def attach_federation(
        self, account: ServiceAccountSpec, pool_id: str, project_id: str
    ) -> bool:
        """Trust the pool's tokens for each Kubernetes subject of ``account``.

        An account without subjects grants nothing and makes no calls.
        """
        subjects = account.subjects()
        if not subjects:
            return False
        project_number = self.get_project_number(project_id)
        members = [federation_principal(project_number, pool_id, s) for s in subjects]
        return self._grant_on_service_account(
            account.id, project_id, WORKLOAD_IDENTITY_USER_ROLE, members
        )
