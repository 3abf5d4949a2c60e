"""Client for the WIF configuration backend API.

The backend owns the declarative intent: it assigns pool IDs, issuer URLs and
JWKS material and lists the service accounts a configuration needs. This
module only transports records; provisioning decisions live in the
reconcilers.
"""

from __future__ import annotations

import logging
import os
from typing import Any, Protocol

import requests
from pydantic import ValidationError

from .config import DEFAULT_REQUEST_TIMEOUT_SECONDS, ConfigurationError
from .models import WifConfigInput, WifConfigList, WifConfigOutput

logger = logging.getLogger(__name__)

DEFAULT_OCM_URL = "https://api.openshift.com"
DEFAULT_OCM_TOKEN_URL = (
    "https://sso.redhat.com/auth/realms/redhat-external/protocol/openid-connect/token"
)
DEFAULT_OCM_CLIENT_ID = "cloud-services"

WIF_CONFIGS_PATH = "/api/clusters_mgmt/v1/gcp/wif_configs"


class BackendError(Exception):
    """A backend request failed or returned a malformed record."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)

    @classmethod
    def from_response(cls, method: str, url: str, response: requests.Response) -> BackendError:
        """Build an error from an OCM error body (``{"kind": "Error", "reason": ...}``)."""
        try:
            body = response.json()
        except ValueError:
            body = {}
        reason = body.get("reason") if isinstance(body, dict) else None
        message = reason or response.text or response.reason or "unknown error"
        return cls(
            f"{method} {url} returned {response.status_code}: {message}",
            response.status_code,
        )


class WifConfigLookupError(Exception):
    """A WIF configuration could not be resolved to exactly one record."""

    def __init__(self, key: str, message: str) -> None:
        self.key = key
        super().__init__(message)


class WifConfigNotFoundError(WifConfigLookupError):
    def __init__(self, key: str) -> None:
        super().__init__(key, f"WIF configuration with identifier or name '{key}' not found")


class AmbiguousLookupError(WifConfigLookupError):
    def __init__(self, key: str, total: int) -> None:
        self.total = total
        super().__init__(
            key, f"there are {total} WIF configurations found with identifier or name '{key}'"
        )


class WifConfigBackend(Protocol):
    """Backend operations the provisioning entry points depend on."""

    def create_wif_config(self, wif_input: WifConfigInput) -> WifConfigOutput: ...

    def find_wif_config(self, key: str) -> WifConfigOutput: ...

    def update_wif_config(
        self, wif_config_id: str, template_refs: list[str]
    ) -> WifConfigOutput: ...


def search_query(key: str) -> str:
    """Search expression matching a record by ID or display name."""
    quoted = key.replace("'", "''")
    return f"id = '{quoted}' or display_name = '{quoted}'"


class OcmWifConfigClient:
    """WifConfigBackend over the OCM clusters management REST API."""

    def __init__(
        self,
        url: str,
        access_token: str,
        *,
        session: requests.Session | None = None,
        timeout: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        self.url = url.rstrip("/")
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            }
        )
        self._timeout = timeout

    @classmethod
    def from_env(cls, session: requests.Session | None = None) -> OcmWifConfigClient:
        """Build a client from environment variables.

        Environment Variables:
            OCM_URL: API base URL (default: https://api.openshift.com)
            OCM_TOKEN: Access token, used as is when set
            OCM_OFFLINE_TOKEN: Offline token exchanged for an access token
            OCM_TOKEN_URL: Token endpoint for the exchange
            OCM_CLIENT_ID: Client ID for the exchange (default: cloud-services)

        Raises:
            ConfigurationError: If no token is configured.
            BackendError: If the token exchange fails.
        """
        session = session or requests.Session()
        url = os.environ.get("OCM_URL", DEFAULT_OCM_URL)

        access_token = os.environ.get("OCM_TOKEN", "")
        if not access_token:
            offline_token = os.environ.get("OCM_OFFLINE_TOKEN", "")
            if not offline_token:
                raise ConfigurationError("OCM_TOKEN or OCM_OFFLINE_TOKEN must be set")
            access_token = exchange_offline_token(
                session,
                offline_token,
                os.environ.get("OCM_TOKEN_URL", DEFAULT_OCM_TOKEN_URL),
                os.environ.get("OCM_CLIENT_ID", DEFAULT_OCM_CLIENT_ID),
            )

        return cls(url, access_token, session=session)

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        url = f"{self.url}{path}"
        try:
            response = self._session.request(
                method, url, params=params, json=body, timeout=self._timeout
            )
        except requests.RequestException as e:
            raise BackendError(f"{method} {url} failed: {e}") from e

        if not response.ok:
            error = BackendError.from_response(method, url, response)
            logger.error(
                "Backend request failed",
                extra={"method": method, "url": url, "status_code": response.status_code},
            )
            raise error
        if response.status_code == requests.codes.no_content:
            return {}
        return response.json()

    def _parse_record(self, data: dict[str, Any]) -> WifConfigOutput:
        try:
            return WifConfigOutput.model_validate(data)
        except ValidationError as e:
            raise BackendError(f"Malformed WIF configuration record: {e}") from e

    def create_wif_config(self, wif_input: WifConfigInput) -> WifConfigOutput:
        data = self._request(
            "POST", WIF_CONFIGS_PATH, body=wif_input.model_dump(by_alias=True)
        )
        record = self._parse_record(data)
        logger.info(
            "WIF configuration created",
            extra={"wif_config_id": record.id, "display_name": wif_input.display_name},
        )
        return record

    def get_wif_config(self, wif_config_id: str) -> WifConfigOutput:
        return self._parse_record(self._request("GET", f"{WIF_CONFIGS_PATH}/{wif_config_id}"))

    def list_wif_configs(
        self, search: str | None = None, page: int = 1, size: int = 100
    ) -> WifConfigList:
        params: dict[str, Any] = {"page": page, "size": size}
        if search:
            params["search"] = search
        data = self._request("GET", WIF_CONFIGS_PATH, params=params)
        try:
            return WifConfigList.model_validate(data)
        except ValidationError as e:
            raise BackendError(f"Malformed WIF configuration list: {e}") from e

    def find_wif_config(self, key: str) -> WifConfigOutput:
        """Resolve a WIF configuration by ID or display name.

        Raises:
            WifConfigNotFoundError: If no record matches.
            AmbiguousLookupError: If more than one record matches.
        """
        result = self.list_wif_configs(search_query(key), page=1, size=1)
        if result.total == 0 or not result.items:
            raise WifConfigNotFoundError(key)
        if result.total > 1:
            raise AmbiguousLookupError(key, result.total)
        return result.items[0]

    def update_wif_config(self, wif_config_id: str, template_refs: list[str]) -> WifConfigOutput:
        data = self._request(
            "PATCH",
            f"{WIF_CONFIGS_PATH}/{wif_config_id}",
            body={"metadata": {"templateRefs": template_refs}},
        )
        return self._parse_record(data)


def exchange_offline_token(
    session: requests.Session, offline_token: str, token_url: str, client_id: str
) -> str:
    """Trade a long-lived offline token for a short-lived access token."""
    data = {
        "grant_type": "refresh_token",
        "client_id": client_id,
        "refresh_token": offline_token,
    }
    try:
        response = session.post(token_url, data=data, timeout=DEFAULT_REQUEST_TIMEOUT_SECONDS)
    except requests.RequestException as e:
        raise BackendError(f"Token exchange with {token_url} failed: {e}") from e
    if not response.ok:
        raise BackendError(
            f"Token exchange with {token_url} returned {response.status_code}",
            response.status_code,
        )
    access_token = response.json().get("access_token")
    if not access_token:
        raise BackendError(f"Token exchange with {token_url} returned no access token")
    return access_token
