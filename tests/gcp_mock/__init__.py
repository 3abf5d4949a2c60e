"""Google Cloud IAM mock for provisioning tests.

Provides an in-memory implementation of the GcpClient protocol so the
reconcilers and the orchestrator can be exercised without a Google project.

Key Features:
- In-memory pools, providers, service accounts and IAM bindings
- Ordered call log for asserting exact call sequences
- Error injection per method (optionally per resource)

Usage:
    from gcp_mock import MockGcpClient

    client = MockGcpClient()
    provision_wif_configuration(spec, config, client)

    assert client.mutations()[0] == ("create_pool", "my-pool")
"""

from .client import (
    DEFAULT_PROJECT_NUMBER,
    MockCall,
    MockGcpClient,
    already_exists_error,
    not_found_error,
    permission_denied_error,
)

__all__ = [
    "DEFAULT_PROJECT_NUMBER",
    "MockCall",
    "MockGcpClient",
    "already_exists_error",
    "not_found_error",
    "permission_denied_error",
]
