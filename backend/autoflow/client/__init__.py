"""HTTP client for the automations backend."""

from autoflow.client.automations import AutomationsClient
from autoflow.client.errors import (
    AuthenticationError,
    AutomationClientError,
    NotFoundError,
    RemoteError,
    TransportError,
)

__all__ = [
    "AutomationsClient",
    "AutomationClientError",
    "AuthenticationError",
    "NotFoundError",
    "RemoteError",
    "TransportError",
]
