"""
Integration error taxonomy.

    IntegrationError
    ├── ConfigurationError      missing / invalid credentials (fatal for one integration)
    │   └── AuthError           authenticate() could not establish credentials
    ├── PlatformAPIError        non-2xx response from an external platform
    ├── ValidationError         payload cannot be normalized into a usable order
    ├── PersistenceError        store unreachable / rejected a write
    ├── AdapterNotFoundError    no adapter registered for a platform id
    ├── IntegrationNotFoundError
    ├── InboxItemNotFoundError
    ├── CapabilityError         operation routed to an adapter lacking the capability
    └── InboxTransitionError    illegal inbox state transition
"""

from __future__ import annotations


class IntegrationError(Exception):
    """Base class for every ingestion-pipeline error."""


class ConfigurationError(IntegrationError):
    pass


class AuthError(ConfigurationError):
    pass


class PlatformAPIError(IntegrationError):
    def __init__(self, platform: str, status_code: int, body: str = ""):
        self.platform = platform
        self.status_code = status_code
        self.body = body
        super().__init__(f"{platform} API error: {status_code} - {body[:200]}")


class ValidationError(IntegrationError):
    pass


class PersistenceError(IntegrationError):
    pass


class AdapterNotFoundError(IntegrationError, LookupError):
    def __init__(self, platform: str):
        self.platform = platform
        super().__init__(f"No adapter registered for platform: {platform}")


class IntegrationNotFoundError(IntegrationError, LookupError):
    def __init__(self, integration_id):
        self.integration_id = integration_id
        super().__init__(f"Integration not found or not active: {integration_id}")


class CapabilityError(IntegrationError):
    pass


class InboxTransitionError(IntegrationError):
    def __init__(self, item_id, current: str, target: str):
        self.item_id = item_id
        self.current = current
        self.target = target
        super().__init__(f"Inbox item {item_id} cannot move from {current} to {target}")


class InboxItemNotFoundError(IntegrationError, LookupError):
    def __init__(self, item_id):
        self.item_id = item_id
        super().__init__(f"Inbox item not found: {item_id}")
