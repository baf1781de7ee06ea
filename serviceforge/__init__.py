"""
ServiceForge - Mini-service pipeline builder
Core modules for the agent catalog, credentials, backend access and configuration
"""

from .agent_catalog import AgentCatalog, ApiKeyCatalog
from .api_models import Agent, ApiKeyRecord, ServiceDetails
from .backend_client import BackendClient
from .config import Settings, get_settings
from .credentials import CredentialBinder, LiteralSecret, StoredKeyRef
from .errors import (
    IntegrityError,
    NetworkError,
    RequestTimeout,
    RunInProgressError,
    ServiceForgeError,
    UpstreamError,
    ValidationError,
)

__all__ = [
    "AgentCatalog",
    "ApiKeyCatalog",
    "Agent",
    "ApiKeyRecord",
    "ServiceDetails",
    "BackendClient",
    "Settings",
    "get_settings",
    "CredentialBinder",
    "LiteralSecret",
    "StoredKeyRef",
    "IntegrityError",
    "NetworkError",
    "RequestTimeout",
    "RunInProgressError",
    "ServiceForgeError",
    "UpstreamError",
    "ValidationError",
]
__version__ = "1.0.0"
