"""
Proxmox module for the homelab dashboard

This module provides the Proxmox VE integration:
- Ticket-based API client with automatic re-authentication
- Guest type and operation models, and the shared session holder
- Flask routes for nodes and VM/LXC lifecycle
"""

from .api_client import (
    ProxmoxAPIClient,
    ProxmoxAPIError,
    ProxmoxAuthenticationError,
    ProxmoxConnectionError,
    ProxmoxSessionExpiredError,
    create_client_from_config
)

from .models import (
    ProxmoxSession,
    ResourceOperation,
    ResourceType,
    SessionCredentials
)

__all__ = [
    # API Client
    'ProxmoxAPIClient',
    'ProxmoxAPIError',
    'ProxmoxAuthenticationError',
    'ProxmoxConnectionError',
    'ProxmoxSessionExpiredError',
    'create_client_from_config',

    # Models
    'ProxmoxSession',
    'ResourceOperation',
    'ResourceType',
    'SessionCredentials'
]
