"""
Docker module for the homelab dashboard

Routes container operations to the Docker Engine API of each LXC listed in
the static host table.
"""

from .api_client import (
    DockerAPIClient,
    DockerAPIError,
    DockerConnectionError,
    DockerNotConfiguredError,
    DockerTimeoutError,
    create_client_from_config
)

from .models import DockerHost

__all__ = [
    'DockerAPIClient',
    'DockerAPIError',
    'DockerConnectionError',
    'DockerNotConfiguredError',
    'DockerTimeoutError',
    'create_client_from_config',
    'DockerHost'
]
