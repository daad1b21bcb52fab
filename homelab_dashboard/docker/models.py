"""
Data models for the Docker Engine endpoints exposed by the homelab LXCs.
"""

from dataclasses import dataclass
from typing import Any, Dict


DEFAULT_DOCKER_PORT = 2375


@dataclass(frozen=True)
class DockerHost:
    """Address of the Docker socket proxy running inside one LXC."""
    vmid: str
    ip: str
    port: int = DEFAULT_DOCKER_PORT

    @property
    def base_url(self) -> str:
        return f"http://{self.ip}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert host to dictionary representation."""
        return {
            'vmid': self.vmid,
            'ip': self.ip,
            'port': self.port,
        }

    @classmethod
    def from_dict(cls, vmid: str, data: Dict[str, Any]) -> 'DockerHost':
        """
        Create a host from a configuration entry.

        Args:
            vmid: LXC identifier the entry is keyed by
            data: Mapping with 'ip' and optional 'port'

        Raises:
            ValueError: If the entry has no IP or an invalid port
        """
        if not isinstance(data, dict) or not data.get('ip'):
            raise ValueError(f"Docker host for LXC {vmid} must define an 'ip'")

        try:
            port = int(data.get('port', DEFAULT_DOCKER_PORT))
        except (TypeError, ValueError):
            raise ValueError(f"Docker host for LXC {vmid} has an invalid port: {data.get('port')}")

        if port < 1 or port > 65535:
            raise ValueError(f"Docker host for LXC {vmid} port must be between 1 and 65535: {port}")

        return cls(vmid=str(vmid), ip=str(data['ip']), port=port)
