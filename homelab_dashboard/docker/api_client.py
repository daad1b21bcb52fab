"""
Docker Engine API client for the homelab dashboard

Container operations are routed to the Docker API exposed by each LXC. The
set of LXCs is a static table; there is no discovery, TLS or authentication.
"""

import logging
import time
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

import requests

from .models import DockerHost

logger = logging.getLogger(__name__)


class DockerAPIError(Exception):
    """Custom exception for Docker API related errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class DockerNotConfiguredError(DockerAPIError):
    """Exception raised for an LXC absent from the Docker host table."""

    def __init__(self, vmid: str):
        super().__init__(f"Docker is not configured for LXC {vmid}")
        self.vmid = vmid


class DockerConnectionError(DockerAPIError):
    """Exception raised when the Docker endpoint cannot be reached."""

    pass


class DockerTimeoutError(DockerConnectionError):
    """Exception raised when a Docker call exceeds its timeout."""

    pass


class DockerAPIClient:
    """Client dispatching container operations to the right Docker host."""

    def __init__(
        self,
        hosts: Mapping[str, DockerHost],
        timeout: int = 30,
        pull_timeout: int = 300,
    ):
        """
        Initialize the Docker API client.

        Args:
            hosts: Mapping of LXC vmid to Docker host
            timeout: Timeout in seconds for listing and lifecycle calls
            pull_timeout: Timeout in seconds for image pulls
        """
        self.hosts = MappingProxyType(dict(hosts))
        self.timeout = timeout
        self.pull_timeout = pull_timeout
        self.session = requests.Session()

    def has_docker(self, vmid: str) -> bool:
        """Check whether an LXC has a Docker endpoint configured."""
        return str(vmid) in self.hosts

    def configured_hosts(self) -> List[Dict[str, Any]]:
        """Return the configured Docker hosts sorted by vmid."""
        return [self.hosts[vmid].to_dict() for vmid in sorted(self.hosts)]

    def _get_host(self, vmid: str) -> DockerHost:
        host = self.hosts.get(str(vmid))
        if host is None:
            raise DockerNotConfiguredError(str(vmid))
        return host

    def _make_request(
        self,
        vmid: str,
        method: str,
        path: str,
        params: Dict[str, Any] = None,
        timeout: int = None,
        stream: bool = False,
    ) -> requests.Response:
        host = self._get_host(vmid)
        url = f"{host.base_url}{path}"

        try:
            logger.debug(f"Making {method} request to {url}")
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                timeout=timeout or self.timeout,
                stream=stream,
            )
        except requests.exceptions.Timeout:
            raise DockerTimeoutError(f"Request timeout to Docker on LXC {vmid} ({host.ip}:{host.port})")
        except requests.exceptions.ConnectionError as e:
            raise DockerConnectionError(
                f"Connection failed to Docker on LXC {vmid} ({host.ip}:{host.port}): {str(e)}"
            )
        except requests.exceptions.RequestException as e:
            raise DockerConnectionError(f"Request failed: {str(e)}")

        if response.status_code >= 400:
            raise DockerAPIError(
                f"HTTP {response.status_code}: {self._error_message(response)}",
                status_code=response.status_code,
            )

        return response

    @staticmethod
    def _error_message(response: requests.Response) -> str:
        # Docker reports errors as {"message": "..."}
        try:
            return response.json().get('message') or response.text
        except ValueError:
            return response.text

    def list_containers(self, vmid: str) -> List[Dict[str, Any]]:
        """
        List all containers, running or not, on an LXC.

        Args:
            vmid: LXC identifier

        Returns:
            The Docker container array as returned by the engine
        """
        response = self._make_request(vmid, "GET", "/containers/json?all=true")
        try:
            return response.json()
        except ValueError:
            raise DockerAPIError(f"Invalid JSON response: {response.text}")

    def pull_image(self, vmid: str, image_name: str) -> str:
        """
        Pull an image on an LXC.

        Args:
            vmid: LXC identifier
            image_name: Image reference, e.g. ``nginx:latest``

        Returns:
            The raw progress stream returned by the engine, unparsed

        Raises:
            DockerTimeoutError: If the whole pull exceeds ``pull_timeout``
                seconds, even while the engine keeps sending progress
        """
        logger.info(f"Pulling image {image_name} on LXC {vmid}")
        deadline = time.monotonic() + self.pull_timeout
        response = self._make_request(
            vmid,
            "POST",
            "/images/create",
            params={"fromImage": image_name},
            timeout=self.pull_timeout,
            stream=True,
        )

        chunks = []
        try:
            for chunk in response.iter_content(chunk_size=8192):
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise DockerTimeoutError(
                        f"Pull of {image_name} on LXC {vmid} exceeded {self.pull_timeout}s"
                    )
        except requests.exceptions.Timeout:
            raise DockerTimeoutError(f"Request timeout to Docker on LXC {vmid} while pulling {image_name}")
        except requests.exceptions.RequestException as e:
            raise DockerConnectionError(f"Pull of {image_name} on LXC {vmid} interrupted: {str(e)}")
        finally:
            response.close()

        return b"".join(chunks).decode("utf-8", errors="replace")

    def _container_action(self, vmid: str, container_id: str, action: str) -> Dict[str, bool]:
        logger.info(f"{action.capitalize()} container {container_id} on LXC {vmid}")
        self._make_request(vmid, "POST", f"/containers/{container_id}/{action}")
        return {"success": True}

    def start_container(self, vmid: str, container_id: str) -> Dict[str, bool]:
        """Start a container."""
        return self._container_action(vmid, container_id, "start")

    def stop_container(self, vmid: str, container_id: str) -> Dict[str, bool]:
        """Stop a container."""
        return self._container_action(vmid, container_id, "stop")

    def restart_container(self, vmid: str, container_id: str) -> Dict[str, bool]:
        """Restart a container."""
        return self._container_action(vmid, container_id, "restart")

    def close(self):
        """Close the HTTP session."""
        self.session.close()


def create_client_from_config(config: Mapping[str, Any], docker_hosts: Mapping[str, Any]) -> DockerAPIClient:
    """
    Create a DockerAPIClient from Flask configuration and the host table.

    Args:
        config: Mapping holding the DOCKER_* settings
        docker_hosts: Raw table of vmid to {'ip', 'port'} entries

    Raises:
        ValueError: If an entry of the host table is invalid
    """
    hosts = {
        str(vmid): DockerHost.from_dict(str(vmid), entry)
        for vmid, entry in docker_hosts.items()
    }
    return DockerAPIClient(
        hosts,
        timeout=config.get("DOCKER_TIMEOUT", 30),
        pull_timeout=config.get("DOCKER_PULL_TIMEOUT", 300),
    )
