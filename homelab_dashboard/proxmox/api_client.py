"""
Proxmox API Client for the homelab dashboard

This module provides a ticket-based client for the Proxmox VE API: password
authentication, transparent re-authentication when the ticket expires, node
listing and status, and VM/LXC lifecycle operations.
"""

import requests
import logging
import json
from typing import Dict, List, Optional, Any, Tuple
from urllib.parse import urljoin
import urllib3

from .models import ProxmoxSession, ResourceOperation, ResourceType, SessionCredentials

# Disable SSL warnings for self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

# Number of re-authentications attempted for a single request after a 401
MAX_AUTH_RETRIES = 1


class ProxmoxAPIError(Exception):
    """Custom exception for Proxmox API related errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ProxmoxAuthenticationError(ProxmoxAPIError):
    """Exception raised when the ticket endpoint rejects or cannot be reached."""

    pass


class ProxmoxSessionExpiredError(ProxmoxAPIError):
    """Exception raised when a freshly issued ticket is rejected as well."""

    pass


class ProxmoxConnectionError(ProxmoxAPIError):
    """Exception raised for connection failures and timeouts."""

    pass


class ProxmoxAPIClient:
    """
    Proxmox VE API client authenticating with a username/password ticket.

    The ticket and CSRF token live in a ProxmoxSession holder which may be
    shared with other clients pointing at the same endpoint.
    """

    def __init__(
        self,
        host: str,
        port: int = 8006,
        username: str = None,
        password: str = None,
        ssl_verify: bool = False,
        timeout: int = 30,
        session_state: Optional[ProxmoxSession] = None,
    ):
        """
        Initialize Proxmox API client.

        Args:
            host: Proxmox server hostname or IP address
            port: Proxmox API port (default: 8006)
            username: User including realm, e.g. ``root@pam``
            password: Password for the user
            ssl_verify: Whether to verify SSL certificates
            timeout: Request timeout in seconds
            session_state: Shared session holder; a new one is created if omitted
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.ssl_verify = ssl_verify
        self.timeout = timeout

        self.base_url = f"https://{host}:{port}/api2/json"

        # Session for connection reuse
        self.session = requests.Session()
        self.session.verify = ssl_verify

        self.session_state = session_state or ProxmoxSession()

        logger.debug(f"Initialized Proxmox API client for {host}:{port}")

    def _url(self, endpoint: str) -> str:
        return urljoin(self.base_url + "/", endpoint.lstrip("/"))

    def authenticate(self) -> SessionCredentials:
        """
        Request a new ticket and store it in the session holder.

        Returns:
            The newly stored credentials

        Raises:
            ProxmoxAuthenticationError: If the credentials are rejected or the
                server cannot be reached
        """
        with self.session_state.lock:
            return self._authenticate_locked()

    def _authenticate_locked(self) -> SessionCredentials:
        url = self._url("/access/ticket")
        logger.debug(f"Authenticating against {url} as {self.username}")

        try:
            response = self.session.post(
                url,
                data={"username": self.username, "password": self.password},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()["data"]
            credentials = self.session_state.store(
                payload["ticket"], payload["CSRFPreventionToken"]
            )
        except requests.exceptions.HTTPError as e:
            logger.error(f"Proxmox authentication rejected: {e}")
            raise ProxmoxAuthenticationError(
                f"Unable to authenticate to Proxmox at {self.host}:{self.port}",
                status_code=e.response.status_code if e.response is not None else None,
            ) from e
        except requests.exceptions.RequestException as e:
            logger.error(f"Proxmox authentication failed: {e}")
            raise ProxmoxAuthenticationError(
                f"Unable to connect to Proxmox at {self.host}:{self.port}"
            ) from e
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Unexpected authentication response from Proxmox: {e}")
            raise ProxmoxAuthenticationError(
                "Unexpected response from the Proxmox ticket endpoint"
            ) from e

        logger.info("Proxmox authentication successful")
        return credentials

    def _ensure_session(self) -> SessionCredentials:
        """Reuse the current ticket or obtain one, under the session lock."""
        with self.session_state.lock:
            credentials = self.session_state.credentials
            if credentials is None:
                credentials = self._authenticate_locked()
            return credentials

    def _send(
        self,
        method: str,
        url: str,
        credentials: SessionCredentials,
        data: Dict = None,
        params: Dict = None,
    ) -> requests.Response:
        try:
            logger.debug(f"Making {method} request to {url}")

            return self.session.request(
                method=method,
                url=url,
                data=data if method in ["POST", "PUT"] else None,
                params=params,
                cookies={"PVEAuthCookie": credentials.ticket},
                headers={"CSRFPreventionToken": credentials.csrf_token},
                timeout=self.timeout,
            )

        except requests.exceptions.ConnectTimeout:
            raise ProxmoxConnectionError(
                f"Connection timeout to {self.host}:{self.port}"
            )
        except requests.exceptions.ConnectionError as e:
            raise ProxmoxConnectionError(
                f"Connection failed to {self.host}:{self.port}: {str(e)}"
            )
        except requests.exceptions.Timeout:
            raise ProxmoxConnectionError(f"Request timeout to {self.host}:{self.port}")
        except requests.exceptions.RequestException as e:
            raise ProxmoxConnectionError(f"Request failed: {str(e)}")

    def request(
        self, method: str, endpoint: str, data: Dict = None, params: Dict = None
    ) -> Any:
        """
        Make an authenticated HTTP request to the Proxmox API.

        Authenticates lazily. On HTTP 401 the session is cleared and the request
        is retried once with a fresh ticket.

        Args:
            method: HTTP method (GET, POST, PUT, DELETE)
            endpoint: API endpoint (without /api2/json prefix)
            data: Form data for POST/PUT requests
            params: URL parameters

        Returns:
            The ``data`` member of the Proxmox response

        Raises:
            ProxmoxAuthenticationError: If (re-)authentication fails
            ProxmoxSessionExpiredError: If the retried request is rejected again
            ProxmoxConnectionError: For connection issues
            ProxmoxAPIError: For other API errors
        """
        url = self._url(endpoint)

        for attempt in range(MAX_AUTH_RETRIES + 1):
            credentials = self._ensure_session()
            response = self._send(method, url, credentials, data=data, params=params)

            if response.status_code != 401:
                return self._parse_response(response)

            logger.warning(
                f"Proxmox session rejected on {method} {endpoint} (attempt {attempt + 1})"
            )
            self.session_state.invalidate(credentials)

        raise ProxmoxSessionExpiredError(
            f"Proxmox session expired and re-authentication did not help for {method} {endpoint}",
            status_code=401,
        )

    def _parse_response(self, response: requests.Response) -> Any:
        if response.status_code >= 400:
            reason = response.reason or response.text
            raise ProxmoxAPIError(
                f"HTTP {response.status_code}: {reason}", status_code=response.status_code
            )

        try:
            result = response.json()
        except json.JSONDecodeError:
            raise ProxmoxAPIError(f"Invalid JSON response: {response.text}")

        if isinstance(result, dict) and result.get("errors"):
            errors = result["errors"]
            if isinstance(errors, dict):
                error_msg = "; ".join(f"{k}: {v}" for k, v in errors.items())
            else:
                error_msg = "; ".join(str(e) for e in errors)
            raise ProxmoxAPIError(f"Proxmox API error: {error_msg}")

        if isinstance(result, dict):
            return result.get("data")
        return result

    def test_connection(self) -> Tuple[bool, str]:
        """
        Test connection to Proxmox server and validate authentication.

        Returns:
            Tuple of (success: bool, message: str)
        """
        try:
            result = self.request("GET", "/version")

            if result and "version" in result:
                version = result["version"]
                return True, f"Connected to Proxmox VE {version}"
            else:
                return False, "Connected but received unexpected response"

        except ProxmoxAuthenticationError as e:
            logger.error(f"Authentication failed: {e}")
            return False, f"Authentication failed: {str(e)}"
        except ProxmoxConnectionError as e:
            logger.error(f"Connection failed: {e}")
            return False, f"Connection failed: {str(e)}"
        except ProxmoxAPIError as e:
            logger.error(f"API error: {e}")
            return False, f"API error: {str(e)}"

    def get_nodes(self) -> List[Dict[str, Any]]:
        """
        Get list of all nodes in the cluster.

        Returns:
            List of node information dictionaries
        """
        return self.request("GET", "/nodes")

    def get_node_status(self, node: str) -> Dict[str, Any]:
        """
        Get CPU, memory, uptime and network figures for a node.

        Args:
            node: Node name

        Returns:
            Node status information as returned by Proxmox
        """
        return self.request("GET", f"/nodes/{node}/status")

    def get_vms(self, node: str) -> List[Dict[str, Any]]:
        """Get list of VMs (QEMU) on a specific node."""
        return self.request("GET", f"/nodes/{node}/qemu")

    def get_containers(self, node: str) -> List[Dict[str, Any]]:
        """Get list of LXC containers on a specific node."""
        return self.request("GET", f"/nodes/{node}/lxc")

    def get_resources(self, node: str) -> Dict[str, List[Dict[str, Any]]]:
        """
        Get the VMs and LXC containers of a node.

        Args:
            node: Node name

        Returns:
            Dictionary with 'vms' (the qemu listing) and 'containers'
            (the lxc listing), unmodified
        """
        return {
            "vms": self.get_vms(node),
            "containers": self.get_containers(node),
        }

    def control(self, node: str, vmid, resource_type: ResourceType, operation: ResourceOperation) -> Any:
        """
        Forward a lifecycle operation for any guest type.

        Args:
            node: Node name
            vmid: VM or container ID
            resource_type: QEMU or LXC
            operation: start, stop or reboot

        Returns:
            Proxmox task identifier (UPID)
        """
        logger.info(f"{operation.value.capitalize()} {resource_type.value} {vmid} on node {node}")
        return self.request(
            "POST", f"/nodes/{node}/{resource_type.value}/{vmid}/status/{operation.value}"
        )

    def start_vm(self, node: str, vmid) -> Any:
        """Start a VM."""
        return self.control(node, vmid, ResourceType.QEMU, ResourceOperation.START)

    def stop_vm(self, node: str, vmid) -> Any:
        """Stop a VM."""
        return self.control(node, vmid, ResourceType.QEMU, ResourceOperation.STOP)

    def reboot_vm(self, node: str, vmid) -> Any:
        """Reboot a VM."""
        return self.control(node, vmid, ResourceType.QEMU, ResourceOperation.REBOOT)

    def start_lxc(self, node: str, vmid) -> Any:
        """Start an LXC container."""
        return self.control(node, vmid, ResourceType.LXC, ResourceOperation.START)

    def stop_lxc(self, node: str, vmid) -> Any:
        """Stop an LXC container."""
        return self.control(node, vmid, ResourceType.LXC, ResourceOperation.STOP)

    def reboot_lxc(self, node: str, vmid) -> Any:
        """Reboot an LXC container."""
        return self.control(node, vmid, ResourceType.LXC, ResourceOperation.REBOOT)

    def close(self):
        """Close the HTTP session."""
        if hasattr(self, "session"):
            self.session.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()


def create_client_from_config(config: Dict[str, Any]) -> ProxmoxAPIClient:
    """
    Create a ProxmoxAPIClient instance from a Flask configuration mapping.

    Args:
        config: Mapping holding the PROXMOX_* settings

    Returns:
        Configured ProxmoxAPIClient instance

    Raises:
        ValueError: If required configuration is missing
    """
    required_fields = ["PROXMOX_HOST", "PROXMOX_USER", "PROXMOX_PASSWORD"]
    for field in required_fields:
        if not config.get(field):
            raise ValueError(f"Missing required configuration field: {field}")

    return ProxmoxAPIClient(
        host=config["PROXMOX_HOST"],
        port=config.get("PROXMOX_PORT", 8006),
        username=config["PROXMOX_USER"],
        password=config["PROXMOX_PASSWORD"],
        ssl_verify=config.get("PROXMOX_SSL_VERIFY", False),
        timeout=config.get("PROXMOX_TIMEOUT", 30),
    )
