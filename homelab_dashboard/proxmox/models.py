"""
Data models for Proxmox resources and the authenticated session.

This module defines the guest type and operation enumerations used by the
VM/LXC control routes, and the session holder shared between request threads.
"""

import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ResourceType(Enum):
    """Enumeration for guest types as named by the Proxmox API."""
    QEMU = "qemu"
    LXC = "lxc"

    @classmethod
    def from_value(cls, value: Optional[str]) -> "ResourceType":
        """
        Parse a guest type from a request body.

        A missing value means a QEMU virtual machine.

        Raises:
            ValueError: If the value is neither 'qemu' nor 'lxc'
        """
        if value is None or value == "":
            return cls.QEMU
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(f"Invalid resource type '{value}'. Must be 'qemu' or 'lxc'")


class ResourceOperation(Enum):
    """Lifecycle operations forwarded to Proxmox."""
    START = "start"
    STOP = "stop"
    REBOOT = "reboot"


@dataclass(frozen=True)
class SessionCredentials:
    """Ticket/CSRF pair returned by the Proxmox /access/ticket endpoint."""
    ticket: str
    csrf_token: str


class ProxmoxSession:
    """
    Holder for the Proxmox session shared by every request thread.

    The lock guards the refresh-or-reuse decision so that concurrent requests
    observing an expired ticket trigger a single re-authentication.
    """

    def __init__(self):
        self.lock = threading.Lock()
        self._credentials: Optional[SessionCredentials] = None

    @property
    def credentials(self) -> Optional[SessionCredentials]:
        return self._credentials

    @property
    def is_authenticated(self) -> bool:
        return self._credentials is not None

    def store(self, ticket: str, csrf_token: str) -> SessionCredentials:
        self._credentials = SessionCredentials(ticket=ticket, csrf_token=csrf_token)
        return self._credentials

    def invalidate(self, stale: Optional[SessionCredentials] = None) -> bool:
        """
        Drop the current credentials.

        When ``stale`` is given, only clear the session if it still holds those
        credentials; another thread may already have replaced them.

        Returns:
            True if the session was cleared
        """
        with self.lock:
            if stale is not None and self._credentials is not stale:
                return False
            self._credentials = None
            return True
