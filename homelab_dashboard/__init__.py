"""
Homelab dashboard backend

A Flask service proxying a Proxmox VE hypervisor, the Docker engines of its
LXCs, and Ansible deployments run over SSH.
"""

__version__ = '1.0.0'
