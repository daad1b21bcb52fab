"""
Flask routes for Proxmox node and guest management.

This module provides REST API endpoints listing nodes, reading node status
and guests, and forwarding start/stop/reboot requests for VMs and LXCs.
"""

import logging

from flask import Blueprint, request, jsonify

from ..responses import create_error_response, create_success_response, get_service
from .api_client import ProxmoxAPIClient, ProxmoxAPIError
from .models import ResourceOperation, ResourceType

logger = logging.getLogger(__name__)

# Create Blueprint for Proxmox routes
proxmox_bp = Blueprint('proxmox', __name__, url_prefix='/api')


def get_client() -> ProxmoxAPIClient:
    return get_service('proxmox')


# Node Routes

@proxmox_bp.route('/nodes', methods=['GET'])
def get_nodes():
    """List the Proxmox nodes."""
    try:
        return jsonify(create_success_response(get_client().get_nodes()))
    except ProxmoxAPIError as e:
        logger.error(f"Failed to get nodes: {e}")
        return create_error_response(str(e), 500)
    except Exception as e:
        logger.exception("Failed to get nodes")
        return create_error_response(f"Failed to get nodes: {str(e)}", 500)


@proxmox_bp.route('/nodes/<node>/status', methods=['GET'])
def get_node_status(node: str):
    """Get CPU, memory, uptime and network figures of a node."""
    try:
        return jsonify(create_success_response(get_client().get_node_status(node)))
    except ProxmoxAPIError as e:
        logger.error(f"Failed to get status of node {node}: {e}")
        return create_error_response(str(e), 500)
    except Exception as e:
        logger.exception(f"Failed to get status of node {node}")
        return create_error_response(f"Failed to get node status: {str(e)}", 500)


@proxmox_bp.route('/nodes/<node>/resources', methods=['GET'])
def get_node_resources(node: str):
    """Get the VMs and LXC containers of a node."""
    try:
        return jsonify(create_success_response(get_client().get_resources(node)))
    except ProxmoxAPIError as e:
        logger.error(f"Failed to get resources of node {node}: {e}")
        return create_error_response(str(e), 500)
    except Exception as e:
        logger.exception(f"Failed to get resources of node {node}")
        return create_error_response(f"Failed to get resources: {str(e)}", 500)


# VM/LXC Control Operations

@proxmox_bp.route('/vms/<vmid>/start', methods=['POST'])
def start_resource(vmid: str):
    """Start a VM or LXC container."""
    return _control_resource(vmid, ResourceOperation.START)


@proxmox_bp.route('/vms/<vmid>/stop', methods=['POST'])
def stop_resource(vmid: str):
    """Stop a VM or LXC container."""
    return _control_resource(vmid, ResourceOperation.STOP)


@proxmox_bp.route('/vms/<vmid>/reboot', methods=['POST'])
def reboot_resource(vmid: str):
    """Reboot a VM or LXC container."""
    return _control_resource(vmid, ResourceOperation.REBOOT)


def _control_resource(vmid: str, operation: ResourceOperation):
    """
    Forward a lifecycle operation to Proxmox.

    The request body names the node and the guest type ('qemu' or 'lxc',
    defaulting to 'qemu').

    Args:
        vmid: VM/Container ID
        operation: Operation to perform

    Returns:
        JSON response
    """
    data = request.get_json(silent=True) or {}

    node = data.get('node')
    if not node:
        return create_error_response("Missing required field: node", 400)

    try:
        resource_type = ResourceType.from_value(data.get('type'))
    except ValueError as e:
        return create_error_response(str(e), 400)

    try:
        result = get_client().control(node, vmid, resource_type, operation)
        return jsonify(create_success_response(result))
    except ProxmoxAPIError as e:
        logger.error(f"Failed to {operation.value} {resource_type.value} {vmid}: {e}")
        return create_error_response(str(e), 500)
    except Exception as e:
        logger.exception(f"Failed to {operation.value} {resource_type.value} {vmid}")
        return create_error_response(f"Operation failed: {str(e)}", 500)
