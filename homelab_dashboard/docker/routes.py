"""
Flask routes for Docker container management on the homelab LXCs.
"""

import logging

from flask import Blueprint, request, jsonify

from ..responses import create_error_response, create_success_response, get_service
from .api_client import DockerAPIClient, DockerAPIError, DockerNotConfiguredError

logger = logging.getLogger(__name__)

docker_bp = Blueprint('docker', __name__, url_prefix='/api/docker')


def get_client() -> DockerAPIClient:
    return get_service('docker')


def _handle_docker_error(e: Exception, action: str):
    if isinstance(e, DockerNotConfiguredError):
        return create_error_response(str(e), 403, error_code='DOCKER_NOT_CONFIGURED')
    if isinstance(e, DockerAPIError):
        logger.error(f"Docker error during {action}: {e}")
        return create_error_response(str(e), 500)
    logger.exception(f"Unexpected error during {action}")
    return create_error_response(f"Failed to {action}: {str(e)}", 500)


@docker_bp.route('/hosts', methods=['GET'])
def get_hosts():
    """List the LXCs with a Docker endpoint."""
    return jsonify(create_success_response(get_client().configured_hosts()))


@docker_bp.route('/<vmid>/containers', methods=['GET'])
def list_containers(vmid: str):
    """List the Docker containers of an LXC."""
    try:
        return jsonify(create_success_response(get_client().list_containers(vmid)))
    except Exception as e:
        return _handle_docker_error(e, "list containers")


@docker_bp.route('/<vmid>/pull', methods=['POST'])
def pull_image(vmid: str):
    """Pull an image on an LXC."""
    data = request.get_json(silent=True) or {}
    image_name = data.get('imageName')
    if not image_name:
        return create_error_response("Missing required field: imageName", 400)

    try:
        get_client().pull_image(vmid, image_name)
        return jsonify(create_success_response(message=f"Image '{image_name}' pulled"))
    except Exception as e:
        return _handle_docker_error(e, "pull image")


@docker_bp.route('/<vmid>/containers/<container_id>/<action>', methods=['POST'])
def control_container(vmid: str, container_id: str, action: str):
    """Start, stop or restart a Docker container."""
    client = get_client()
    operations = {
        'start': client.start_container,
        'stop': client.stop_container,
        'restart': client.restart_container,
    }
    operation = operations.get(action)
    if operation is None:
        return create_error_response(f"Unknown container action: {action}", 404)

    try:
        operation(vmid, container_id)
        return jsonify(create_success_response())
    except Exception as e:
        return _handle_docker_error(e, f"{action} container")
