"""
Flask routes for Ansible deployments and the legacy dashboard update.

Deployments run ansible-playbook on the Ansible LXC over SSH and can take up
to 15 minutes; the request stays open until the playbook finishes, except for
the LXC hosting this dashboard, which is deployed in the background.
"""

import logging
import time

from flask import Blueprint, jsonify, current_app

from ..logging_config import log_performance_metric
from ..responses import create_error_response, create_success_response, get_service
from .deployer import (
    AnsibleDeployer,
    AnsibleError,
    DeployInProgressError,
    ServiceNotDeployableError,
)

logger = logging.getLogger(__name__)

ansible_bp = Blueprint('ansible', __name__, url_prefix='/api')


def get_deployer() -> AnsibleDeployer:
    return get_service('ansible')


def _deploy_error_response(e: AnsibleError, status_code: int = 500):
    return create_error_response(
        e.message,
        status_code,
        serviceName=e.service_name,
        output=e.stdout,
        stderr=e.stderr,
    )


@ansible_bp.route('/containers/<vmid>/ansible-deploy', methods=['POST'])
def ansible_deploy(vmid: str):
    """Deploy the service of an allow-listed LXC with Ansible."""
    deployer = get_deployer()
    start_time = time.time()

    try:
        result = deployer.deploy(vmid)
    except ServiceNotDeployableError as e:
        return create_error_response(e.message, 403, error_code='SERVICE_NOT_DEPLOYABLE')
    except DeployInProgressError as e:
        return _deploy_error_response(e, 409)
    except AnsibleError as e:
        logger.error(f"Ansible deployment of LXC {vmid} failed: {e.message}")
        if e.stderr:
            logger.error(f"Ansible stderr: {e.stderr}")
        return _deploy_error_response(e)

    if result.detached:
        reload_after = current_app.config.get('SELF_DEPLOY_RELOAD_DELAY', 40)
        return jsonify(create_success_response(
            message=f"Deployment of \"{result.service_name}\" started; the dashboard will restart",
            serviceName=result.service_name,
            detached=True,
            reloadAfter=reload_after,
        )), 202

    log_performance_metric(
        logging.getLogger('homelab_dashboard.performance'),
        'ansible-deploy',
        time.time() - start_time,
        {'vmid': vmid, 'service': result.service_name},
    )

    return jsonify(create_success_response(
        message=f"Service \"{result.service_name}\" deployed successfully",
        serviceName=result.service_name,
        output=result.output,
        stderr=result.stderr,
    ))


@ansible_bp.route('/ansible/services', methods=['GET'])
def get_services():
    """Return the vmid to service name table."""
    return jsonify(create_success_response(get_deployer().list_services()))


@ansible_bp.route('/ansible/test-connection', methods=['GET'])
def test_connection():
    """Check SSH access to the Ansible LXC."""
    deployer = get_deployer()
    target = deployer.ansible_host

    try:
        output = deployer.test_connection()
    except AnsibleError as e:
        logger.error(f"Ansible connection test failed: {e.message}")
        return create_error_response(
            e.message, 500, lxcHost=target.host, user=target.user
        )

    return jsonify(create_success_response(
        message="Connection to the Ansible LXC succeeded",
        ansibleVersion=output,
        lxcHost=target.host,
        user=target.user,
    ))


@ansible_bp.route('/containers/<vmid>/update-dashboard', methods=['POST'])
def update_dashboard(vmid: str):
    """Run the local dashboard update script (legacy)."""
    try:
        result = get_deployer().update_dashboard(vmid)
    except ServiceNotDeployableError as e:
        return create_error_response(e.message, 403)
    except AnsibleError as e:
        logger.error(f"Dashboard update failed: {e.message}")
        return create_error_response(e.message, 500, output=e.stdout, stderr=e.stderr)

    return jsonify(create_success_response(
        message="Dashboard updated successfully",
        output=result.output,
        stderr=result.stderr,
    ))
