from unittest.mock import MagicMock

import pytest

from homelab_dashboard.app import create_app
from homelab_dashboard.ansible.runner import CommandResult
from homelab_dashboard.proxmox.api_client import ProxmoxAPIError
from homelab_dashboard.proxmox.models import ResourceOperation, ResourceType

from .conftest import make_response


# Proxmox

def test_list_nodes(client, proxmox_mock):
    proxmox_mock.get_nodes.return_value = [{"node": "pve", "status": "online"}]

    response = client.get('/api/nodes')

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['data'] == [{"node": "pve", "status": "online"}]


def test_node_status_and_resources(client, proxmox_mock):
    proxmox_mock.get_node_status.return_value = {"cpu": 0.12, "uptime": 3600}
    proxmox_mock.get_resources.return_value = {"vms": [{"vmid": 100}], "containers": [{"vmid": 104}]}

    status = client.get('/api/nodes/pve/status').get_json()
    resources = client.get('/api/nodes/pve/resources').get_json()

    assert status['data']['uptime'] == 3600
    assert resources['data'] == {"vms": [{"vmid": 100}], "containers": [{"vmid": 104}]}
    proxmox_mock.get_resources.assert_called_once_with('pve')


def test_upstream_failure_becomes_error_envelope(client, proxmox_mock):
    proxmox_mock.get_nodes.side_effect = ProxmoxAPIError("HTTP 596: Broken pipe", status_code=596)

    response = client.get('/api/nodes')

    assert response.status_code == 500
    body = response.get_json()
    assert body['success'] is False
    assert body['error'] == "HTTP 596: Broken pipe"


@pytest.mark.parametrize("action, operation", [
    ("start", ResourceOperation.START),
    ("stop", ResourceOperation.STOP),
    ("reboot", ResourceOperation.REBOOT),
])
def test_lifecycle_routes(client, proxmox_mock, action, operation):
    proxmox_mock.control.return_value = "UPID:pve:0001"

    response = client.post(f'/api/vms/104/{action}', json={"node": "pve", "type": "lxc"})

    assert response.status_code == 200
    assert response.get_json()['data'] == "UPID:pve:0001"
    proxmox_mock.control.assert_called_once_with('pve', '104', ResourceType.LXC, operation)


def test_lifecycle_defaults_to_qemu(client, proxmox_mock):
    client.post('/api/vms/100/start', json={"node": "pve"})

    proxmox_mock.control.assert_called_once_with('pve', '100', ResourceType.QEMU, ResourceOperation.START)


def test_lifecycle_requires_node(client, proxmox_mock):
    response = client.post('/api/vms/100/start', json={"type": "qemu"})

    assert response.status_code == 400
    assert response.get_json()['error'] == "Missing required field: node"
    proxmox_mock.control.assert_not_called()


def test_lifecycle_rejects_unknown_type(client, proxmox_mock):
    response = client.post('/api/vms/100/stop', json={"node": "pve", "type": "docker"})

    assert response.status_code == 400
    proxmox_mock.control.assert_not_called()


# Docker

def test_docker_hosts(client):
    body = client.get('/api/docker/hosts').get_json()

    assert body['data'] == [
        {"vmid": "104", "ip": "192.168.1.11", "port": 2375},
        {"vmid": "108", "ip": "192.168.1.35", "port": 2378},
    ]


def test_docker_containers(client, docker_client):
    docker_client.session.request.return_value = make_response(200, [{"Id": "abc123"}])

    body = client.get('/api/docker/104/containers').get_json()

    assert body['success'] is True
    assert body['data'] == [{"Id": "abc123"}]


def test_docker_unconfigured_lxc_is_forbidden(client, docker_client):
    response = client.get('/api/docker/999/containers')

    assert response.status_code == 403
    body = response.get_json()
    assert body['error'] == "Docker is not configured for LXC 999"
    assert body['error_code'] == 'DOCKER_NOT_CONFIGURED'
    docker_client.session.request.assert_not_called()


def test_docker_engine_error(client, docker_client):
    docker_client.session.request.return_value = make_response(500, {"message": "driver failed"})

    response = client.post('/api/docker/104/containers/abc123/restart')

    assert response.status_code == 500
    assert "driver failed" in response.get_json()['error']


def test_pull_requires_image_name(client, docker_client):
    response = client.post('/api/docker/104/pull', json={})

    assert response.status_code == 400
    docker_client.session.request.assert_not_called()


def test_pull_image(client, docker_client):
    docker_client.session.request.return_value = make_response(200, text='{"status":"Done"}')

    response = client.post('/api/docker/104/pull', json={"imageName": "nginx:latest"})

    assert response.status_code == 200
    assert response.get_json()['message'] == "Image 'nginx:latest' pulled"


@pytest.mark.parametrize("action", ["start", "stop", "restart"])
def test_container_action_routes(client, docker_client, action):
    docker_client.session.request.return_value = make_response(204, text="")

    response = client.post(f'/api/docker/104/containers/abc123/{action}')

    assert response.status_code == 200
    assert response.get_json()['success'] is True
    assert docker_client.session.request.call_args.kwargs['url'].endswith(f"/containers/abc123/{action}")


def test_unknown_container_action(client, docker_client):
    response = client.post('/api/docker/104/containers/abc123/remove')

    assert response.status_code == 404
    docker_client.session.request.assert_not_called()


def test_unexpected_docker_failure(client, docker_client, monkeypatch):
    monkeypatch.setattr(docker_client, "list_containers", MagicMock(side_effect=RuntimeError("boom")))

    response = client.get('/api/docker/104/containers')

    assert response.status_code == 500
    assert response.get_json()['error'] == "Failed to list containers: boom"


# Ansible

def test_deploy_allow_listed_service(client, runner):
    runner.result = CommandResult(args=[], exit_code=0, stdout="PLAY RECAP", stderr="")

    response = client.post('/api/containers/110/ansible-deploy')

    assert response.status_code == 200
    body = response.get_json()
    assert body['success'] is True
    assert body['serviceName'] == "frigo"
    assert body['output'] == "PLAY RECAP"
    assert "--limit frigo" in runner.command_line


def test_deploy_unknown_vmid_is_forbidden(client, runner):
    response = client.post('/api/containers/999/ansible-deploy')

    assert response.status_code == 403
    body = response.get_json()
    assert body['success'] is False
    assert body['error_code'] == 'SERVICE_NOT_DEPLOYABLE'
    assert runner.calls == []


def test_deploy_failure_returns_output(client, runner):
    runner.result = CommandResult(args=[], exit_code=2, stdout="PLAY RECAP\nfailed=1", stderr="ERROR! boom")

    response = client.post('/api/containers/110/ansible-deploy')

    assert response.status_code == 500
    body = response.get_json()
    assert body['error'] == "Command failed with exit code 2: ERROR! boom"
    assert body['serviceName'] == "frigo"
    assert body['output'] == "PLAY RECAP\nfailed=1"
    assert body['stderr'] == "ERROR! boom"


def test_deploy_in_progress_conflict(client, deployer):
    lock = deployer._service_lock("frigo")
    lock.acquire()
    try:
        response = client.post('/api/containers/110/ansible-deploy')
    finally:
        lock.release()

    assert response.status_code == 409
    assert response.get_json()['serviceName'] == "frigo"


def test_self_deploy_accepted(client, runner):
    response = client.post('/api/containers/101/ansible-deploy')

    assert response.status_code == 202
    body = response.get_json()
    assert body['detached'] is True
    assert body['serviceName'] == "dashboard"
    assert body['reloadAfter'] == 40
    assert runner.calls == []
    assert len(runner.spawned) == 1


def test_repeated_self_deploy_conflicts_while_running(client, runner):
    runner.keep_spawned_running = True

    first = client.post('/api/containers/101/ansible-deploy')
    second = client.post('/api/containers/101/ansible-deploy')
    runner.processes[0].finish()

    assert first.status_code == 202
    assert second.status_code == 409
    assert second.get_json()['serviceName'] == "dashboard"
    assert len(runner.spawned) == 1


def test_ansible_services(client):
    body = client.get('/api/ansible/services').get_json()

    assert body['data'] == {"101": "dashboard", "110": "frigo"}


def test_ansible_test_connection(client, runner):
    runner.result = CommandResult(args=[], exit_code=0, stdout="Connection OK\nansible [core 2.15.0]")

    body = client.get('/api/ansible/test-connection').get_json()

    assert body['success'] is True
    assert body['ansibleVersion'] == "Connection OK\nansible [core 2.15.0]"
    assert body['lxcHost'] == "192.168.1.61"
    assert body['user'] == "ansible"


def test_ansible_test_connection_failure(client, runner):
    runner.result = CommandResult(args=[], exit_code=255, stderr="ssh: connect to host: No route to host")

    response = client.get('/api/ansible/test-connection')

    assert response.status_code == 500
    assert response.get_json()['lxcHost'] == "192.168.1.61"


def test_update_dashboard_routes(client, runner):
    assert client.post('/api/containers/110/update-dashboard').status_code == 403
    assert runner.calls == []

    runner.result = CommandResult(args=[], exit_code=0, stdout="Already up to date.")
    body = client.post('/api/containers/101/update-dashboard').get_json()

    assert body['success'] is True
    assert body['output'] == "Already up to date."


# Application

def test_health(client, proxmox_mock):
    proxmox_mock.test_connection.return_value = (True, "Connected to Proxmox VE 8.1.4")

    body = client.get('/health').get_json()

    assert body['status'] == 'healthy'
    assert body['proxmox'] == {"connected": True, "message": "Connected to Proxmox VE 8.1.4"}


def test_health_degraded(client, proxmox_mock):
    proxmox_mock.test_connection.return_value = (False, "Connection failed: refused")

    assert client.get('/health').get_json()['status'] == 'degraded'


def test_unknown_api_route_returns_json(client):
    response = client.get('/api/unknown')

    assert response.status_code == 404
    assert response.get_json()['error_code'] == 'HTTP_404'


def test_frontend_served_with_spa_fallback(test_config, proxmox_mock, docker_client, deployer, tmp_path):
    dist = tmp_path / "dist"
    (dist / "assets").mkdir(parents=True)
    (dist / "index.html").write_text("<div id=\"root\"></div>")
    (dist / "assets" / "app.js").write_text("console.log('ui')")
    test_config.FRONTEND_DIST_DIR = str(dist)

    app = create_app(test_config, proxmox_client=proxmox_mock, docker_client=docker_client, deployer=deployer)
    client = app.test_client()

    assert b'id="root"' in client.get('/').data
    assert b'id="root"' in client.get('/docker/104').data
    assert b"console.log" in client.get('/assets/app.js').data
    assert client.get('/api/nope').status_code == 404
