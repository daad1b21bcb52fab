import json
import threading
import time
from unittest.mock import MagicMock

import pytest
import requests

from homelab_dashboard.app import create_app
from homelab_dashboard.config import Config
from homelab_dashboard.proxmox.api_client import ProxmoxAPIClient
from homelab_dashboard.docker.api_client import DockerAPIClient
from homelab_dashboard.docker.models import DockerHost
from homelab_dashboard.ansible.deployer import AnsibleDeployer, AnsibleHostConfig
from homelab_dashboard.ansible.runner import CommandResult


HOMELAB_TABLES = {
    "docker_hosts": {
        "104": {"ip": "192.168.1.11", "port": 2375},
        "108": {"ip": "192.168.1.35", "port": 2378},
    },
    "deployable_services": {
        "101": "dashboard",
        "110": "frigo",
    },
}


def make_response(status_code=200, json_data=None, text=None, reason=None):
    """Build a real requests.Response for stubbed sessions."""
    response = requests.Response()
    response.status_code = status_code
    response.reason = reason
    response.encoding = 'utf-8'
    if json_data is not None:
        response._content = json.dumps(json_data).encode('utf-8')
        response.headers['Content-Type'] = 'application/json'
    else:
        response._content = (text or '').encode('utf-8')
    response._content_consumed = True
    return response


def wait_until(predicate, timeout=5.0):
    """Poll ``predicate`` until it holds or ``timeout`` seconds pass."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


class StubProcess:
    """Stands in for a detached Popen; exits when finish() is called."""

    def __init__(self, pid, running=False):
        self.pid = pid
        self.returncode = None
        self._exited = threading.Event()
        if not running:
            self.finish()

    def finish(self, returncode=0):
        self.returncode = returncode
        self._exited.set()

    def wait(self, timeout=None):
        self._exited.wait(timeout)
        return self.returncode


class StubRunner:
    """Records commands instead of running them."""

    def __init__(self, result=None, error=None, keep_spawned_running=False):
        self.result = result or CommandResult(args=[], exit_code=0)
        self.error = error
        self.keep_spawned_running = keep_spawned_running
        self.calls = []
        self.spawned = []
        self.processes = []

    def run(self, args, timeout, max_output_bytes=None):
        self.calls.append({
            'args': list(args),
            'timeout': timeout,
            'max_output_bytes': max_output_bytes,
        })
        if self.error is not None:
            raise self.error
        self.result.args = list(args)
        return self.result

    def spawn(self, args, log_path=None):
        self.spawned.append({'args': list(args), 'log_path': log_path})
        process = StubProcess(4242 + len(self.processes), running=self.keep_spawned_running)
        self.processes.append(process)
        return process

    @property
    def command_line(self):
        return " ".join(self.calls[-1]['args'])


@pytest.fixture
def homelab_file(tmp_path):
    path = tmp_path / "homelab.json"
    path.write_text(json.dumps(HOMELAB_TABLES))
    return path


@pytest.fixture
def test_config(tmp_path, homelab_file):
    class TestConfig(Config):
        TESTING = True
        DEBUG = False
        SECRET_KEY = 'test-secret'
        CORS_ORIGINS = ''
        FRONTEND_DIST_DIR = ''
        PROXMOX_HOST = 'pve.test'
        PROXMOX_PORT = 8006
        PROXMOX_USER = 'root@pam'
        PROXMOX_PASSWORD = 'secret'
        ANSIBLE_HOST = '192.168.1.61'
        ANSIBLE_USER = 'ansible'
        ANSIBLE_SSH_KEY = '/home/dashboard/.ssh/id_rsa'
        ANSIBLE_DIR = '/home/ansible/ansible-playbooks'
        ANSIBLE_INVENTORY = 'inventory.ini'
        ANSIBLE_PLAYBOOK = 'deploy.yml'
        SELF_VMID = '101'
        SELF_DEPLOY_RELOAD_DELAY = 40
        UPDATE_SCRIPT_PATH = '/root/scripts/update-dashboard.sh'
        LOG_LEVEL = 'INFO'
        LOG_DIR = str(tmp_path / 'logs')
        HOMELAB_CONFIG_FILE = str(homelab_file)

    return TestConfig


@pytest.fixture
def ansible_host():
    return AnsibleHostConfig(
        host='192.168.1.61',
        user='ansible',
        ssh_key='/home/dashboard/.ssh/id_rsa',
        ansible_dir='/home/ansible/ansible-playbooks',
        inventory_file='inventory.ini',
        playbook_file='deploy.yml',
    )


@pytest.fixture
def runner():
    return StubRunner()


@pytest.fixture
def deployer(ansible_host, runner):
    return AnsibleDeployer(
        ansible_host,
        HOMELAB_TABLES["deployable_services"],
        runner=runner,
        self_vmid='101',
        update_script_path='/root/scripts/update-dashboard.sh',
    )


@pytest.fixture
def proxmox_client():
    client = ProxmoxAPIClient('pve.test', username='root@pam', password='secret')
    client.session = MagicMock(spec=requests.Session)
    return client


@pytest.fixture
def docker_client():
    hosts = {
        vmid: DockerHost.from_dict(vmid, entry)
        for vmid, entry in HOMELAB_TABLES["docker_hosts"].items()
    }
    client = DockerAPIClient(hosts, timeout=30, pull_timeout=300)
    client.session = MagicMock(spec=requests.Session)
    return client


@pytest.fixture
def proxmox_mock():
    return MagicMock(spec=ProxmoxAPIClient)


@pytest.fixture
def app(test_config, proxmox_mock, docker_client, deployer):
    return create_app(
        test_config,
        proxmox_client=proxmox_mock,
        docker_client=docker_client,
        deployer=deployer,
    )


@pytest.fixture
def client(app):
    return app.test_client()
