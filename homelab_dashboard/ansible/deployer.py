"""
Ansible deploy dispatcher for the homelab dashboard

This module maps an LXC vmid to the service name used in the Ansible
inventory and runs the deployment playbook for that service on the Ansible
LXC over SSH. Only vmids present in the deployable-services table can be
deployed; the table is loaded once at startup.

Example:
    deployer = AnsibleDeployer(AnsibleHostConfig(...), {'110': 'frigo'})
    result = deployer.deploy('110')
    print(result.output)
"""

import logging
import shlex
import subprocess
import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

from .runner import CommandExecutionError, CommandResult, CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_DEPLOY_TIMEOUT = 15 * 60
DEFAULT_MAX_OUTPUT_BYTES = 10 * 1024 * 1024
CONNECTION_TEST_TIMEOUT = 10
CONNECTION_TEST_SSH_TIMEOUT = 5

# ssh exits with 255 for its own errors; these messages mean the host was never reached
UNREACHABLE_MARKERS = (
    "connection refused",
    "connection timed out",
    "no route to host",
    "network is unreachable",
    "could not resolve hostname",
)


class AnsibleError(Exception):
    """Base exception for deployment failures, carrying the captured output."""

    def __init__(self, message: str, service_name: Optional[str] = None,
                 stdout: str = "", stderr: str = ""):
        super().__init__(message)
        self.message = message
        self.service_name = service_name
        self.stdout = stdout
        self.stderr = stderr


class ServiceNotDeployableError(AnsibleError):
    """Exception raised for a vmid absent from the allow-list."""

    pass


class DeployInProgressError(AnsibleError):
    """Exception raised when the same service is already being deployed."""

    pass


class DeployTimeoutError(AnsibleError):
    """Exception raised when the playbook run exceeds its time budget."""

    pass


class OutputLimitExceededError(AnsibleError):
    """Exception raised when the playbook output exceeds the buffer cap."""

    pass


class AnsibleHostUnreachableError(AnsibleError):
    """Exception raised when the Ansible LXC cannot be reached over SSH."""

    pass


class DeployFailedError(AnsibleError):
    """Exception raised when the remote command exits with an error."""

    def __init__(self, message: str, exit_code: Optional[int] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code


@dataclass(frozen=True)
class AnsibleHostConfig:
    """SSH target and playbook location on the Ansible LXC."""
    host: str
    user: str
    ssh_key: str
    ansible_dir: str
    inventory_file: str = "inventory.ini"
    playbook_file: str = "deploy.yml"

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> 'AnsibleHostConfig':
        return cls(
            host=config["ANSIBLE_HOST"],
            user=config["ANSIBLE_USER"],
            ssh_key=config["ANSIBLE_SSH_KEY"],
            ansible_dir=config["ANSIBLE_DIR"],
            inventory_file=config.get("ANSIBLE_INVENTORY", "inventory.ini"),
            playbook_file=config.get("ANSIBLE_PLAYBOOK", "deploy.yml"),
        )


@dataclass
class DeployResult:
    """Outcome of a deployment request."""
    vmid: str
    service_name: str
    output: str = ""
    stderr: str = ""
    detached: bool = False
    pid: Optional[int] = None
    command: List[str] = field(default_factory=list)


class AnsibleDeployer:
    """
    Dispatches deployments of allow-listed LXCs to ansible-playbook over SSH.

    At most one run per service is in flight; runs of different services may
    overlap.
    """

    def __init__(
        self,
        ansible_host: AnsibleHostConfig,
        services: Mapping[str, str],
        runner: Optional[CommandRunner] = None,
        deploy_timeout: float = DEFAULT_DEPLOY_TIMEOUT,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        self_vmid: Optional[str] = None,
        self_deploy_log: Optional[str] = None,
        update_script_path: Optional[str] = None,
        update_timeout: float = 300,
    ):
        """
        Initialize the deployer.

        Args:
            ansible_host: SSH target and playbook location
            services: Mapping of vmid to inventory service name
            runner: Subprocess runner, replaced by a stub in tests
            deploy_timeout: Playbook run budget in seconds
            max_output_bytes: Output cap per stream
            self_vmid: vmid of the LXC hosting this dashboard; its deployment
                is launched detached because it restarts this process
            self_deploy_log: File receiving the output of detached runs
            update_script_path: Local script run by the legacy update route
            update_timeout: Budget of the legacy update script in seconds
        """
        self.ansible_host = ansible_host
        self.services = MappingProxyType({str(k): str(v) for k, v in services.items()})
        self.runner = runner or CommandRunner()
        self.deploy_timeout = deploy_timeout
        self.max_output_bytes = max_output_bytes
        self.self_vmid = str(self_vmid) if self_vmid else None
        self.self_deploy_log = self_deploy_log
        self.update_script_path = update_script_path
        self.update_timeout = update_timeout

        self._locks_guard = threading.Lock()
        self._service_locks: Dict[str, threading.Lock] = {}

    def list_services(self) -> Dict[str, str]:
        """Return the vmid to service name table."""
        return dict(self.services)

    def get_service_name(self, vmid: str) -> str:
        """
        Resolve the inventory service name of a vmid.

        Raises:
            ServiceNotDeployableError: If the vmid is not allow-listed
        """
        service_name = self.services.get(str(vmid))
        if not service_name:
            raise ServiceNotDeployableError(
                f"Container {vmid} is not configured for Ansible deployment"
            )
        return service_name

    def _ssh_command(self, remote_command: str, connect_timeout: Optional[int] = None) -> List[str]:
        target = self.ansible_host
        args = [
            "ssh",
            "-i", target.ssh_key,
            "-o", "StrictHostKeyChecking=no",
            "-o", "BatchMode=yes",
        ]
        if connect_timeout:
            args += ["-o", f"ConnectTimeout={connect_timeout}"]
        args += [f"{target.user}@{target.host}", remote_command]
        return args

    def build_deploy_command(self, service_name: str) -> List[str]:
        """Build the ssh command running the playbook limited to one service."""
        target = self.ansible_host
        remote_command = (
            f"cd {shlex.quote(target.ansible_dir)} && "
            f"ansible-playbook -i {shlex.quote(target.inventory_file)} "
            f"{shlex.quote(target.playbook_file)} --limit {shlex.quote(service_name)}"
        )
        return self._ssh_command(remote_command)

    def _service_lock(self, service_name: str) -> threading.Lock:
        with self._locks_guard:
            return self._service_locks.setdefault(service_name, threading.Lock())

    def is_deploying(self, service_name: str) -> bool:
        """Check whether a deployment of the service is in flight."""
        return self._service_lock(service_name).locked()

    def is_self_deploy(self, vmid: str) -> bool:
        return self.self_vmid is not None and str(vmid) == self.self_vmid

    def deploy(self, vmid: str) -> DeployResult:
        """
        Run the deployment playbook for an allow-listed LXC.

        The LXC hosting this dashboard is deployed with a detached process,
        since the playbook restarts the service answering the request. The
        service counts as in flight until that process exits.

        Args:
            vmid: LXC identifier

        Returns:
            DeployResult with the playbook output

        Raises:
            ServiceNotDeployableError: If the vmid is not allow-listed
            DeployInProgressError: If the service is already being deployed
            DeployTimeoutError: If the run exceeds the time budget
            OutputLimitExceededError: If the output exceeds the cap
            AnsibleHostUnreachableError: If SSH cannot reach the Ansible LXC
            DeployFailedError: For any other failure of the remote command
        """
        vmid = str(vmid)
        service_name = self.get_service_name(vmid)
        command = self.build_deploy_command(service_name)

        lock = self._service_lock(service_name)
        if not lock.acquire(blocking=False):
            raise DeployInProgressError(
                f"A deployment of '{service_name}' is already running",
                service_name=service_name,
            )

        release_lock = True
        try:
            logger.info(
                f"Deploying service '{service_name}' (LXC {vmid}) via "
                f"{self.ansible_host.user}@{self.ansible_host.host}"
            )

            if self.is_self_deploy(vmid):
                process = self._spawn(command, service_name)
                self._release_on_exit(process, lock, service_name)
                release_lock = False
                logger.warning(
                    f"Self-deployment of '{service_name}' started (pid {process.pid}); "
                    "this process is expected to be restarted"
                )
                return DeployResult(
                    vmid=vmid, service_name=service_name, detached=True, pid=process.pid, command=command
                )

            result = self._run(command, self.deploy_timeout, service_name)
            self._check_result(result, service_name)
        finally:
            if release_lock:
                lock.release()

        logger.info(f"Ansible deployment of '{service_name}' completed")
        if result.stderr:
            logger.debug(f"Ansible stderr for '{service_name}': {result.stderr}")

        return DeployResult(
            vmid=vmid,
            service_name=service_name,
            output=result.stdout,
            stderr=result.stderr,
            command=command,
        )

    def _spawn(self, command: List[str], service_name: str) -> subprocess.Popen:
        try:
            return self.runner.spawn(command, log_path=self.self_deploy_log)
        except CommandExecutionError as e:
            raise AnsibleError(str(e), service_name=service_name) from e

    @staticmethod
    def _release_on_exit(process: subprocess.Popen, lock: threading.Lock, service_name: str) -> None:
        def wait_and_release():
            try:
                exit_code = process.wait()
                logger.info(f"Detached deployment of '{service_name}' exited with code {exit_code}")
            finally:
                lock.release()

        threading.Thread(
            target=wait_and_release, name=f"deploy-{service_name}", daemon=True
        ).start()

    def _run(self, command: List[str], timeout: float, service_name: Optional[str] = None) -> CommandResult:
        try:
            return self.runner.run(command, timeout=timeout, max_output_bytes=self.max_output_bytes)
        except CommandExecutionError as e:
            raise AnsibleError(str(e), service_name=service_name) from e

    def _check_result(self, result: CommandResult, service_name: Optional[str] = None) -> None:
        """Translate a failed run into the matching exception."""
        context = {
            'service_name': service_name,
            'stdout': result.stdout,
            'stderr': result.stderr,
        }

        if result.timed_out:
            minutes = int(self.deploy_timeout // 60)
            raise DeployTimeoutError(
                f"Deployment exceeded the maximum duration ({minutes} minutes)", **context
            )

        if result.output_truncated:
            raise OutputLimitExceededError(
                f"Command output exceeded {self.max_output_bytes} bytes", **context
            )

        if result.exit_code == 0:
            return

        stderr_lower = result.stderr.lower()
        if result.exit_code == 255 and any(marker in stderr_lower for marker in UNREACHABLE_MARKERS):
            raise AnsibleHostUnreachableError(
                f"Cannot reach Ansible host ({self.ansible_host.host})", **context
            )

        detail = result.stderr.strip().splitlines()[-1] if result.stderr.strip() else ""
        message = f"Command failed with exit code {result.exit_code}"
        if detail:
            message += f": {detail}"
        raise DeployFailedError(message, exit_code=result.exit_code, **context)

    def test_connection(self) -> str:
        """
        Check that the Ansible LXC is reachable and has Ansible installed.

        Returns:
            Output of ``ansible --version`` on the Ansible LXC

        Raises:
            AnsibleError: If the connection check fails
        """
        command = self._ssh_command(
            "echo 'Connection OK' && ansible --version",
            connect_timeout=CONNECTION_TEST_SSH_TIMEOUT,
        )
        result = self._run(command, CONNECTION_TEST_TIMEOUT)

        if result.timed_out:
            raise AnsibleHostUnreachableError(
                f"Connection test to {self.ansible_host.host} timed out",
                stdout=result.stdout, stderr=result.stderr,
            )
        self._check_result(result)
        return result.stdout

    def update_dashboard(self, vmid: str) -> DeployResult:
        """
        Run the local dashboard update script (legacy route).

        Only the LXC hosting this dashboard may be updated this way.

        Raises:
            ServiceNotDeployableError: For any other vmid
            AnsibleError: If the script is not configured or fails
        """
        vmid = str(vmid)
        if self.self_vmid is None or vmid != self.self_vmid:
            raise ServiceNotDeployableError(
                f"This action is only available for container {self.self_vmid}"
            )
        if not self.update_script_path:
            raise AnsibleError("No update script configured")

        logger.info(f"Running dashboard update script {self.update_script_path}")
        result = self._run([self.update_script_path], self.update_timeout)

        if result.timed_out:
            raise DeployTimeoutError(
                f"Update script exceeded {int(self.update_timeout)} seconds",
                stdout=result.stdout, stderr=result.stderr,
            )
        if result.output_truncated:
            raise OutputLimitExceededError(
                f"Update script output exceeded {self.max_output_bytes} bytes",
                stdout=result.stdout, stderr=result.stderr,
            )
        if result.exit_code != 0:
            raise DeployFailedError(
                f"Update script failed with exit code {result.exit_code}",
                exit_code=result.exit_code, stdout=result.stdout, stderr=result.stderr,
            )

        return DeployResult(
            vmid=vmid,
            service_name=self.services.get(vmid, "dashboard"),
            output=result.stdout,
            stderr=result.stderr,
            command=[self.update_script_path],
        )
