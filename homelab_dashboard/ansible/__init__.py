"""
Ansible module for the homelab dashboard

Runs the deployment playbook of allow-listed LXCs on the Ansible LXC over SSH.
"""

from .deployer import (
    AnsibleDeployer,
    AnsibleError,
    AnsibleHostConfig,
    AnsibleHostUnreachableError,
    DeployFailedError,
    DeployInProgressError,
    DeployResult,
    DeployTimeoutError,
    OutputLimitExceededError,
    ServiceNotDeployableError
)

from .runner import (
    CommandExecutionError,
    CommandNotFoundError,
    CommandResult,
    CommandRunner
)

__all__ = [
    'AnsibleDeployer',
    'AnsibleError',
    'AnsibleHostConfig',
    'AnsibleHostUnreachableError',
    'DeployFailedError',
    'DeployInProgressError',
    'DeployResult',
    'DeployTimeoutError',
    'OutputLimitExceededError',
    'ServiceNotDeployableError',
    'CommandExecutionError',
    'CommandNotFoundError',
    'CommandResult',
    'CommandRunner'
]
