"""
Configuration management for the homelab dashboard
"""
import os
import json
import logging
from types import MappingProxyType
from typing import Dict, Any, Optional, List, Mapping
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = 'False') -> bool:
    return os.environ.get(name, default).lower() in ['true', '1', 'yes']


class ConfigurationError(Exception):
    """Custom exception for configuration-related errors."""
    pass


class Config:
    """Application configuration class with validation and default handling."""

    # Flask configuration
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'dev-secret-key-change-in-production'
    HOST = os.environ.get('FLASK_HOST') or '0.0.0.0'
    PORT = int(os.environ.get('FLASK_PORT') or 80)
    DEBUG = _env_bool('FLASK_DEBUG')
    CORS_ORIGINS = os.environ.get('CORS_ORIGINS', '')

    # Static frontend build served at / (disabled when empty)
    FRONTEND_DIST_DIR = os.environ.get('FRONTEND_DIST_DIR', '')

    # Proxmox settings
    PROXMOX_HOST = os.environ.get('PROXMOX_HOST', '')
    PROXMOX_PORT = int(os.environ.get('PROXMOX_PORT') or 8006)
    PROXMOX_USER = os.environ.get('PROXMOX_USER', '')
    PROXMOX_PASSWORD = os.environ.get('PROXMOX_PASSWORD', '')
    PROXMOX_SSL_VERIFY = _env_bool('PROXMOX_SSL_VERIFY')
    PROXMOX_TIMEOUT = int(os.environ.get('PROXMOX_TIMEOUT') or 30)

    # Docker settings
    DOCKER_TIMEOUT = int(os.environ.get('DOCKER_TIMEOUT') or 30)
    DOCKER_PULL_TIMEOUT = int(os.environ.get('DOCKER_PULL_TIMEOUT') or 300)

    # Ansible LXC settings
    ANSIBLE_HOST = os.environ.get('ANSIBLE_HOST', '')
    ANSIBLE_USER = os.environ.get('ANSIBLE_USER') or 'ansible'
    ANSIBLE_SSH_KEY = os.environ.get('ANSIBLE_SSH_KEY') or os.path.expanduser('~/.ssh/id_rsa')
    ANSIBLE_DIR = os.environ.get('ANSIBLE_DIR') or '/home/ansible/ansible-playbooks'
    ANSIBLE_INVENTORY = os.environ.get('ANSIBLE_INVENTORY') or 'inventory.ini'
    ANSIBLE_PLAYBOOK = os.environ.get('ANSIBLE_PLAYBOOK') or 'deploy.yml'
    ANSIBLE_DEPLOY_TIMEOUT = int(os.environ.get('ANSIBLE_DEPLOY_TIMEOUT') or 900)
    ANSIBLE_MAX_OUTPUT_BYTES = int(os.environ.get('ANSIBLE_MAX_OUTPUT_BYTES') or 10 * 1024 * 1024)

    # LXC hosting this dashboard; deploying it restarts the backend
    SELF_VMID = os.environ.get('SELF_VMID') or '101'
    SELF_DEPLOY_RELOAD_DELAY = int(os.environ.get('SELF_DEPLOY_RELOAD_DELAY') or 40)
    UPDATE_SCRIPT_PATH = os.environ.get('UPDATE_SCRIPT_PATH') or '/root/scripts/update-dashboard.sh'
    UPDATE_SCRIPT_TIMEOUT = int(os.environ.get('UPDATE_SCRIPT_TIMEOUT') or 300)

    # Static tables (Docker hosts, deployable services)
    DATA_DIR = os.environ.get('DATA_DIR') or os.path.join(os.path.dirname(__file__), 'data')
    HOMELAB_CONFIG_FILE = os.environ.get('HOMELAB_CONFIG_FILE') or 'homelab.json'

    # Logging configuration
    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()
    LOG_DIR = os.environ.get('LOG_DIR') or os.path.join(os.path.dirname(os.path.abspath(__file__)), 'logs')

    @classmethod
    def get_homelab_config_path(cls) -> str:
        """Get the full path to the static tables file."""
        if os.path.isabs(cls.HOMELAB_CONFIG_FILE):
            return cls.HOMELAB_CONFIG_FILE
        return os.path.join(cls.DATA_DIR, cls.HOMELAB_CONFIG_FILE)

    @classmethod
    def validate_configuration(cls) -> List[str]:
        """
        Validate configuration settings and return list of warnings/errors.

        Returns:
            List of validation messages (warnings and errors)
        """
        messages = []

        # Validate Flask settings
        if cls.SECRET_KEY == 'dev-secret-key-change-in-production':
            messages.append("WARNING: Using default SECRET_KEY. Change this in production!")

        if cls.PORT < 1 or cls.PORT > 65535:
            messages.append(f"ERROR: Invalid PORT value: {cls.PORT}")

        # Validate Proxmox settings
        if cls.PROXMOX_PORT < 1 or cls.PROXMOX_PORT > 65535:
            messages.append(f"ERROR: Invalid PROXMOX_PORT value: {cls.PROXMOX_PORT}")

        for name in ('PROXMOX_HOST', 'PROXMOX_USER', 'PROXMOX_PASSWORD'):
            if not getattr(cls, name):
                messages.append(f"ERROR: {name} is required")

        if cls.PROXMOX_TIMEOUT < 1 or cls.PROXMOX_TIMEOUT > 300:
            messages.append(f"WARNING: PROXMOX_TIMEOUT value seems unusual: {cls.PROXMOX_TIMEOUT}")

        # Validate Ansible settings
        if not cls.ANSIBLE_HOST:
            messages.append("WARNING: ANSIBLE_HOST is not set; Ansible deployments will fail")

        if cls.ANSIBLE_DEPLOY_TIMEOUT < 1:
            messages.append(f"ERROR: Invalid ANSIBLE_DEPLOY_TIMEOUT value: {cls.ANSIBLE_DEPLOY_TIMEOUT}")

        if cls.ANSIBLE_MAX_OUTPUT_BYTES < 1024:
            messages.append(f"ERROR: ANSIBLE_MAX_OUTPUT_BYTES is too small: {cls.ANSIBLE_MAX_OUTPUT_BYTES}")

        # Validate log level
        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if cls.LOG_LEVEL not in valid_log_levels:
            messages.append(f"ERROR: Invalid LOG_LEVEL: {cls.LOG_LEVEL}. Must be one of: {', '.join(valid_log_levels)}")

        return messages

    @classmethod
    def init_app(cls, app):
        """Initialize application with configuration."""
        validation_messages = cls.validate_configuration()
        for message in validation_messages:
            if message.startswith("ERROR"):
                logger.error(message)
                raise ConfigurationError(message)
            else:
                logger.warning(message)


class HomelabConfigManager:
    """
    Loader for the static tables stored in a JSON file.

    The file holds two objects keyed by LXC vmid::

        {
          "docker_hosts": {"104": {"ip": "192.168.1.11", "port": 2375}},
          "deployable_services": {"110": "frigo"}
        }

    Tables are read once and exposed as read-only mappings.
    """

    def __init__(self, config_file_path: Optional[str] = None):
        """
        Initialize the manager.

        Args:
            config_file_path: Path to the configuration file. If None, uses Config.get_homelab_config_path()
        """
        self.config_file_path = config_file_path or Config.get_homelab_config_path()
        self._config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """
        Load configuration from JSON file.

        A missing file yields empty tables.

        Returns:
            Configuration dictionary

        Raises:
            ConfigurationError: If file cannot be loaded or parsed
        """
        if not os.path.exists(self.config_file_path):
            logger.warning(f"Homelab configuration file not found: {self.config_file_path}")
            return {"docker_hosts": {}, "deployable_services": {}}

        try:
            with open(self.config_file_path, 'r', encoding='utf-8') as f:
                config = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid JSON in configuration file: {e}")
        except IOError as e:
            raise ConfigurationError(f"Cannot read configuration file: {e}")

        if not isinstance(config, dict):
            raise ConfigurationError("Configuration file must contain a JSON object")

        config.setdefault("docker_hosts", {})
        config.setdefault("deployable_services", {})

        errors = self._validate_config(config)
        if errors:
            raise ConfigurationError(f"Invalid homelab configuration: {'; '.join(errors)}")

        logger.debug(f"Loaded homelab configuration from: {self.config_file_path}")
        return config

    def _validate_config(self, config: Dict[str, Any]) -> List[str]:
        """
        Validate the tables.

        Returns:
            List of validation error messages
        """
        errors = []

        docker_hosts = config["docker_hosts"]
        if not isinstance(docker_hosts, dict):
            errors.append("'docker_hosts' must be an object")
        else:
            for vmid, entry in docker_hosts.items():
                if not isinstance(entry, dict) or not entry.get("ip"):
                    errors.append(f"Docker host {vmid} must define an 'ip'")

        services = config["deployable_services"]
        if not isinstance(services, dict):
            errors.append("'deployable_services' must be an object")
        else:
            for vmid, service_name in services.items():
                if not isinstance(service_name, str) or not service_name:
                    errors.append(f"Service name for {vmid} must be a non-empty string")

        return errors

    @property
    def docker_hosts(self) -> Mapping[str, Dict[str, Any]]:
        """Docker host table keyed by vmid."""
        return MappingProxyType({
            str(vmid): dict(entry) for vmid, entry in self._config["docker_hosts"].items()
        })

    @property
    def deployable_services(self) -> Mapping[str, str]:
        """Service name table keyed by vmid."""
        return MappingProxyType({
            str(vmid): name for vmid, name in self._config["deployable_services"].items()
        })
