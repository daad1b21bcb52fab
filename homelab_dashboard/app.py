"""
Homelab Dashboard - Main Flask Application

This module provides the Flask application factory for the homelab dashboard
backend. The application proxies a Proxmox VE hypervisor and the Docker
engines of its LXCs, triggers Ansible deployments over SSH, and optionally
serves the pre-built React frontend.

Key Features:
- Flask application factory pattern
- One shared Proxmox session for all requests
- JSON error envelopes for every /api/ route
- Rotating log files (app, errors, API, security, performance)
- Health check endpoint for monitoring

Example:
    Development server:
        app = create_app()
        app.run(host='0.0.0.0', port=5000)

    Production:
        homelab-dashboard   # serves with waitress
"""
import os
from typing import Optional

from flask import Flask, request, jsonify, send_from_directory, abort
from flask_cors import CORS
from werkzeug.exceptions import HTTPException

from . import __version__
from .config import Config, ConfigurationError, HomelabConfigManager
from .logging_config import setup_logging, LoggingMiddleware
from .responses import utc_timestamp
from .proxmox.api_client import ProxmoxAPIClient, create_client_from_config as create_proxmox_client
from .docker.api_client import DockerAPIClient, create_client_from_config as create_docker_client
from .ansible.deployer import AnsibleDeployer, AnsibleHostConfig


def _create_deployer(app: Flask, services) -> AnsibleDeployer:
    return AnsibleDeployer(
        AnsibleHostConfig.from_config(app.config),
        services,
        deploy_timeout=app.config['ANSIBLE_DEPLOY_TIMEOUT'],
        max_output_bytes=app.config['ANSIBLE_MAX_OUTPUT_BYTES'],
        self_vmid=app.config.get('SELF_VMID'),
        self_deploy_log=os.path.join(app.config['LOG_DIR'], 'self-deploy.log'),
        update_script_path=app.config.get('UPDATE_SCRIPT_PATH'),
        update_timeout=app.config.get('UPDATE_SCRIPT_TIMEOUT', 300),
    )


def create_app(config_class=Config,
               proxmox_client: Optional[ProxmoxAPIClient] = None,
               docker_client: Optional[DockerAPIClient] = None,
               deployer: Optional[AnsibleDeployer] = None):
    """
    Create and configure the Flask application.

    Clients not passed in are built from the configuration: the Proxmox
    client from the PROXMOX_* settings, the Docker client and the deployer
    from the static tables file.

    Args:
        config_class: Configuration class
        proxmox_client: Pre-built Proxmox client
        docker_client: Pre-built Docker client
        deployer: Pre-built Ansible deployer

    Returns:
        Flask: Configured Flask application instance

    Raises:
        ConfigurationError: If configuration validation fails
    """
    app = Flask(__name__, static_folder=None)
    app.config.from_object(config_class)

    # Validate settings before anything connects
    config_class.init_app(app)

    app_logger, error_logger, api_logger, _, perf_logger = setup_logging(app)

    if app.config.get('CORS_ORIGINS'):
        origins = [o.strip() for o in app.config['CORS_ORIGINS'].split(',') if o.strip()]
        CORS(app, resources={r"/api/*": {"origins": origins}})
        app_logger.info(f"CORS enabled for: {', '.join(origins)}")

    # Shared clients
    if docker_client is None or deployer is None:
        tables = HomelabConfigManager(config_class.get_homelab_config_path())
        if docker_client is None:
            try:
                docker_client = create_docker_client(app.config, tables.docker_hosts)
            except ValueError as e:
                raise ConfigurationError(str(e))
        if deployer is None:
            deployer = _create_deployer(app, tables.deployable_services)

    if proxmox_client is None:
        try:
            proxmox_client = create_proxmox_client(app.config)
        except ValueError as e:
            raise ConfigurationError(str(e))

    app.extensions['homelab_dashboard'] = {
        'proxmox': proxmox_client,
        'docker': docker_client,
        'ansible': deployer,
    }

    @app.errorhandler(Exception)
    def handle_exception(e):
        """Handle all unhandled exceptions."""
        error_context = {
            'method': request.method,
            'url': request.url,
            'remote_addr': request.remote_addr,
            'extra_info': f"Exception: {type(e).__name__}: {str(e)}"
        }

        error_logger.error(f"Unhandled exception: {str(e)}", extra=error_context, exc_info=True)

        if request.path.startswith('/api/'):
            return jsonify({
                'success': False,
                'error': 'An internal server error occurred',
                'timestamp': utc_timestamp(),
                'error_code': 'INTERNAL_ERROR'
            }), 500

        return 'Internal Server Error', 500

    @app.errorhandler(HTTPException)
    def handle_http_exception(e):
        """Handle HTTP exceptions with logging."""
        error_context = {
            'method': request.method,
            'url': request.url,
            'remote_addr': request.remote_addr,
            'extra_info': f"HTTP Exception: {e.code} - {e.description}"
        }

        if e.code >= 500:
            error_logger.error(f"HTTP {e.code}: {e.description}", extra=error_context)
        elif e.code >= 400:
            error_logger.warning(f"HTTP {e.code}: {e.description}", extra=error_context)

        if request.path.startswith('/api/'):
            return jsonify({
                'success': False,
                'error': e.description,
                'timestamp': utc_timestamp(),
                'error_code': f'HTTP_{e.code}'
            }), e.code

        return e

    @app.before_request
    def before_request():
        if app.config.get('DEBUG'):
            app_logger.debug(f"Request: {request.method} {request.url}")

    @app.route('/health')
    def health_check():
        """Health check endpoint for monitoring."""
        connected, message = proxmox_client.test_connection()
        return jsonify({
            'status': 'healthy' if connected else 'degraded',
            'timestamp': utc_timestamp(),
            'version': __version__,
            'proxmox': {'connected': connected, 'message': message},
        })

    # Register blueprints
    from .proxmox.routes import proxmox_bp
    app.register_blueprint(proxmox_bp)

    from .docker.routes import docker_bp
    app.register_blueprint(docker_bp)

    from .ansible.routes import ansible_bp
    app.register_blueprint(ansible_bp)

    _register_frontend(app, app_logger)

    app.wsgi_app = LoggingMiddleware(app.wsgi_app, api_logger, perf_logger)

    app_logger.info("Homelab dashboard application created successfully")
    app_logger.info(f"Debug mode: {app.config.get('DEBUG', False)}")
    app_logger.info(f"Docker hosts: {len(docker_client.hosts)}, deployable services: {len(deployer.services)}")

    return app


def _register_frontend(app: Flask, app_logger):
    """Serve the built frontend with a single-page-app fallback."""
    dist_dir = app.config.get('FRONTEND_DIST_DIR')
    if not dist_dir:
        return

    dist_dir = os.path.abspath(dist_dir)
    if not os.path.isdir(dist_dir):
        app_logger.warning(f"Frontend directory not found, not serving UI: {dist_dir}")
        return

    @app.route('/', defaults={'path': ''})
    @app.route('/<path:path>')
    def frontend(path):
        if path.startswith('api/'):
            abort(404)
        if path and os.path.isfile(os.path.join(dist_dir, path)):
            return send_from_directory(dist_dir, path)
        return send_from_directory(dist_dir, 'index.html')

    app_logger.info(f"Serving frontend from {dist_dir}")


def main():
    """Run the dashboard: waitress in production, the Flask server in debug."""
    app = create_app()
    host = app.config.get('HOST', '0.0.0.0')
    port = app.config.get('PORT', 80)

    if app.config.get('DEBUG'):
        app.run(host=host, port=port, debug=True)
        return

    from waitress import serve
    app.logger.info(f"Starting waitress on http://{host}:{port}")
    serve(app, host=host, port=port, threads=8)


if __name__ == '__main__':
    main()
