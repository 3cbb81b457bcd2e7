"""
Flask management API for inspecting and reloading key store aliases.
"""
from flask import Flask, request, jsonify
import logging
from typing import Optional
from datetime import datetime

from .models.config import Config
from .models.errors import KeyStoreError, UnknownAliasError
from .services.keystore_service import PemKeyStore


class ManagementApp:
    """Flask application exposing key store introspection."""

    def __init__(self, keystore: PemKeyStore, config: Optional[Config] = None,
                 logging_service=None):
        """Initialize the management application."""
        self.app = Flask(__name__)
        self.keystore = keystore
        self.config = config or Config()
        self.logging_service = logging_service
        self.logger = logging.getLogger(__name__)

        self._setup_routes()
        self._setup_error_handlers()
        self._setup_security_headers()

    def _describe_alias(self, alias: str) -> dict:
        """Build the introspection document for one alias."""
        bundle = self.keystore.get_bundle(alias)
        status = self.keystore.get_status(alias)

        details = {
            'alias': alias,
            'has_certificate': False,
            'has_key': False,
            'chain_length': 0,
            'leaf': None,
            'chain': [],
            'key_algorithm': None,
            'key_format': None,
            'key_matches_leaf': False,
            'created_at': None,
            'status': status.to_dict() if status else None,
        }

        if bundle is None:
            return details

        chain_info = bundle.certificate_info()
        details.update({
            'has_certificate': bundle.has_certificate(),
            'has_key': bundle.has_key(),
            'chain_length': len(chain_info),
            'chain': [self._certificate_info_dict(info) for info in chain_info],
            'key_algorithm': bundle.key_algorithm,
            'key_format': bundle.key_format,
            'key_matches_leaf': bundle.key_matches_leaf(),
            'created_at': bundle.get_creation_date().isoformat(),
        })
        if chain_info:
            details['leaf'] = details['chain'][0]

        if self.logging_service:
            details['reload_stats'] = self.logging_service.get_reload_stats(alias)

        return details

    @staticmethod
    def _certificate_info_dict(info) -> dict:
        return {
            'subject': info.subject,
            'issuer': info.issuer,
            'serial_number': info.serial_number,
            'not_before': info.not_before.isoformat(),
            'not_after': info.not_after.isoformat(),
            'is_valid': info.is_valid,
            'fingerprint': info.fingerprint,
        }

    def _setup_routes(self):
        """Set up API routes."""

        @self.app.route('/health', methods=['GET'])
        def health_check():
            """Health check with stale alias detection."""
            statuses = [self.keystore.get_status(a) for a in self.keystore.aliases()]
            stale = [s.alias for s in statuses if s is not None and s.is_stale]

            health_status = {
                'status': 'degraded' if stale else 'healthy',
                'service': 'simplepem',
                'provider': self.keystore.provider_name,
                'refresh_running': self.keystore.is_running(),
                'alias_count': self.keystore.size(),
                'stale_aliases': stale,
                'timestamp': datetime.now().isoformat()
            }

            if self.logging_service:
                health_status['failures'] = self.logging_service.get_failure_summary(since_hours=1)

            return jsonify(health_status)

        @self.app.route('/api/aliases', methods=['GET'])
        def list_aliases():
            """List aliases with their reload status."""
            aliases = []
            for alias in self.keystore.aliases():
                status = self.keystore.get_status(alias)
                aliases.append({
                    'alias': alias,
                    'has_certificate': self.keystore.has_certificate(alias),
                    'has_key': self.keystore.has_key(alias),
                    'status': status.to_dict() if status else None,
                })

            return jsonify({
                'aliases': aliases,
                'total_count': len(aliases),
                'timestamp': datetime.now().isoformat()
            })

        @self.app.route('/api/aliases/<alias>', methods=['GET'])
        def get_alias(alias):
            """Get details of the bundle currently published for an alias."""
            if not self.keystore.contains_alias(alias):
                return jsonify({
                    'error': 'Not found',
                    'message': f'Alias {alias} is not registered'
                }), 404

            return jsonify(self._describe_alias(alias))

        @self.app.route('/api/aliases/<alias>/reload', methods=['POST'])
        def reload_alias(alias):
            """Check an alias now; ?force=true reparses unchanged files."""
            force = request.args.get('force', 'false').lower() in ('true', '1', 'yes')

            try:
                published = self.keystore.reload(alias, force=force)
            except UnknownAliasError:
                return jsonify({
                    'error': 'Not found',
                    'message': f'Alias {alias} is not registered'
                }), 404
            except KeyStoreError as e:
                snapshot = self.keystore.get_snapshot(alias)
                return jsonify({
                    'error': 'Reload failed',
                    'message': str(e),
                    'error_type': type(e).__name__,
                    'serving_generation': snapshot.generation if snapshot else None
                }), 422

            snapshot = self.keystore.get_snapshot(alias)
            self.logger.info(f"On-demand reload of '{alias}' (force={force}): published={published}")
            return jsonify({
                'alias': alias,
                'published': published,
                'generation': snapshot.generation if snapshot else None,
                'timestamp': datetime.now().isoformat()
            })

    def _setup_error_handlers(self):
        """Set up error handlers."""

        @self.app.errorhandler(404)
        def not_found(error):
            return jsonify({
                'error': 'Not found',
                'message': 'The requested endpoint does not exist'
            }), 404

        @self.app.errorhandler(405)
        def method_not_allowed(error):
            return jsonify({
                'error': 'Method not allowed',
                'message': 'The requested method is not allowed for this endpoint'
            }), 405

        @self.app.errorhandler(500)
        def internal_error(error):
            self.logger.error(f"Internal server error: {error}")
            return jsonify({
                'error': 'Internal server error',
                'message': 'An unexpected error occurred'
            }), 500

    def _setup_security_headers(self):
        """Set up security headers for all responses."""

        @self.app.after_request
        def add_security_headers(response):
            response.headers['X-Content-Type-Options'] = 'nosniff'
            response.headers['X-Frame-Options'] = 'DENY'
            response.headers['Cache-Control'] = 'no-store'
            response.headers.pop('Server', None)
            return response

    def run(self, host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
        """Run the management API (plain HTTP; bind to a trusted interface)."""
        host = host or self.config.api_host
        port = port or self.config.api_port
        self.logger.info(f"Starting management API on http://{host}:{port}")
        self.app.run(host=host, port=port, debug=debug, use_reloader=False)

    def get_app(self) -> Flask:
        """Get the Flask application instance."""
        return self.app
