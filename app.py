"""
Flask query gateway for UniFi Insights
Serves the read-only InfluxDB proxy and the bandwidth history API
"""
import os

import urllib3
from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException

from config import CORS_ORIGINS, INFLUX_URL, PORT, get_influx_config
from influx_storage import InfluxStorage
from logger import error, info
from query_gateway import QueryGateway
from utils import sanitize_url_for_log

# Disable SSL warnings for self-signed certificates
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


def create_app(gateway=None):
    """
    Build the Flask application.

    Args:
        gateway: QueryGateway to use (defaults to one backed by the configured InfluxDB)

    Returns:
        Flask application
    """
    app = Flask(__name__)

    if gateway is None:
        gateway = QueryGateway(InfluxStorage(**get_influx_config()))
    app.config['QUERY_GATEWAY'] = gateway

    origins = [o.strip() for o in CORS_ORIGINS.split(',')] if CORS_ORIGINS != '*' else '*'
    CORS(app, origins=origins)

    limiter = Limiter(
        app=app,
        key_func=get_remote_address,
        default_limits=["1000 per hour"],
        storage_uri="memory://"
    )

    @app.after_request
    def add_security_headers(response):
        """Query results must not be cached by browsers or proxies"""
        if request.path.startswith('/api/'):
            response.headers['Cache-Control'] = 'no-store, no-cache, must-revalidate, private'
            response.headers['Pragma'] = 'no-cache'
            response.headers['Expires'] = '0'
        response.headers['X-Content-Type-Options'] = 'nosniff'
        return response

    @app.errorhandler(Exception)
    def handle_unexpected_error(e):
        if isinstance(e, HTTPException):
            return e
        error("Unhandled error: %s", e)
        return jsonify({'error': 'Internal server error'}), 500

    from routes import register_routes
    register_routes(app, limiter, gateway)

    return app


if __name__ == '__main__':
    debug_mode = os.environ.get('FLASK_DEBUG', 'False').lower() in ('true', '1', 'yes')

    app = create_app()
    print(f"Server running on http://0.0.0.0:{PORT}")
    info("Proxying to InfluxDB at %s", sanitize_url_for_log(INFLUX_URL))
    app.run(debug=debug_mode, host='0.0.0.0', port=PORT, use_reloader=False, threaded=True)
