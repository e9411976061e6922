"""
Flask route handlers for the InfluxDB query proxy
Only statements accepted by the query validator reach InfluxDB
"""
import requests
from flask import jsonify, request

from config import SITE_NAME
from errors import InsightsError, ResponseError, ValidationError
from logger import debug, safe_error_response
from version import get_version

EPOCH_PRECISIONS = ('h', 'm', 's', 'ms', 'u', 'ns')


def _query_parameter():
    """q from a form body, a JSON body, or the query string"""
    query = request.form.get('q')
    if query is None:
        body = request.get_json(silent=True)
        if isinstance(body, dict):
            query = body.get('q')
    if query is None:
        query = request.args.get('q')
    return query


def register_query_routes(app, limiter, gateway):
    """Register health, config and query proxy routes"""
    debug("Registering query routes")

    @app.route('/api/health')
    @limiter.exempt
    def health():
        return jsonify({'status': 'ok'})

    @app.route('/api/config')
    def site_config():
        """Non-sensitive site settings for the dashboard"""
        return jsonify({'siteName': SITE_NAME, 'version': get_version()})

    @app.route('/api/query', methods=['POST'])
    @limiter.limit("600 per minute")
    def query():
        """
        Forward a read-only InfluxQL statement.

        Responses:
            400: q missing
            403: statement rejected by the validator
            <upstream status>: InfluxDB answered with an error
            500: InfluxDB unreachable
        """
        statement = _query_parameter()
        if not statement:
            return jsonify({'error': "Missing query parameter 'q'"}), 400

        try:
            epoch = request.args.get('epoch')
            if epoch not in EPOCH_PRECISIONS:
                epoch = None
            return jsonify(gateway.execute(statement, epoch=epoch))
        except ValidationError as e:
            # already logged by the gateway
            return jsonify({'error': e.reason}), 403
        except ResponseError as e:
            return jsonify({'error': e.body if e.body is not None else str(e)}), e.status_code or 502
        except (InsightsError, requests.exceptions.RequestException, ValueError) as e:
            return jsonify({'error': safe_error_response(e, 'Failed to query InfluxDB')}), 500
