"""
Flask route orchestrator - Registers all route modules
"""
from logger import debug, info


def register_routes(app, limiter, gateway):
    """
    Register all Flask routes with rate limiting

    Categories:
    - Query proxy (health, site config, validated InfluxQL passthrough)
    - Bandwidth history (top consumers, trends, WAN, SSID VAPs)

    Args:
        app: Flask application instance
        limiter: Limiter instance for rate limiting
        gateway: QueryGateway every route reads through
    """
    info("=== Starting route registration ===")

    from routes_query import register_query_routes
    from routes_bandwidth import register_bandwidth_routes

    register_query_routes(app, limiter, gateway)
    debug("Query routes registered")

    register_bandwidth_routes(app, limiter, gateway)
    debug("Bandwidth routes registered")

    info("=== All routes registered successfully ===")
    info(f"Total endpoints registered: {len([rule for rule in app.url_map.iter_rules()])}")
