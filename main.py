# main.py
# Flask app: health, caller identity and products endpoints plus the static front end.
import logging
import os
from dataclasses import dataclass
from typing import Optional

from flask import Flask, jsonify, request, send_from_directory

from config import HEALTH_PING_TIMEOUT, PRODUCTS_QUERY_TIMEOUT
from errors import DemoError, IdentityError, NetworkClientError
from identity import IdentityResolver
from models import DB_CONNECTED, NETWORK_CONNECTED, HealthStatus, UserInfo
from tailnet import BACKEND_RUNNING

LOG = logging.getLogger(__name__)


@dataclass
class Services:
    """Handles shared by every request. Built once at startup, never mutated."""
    db: object          # db.postgres_client.Database or anything with ping()/fetch_products()
    network: object     # tailnet.LocalClient or anything with status()/whois()
    resolver: IdentityResolver
    static_dir: str = "static"


def remote_address(environ) -> Optional[str]:
    host = environ.get("REMOTE_ADDR")
    port = environ.get("REMOTE_PORT")
    if not host:
        return None
    if not port:
        return host
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def create_app(services: Services) -> Flask:
    static_dir = os.path.abspath(services.static_dir)
    app = Flask(__name__, static_folder=static_dir, static_url_path="/static")
    # keep column order of product rows
    app.json.sort_keys = False

    @app.route("/")
    def index():
        return send_from_directory(static_dir, "index.html")

    @app.route("/health")
    def health():
        status = HealthStatus()
        if services.db.ping(timeout=HEALTH_PING_TIMEOUT):
            status.database = DB_CONNECTED
        try:
            node = services.network.status()
        except NetworkClientError as e:
            LOG.debug("network status unavailable: %s", e)
        else:
            if node.backend_state == BACKEND_RUNNING:
                status.network = NETWORK_CONNECTED
            elif node.backend_state:
                status.network = node.backend_state
        return jsonify(status.to_dict()), 200

    @app.route("/api/user")
    def user():
        info = UserInfo()
        try:
            ident = services.resolver.resolve(remote_address(request.environ), request.headers)
        except IdentityError as e:
            LOG.warning("Tailscale lookup warning: %s", e)
            info.error = str(e)
        else:
            info.connected = True
            info.identity = ident
        return jsonify(info.to_dict()), 200

    @app.route("/api/products")
    def products():
        try:
            rows = services.db.fetch_products(timeout=PRODUCTS_QUERY_TIMEOUT)
        except DemoError as e:
            LOG.error("products query failed: %s", e)
            return jsonify({"error": str(e)}), 500
        return jsonify([row.to_dict() for row in rows])

    return app
