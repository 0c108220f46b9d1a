"""Per-node HTTP API: the node's own data and its hostname change endpoint."""
from __future__ import annotations

from typing import Callable

from flask import Flask, jsonify, request
from flask_cors import CORS

from inframon import __version__, system_info
from inframon.api.registry_api import install_latency_hooks
from inframon.api.validation import validate_hostname
from inframon.logger import get_logger
from inframon.node import LocalNode

logger = get_logger("api.node")


def create_node_app(node: LocalNode,
                    change_hostname: Callable[[str], None] = system_info.change_hostname,
                    local_ip: Callable[[], str] = system_info.get_local_ip) -> Flask:
    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    CORS(app)
    install_latency_hooks(app)

    @app.route("/api/health")
    def health():
        ident = node.identity
        return jsonify({"ok": True, "id": ident.id, "name": ident.name,
                        "role": "master" if ident.is_master else "node", "version": __version__})

    @app.route("/api/server-data")
    def server_data():
        return jsonify(node.monitor.latest().to_wire())

    @app.route("/api/local-ip")
    def get_local_ip():
        return jsonify({"ip": local_ip()})

    @app.route("/api/hostname", methods=["POST"])
    def hostname():
        new_name, err = validate_hostname(request.get_json(silent=True))
        if err:
            return jsonify({"success": False, "error": err[0]}), err[1]
        logger.info("Changement du hostname en : %s", new_name)
        try:
            change_hostname(new_name)
        except (RuntimeError, ValueError) as e:
            logger.error("Error changing hostname: %s", e)
            return jsonify({"success": False, "error": "Failed to change hostname"}), 500
        node.rename(new_name)
        return jsonify({"success": True})

    return app


__all__ = ["create_node_app"]
