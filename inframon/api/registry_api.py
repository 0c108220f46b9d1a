"""
Registry API (master only).

Routes:
    POST   /api/nodes/register            enregistrement / rafraîchissement d'un nœud
    GET    /api/nodes                     nœuds actifs (compressedData, jamais décodé)
    GET    /api/nodes/summary             compte par statut
    GET    /api/nodes/<node_id>           un nœud actif, 404 sinon
    DELETE /api/nodes/<node_id>           retrait manuel
    POST   /api/nodes/<node_id>/heartbeat rafraîchit la liveness
    POST   /api/nodes/<node_id>/hostname  renomme le nœud (transfert vers le nœud)
    GET    /api/health
"""
from __future__ import annotations

import time
from typing import Callable, Optional

from flask import Flask, jsonify, request, g
from flask_cors import CORS

from inframon import __version__
from inframon.api.validation import validate_hostname, validate_registration
from inframon.errors import InframonError, MalformedRegistration
from inframon.logger import get_logger
from inframon.metrics import API_LATENCY
from inframon.network.registration import forward_hostname
from inframon.network.registry import NodeRecord, NodeRegistry

logger = get_logger("api.registry")

MAX_REQUEST_BYTES = 8 * 1024 * 1024


def _forward_to_node(node: NodeRecord, hostname: str) -> None:
    forward_hostname(node.ip, node.port, hostname)


def install_latency_hooks(app: Flask) -> None:
    @app.before_request
    def _api_timer_start():
        g._start_ts = time.perf_counter()

    @app.after_request
    def _api_timer_stop(resp):
        st = getattr(g, "_start_ts", None)
        if st is not None and request.path.startswith("/api/"):
            rule = request.url_rule.rule if request.url_rule is not None else "unmatched"
            API_LATENCY.labels(rule, request.method, str(resp.status_code)).observe(time.perf_counter() - st)
        return resp


def create_registry_app(registry: NodeRegistry,
                        forwarder: Optional[Callable[[NodeRecord, str], None]] = None) -> Flask:
    """Build the master registry app around an explicitly owned registry."""
    app = Flask(__name__)
    app.config["JSON_SORT_KEYS"] = False
    app.config["MAX_CONTENT_LENGTH"] = MAX_REQUEST_BYTES
    app.extensions["inframon.registry"] = registry
    CORS(app)
    install_latency_hooks(app)
    forward = forwarder or _forward_to_node

    @app.errorhandler(InframonError)
    def _inframon_error(err: InframonError):
        if err.http_status >= 500:
            logger.error("%s %s: %s", request.method, request.path, err.message)
        else:
            logger.debug("%s %s: %s", request.method, request.path, err.message)
        return jsonify(err.to_dict()), err.http_status

    @app.route("/api/health")
    def health():
        return jsonify({"ok": True, "role": "master", "version": __version__, "nodes": len(registry)})

    @app.route("/api/nodes/register", methods=["POST"])
    def register_node():
        data = request.get_json(silent=True)
        try:
            record = validate_registration(data)
            registry.register(record)
        except MalformedRegistration as e:
            logger.error("Error processing node registration: %s", e.message)
            return jsonify({"success": False, "message": "Error processing registration",
                            "error": e.kind, "detail": e.message}), e.http_status
        return jsonify({"success": True, "message": "Node registered"})

    @app.route("/api/nodes")
    def list_nodes():
        return jsonify([n.to_dict() for n in registry.list_active()])

    @app.route("/api/nodes/summary")
    def nodes_summary():
        return jsonify(registry.summary())

    @app.route("/api/nodes/<node_id>")
    def get_node(node_id):
        return jsonify(registry.get(node_id).to_dict())

    @app.route("/api/nodes/<node_id>", methods=["DELETE"])
    def remove_node(node_id):
        registry.remove(node_id)
        return jsonify({"success": True, "message": "Node removed"})

    @app.route("/api/nodes/<node_id>/heartbeat", methods=["POST"])
    def heartbeat(node_id):
        registry.update_heartbeat(node_id)
        return jsonify({"success": True})

    @app.route("/api/nodes/<node_id>/hostname", methods=["POST"])
    def change_node_hostname(node_id):
        hostname, err = validate_hostname(request.get_json(silent=True))
        if err:
            return jsonify({"success": False, "error": err[0]}), err[1]
        node = registry.rename_node(node_id, hostname, forward)
        return jsonify({"success": True, "name": node.name})

    return app


__all__ = ["create_registry_app", "install_latency_hooks"]
