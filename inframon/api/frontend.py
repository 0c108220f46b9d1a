"""Static server for the built dashboard bundle (single-page app)."""
from __future__ import annotations

from pathlib import Path

from flask import Flask, jsonify, send_from_directory
from flask_cors import CORS

MIME_OVERRIDES = {
    ".wasm": "application/wasm",
    ".js": "application/javascript; charset=utf-8",
}


def create_frontend_app(dist_dir) -> Flask:
    root = Path(dist_dir).resolve()
    app = Flask(__name__, static_folder=None)
    CORS(app)

    @app.route("/", defaults={"path": ""})
    @app.route("/<path:path>")
    def serve(path):
        target = root / path
        if path and target.is_file():
            resp = send_from_directory(root, path)
            override = MIME_OVERRIDES.get(target.suffix)
            if override:
                resp.headers["Content-Type"] = override
        elif (root / "index.html").is_file():
            resp = send_from_directory(root, "index.html")
        else:
            return jsonify({"error": "dashboard bundle not found", "dir": str(root)}), 404
        return resp

    return app


__all__ = ["create_frontend_app"]
