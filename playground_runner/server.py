"""HTTP surface: ``POST /execute`` and ``GET /health``."""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from flask import Flask, jsonify, request

from .engine import ExecutionEngine
from .errors import RequestValidationError
from .models import parse_request

logger = logging.getLogger(__name__)


def create_app(engine: ExecutionEngine) -> Flask:
    app = Flask(__name__)
    app.config["ENGINE"] = engine

    @app.get("/health")
    def health():
        return jsonify({"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()})

    @app.post("/execute")
    def execute():
        body = request.get_json(silent=True)
        if body is None:
            return jsonify({"success": False, "error": "request body must be JSON"}), 400
        try:
            parsed = parse_request(body)
        except RequestValidationError as exc:
            return jsonify({"success": False, "error": str(exc)}), 400

        try:
            result = engine.execute_with_timeout(parsed)
        except Exception as exc:
            logger.exception("Execution error")
            return jsonify({"success": False, "error": str(exc) or "Unknown execution error"}), 500
        return jsonify(result.to_dict())

    return app
