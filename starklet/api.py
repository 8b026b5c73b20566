import logging
import time
from datetime import datetime, timezone

import psutil
from flask import Blueprint, Flask, current_app, jsonify, request

from starklet.errors import ChainError, StarkletError
from starklet.handshake import HandshakeService, Result

logger = logging.getLogger(__name__)

bp = Blueprint("session", __name__)

START_TIME = time.time()


def _service() -> HandshakeService:
    return current_app.extensions["handshake"]


def _respond(result: Result):
    return jsonify(result.to_envelope()), 200 if result.success else 400


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


@bp.post("/api/session/new")
def new_session():
    body = _json_body()
    result = _service().create_session(
        full_public_key=body.get("fullPublicKey"),
        session_token=body.get("sessionToken"),
        signature=body.get("signature"),
        public_key=body.get("publicKey"),
    )
    return _respond(result)


@bp.get("/api/session/verify")
def verify_session():
    result = _service().verify_session(
        session_id=request.args.get("sessionId"),
        token=request.args.get("token"),
    )
    return _respond(result)


@bp.get("/api/session/pending")
def pending_sessions():
    result = _service().fetch_pending(request.args.get("accountAddress"))
    return _respond(result)


@bp.post("/api/session/update")
def update_session():
    body = _json_body()
    result = _service().complete_session(
        session_id=body.get("sessionId"),
        account_address=body.get("accountAddress"),
        signature=body.get("signature"),
        typed_data=body.get("typedData"),
    )
    return _respond(result)


@bp.get("/api/starklets")
def list_starklets():
    factory = current_app.extensions.get("starklet_factory")
    account_address = request.args.get("accountAddress")

    if not account_address:
        return _respond(Result.failure("validation", "Missing accountAddress parameter"))
    if factory is None:
        return _respond(Result.failure("validation", "Starklet factory not configured"))

    try:
        starklets = factory.user_starklets(account_address)
    except (ChainError, ValueError) as exc:
        logger.warning("Falha ao listar Starklets de %s: %s", account_address, exc)
        kind = exc.kind if isinstance(exc, StarkletError) else "validation"
        return _respond(Result.failure(kind, "Failed to fetch starklets"))

    return _respond(Result.success_with(starklets))


@bp.get("/health")
def health():
    uptime_seconds = int(time.time() - START_TIME)
    cpu_usage = psutil.cpu_percent(interval=None)
    memory = psutil.virtual_memory()

    payload = {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "service": "starklet-session-server",
        "telemetry": {
            "uptime_seconds": uptime_seconds,
            "cpu": {"usage_percent": cpu_usage, "cores": psutil.cpu_count()},
            "memory": {"total_mb": memory.total // (1024 * 1024), "available_mb": memory.available // (1024 * 1024), "used_percent": memory.percent},
        },
    }

    try:
        payload["sessions"] = _service().store.count_by_status()
    except Exception as exc:
        logger.error("Health: banco de dados indisponível — %s", exc, exc_info=True)
        payload["status"] = "degraded"
        payload["message"] = "Database unavailable"
        return jsonify(payload), 503

    if memory.percent > 95 or cpu_usage > 95:
        payload["status"] = "warning"
        payload["message"] = "High resource usage detected"

    return jsonify(payload), 200


def create_app(service: HandshakeService, factory=None) -> Flask:
    app = Flask(__name__)
    app.extensions["handshake"] = service
    app.extensions["starklet_factory"] = factory
    app.register_blueprint(bp)
    return app
