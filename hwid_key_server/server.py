from __future__ import annotations

import logging
from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from .activation import ActivationService
from .admin import AdminControlPlane
from .auth import admin_token_valid
from .clock import Clock, SystemClock
from .config import Settings, configure_logging, load_settings
from .db import db, normalize_database_uri
from .delivery import DeliveryChannel, PastefyLink4mChannel
from .errors import ErrorCode, Outcome
from .store import TTLStore

logger = logging.getLogger(__name__)


def _body() -> Dict[str, Any]:
    # Malformed or non-object JSON reads as an empty body
    data = request.get_json(force=True, silent=True)
    return data if isinstance(data, dict) else {}


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _respond(outcome: Outcome):
    return jsonify(outcome.payload), outcome.status


def recovery_boundary(view):
    """
    Any exception escaping a handler becomes SERVER_ERROR with its message.
    """
    @wraps(view)
    def wrapper(*args, **kwargs):
        try:
            return view(*args, **kwargs)
        except Exception as e:
            db.session.rollback()
            logger.exception("Unhandled error in %s", request.path)
            return _respond(Outcome.failure(ErrorCode.SERVER_ERROR, message=str(e)))
    return wrapper


def create_app(
    settings: Optional[Settings] = None,
    delivery: Optional[DeliveryChannel] = None,
    clock: Optional[Clock] = None,
) -> Flask:
    settings = settings or load_settings()
    configure_logging(settings.log_level)

    app = Flask(__name__)

    app.config["SQLALCHEMY_DATABASE_URI"] = normalize_database_uri(settings.database_url)
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["ADMIN_TOKEN"] = settings.admin_token

    db.init_app(app)

    clock = clock or SystemClock()
    store = TTLStore(clock=clock)
    delivery = delivery or PastefyLink4mChannel(
        pastefy_token=settings.pastefy_token,
        link4m_token=settings.link4m_token,
        timeout=settings.http_timeout,
    )
    activation = ActivationService(store, delivery, clock=clock)
    admin = AdminControlPlane(store, clock=clock)
    app.extensions["hwid_key_server"] = {"store": store, "activation": activation, "admin": admin}

    with app.app_context():
        db.create_all()

    def require_admin(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            header = request.headers.get("X-Admin-Token", "")
            if not admin_token_valid(header, app.config["ADMIN_TOKEN"]):
                return _respond(Outcome.failure(ErrorCode.UNAUTHORIZED))
            return view(*args, **kwargs)
        return wrapper

    @app.get("/")
    def index():
        return "HWID Key API OK", 200, {"Content-Type": "text/plain; charset=utf-8"}

    @app.get("/health")
    def health():
        return jsonify({"ok": True, "service": "hwid-key-server", "time": datetime.now(timezone.utc).isoformat()})

    # ============ USER ============

    @app.get("/v1/getkey")
    @recovery_boundary
    def getkey():
        hwid = _text(request.args.get("hwid"))
        if not hwid:
            return _respond(Outcome.failure(ErrorCode.MISSING_HWID))
        return _respond(activation.get_key(hwid))

    @app.post("/v1/redeem")
    @recovery_boundary
    def redeem():
        data = _body()
        hwid = _text(data.get("hwid"))
        key = _text(data.get("key"))
        if not hwid or not key:
            return _respond(Outcome.failure(ErrorCode.MISSING_HWID_OR_KEY))
        return _respond(activation.redeem(hwid, key))

    @app.get("/v1/status")
    @recovery_boundary
    def status():
        hwid = _text(request.args.get("hwid"))
        if not hwid:
            return _respond(Outcome.failure(ErrorCode.MISSING_HWID))
        return _respond(activation.status(hwid))

    @app.get("/v1/poll")
    @recovery_boundary
    def poll():
        hwid = _text(request.args.get("hwid"))
        if not hwid:
            return _respond(Outcome.failure(ErrorCode.MISSING_HWID))
        return _respond(activation.poll(hwid))

    # ============ ADMIN ============

    @app.get("/admin/actives")
    @require_admin
    @recovery_boundary
    def admin_actives():
        return _respond(admin.list_actives())

    @app.post("/admin/blacklist")
    @require_admin
    @recovery_boundary
    def admin_blacklist():
        data = _body()
        hwid = _text(data.get("hwid"))
        if not hwid:
            return _respond(Outcome.failure(ErrorCode.MISSING_HWID))
        return _respond(admin.blacklist(hwid, _text(data.get("reason"))))

    @app.post("/admin/unblacklist")
    @require_admin
    @recovery_boundary
    def admin_unblacklist():
        hwid = _text(_body().get("hwid"))
        if not hwid:
            return _respond(Outcome.failure(ErrorCode.MISSING_HWID))
        return _respond(admin.unblacklist(hwid))

    @app.post("/admin/kick")
    @require_admin
    @recovery_boundary
    def admin_kick():
        data = _body()
        hwid = _text(data.get("hwid"))
        if not hwid:
            return _respond(Outcome.failure(ErrorCode.MISSING_HWID))
        return _respond(admin.kick(hwid, _text(data.get("reason"))))

    return app
