import json
import threading
import time
from contextlib import contextmanager
from datetime import datetime, timezone, timedelta
from functools import wraps
from typing import Any, Dict, Iterator, List, Optional

import click
from flask import Flask, jsonify, request, Response, stream_with_context, current_app
from flask_cors import CORS
from flask_sqlalchemy import SQLAlchemy
from werkzeug.middleware.proxy_fix import ProxyFix

import config
from auth import auth_bp, init_oauth, require_auth_api

# Import services
from services.errors import CorePassError, ValidationFailure
from services.identity import session_provider_from_config
from services.passes import PassFeed, PassQueryService, build_passes_payload
from services.store import MemoryPassStore, SQLAlchemyPassStore
from services.submission import PassSubmissionService, SubmissionForm, SubmitOutcome

# Import models
from models import create_pass_model, create_room_model, create_user_model

db = SQLAlchemy()

# ---------- Models ----------

User = create_user_model(db)
PassDocument = create_pass_model(db)
Room = create_room_model(db)


class CorePass:
    """Per-app service wiring, stored in app.extensions['corepass']."""

    def __init__(self, app, store, session_provider):
        self.db = db
        self.user_model = User
        self.store = store
        self.session_provider = session_provider
        self.query_service = PassQueryService(store, session_provider)
        self.submission_service = PassSubmissionService(store, school_id=app.config["SCHOOL_ID"] or None)
        self.default_duration = app.config["DEFAULT_DURATION"]
        # One submission form (and so one in-flight request) per signed-in user,
        # kept only while that user has a request open
        self._forms: Dict[str, List[Any]] = {}
        self._forms_lock = threading.Lock()

    @contextmanager
    def form_for(self, uid: str) -> Iterator[SubmissionForm]:
        with self._forms_lock:
            entry = self._forms.get(uid)
            if entry is None:
                form = SubmissionForm(self.submission_service, self.session_provider, self.default_duration)
                entry = self._forms[uid] = [form, 0]
            entry[1] += 1
        try:
            yield entry[0]
        finally:
            with self._forms_lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._forms[uid]


def _corepass() -> CorePass:
    return current_app.extensions["corepass"]


def _build_store(app):
    if app.config["COREPASS_STORE"] == "memory":
        return MemoryPassStore(rooms=app.config["DEFAULT_ROOMS"])
    return SQLAlchemyPassStore(app, db, PassDocument, Room, poll_seconds=app.config["SNAPSHOT_POLL_SECONDS"])


# ---------- Error Handling Utilities ----------

def handle_service_errors(f):
    """Decorator to report service failures consistently."""
    @wraps(f)
    def wrapper(*args, **kwargs):
        try:
            return f(*args, **kwargs)
        except CorePassError as e:
            return jsonify(ok=False, message=e.message), e.status_code
    return wrapper


def _parse_room(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationFailure("Rooms must be given as names.")
    return value.strip() or None


def _parse_duration(payload: Dict[str, Any], default: Optional[int]) -> Optional[int]:
    """Missing key -> default; explicit null -> no duration."""
    if "duration" not in payload:
        return default
    value = payload["duration"]
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationFailure("Duration must be a whole number of minutes.")
    return value


def _build_stream_signature(version: int, payload: Dict[str, Any]) -> tuple:
    """
    A reduced, stable signature for SSE change detection.
    New snapshots bump the version; a running pass changes the signature as its countdown moves.
    """
    progress = payload.get("progress") or {}
    return (version, progress.get("remaining_minutes"), progress.get("percent"))


def create_app(test_config: Optional[Dict[str, Any]] = None, store=None, session_provider=None) -> Flask:
    app = Flask(__name__)
    # Enable CORS for the mobile/web client
    CORS(app)

    # Trust X-Forwarded-Proto header for HTTPS behind a proxy
    app.wsgi_app = ProxyFix(app.wsgi_app, x_for=1, x_proto=1, x_host=1, x_prefix=1)

    app.config["SQLALCHEMY_DATABASE_URI"] = config.DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["GOOGLE_CLIENT_ID"] = config.GOOGLE_CLIENT_ID
    app.config["GOOGLE_CLIENT_SECRET"] = config.GOOGLE_CLIENT_SECRET
    app.config["COREPASS_STORE"] = config.STORE_BACKEND
    app.config["COREPASS_TEST_UID"] = config.TEST_UID
    app.config["SNAPSHOT_POLL_SECONDS"] = config.SNAPSHOT_POLL_SECONDS
    app.config["SCHOOL_ID"] = config.SCHOOL_ID
    app.config["DEFAULT_DURATION"] = config.DEFAULT_DURATION
    app.config["DURATION_OPTIONS"] = list(config.DURATION_OPTIONS)
    app.config["DEFAULT_ROOMS"] = list(config.DEFAULT_ROOMS)
    if test_config:
        app.config.update(test_config)

    db.init_app(app)
    with app.app_context():
        db.create_all()

    if session_provider is None:
        session_provider = session_provider_from_config(app.config["COREPASS_TEST_UID"])
    if store is None:
        store = _build_store(app)
    app.extensions["corepass"] = CorePass(app, store, session_provider)
    app.logger.info(f"CorePass using {type(store).__name__} with {session_provider!r}")

    app.register_blueprint(auth_bp)
    init_oauth(app)
    _register_routes(app)
    _register_commands(app)
    return app


# ---------- Routes ----------

def _register_routes(app):

    @app.get("/api/health")
    def api_health():
        return jsonify(ok=True, store=type(_corepass().store).__name__)

    @app.get("/api/passes")
    @require_auth_api
    @handle_service_errors
    def api_passes():
        buckets = _corepass().query_service.fetch()
        payload = build_passes_payload(buckets, datetime.now(timezone.utc))
        return jsonify(ok=True, **payload)

    @app.post("/api/passes/<pass_id>/end")
    @require_auth_api
    @handle_service_errors
    def api_end_pass(pass_id):
        _corepass().query_service.end_pass(pass_id)
        # The live query picks the change up; nothing to return
        return jsonify(ok=True)

    @app.get("/api/rooms")
    @handle_service_errors
    def api_rooms():
        return jsonify(
            ok=True,
            rooms=_corepass().submission_service.list_rooms(),
            durations=current_app.config["DURATION_OPTIONS"],
            default_duration=current_app.config["DEFAULT_DURATION"],
        )

    @app.post("/api/passes")
    @require_auth_api
    @handle_service_errors
    def api_request_pass():
        payload = request.get_json(silent=True)
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            raise ValidationFailure("Expected a JSON object.")
        ext = _corepass()
        selection = dict(
            start=_parse_room(payload, "fromRoom"),
            destination=_parse_room(payload, "toRoom"),
            duration_minutes=_parse_duration(payload, ext.default_duration),
        )

        with ext.form_for(ext.session_provider.current_user_id()) as form:
            outcome = form.submit(refresh_rooms=True, **selection)
            message = form.message
        if outcome is SubmitOutcome.BUSY:
            return jsonify(ok=False, message="A pass request is already being sent."), 409
        if outcome is SubmitOutcome.FAILED:
            return jsonify(ok=False, message=message), 502
        return jsonify(ok=True, message=message), 201

    def _sse_passes_stream():
        feed = PassFeed(PassQueryService(_corepass().store, _corepass().session_provider))
        # Subscribe while the request (and its signed-in session) is still available
        feed.start()
        poll = current_app.config["SNAPSHOT_POLL_SECONDS"]

        def stream():
            last_sig = None
            last_heartbeat = 0.0
            try:
                # Hint to EventSource clients how quickly to retry
                yield "retry: 3000\n\n"

                while True:
                    payload = feed.payload()
                    sig = _build_stream_signature(feed.version, payload)

                    now = time.time()
                    if sig != last_sig:
                        yield f"data: {json.dumps(payload)}\n\n"
                        last_sig = sig
                        last_heartbeat = now
                    elif now - last_heartbeat > 15:
                        # Keep-alive comment so proxies don't buffer/timeout
                        yield ": ping\n\n"
                        last_heartbeat = now

                    time.sleep(poll)
            finally:
                feed.stop()

        resp = Response(stream_with_context(stream()), mimetype="text/event-stream")
        resp.headers["Cache-Control"] = "no-cache"
        resp.headers["X-Accel-Buffering"] = "no"
        return resp

    @app.get("/api/stream")
    @require_auth_api
    def api_stream():
        return _sse_passes_stream()

    @app.get("/events")
    @require_auth_api
    def sse_events():
        # Alias for EventSource clients that expect /events
        return _sse_passes_stream()


# ---------- CLI ----------

def _register_commands(app):

    @app.cli.command("init-db")
    def init_db():
        """Create database tables."""
        db.create_all()
        print("Database initialized.")

    @app.cli.command("seed-rooms")
    @click.argument("names", nargs=-1)
    def seed_rooms(names):
        """Add rooms (defaults to COREPASS_DEFAULT_ROOMS)."""
        store = _corepass().store
        existing = set(store.room_names())
        added = 0
        for name in names or current_app.config["DEFAULT_ROOMS"]:
            if name not in existing:
                store.add_room(name)
                existing.add(name)
                added += 1
        print(f"Added {added} room(s).")

    @app.cli.command("seed-passes")
    @click.option("--uid", required=True, help="User id that owns the example passes.")
    def seed_passes(uid):
        """Add example pending/approved/rejected passes for a user."""
        now = datetime.now(timezone.utc)
        examples = [
            {
                "author": uid, "fromRoom": "Room 204", "toRoom": "Nurse",
                "created_at": now - timedelta(minutes=20),
                "approved": "pending", "active": False,
            },
            {
                "author": uid, "fromRoom": "Room 204", "toRoom": "Library",
                "created_at": now - timedelta(minutes=60),
                "approved": "approved", "active": False,
                "start_time": now - timedelta(minutes=30), "duration": 10,
            },
            {
                "author": uid, "fromRoom": "Gym", "toRoom": "Office",
                "created_at": now - timedelta(minutes=90),
                "approved": "rejected", "active": False,
            },
        ]
        store = _corepass().store
        for fields in examples:
            store.create_pass(fields)
        print(f"Seeded {len(examples)} passes for {uid}.")


if __name__ == "__main__":
    create_app().run(debug=True)
