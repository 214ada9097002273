import os
from pathlib import Path

from flask import Flask, jsonify, request, g
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from app.extensions import db, migrate, cors
from app.integrations.maps.factory import routing_health
from app.segments.segment_orders_api import orders_bp
from app.segments.segment_deliveries import deliveries_bp
from app.segments.segment_driver import drivers_bp
from app.segments.segment_charity import charity_bp
from app.segments.segment_notifications import notifications_bp
from app.services.errors import LifecycleError
from app.utils.cache_layer import cache_stats
from app.utils.observability import init_sentry, install_request_observers, set_sentry_user
from app.utils.principal import principal_from_header

SERVICE_NAME = "rewear-backend"


def _resolve_alembic_head() -> str:
    try:
        from alembic.config import Config
        from alembic.script import ScriptDirectory

        migrations_dir = Path(__file__).resolve().parents[1] / "migrations"
        cfg = Config(str(migrations_dir / "alembic.ini"))
        cfg.set_main_option("script_location", str(migrations_dir))
        heads = ScriptDirectory.from_config(cfg).get_heads()
        return heads[0] if heads else "unknown"
    except Exception:
        return "unknown"


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        value = int(raw) if raw else int(default)
    except ValueError:
        value = int(default)
    return max(minimum, min(value, maximum))


def _debug_errors() -> bool:
    return (os.getenv("DEBUG_ERRORS") or "").strip() == "1"


def _error_payload(message: str, error: str, status: int) -> dict:
    payload = {
        "success": False,
        "message": message,
        "error": error,
        "status": int(status),
    }
    rid = (getattr(g, "request_id", "") or "").strip()
    if rid:
        payload["trace_id"] = rid
    return payload


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("REWEAR_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        secret = (os.getenv("SECRET_KEY") or "").strip()
        if not secret or len(secret) < 16:
            raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")

    app.config["SECRET_KEY"] = os.getenv("SECRET_KEY", "dev-secret")
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["JSON_SORT_KEYS"] = False

    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)

    database_url = os.getenv("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")
    if not database_url:
        if env in ("prod", "production"):
            raise RuntimeError("DATABASE_URL (or SQLALCHEMY_DATABASE_URI) must be set in production")
        database_url = f"sqlite:///{os.path.join(instance_dir, 'rewear.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url

    engine_options = {
        "pool_pre_ping": True,
        "pool_recycle": _env_int("DB_POOL_RECYCLE_SECONDS", 1800, minimum=60, maximum=86400),
    }
    if not database_url.startswith("sqlite://"):
        engine_options.update(
            {
                "pool_size": _env_int("DB_POOL_SIZE", 10, minimum=1, maximum=200),
                "max_overflow": _env_int("DB_MAX_OVERFLOW", 20, minimum=0, maximum=500),
                "pool_timeout": _env_int("DB_POOL_TIMEOUT_SECONDS", 30, minimum=1, maximum=300),
            }
        )
        app.logger.info(
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    if not origins and env not in ("prod", "production"):
        origins = ["*"]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    db.init_app(app)
    migrate.init_app(app, db)
    install_request_observers(app)

    @app.before_request
    def _capture_principal():
        g.principal = None
        principal, _user = principal_from_header(request.headers.get("Authorization", ""))
        g.principal = principal
        set_sentry_user(principal.user_id if principal else None, principal.capabilities if principal else ())

    @app.errorhandler(LifecycleError)
    def _lifecycle_error(error: LifecycleError):
        db.session.rollback()
        principal = getattr(g, "principal", None)
        app.logger.info(
            "lifecycle_rejected path=%s code=%s status=%s user_id=%s",
            request.path,
            error.code,
            error.status_code,
            principal.user_id if principal else None,
        )
        return jsonify(_error_payload(error.message, error.code, error.status_code)), error.status_code

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        return jsonify(_error_payload(error.description or error.name, error.name, status)), status

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        db.session.rollback()
        principal = getattr(g, "principal", None)
        app.logger.exception(
            "unhandled_exception path=%s method=%s user_id=%s request_id=%s",
            request.path,
            request.method,
            principal.user_id if principal else None,
            getattr(g, "request_id", ""),
        )
        payload = _error_payload("Internal server error", "InternalServerError", 500)
        if _debug_errors():
            payload["detail"] = f"{error.__class__.__name__}: {error}"
        return jsonify(payload), 500

    app.register_blueprint(orders_bp)
    app.register_blueprint(deliveries_bp)
    app.register_blueprint(drivers_bp)
    app.register_blueprint(charity_bp)
    app.register_blueprint(notifications_bp)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            db_state = "fail"
            msg = str(e)
            db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "success": True,
            "service": SERVICE_NAME,
            "env": env,
            "db": db_state,
            "routing": routing_health(),
            "cache": cache_stats(),
            "alembic_head": _resolve_alembic_head(),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({"success": True, "service": SERVICE_NAME, "env": env})

    return app
