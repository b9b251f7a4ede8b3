import os
import click
from flask import Flask, jsonify, request
from sqlalchemy import text
from werkzeug.exceptions import HTTPException

from feira.extensions import db, migrate, cors, login_manager
from feira.integrations.payments.factory import payment_health
from feira.segments.segment_auth import auth_bp
from feira.segments.segment_ads import ads_bp
from feira.segments.segment_notifications import notifications_bp
from feira.segments.segment_boost import boost_bp
from feira.segments.segment_admin import admin_bp
from feira.segments.segment_settings import settings_bp
from feira.utils.job_runs import last_job_run
from feira.utils.observability import init_sentry, install_request_observers, with_trace_id
from feira.utils.validation import ValidationError


def _env_int(name: str, default: int, *, minimum: int = 1, maximum: int = 100000) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        value = int(default)
    else:
        try:
            value = int(raw)
        except ValueError:
            value = int(default)
    if value < minimum:
        value = minimum
    if value > maximum:
        value = maximum
    return value


def _env_flag(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _check_production_secrets() -> None:
    for name in ("SESSION_SECRET", "USER_JWT_SECRET", "ADMIN_JWT_SECRET"):
        value = (os.getenv(name) or "").strip()
        if not value or len(value) < 16:
            raise RuntimeError(f"{name} must be set and at least 16 chars in production")
    if (os.getenv("USER_JWT_SECRET") or "").strip() == (os.getenv("ADMIN_JWT_SECRET") or "").strip():
        raise RuntimeError("USER_JWT_SECRET and ADMIN_JWT_SECRET must differ")
    if not (os.getenv("DATABASE_URL") or "").strip():
        raise RuntimeError("DATABASE_URL must be set in production")


def _error_payload(name: str, message: str, status: int) -> dict:
    return with_trace_id({"ok": False, "error": name, "message": message, "status": int(status)})


def create_app():
    app = Flask(__name__)
    init_sentry(app)

    env = (os.getenv("FEIRA_ENV", "dev") or "dev").strip().lower()

    # Production safety checks
    if env in ("prod", "production"):
        _check_production_secrets()

    # Basic config
    app.config["FEIRA_ENV"] = env
    app.config["SECRET_KEY"] = os.getenv("SESSION_SECRET") or os.getenv("SECRET_KEY") or "dev-session-secret"
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SESSION_COOKIE_HTTPONLY"] = True
    app.config["BASE_URL"] = (os.getenv("BASE_URL") or "http://localhost:5000").strip()
    app.config["PAYMENTS_PROVIDER"] = (os.getenv("PAYMENTS_PROVIDER") or "").strip().lower()
    app.config["MERCADOPAGO_WEBHOOK_SECRET"] = (os.getenv("MERCADOPAGO_WEBHOOK_SECRET") or "").strip()
    app.config["MERCADOPAGO_TIMEOUT_SECONDS"] = _env_int("MERCADOPAGO_TIMEOUT_SECONDS", 10, minimum=1, maximum=60)
    app.config["BOOST_PENDING_TTL_HOURS"] = _env_int("BOOST_PENDING_TTL_HOURS", 24, minimum=1, maximum=24 * 30)
    app.config["BOOST_WEBHOOK_QUEUE"] = _env_flag("BOOST_WEBHOOK_QUEUE", False)
    app.config["MAX_CONTENT_LENGTH"] = _env_int("MAX_UPLOAD_MB", 8, minimum=1, maximum=64) * 1024 * 1024

    # Ensure instance dir exists for SQLite paths and local uploads
    instance_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "instance"))
    os.makedirs(instance_dir, exist_ok=True)
    app.config["UPLOAD_DIR"] = os.getenv("UPLOAD_DIR") or os.path.join(instance_dir, "uploads")

    # Database config
    database_url = os.getenv("DATABASE_URL") or ""
    if not database_url:
        database_url = f"sqlite:///{os.path.join(instance_dir, 'feira.db').replace(os.sep, '/')}"
    if database_url.startswith("postgres://"):
        database_url = database_url.replace("postgres://", "postgresql://", 1)
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
            "db_pooling_enabled pool_size=%s max_overflow=%s pool_timeout=%s pool_recycle=%s",
            engine_options["pool_size"],
            engine_options["max_overflow"],
            engine_options["pool_timeout"],
            engine_options["pool_recycle"],
        )
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # CORS configuration
    cors_origins = (os.getenv("CORS_ORIGINS") or "").strip()
    if env in ("prod", "production"):
        origins = [o.strip() for o in cors_origins.split(",") if o.strip()]
    else:
        origins = ["*"] if not cors_origins else [o.strip() for o in cors_origins.split(",") if o.strip()]
    cors.init_app(app, resources={r"/api/*": {"origins": origins}})

    # Init extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    install_request_observers(app)

    if app.config["BOOST_WEBHOOK_QUEUE"]:
        from feira.celery_app import create_celery_app

        app.extensions["celery"] = create_celery_app(app)

    app.config["AUTO_CREATE_SCHEMA"] = _env_flag("AUTO_CREATE_SCHEMA", True)
    if app.config["AUTO_CREATE_SCHEMA"]:
        with app.app_context():
            db.create_all()

    @app.errorhandler(ValidationError)
    def _api_validation_error(error: ValidationError):
        return jsonify(with_trace_id(error.to_payload())), 400

    @app.errorhandler(HTTPException)
    def _api_http_exception(error: HTTPException):
        # Keep API failures JSON-only for predictable frontend handling.
        if not request.path.startswith("/api/"):
            return error
        status = int(error.code or 500)
        return jsonify(_error_payload(error.name, error.description or error.name, status)), status

    @app.errorhandler(Exception)
    def _api_unhandled_exception(error: Exception):
        db.session.rollback()
        app.logger.exception("unhandled_exception path=%s", request.path)
        return jsonify(_error_payload("InternalServerError", "Internal server error", 500)), 500

    # Register API routes
    app.register_blueprint(auth_bp)
    app.register_blueprint(ads_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(boost_bp)
    app.register_blueprint(admin_bp)
    app.register_blueprint(settings_bp)

    # Health check
    @app.get("/api/health")
    def health():
        db_state = "ok"
        db_error = None
        maintenance = None
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            last_run = last_job_run("marketplace_maintenance")
            maintenance = last_run.to_dict() if last_run else None
        except Exception as e:
            db.session.rollback()
            db_state = "fail"
            msg = str(e)
            if msg:
                db_error = (msg[:300] + "...") if len(msg) > 300 else msg
        payload = {
            "ok": True,
            "service": "feira-backend",
            "env": env,
            "db": db_state,
            "payments": payment_health(app.config),
            "maintenance": maintenance,
            "git_sha": (os.getenv("GIT_SHA") or "unknown"),
        }
        if db_error:
            payload["db_error"] = db_error
        return jsonify(payload)

    @app.get("/")
    def root():
        return jsonify({
            "ok": True,
            "service": "feira-backend",
            "env": env,
        })

    @app.teardown_request
    def _cleanup_db_session(exc):
        try:
            if exc is not None:
                db.session.rollback()
        finally:
            db.session.remove()

    @app.cli.command("bootstrap-admin")
    def bootstrap_admin():
        from feira.services.user_service import upsert_admin

        allow = (os.getenv("ALLOW_ADMIN_BOOTSTRAP") or "").strip() == "1"
        if env not in ("dev", "development", "local", "test") and not allow:
            raise click.ClickException("Admin bootstrap disabled. Set ALLOW_ADMIN_BOOTSTRAP=1 or FEIRA_ENV=dev.")

        email = (os.getenv("ADMIN_EMAIL") or "").strip().lower()
        password = (os.getenv("ADMIN_PASSWORD") or "").strip()
        if not email or not password:
            raise click.ClickException("ADMIN_EMAIL and ADMIN_PASSWORD must be set.")
        if len(password) < 8:
            raise click.ClickException("ADMIN_PASSWORD must be at least 8 characters.")

        admin = upsert_admin(email, password)
        click.echo(f"admin_bootstrap_ok {admin.email}")

    @app.cli.command("seed-defaults")
    def seed_defaults_command():
        from feira.services.seed_service import seed_defaults

        created = seed_defaults()
        click.echo(
            "seed_defaults_ok categories={categories} settings={settings} promotions={promotions}".format(**created)
        )

    @app.cli.command("run-maintenance")
    def run_maintenance_command():
        from feira.jobs.maintenance_runner import run_marketplace_maintenance

        summary = run_marketplace_maintenance()
        click.echo(f"maintenance_ok {summary}")

    return app
