import os
import logging
from decimal import Decimal
from logging.handlers import RotatingFileHandler
from time import time

from flask import Flask, request, current_app, g, jsonify
from flask_babel import Babel
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from controllers.auth import login_manager
from controllers.orders import orders_bp
from controllers.payments import payments_bp
from models.base import Base, init_engine_and_session, ping_database
from services.errors import FulfillmentError
from services.fulfillment import FulfillmentEngine
from services.metrics import init_app as init_metrics, REQUEST_COUNT, REQUEST_LATENCY
from services.notifier import LoggingTransport, Notifier, SMTPTransport

babel = Babel()

# .env is read once at import; `flask run` would load it too
load_dotenv()


def select_locale():
    langs = current_app.config.get("LANGUAGES", ["en"])
    return request.accept_languages.best_match(langs) or "en"


def _env_bool(name: str, default: bool = False) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return str(v).strip().lower() in ("1", "true", "yes", "on")


def _configure_logging(app: Flask) -> None:
    """One handler on the root logger: stdout in containers, rotating file otherwise."""
    handler = logging.StreamHandler()
    if not _env_bool("LOG_TO_STDOUT", True):
        log_dir = os.path.join(os.path.dirname(__file__), "log")
        try:
            os.makedirs(log_dir, exist_ok=True)
            handler = RotatingFileHandler(
                os.path.join(log_dir, "fulfillment.log"),
                maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8",
            )
        except OSError:
            app.logger.warning("log dir %s not writable, logging to stdout", log_dir)

    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s [%(name)s] %(message)s"))
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers.clear()  # create_app may run more than once per process
    root.addHandler(handler)
    app.logger.setLevel(logging.INFO)


def _build_notifier(app: Flask) -> Notifier:
    conf = app.config
    if conf.get("MAIL_SERVER"):
        transport = SMTPTransport(
            conf["MAIL_SERVER"], int(conf["MAIL_PORT"]),
            username=conf.get("MAIL_USERNAME"), password=conf.get("MAIL_PASSWORD"),
            use_tls=bool(conf.get("MAIL_USE_TLS")),
        )
    else:
        transport = LoggingTransport()
    return Notifier(
        transport,
        sender=conf.get("MAIL_SENDER") or conf.get("MAIL_USERNAME") or "no-reply@localhost",
        timeout=float(conf["NOTIFY_TIMEOUT_SEC"]),
        max_workers=int(conf["NOTIFY_WORKERS"]),
    )


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def _start_timer():
        g._t0 = time()

    @app.after_request
    def _observe(resp):
        try:
            elapsed = time() - getattr(g, "_t0", time())
            app.logger.info("%s %s %s %.1fms", request.method, request.path,
                            resp.status_code, elapsed * 1000)
            if request.path.startswith("/metrics"):
                return resp
            endpoint = (request.endpoint or "unknown").replace(".", "_")
            REQUEST_COUNT.labels(method=request.method, endpoint=endpoint,
                                 status=str(resp.status_code)).inc()
            REQUEST_LATENCY.labels(endpoint=endpoint, method=request.method).observe(elapsed)
        except Exception:
            app.logger.exception("request accounting failed")
        return resp


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(FulfillmentError)
    def fulfillment_error(e):
        app.logger.warning("%s on %s %s: %s", type(e).__name__,
                           request.method, request.path, e.message)
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def http_error(e):
        if e.code in (404, 405):
            app.logger.warning("%s %s %s", e.code, request.method, request.path)
        return jsonify({"error": e.description or e.name}), e.code


def _register_health(app: Flask) -> None:
    @app.get("/api/health")
    def api_health():
        return jsonify(status="ok", message="Marketplace API is running"), 200

    @app.get("/healthz")
    def healthz():
        return jsonify(status="ok"), 200

    @app.get("/readyz")
    def readyz():
        # ready means the order store answers
        try:
            ping_database()
        except Exception as e:
            current_app.logger.exception("Readiness check failed")
            return jsonify(status="error", error=str(e)), 500
        return jsonify(status="ok"), 200


def create_app(test_config: dict | None = None):
    app = Flask(__name__, instance_relative_config=True)

    app_env = os.getenv("APP_ENV", "development").lower()

    # production refuses to start without real secrets
    secret_key = os.getenv("FLASK_SECRET_KEY")
    if app_env == "production":
        if not secret_key:
            raise RuntimeError("FLASK_SECRET_KEY must be set in production (.env)")
        if not os.getenv("PAYMENT_WEBHOOK_SECRET"):
            raise RuntimeError("PAYMENT_WEBHOOK_SECRET must be set in production (.env)")

    app.config.from_mapping(
        SECRET_KEY=secret_key or os.urandom(32),
        APP_ENV=app_env,

        # Gateway
        PAYMENT_PROVIDER=os.getenv("PAYMENT_PROVIDER", "dummy"),
        PAYMENT_CURRENCY=os.getenv("PAYMENT_CURRENCY", "USD"),
        FRONTEND_URL=os.getenv("FRONTEND_URL", "http://localhost:5173"),
        WEBHOOK_SIGNATURE_HEADER=os.getenv(
            "WEBHOOK_SIGNATURE_HEADER", "Stripe-Signature"),
        WEBHOOK_TOLERANCE_SEC=int(os.getenv("WEBHOOK_TOLERANCE_SEC", "300")),
        ORDER_AMOUNT_TOLERANCE=os.getenv("ORDER_AMOUNT_TOLERANCE", "0.01"),

        # Receipt mail
        MAIL_SERVER=os.getenv("MAIL_SERVER"),
        MAIL_PORT=int(os.getenv("MAIL_PORT", "587")),
        MAIL_USERNAME=os.getenv("MAIL_USERNAME"),
        MAIL_PASSWORD=os.getenv("MAIL_PASSWORD"),
        MAIL_USE_TLS=_env_bool("MAIL_USE_TLS", True),
        MAIL_SENDER=os.getenv("MAIL_SENDER"),
        NOTIFY_TIMEOUT_SEC=float(os.getenv("NOTIFY_TIMEOUT_SEC", "10")),
        NOTIFY_WORKERS=int(os.getenv("NOTIFY_WORKERS", "2")),
        RECEIPT_LOCALE=os.getenv("RECEIPT_LOCALE", "en"),

        # i18n
        BABEL_DEFAULT_LOCALE="en",
        BABEL_TRANSLATION_DIRECTORIES="translations",
        LANGUAGES=["en", "th"],
    )
    if test_config:
        app.config.update(test_config)

    babel.init_app(app, locale_selector=select_locale)
    _configure_logging(app)

    # ---- DB ----
    engine, _Session = init_engine_and_session()
    if _env_bool("AUTO_CREATE_SCHEMA", True):
        Base.metadata.create_all(engine, checkfirst=True)

    login_manager.init_app(app)

    # ---- Fulfillment wiring ----
    notifier = _build_notifier(app)
    app.extensions["notifier"] = notifier
    app.extensions["fulfillment"] = FulfillmentEngine(
        notifier,
        tolerance=Decimal(str(app.config["ORDER_AMOUNT_TOLERANCE"])),
        receipt_locale=app.config["RECEIPT_LOCALE"],
    )

    app.register_blueprint(payments_bp)
    app.register_blueprint(orders_bp)

    if _env_bool("METRICS_ENABLED", True):
        init_metrics(app)

    _register_error_handlers(app)
    _register_request_hooks(app)
    _register_health(app)
    return app


if __name__ == "__main__":
    app = create_app()
    app.run(host="0.0.0.0", port=int(os.getenv("PORT", "5000")),
            debug=app.config["APP_ENV"] != "production")
