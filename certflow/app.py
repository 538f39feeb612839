import logging
import os

from flask import Flask, jsonify, request
from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()

from .models import CertificateRecord, Event, Participant  # noqa: E402,F401


def _engine_options(database_url: str, timeout: float) -> dict:
    # sqlite has no connection pool to wait on; its busy timeout is the
    # equivalent bound on how long a locked write may block.
    if database_url.startswith("sqlite"):
        return {"connect_args": {"timeout": timeout, "check_same_thread": False}}
    return {"pool_timeout": timeout, "pool_pre_ping": True}


def create_app(overrides: dict | None = None):
    app = Flask(__name__, template_folder="templates")
    app.secret_key = os.getenv("SECRET_KEY", "dev")
    app.config["PREFERRED_URL_SCHEME"] = "https"

    DB_USER = os.getenv("DB_USER", "certflow")
    DB_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
    DB_HOST = os.getenv("DB_HOST", "db")
    DB_NAME = os.getenv("DB_NAME", "certflow")
    DATABASE_URL = os.getenv(
        "DATABASE_URL",
        f"postgresql+psycopg2://{DB_USER}:{DB_PASSWORD}@{DB_HOST}/{DB_NAME}",
    )

    app.config["SQLALCHEMY_DATABASE_URI"] = DATABASE_URL
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["DB_POOL_TIMEOUT"] = float(os.getenv("DB_POOL_TIMEOUT", "10"))

    app.config["VERIFY_BASE_URL"] = os.getenv(
        "VERIFY_BASE_URL", "http://localhost:5000"
    )
    app.config["EMAIL_SERVICE_ID"] = os.getenv("EMAIL_SERVICE_ID", "")
    app.config["EMAIL_TEMPLATE_ID"] = os.getenv("EMAIL_TEMPLATE_ID", "")
    app.config["EMAIL_PUBLIC_KEY"] = os.getenv("EMAIL_PUBLIC_KEY", "")
    app.config["EMAIL_API_URL"] = os.getenv(
        "EMAIL_API_URL", "https://api.emailjs.com/api/v1.0/email/send"
    )
    app.config["EMAIL_FROM_NAME"] = os.getenv("EMAIL_FROM_NAME", "Certificates Team")
    app.config["EMAIL_REPLY_TO"] = os.getenv("EMAIL_REPLY_TO", "")
    app.config["EMAIL_TIMEOUT"] = float(os.getenv("EMAIL_TIMEOUT", "10"))

    app.config["CERT_TEMPLATE_PDF"] = os.getenv("CERT_TEMPLATE_PDF") or None
    app.config["CERT_FOOTER_TEXT"] = os.getenv("CERT_FOOTER_TEXT", "")
    app.config["CERT_BATCH_WORKERS"] = int(os.getenv("CERT_BATCH_WORKERS", "1"))

    if overrides:
        app.config.update(overrides)

    app.config.setdefault(
        "SQLALCHEMY_ENGINE_OPTIONS",
        _engine_options(
            app.config["SQLALCHEMY_DATABASE_URI"], app.config["DB_POOL_TIMEOUT"]
        ),
    )

    db.init_app(app)

    @app.get("/health")
    def health():  # pragma: no cover - simple healthcheck
        return "OK", 200

    @app.get("/verify")
    def verify():
        from .services.verification import verify_certificate

        token = request.args.get("id", "")
        result = verify_certificate(token)
        if not result.valid:
            return jsonify(result.as_dict()), 404
        return jsonify(result.as_dict())

    from .routes.certificates import bp as certificates_bp

    app.register_blueprint(certificates_bp)

    if os.getenv("CERTFLOW_CREATE_TABLES"):
        with app.app_context():
            create_tables_safely()

    return app


def create_tables_safely() -> None:
    """Create missing tables for local runs that skip migrations."""

    try:
        db.create_all()
    except Exception:
        logging.exception("create_tables_safely failed")
