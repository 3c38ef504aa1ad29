import os
from datetime import datetime, timedelta
from typing import Dict, List, Optional

import bcrypt
from dotenv import load_dotenv
from flask import Flask
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException
from werkzeug.middleware.proxy_fix import ProxyFix

from backend.auth_routes import register_auth_routes
from backend.catalog_routes import register_catalog_routes
from backend.finance_routes import register_finance_routes
from backend.helpers import ApiError, error_response, normalize_email

load_dotenv()


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def default_config() -> Dict[str, object]:
    production = os.getenv("FLASK_ENV", "").strip().lower() == "production"
    return {
        "MONGO_URI": os.getenv("MONGO_URI", "mongodb://localhost:27017/bike-platform"),
        "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY", "change-me-in-production"),
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(days=7),
        "JWT_TOKEN_LOCATION": ["cookies", "headers"],
        "JWT_ACCESS_COOKIE_NAME": "auth-token",
        "JWT_COOKIE_SECURE": env_flag("JWT_COOKIE_SECURE", production),
        "JWT_COOKIE_SAMESITE": "Strict",
        "JWT_COOKIE_CSRF_PROTECT": False,
        "JWT_SESSION_COOKIE": False,
        "TRUSTED_PROXY_HOPS": env_int("TRUSTED_PROXY_HOPS", 1),
        "DEFAULT_ADMIN_EMAIL": os.getenv("DEFAULT_ADMIN_EMAIL", "admin@bikeplatform.com"),
        "DEFAULT_ADMIN_PASSWORD": os.getenv("DEFAULT_ADMIN_PASSWORD", "admin123"),
        "DEFAULT_ADMIN_NAME": os.getenv("DEFAULT_ADMIN_NAME", "Admin User"),
        "BCRYPT_ROUNDS": env_int("BCRYPT_ROUNDS", 12),
        "VERIFICATION_CODE_EXPIRATION_HOURS": env_int("VERIFICATION_CODE_EXPIRATION_HOURS", 24),
        "MAX_FAILED_VERIFICATION_ATTEMPTS": env_int("MAX_FAILED_VERIFICATION_ATTEMPTS", 5),
        "RESEND_API_KEY": (os.getenv("RESEND_API_KEY") or "").strip(),
        "MAIL_SENDER": os.getenv("MAIL_SENDER", "BahonXBD <noreply@bahonxbd.com>"),
        "PURCHASE_ORDER_STATS_PERIOD_DAYS": env_int("PURCHASE_ORDER_STATS_PERIOD_DAYS", 30),
    }


def allowed_cors_origins() -> List[str]:
    allowed_origins = [
        "http://localhost:5173",
        "http://localhost:4173",
        "http://localhost:3000",
        os.getenv("FRONTEND_URL", "").strip(),
    ]
    cors_extra = os.getenv("CORS_ALLOWED_ORIGINS", "")
    if cors_extra:
        for origin in cors_extra.split(","):
            trimmed = origin.strip()
            if trimmed:
                allowed_origins.append(trimmed)
    return [origin for origin in allowed_origins if origin]


def ensure_indexes(app: Flask, db):
    try:
        db.users.create_index("email", unique=True)
        db.email_verification_codes.create_index("expires_at", expireAfterSeconds=0)
        db.email_verification_codes.create_index("email")
        db.bikes.create_index([("status", 1), ("created_at", -1)])
        db.bikes.create_index("partners.partner_id")
        db.partners.create_index("email")
        db.purchase_orders.create_index([("created_at", -1)])
        db.purchase_orders.create_index("bike_id")
        db.expenses.create_index([("bike_id", 1), ("date", -1)])
    except Exception as exc:
        app.logger.warning("Unable to ensure indexes: %s", exc)


def ensure_default_admin(app: Flask, db):
    admin_email = app.config["DEFAULT_ADMIN_EMAIL"]
    if db.users.find_one({"email": admin_email}):
        return

    now = datetime.utcnow()
    password = str(app.config["DEFAULT_ADMIN_PASSWORD"])
    db.users.insert_one(
        {
            "name": app.config["DEFAULT_ADMIN_NAME"],
            "email": admin_email,
            "password": bcrypt.hashpw(
                password.encode("utf-8"),
                bcrypt.gensalt(rounds=int(app.config["BCRYPT_ROUNDS"])),
            ),
            "role": "admin",
            "email_verified": True,
            "verified_at": now,
            "created_at": now,
            "updated_at": now,
        }
    )
    app.logger.info("Seeded default admin account %s", admin_email)


def register_error_handlers(app: Flask, jwt: JWTManager):
    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        return error_response(exc.message, exc.status_code, exc.errors)

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        errors = [
            {
                "path": ".".join(str(part) for part in error.get("loc", ())),
                "message": error.get("msg", "Invalid value"),
            }
            for error in exc.errors()
        ]
        summary = "; ".join(
            f"{entry['path']}: {entry['message']}" if entry["path"] else entry["message"]
            for entry in errors
        )
        return error_response(f"Validation error: {summary}", 400, errors)

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        return error_response(exc.description or exc.name, exc.code or 500)

    @app.errorhandler(Exception)
    def handle_unexpected_error(exc: Exception):
        app.logger.exception("Unhandled error: %s", exc)
        return error_response("Something went wrong!", 500)

    @jwt.unauthorized_loader
    def handle_missing_token(reason: str):
        return error_response("Authentication required", 401)

    @jwt.invalid_token_loader
    def handle_invalid_token(reason: str):
        return error_response("Invalid authentication token", 401)

    @jwt.expired_token_loader
    def handle_expired_token(jwt_header, jwt_payload):
        return error_response("Authentication token has expired", 401)


def create_app(test_config: Optional[Dict[str, object]] = None, database=None) -> Flask:
    """Create and configure the Flask application.

    ``database`` lets callers hand in an already constructed store handle;
    otherwise one is opened from ``MONGO_URI``.
    """
    app = Flask(__name__)
    app.config.from_mapping(default_config())
    if test_config:
        app.config.from_mapping(test_config)
    app.config["DEFAULT_ADMIN_EMAIL"] = normalize_email(app.config["DEFAULT_ADMIN_EMAIL"])

    # Honor proxy headers so cookies and redirects keep the public HTTPS origin.
    trusted_proxy_hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    CORS(app, supports_credentials=True, origins=allowed_cors_origins() or "*")
    jwt = JWTManager(app)

    if database is None:
        database = PyMongo(app).db
    db = database

    ensure_indexes(app, db)
    ensure_default_admin(app, db)
    register_error_handlers(app, jwt)

    register_auth_routes(app, db)
    register_catalog_routes(app, db)
    register_finance_routes(app, db)

    @app.route("/health")
    def health():
        return {"status": "ok"}, 200

    return app


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    create_app().run(host="0.0.0.0", port=port)
