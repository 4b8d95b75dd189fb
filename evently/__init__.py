from flask import Flask, jsonify
from flask_cors import CORS
from dotenv import load_dotenv
import os
from evently.extensions import db, migrate, jwt, limiter, reset_sqlite_busy_timeout
from evently.exceptions import EngineError, RetryableError
from evently.utils.email import mail
from datetime import timedelta
import logging

# Load environment variables
load_dotenv()


def create_app(test_config=None):
    app = Flask(__name__)

    # Set testing mode from environment variable
    app.config["TESTING"] = os.getenv("FLASK_ENV") in ["development", "testing"]

    # Configure logging
    logging.basicConfig(level=logging.INFO)
    app.logger.setLevel(logging.INFO)

    # Configure database
    app.config["SQLALCHEMY_DATABASE_URI"] = os.getenv(
        "DATABASE_URL", "postgresql://localhost/evently"
    )
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False

    # Configure JWT
    app.config["JWT_SECRET_KEY"] = os.getenv("JWT_SECRET_KEY", "your-secret-key")
    app.config["JWT_ACCESS_TOKEN_EXPIRES"] = timedelta(days=1)
    app.config["JWT_TOKEN_LOCATION"] = ["headers"]
    app.config["JWT_HEADER_NAME"] = "Authorization"
    app.config["JWT_HEADER_TYPE"] = "Bearer"

    # Payment gateway configuration
    app.config["STRIPE_SECRET_KEY"] = os.getenv("STRIPE_SECRET_KEY")
    app.config["STRIPE_PUBLISHABLE_KEY"] = os.getenv("STRIPE_PUBLISHABLE_KEY", "")
    app.config["PAYMENT_GATEWAY_SECRET"] = os.getenv("PAYMENT_GATEWAY_SECRET")
    app.config["PAYMENT_WEBHOOK_SECRET"] = os.getenv("PAYMENT_WEBHOOK_SECRET")
    app.config["PAYMENT_WEBHOOK_SIGNATURE_HEADER"] = os.getenv(
        "PAYMENT_WEBHOOK_SIGNATURE_HEADER", "X-Payment-Signature"
    )
    app.config["PAYMENT_HOLD_TTL_MINUTES"] = int(os.getenv("PAYMENT_HOLD_TTL_MINUTES", 30))
    app.config["VERIFY_TIMEOUT_SECONDS"] = float(os.getenv("VERIFY_TIMEOUT_SECONDS", 5))
    app.config["SQLITE_BUSY_TIMEOUT_SECONDS"] = float(os.getenv("SQLITE_BUSY_TIMEOUT_SECONDS", 30))

    # Email configuration
    app.config['MAIL_SERVER'] = os.getenv('MAIL_SERVER')
    app.config['MAIL_PORT'] = int(os.getenv('MAIL_PORT', 587))
    app.config['MAIL_USE_TLS'] = os.getenv('MAIL_USE_TLS', 'true').lower() in ['true', '1', 't']
    app.config['MAIL_USERNAME'] = os.getenv('MAIL_USERNAME')
    app.config['MAIL_PASSWORD'] = os.getenv('MAIL_PASSWORD')
    app.config['CLIENT_URL'] = os.getenv('CLIENT_URL', 'http://localhost:3000')

    # Rate limiting
    app.config["RATELIMIT_STORAGE_URI"] = os.getenv("LIMITER_STORAGE_URI", "memory://")

    if test_config:
        app.config.update(test_config)

    # Webhooks are signed with the gateway secret unless a separate one is set
    if not app.config.get("PAYMENT_WEBHOOK_SECRET"):
        app.config["PAYMENT_WEBHOOK_SECRET"] = app.config.get("PAYMENT_GATEWAY_SECRET")

    app.config.setdefault("RATELIMIT_ENABLED", not app.config["TESTING"])

    # SQLite needs a busy timeout so concurrent writers queue instead of failing
    use_sqlite = app.config["SQLALCHEMY_DATABASE_URI"].startswith("sqlite")
    if use_sqlite:
        engine_options = app.config.setdefault("SQLALCHEMY_ENGINE_OPTIONS", {})
        connect_args = engine_options.setdefault("connect_args", {})
        connect_args.setdefault("timeout", app.config["SQLITE_BUSY_TIMEOUT_SECONDS"])
        connect_args.setdefault("check_same_thread", False)

    # Initialize Flask extensions
    db.init_app(app)
    if use_sqlite:
        with app.app_context():
            reset_sqlite_busy_timeout(
                db.engine, app.config["SQLALCHEMY_ENGINE_OPTIONS"]["connect_args"]["timeout"]
            )
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)
    limiter.init_app(app)

    # Register blueprints
    from evently.routes.registration_routes import registration_bp
    from evently.routes.payment_routes import payment_bp
    from evently.routes.admin_routes import admin_bp

    app.register_blueprint(registration_bp, url_prefix="/api")
    app.register_blueprint(payment_bp, url_prefix="/api/payments")
    app.register_blueprint(admin_bp, url_prefix="/api")

    register_error_handlers(app)

    from evently.commands import register_commands

    register_commands(app)

    # Set up CORS
    cors_origins = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://127.0.0.1:3000",
    ).split(",")
    app.logger.info(f"Initializing CORS with origins: {cors_origins}")

    CORS(
        app,
        resources={
            r"/api/*": {"origins": cors_origins},
        },
        supports_credentials=True,
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "Accept"],
        expose_headers=["Content-Type", "Retry-After"],
    )

    return app


def register_error_handlers(app):
    @app.errorhandler(EngineError)
    def handle_engine_error(error):
        response = jsonify(error.to_dict())
        response.status_code = error.status_code
        if isinstance(error, RetryableError):
            response.headers["Retry-After"] = str(error.retry_after)
        return response
