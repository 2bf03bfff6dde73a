# backend/lettings/__init__.py
from typing import Optional

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: Optional[dict] = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.tenancies import tenancies_bp
    from .routes.payments import payments_bp
    from .routes.guarantors import guarantors_bp
    from .routes.rolling import rolling_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(tenancies_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(guarantors_bp)
    app.register_blueprint(rolling_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin and origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = (
                f"Authorization, Content-Type, {app.config['AGENCY_SCOPE_HEADER']}"
            )
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    # In-process daily job; production deployments may run `flask rolling schedule` instead
    if app.config["ROLLING_JOB_ENABLED"] and not app.config.get("TESTING"):
        from .scheduler import start_background_scheduler
        start_background_scheduler(app)

    return app
