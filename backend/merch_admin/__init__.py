# backend/merch_admin/__init__.py
from __future__ import annotations

from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(test_config: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        # Overrides must land before extensions bind their engines
        app.config.update(test_config)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.products import products_bp
    from .routes.stands import stands_bp
    from .routes.orders import orders_bp
    from .routes.scan import scan_bp
    from .routes.users import users_bp
    from .routes.uploads import uploads_bp, serve_upload

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(products_bp)
    app.register_blueprint(stands_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(scan_bp)
    app.register_blueprint(users_bp)
    app.register_blueprint(uploads_bp)
    app.add_url_rule(
        app.config["UPLOAD_URL_PREFIX"].rstrip("/") + "/<path:path>",
        "serve_upload",
        serve_upload,
    )

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in set(app.config.get("CORS_ALLOWED_ORIGINS", [])):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
