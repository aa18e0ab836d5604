# backend/wpos/__init__.py
from __future__ import annotations

from typing import Any, Mapping, Optional

from flask import Flask

from .config import Config, SaleEngineConfig
from .extensions import db, migrate


def create_app(config_overrides: Optional[Mapping[str, Any]] = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Must land before db.init_app, which reads the database URI once.
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Engine settings are frozen once and handed to services explicitly.
    app.extensions["sale_engine_config"] = SaleEngineConfig.from_mapping(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.sales import sales_bp
    from .routes.analytics import analytics_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(analytics_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
