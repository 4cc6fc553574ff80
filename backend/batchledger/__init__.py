# backend/batchledger/__init__.py
from flask import Flask

from .config import Config
from .extensions import db, migrate
from .logging_config import setup_logging
from .services.concurrency import init_line_locks


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    setup_logging(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    init_line_locks(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.batches import batches_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(batches_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
