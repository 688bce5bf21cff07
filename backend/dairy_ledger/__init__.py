# backend/dairy_ledger/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Engines are built in db.init_app, so overrides must land before it
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.batches import batches_bp  # Batch store intake and reads
    from .routes.stock_movements import stock_movements_bp  # Ledger reads and adjustments
    from .routes.truck_loads import truck_loads_bp
    from .routes.sales import sales_bp
    from .routes.allowances import allowances_bp
    from .routes.reconciliations import reconciliations_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(batches_bp)
    app.register_blueprint(stock_movements_bp)
    app.register_blueprint(truck_loads_bp)
    app.register_blueprint(sales_bp)
    app.register_blueprint(allowances_bp)
    app.register_blueprint(reconciliations_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        allowed_origins = {
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        }
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "X-User-Id, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
