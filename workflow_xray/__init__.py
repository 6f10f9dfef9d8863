"""
Workflow X-Ray
Flask Application Factory.

Usage:
    from workflow_xray import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

from flask import Flask

from workflow_xray.config import config
from workflow_xray.models import db
from workflow_xray.middleware.logging_config import configure_logging
from workflow_xray.middleware.timing import init_request_timing

logger = logging.getLogger(__name__)


def create_app(config_name=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI")
    if db_uri:
        if db_uri.startswith("sqlite:///") and ":memory:" not in db_uri:
            os.makedirs(os.path.dirname(db_uri[len("sqlite:///"):]), exist_ok=True)
        db.init_app(app)

        from workflow_xray.models import analysis_cache as _analysis_cache_models  # noqa: F401

        if app.config.get("ANALYSIS_CACHE_BACKEND") == "database":
            with app.app_context():
                db.create_all()
                app.logger.info("db.create_all() completed successfully")

    # ── Analysis cache ───────────────────────────────────────────────────
    from workflow_xray.ai.cache import AnalysisCache, create_cache_backend
    app.extensions["analysis_cache"] = AnalysisCache(create_cache_backend(app.config))

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    app.config.setdefault("MAX_CONTENT_LENGTH", 2 * 1024 * 1024)  # 2 MB

    # ── Blueprints ───────────────────────────────────────────────────────
    from workflow_xray.blueprints.xray_bp import xray_bp
    app.register_blueprint(xray_bp)

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        from flask import request
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500

    logger.debug("Workflow X-Ray app created (env=%s, cache=%s)",
                 config_name, app.extensions["analysis_cache"].backend.name)
    return app
