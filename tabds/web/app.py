"""Flask application factory."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from flask import Flask
from flask.json.provider import DefaultJSONProvider

from tabds.config import Settings, load_settings
from tabds.ds.manager import CacheManager
from tabds.web.api.ds_routes import ds_bp


class _JSONProvider(DefaultJSONProvider):
    """Serialise datetimes as ISO-8601 and paths as strings."""

    def default(self, o: Any) -> Any:
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, Path):
            return str(o)
        return super().default(o)


def create_app(config: dict | None = None, settings: Settings | None = None) -> Flask:
    """Create the API application.

    ``TABDS_CACHE_DIR`` / ``TABDS_DB_PATH`` in *config* override the
    resolved settings when *settings* is not given.
    """
    app = Flask(__name__)
    app.json_provider_class = _JSONProvider
    app.json = _JSONProvider(app)

    if config:
        app.config.update(config)

    if settings is None:
        settings = load_settings(
            cache_root=app.config.get("TABDS_CACHE_DIR"),
            db_path=app.config.get("TABDS_DB_PATH"),
        )
    app.config["cache_manager"] = CacheManager(settings=settings)
    app.config.setdefault("ROWS_MAX_LENGTH", 100)

    app.register_blueprint(ds_bp)
    return app
