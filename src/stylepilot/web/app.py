from __future__ import annotations

from collections.abc import Callable

from flask import Flask

from pilot_llm.client import gateway_from_env
from pilot_llm.gateway import ModelServiceGateway
from pilot_llm.middleware import LoggingGateway
from stylepilot.config import PilotConfig
from stylepilot.store.db import Database
from stylepilot.store.migrations import run_migrations
from stylepilot.store.repositories import ArtifactRepository


def create_app(
    db: Database | None = None,
    config: dict | None = None,
    pilot_config: PilotConfig | None = None,
    gateway_factory: Callable[[], ModelServiceGateway] | None = None,
) -> Flask:
    """Create and configure the Flask app.

    *gateway_factory* builds a gateway per refinement request; by default it
    reads provider credentials from the environment.
    """
    app = Flask(__name__)
    app.config.update(config or {})
    pilot_config = pilot_config or PilotConfig.from_env()

    if db is None:
        db = Database(":memory:")
        db.connect()
        run_migrations(db)

    if gateway_factory is None:
        def gateway_factory() -> ModelServiceGateway:
            return LoggingGateway(
                gateway_from_env(
                    pilot_config.llm_provider,
                    pilot_config.llm_model or None,
                    timeout=pilot_config.request_timeout,
                )
            )

    app.extensions["db"] = db
    app.extensions["artifact_repo"] = ArtifactRepository(db)
    app.extensions["pilot_config"] = pilot_config
    app.extensions["gateway_factory"] = gateway_factory

    from stylepilot.web.routes.api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

    return app
