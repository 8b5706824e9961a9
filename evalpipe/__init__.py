import logging

from flask import Flask

from .extensions import db, migrate
from .pipeline import build_pipeline


def create_app(config_overrides=None, queue=None, scorer=None):
    """App factory.

    `queue` and `scorer` replace the configured queue store and scoring client
    (tests pass a fakeredis-backed client and a stub callable).
    """
    app = Flask(__name__)
    app.config.from_object("config.Config")
    if config_overrides:
        app.config.update(config_overrides)

    logging.getLogger("evalpipe").setLevel(app.config.get("LOG_LEVEL", "INFO"))

    db.init_app(app)
    migrate.init_app(app, db)

    # models must be imported before migrations or create_all see the metadata
    from . import models  # noqa: F401

    build_pipeline(app, queue=queue, scorer=scorer)

    from .api import bp as api_bp
    app.register_blueprint(api_bp, url_prefix="/api")

    return app
