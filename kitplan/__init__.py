from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS

# database imports
from kitplan.models import db
from kitplan.logging_config import configure_logging, get_logger

logger = get_logger(__name__)


def create_app(database_uri: Optional[str] = None):
    """
    Application factory.

    Args:
        database_uri: Explicit SQLAlchemy URI (tests pass ``sqlite:///:memory:``);
            when None the URI is chosen per environment by ``configure_database``.
    """
    # Import config after dotenv is loaded
    from kitplan.config import get_config
    from kitplan.db_config import configure_database

    # Get the appropriate config class based on environment
    config_class = get_config()

    app = Flask(__name__)
    app.config.from_object(config_class)

    configure_logging(
        log_level=app.config.get("LOG_LEVEL", "INFO"),
        log_file=app.config.get("LOG_FILE"),
        json_console=app.config.get("LOG_JSON_CONSOLE", False),
    )

    # Configure database separately
    configure_database(app, database_uri=database_uri)

    # Log the environment being used
    logger.info(f"Starting application in {config_class.ENV} environment")
    logger.info(f"Database URI: {app.config.get('SQLALCHEMY_DATABASE_URI', 'Not set')[:50]}...")

    # Get allowed origins from environment variable
    allowed_origins = app.config.get("CORS_ORIGINS", "*")
    if allowed_origins != "*":
        # Parse comma-separated list if provided
        allowed_origins = [origin.strip() for origin in allowed_origins.split(",")]

    CORS(app,
         resources={r"/*": {"origins": allowed_origins}},
         supports_credentials=True,
         allow_headers=["Content-Type", "Authorization"],
         methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"])

    db.init_app(app)
    # Tables are created by migrations/create_kitting_tables.py

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "environment": config_class.ENV}), 200

    from kitplan.api import api_bp
    app.register_blueprint(api_bp, url_prefix="/api")

    return app
