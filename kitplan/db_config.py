"""Database URI and engine options per deployment environment."""
import os

from sqlalchemy.pool import QueuePool

LOCAL_DATABASE_URI = "sqlite:///kitplan.sqlite"

# Environment aliases -> canonical name
ENVIRONMENT_ALIASES = {
    "local": "local", "development": "local", "dev": "local",
    "sandbox": "sandbox", "staging": "sandbox", "stage": "sandbox",
    "production": "production", "prod": "production",
}

# Variables holding the database URL, checked in order
URL_VARIABLES = {
    "local": ("LOCAL_DATABASE_URL",),
    "sandbox": ("SANDBOX_DATABASE_URL",),
    "production": ("PRODUCTION_DATABASE_URL", "DATABASE_URL"),
}


def current_environment(environment=None):
    """Canonical environment name from the argument, FLASK_ENV or ENVIRONMENT. Unknown names map to local."""
    if environment is None:
        environment = os.environ.get("FLASK_ENV") or os.environ.get("ENVIRONMENT", "local")
    return ENVIRONMENT_ALIASES.get(environment.lower(), "local")


def postgres_engine_options():
    """Pool options for the hosted PostgreSQL databases."""
    return {
        "pool_pre_ping": True,
        "pool_recycle": 280,
        "pool_size": 5,
        # Headroom for stations opening on a job at the same moment
        "max_overflow": 10,
        "pool_timeout": 30,
        "poolclass": QueuePool,
        "connect_args": {
            "sslmode": os.environ.get("DATABASE_SSLMODE", "require"),
            "connect_timeout": 10,
            "application_name": "kitplan",
            "options": "-c statement_timeout=30000",
        },
    }


def get_database_config(environment=None):
    """Get database configuration based on environment.

    Args:
        environment: 'local', 'sandbox' or 'production' (or an alias).
            If None, FLASK_ENV / ENVIRONMENT decide.

    Returns:
        tuple: (database_uri, engine_options); engine_options is None for SQLite

    Raises:
        ValueError: If a hosted environment has no database URL configured
    """
    environment = current_environment(environment)
    url = next((os.environ[name] for name in URL_VARIABLES[environment] if os.environ.get(name)), None)

    if environment == "local":
        return url or LOCAL_DATABASE_URI, None
    if not url:
        raise ValueError(f"{' or '.join(URL_VARIABLES[environment])} must be set for the {environment} environment")
    return url, postgres_engine_options()


def configure_database(app, database_uri=None):
    """Configure database settings for the Flask app.

    An explicit database_uri (tests, scripts) skips the environment lookup.
    """
    engine_options = None
    if database_uri is None:
        database_uri, engine_options = get_database_config()

    app.config["SQLALCHEMY_DATABASE_URI"] = database_uri
    app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
    app.config["SQLALCHEMY_ECHO"] = False

    if engine_options:
        app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options
