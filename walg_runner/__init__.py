import os
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask
from flask_sqlalchemy import SQLAlchemy

from walg_runner.config import ConfigError


# Initialize extensions
db = SQLAlchemy()


def configure_logging(app):
    """Configure application logging"""

    # Logs live next to the per-run tool logs
    log_dir = os.path.join(app.config['WALG_STATE_DIR'], 'walg_logs')
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError as e:
        raise ConfigError(f"Cannot create log directory {log_dir}: {e}")

    # Set log level based on environment
    log_level = logging.DEBUG if app.config.get('DEBUG', False) else logging.INFO

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s in %(module)s: %(message)s'
    )
    console_handler.setFormatter(console_formatter)

    # File handler
    try:
        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'walg-runner.log'),
            maxBytes=10485760,  # 10MB
            backupCount=10
        )
    except OSError as e:
        raise ConfigError(f"Cannot open application log in {log_dir}: {e}")
    file_handler.setLevel(log_level)
    file_formatter = logging.Formatter(
        '[%(asctime)s] %(levelname)s [%(name)s.%(funcName)s:%(lineno)d] %(message)s'
    )
    file_handler.setFormatter(file_formatter)

    # Configure package logger
    package_logger = logging.getLogger('walg_runner')
    package_logger.setLevel(log_level)
    package_logger.handlers = [console_handler, file_handler]

    # Configure Flask app logger
    app.logger.setLevel(log_level)
    app.logger.handlers = [console_handler, file_handler]

    app.logger.debug(f"Logging configured (level: {logging.getLevelName(log_level)})")


def create_app(config_name=None, test_config=None):
    """
    Application factory.

    Loads configuration (environment, optional wal-g environment file and
    explicit overrides, in increasing precedence), configures logging and
    prepares the run history database.
    """
    app = Flask(__name__)

    # Load configuration
    if config_name is None:
        config_name = os.environ.get('WALG_RUNNER_ENV', 'production')

    from walg_runner.config import config, read_env_file
    app.config.from_object(config[config_name])

    # The wal-g environment file is read once here and nowhere else
    env_file_vars = read_env_file(app.config.get('WALG_ENV_FILE'))
    for key, value in env_file_vars.items():
        if key.isupper() and key in app.config:
            app.config[key] = value

    tool_env = dict(os.environ)
    tool_env.update(env_file_vars)
    app.config['WALG_TOOL_ENV'] = tool_env

    if test_config:
        app.config.update(test_config)

    if not app.config.get('WALG_STATE_DIR'):
        app.config['WALG_STATE_DIR'] = app.config['PGDATA']

    if not app.config.get('SQLALCHEMY_DATABASE_URI'):
        db_path = os.path.join(app.config['WALG_STATE_DIR'], 'walg_runner.db')
        app.config['SQLALCHEMY_DATABASE_URI'] = f'sqlite:///{db_path}'

    # Configure logging
    configure_logging(app)

    # Initialize extensions
    db.init_app(app)

    # Create run history tables
    from walg_runner import models  # noqa: F401
    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            app.logger.warning(f"Run history database unavailable: {e}")

    return app
