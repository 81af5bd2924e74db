"""
Flask Application Factory for the AgriEcho server.

This module provides the create_app() factory function that creates and
configures the Flask application. It initializes:
- SQLAlchemy database connection
- Blueprint registration
- Logging configuration

Usage:
    # Development
    python -m agriecho serve

    # Production
    gunicorn -w 4 -b 0.0.0.0:3000 'agriecho.server.app:create_app()'
"""

import logging
import os
from typing import Optional

from flask import Flask

from agriecho.config import load_config
from agriecho.log import configure_logging
from agriecho.server.models import db


def create_app(config_path: Optional[str] = None, testing: bool = False) -> Flask:
    """
    Create and configure the Flask application.

    Args:
        config_path: Optional path to configuration file.
                    If None, uses ~/.agriecho/config.json
        testing: Use an in-memory database and skip file logging

    Returns:
        Configured Flask application instance
    """
    app = Flask(__name__)

    config = load_config(config_path)

    if testing:
        app.config['TESTING'] = True
        app.config['SQLALCHEMY_DATABASE_URI'] = 'sqlite:///:memory:'
    else:
        os.makedirs(config.storage_path, exist_ok=True)
        app.config['SQLALCHEMY_DATABASE_URI'] = config.database_uri
    app.config['SQLALCHEMY_TRACK_MODIFICATIONS'] = False

    app.config['AGRIECHO_CONFIG'] = config

    db.init_app(app)

    with app.app_context():
        db.create_all()

    if not testing:
        _configure_logging(app, config.log_path)

    _register_blueprints(app)

    @app.route('/health')
    def health_check():
        """Basic health check endpoint."""
        return {'status': 'healthy', 'service': 'agriecho'}

    return app


def _configure_logging(app: Flask, log_path: str) -> None:
    """
    Configure application logging.

    Args:
        app: Flask application instance
        log_path: Directory path for log files
    """
    configure_logging(log_path, level=logging.INFO, filename='server.log', logger=app.logger)


def _register_blueprints(app: Flask) -> None:
    from agriecho.server.routes import api_bp
    app.register_blueprint(api_bp)
    app.logger.info('Registered api blueprint')
