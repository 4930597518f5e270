"""
WSGI entrypoint for production (gunicorn/systemd).

This module should have no side effects beyond loading configuration and
creating the Flask app.
"""
from livestream.config import load_config, setup_logging
from web.app import create_app

config = load_config()
setup_logging(config)
app = create_app(config=config)
