"""
Texture Color Highlighter Web Application

Locates texture regions matching a chosen color and serves the match mask,
statistics and a highlighted preview over a JSON API.
"""

from flask import Flask, jsonify
from flask_cors import CORS


def create_app(config=None):
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Enable CORS for API endpoints
    CORS(app)

    # Default configuration
    app.config['MAX_CONTENT_LENGTH'] = 50 * 1024 * 1024  # 50MB max upload
    app.config['HIGHLIGHT_TIMEOUT'] = 30.0  # seconds to wait for an analysis

    # Apply custom config
    if config:
        app.config.update(config)

    # Register API blueprint
    from .api import api
    app.register_blueprint(api, url_prefix='/api')

    from .api.routes import init_session
    init_session(app)

    @app.route('/')
    def index():
        return jsonify({"name": "colorhighlight", "api": "/api"})

    return app
