"""
Newsletter Curator Flask Application Factory
"""
import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

# Silence verbose SQLAlchemy logging
logging.getLogger('sqlalchemy.engine').setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(config=None):
    """
    Flask application factory

    Args:
        config: Optional configuration dictionary. Recognised keys besides
            Flask's own: SESSION_FACTORY (SQLAlchemy session factory, bound
            to DATABASE_URL on first use when omitted) and PIPELINE_FACTORY
            (callable(session_factory) -> CurationPipeline).

    Returns:
        Flask application instance
    """
    load_dotenv()

    app = Flask(__name__)

    app.config['SECRET_KEY'] = os.environ.get('SECRET_KEY', 'dev-secret-key')
    app.config['SESSION_FACTORY'] = None
    app.config['PIPELINE_FACTORY'] = None
    app.json.sort_keys = False

    if config:
        app.config.from_mapping(config)

    from app.routes import main
    app.register_blueprint(main)

    # Errors outside the blueprint (unknown routes, wrong methods) are JSON too
    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        return jsonify({'error': e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(e: Exception):
        logger.exception(f"Unhandled error: {e}")
        return jsonify({'error': 'Internal server error'}), 500

    return app


if __name__ == '__main__':
    create_app().run(debug=True, port=5000)
