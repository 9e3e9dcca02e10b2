from flask import Flask
from werkzeug.exceptions import HTTPException
from flask_jwt_extended import JWTManager
from sqlalchemy import create_engine, event
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import sessionmaker, scoped_session
from dotenv import load_dotenv
from datetime import timedelta
from typing import Optional, Dict, Any
import logging
import os

load_dotenv()

db_engine = None
SessionLocal = None
jwt = JWTManager()


def _env_config() -> Dict[str, Any]:
    return {
        'JWT_SECRET_KEY': os.getenv('JWT_SECRET_KEY', 'dev-secret'),
        'DATABASE_URL': os.getenv('DATABASE_URL', 'sqlite:///dev.db'),
        'JWT_ACCESS_TOKEN_EXPIRES': timedelta(minutes=int(os.getenv('JWT_ACCESS_TOKEN_EXPIRES_MINUTES', '720'))),
        'HISTORY_FEED_LIMIT': int(os.getenv('HISTORY_FEED_LIMIT', '25')),
        'TIPS_API_URL': os.getenv('TIPS_API_URL', 'https://generativelanguage.googleapis.com/v1beta/models'),
        'TIPS_API_KEY': os.getenv('TIPS_API_KEY'),
        'TIPS_MODEL': os.getenv('TIPS_MODEL', 'gemini-2.5-flash'),
        'TIPS_TIMEOUT_SECONDS': float(os.getenv('TIPS_TIMEOUT_SECONDS', '15')),
        'LOG_LEVEL': os.getenv('LOG_LEVEL', 'INFO'),
    }


def _enable_sqlite_foreign_keys(engine):
    @event.listens_for(engine, 'connect')
    def _set_pragma(dbapi_conn, _record):  # type: ignore
        cursor = dbapi_conn.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


def create_app(config: Optional[Dict[str, Any]] = None):
    global db_engine, SessionLocal
    app = Flask(__name__)

    app.config.update(_env_config())
    if config:
        # allow tests or callers to override default config values
        app.config.update(config)

    logging.getLogger(app.import_name).setLevel(app.config['LOG_LEVEL'])

    # Database
    db_url = app.config['DATABASE_URL']
    if db_url.endswith(':memory:'):
        # Ensure a single shared in-memory SQLite database across all sessions
        db_engine = create_engine(
            db_url,
            echo=False,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        db_engine = create_engine(db_url, echo=False, future=True)
    if db_engine.dialect.name == 'sqlite':
        _enable_sqlite_foreign_keys(db_engine)
    SessionLocal = scoped_session(sessionmaker(bind=db_engine, expire_on_commit=False, autoflush=False))

    jwt.init_app(app)

    from .routes.auth import auth_bp
    from .routes.tickets import tickets_bp
    from .routes.clients import clients_bp
    from .routes.users import users_bp
    from .routes.history import history_bp
    app.register_blueprint(auth_bp, url_prefix='/auth')
    app.register_blueprint(tickets_bp, url_prefix='/service')
    app.register_blueprint(clients_bp, url_prefix='/clients')
    app.register_blueprint(users_bp, url_prefix='/users')
    app.register_blueprint(history_bp, url_prefix='/history')

    @app.route('/healthz')
    def health():
        return {'status': 'ok'}

    from .errors import RepairDeskError, StoreError, ConfigurationError

    @app.errorhandler(RepairDeskError)
    def handle_domain_error(e):  # type: ignore
        if isinstance(e, (StoreError, ConfigurationError)):
            app.logger.error('%s: %s', type(e).__name__, e.detail)
        return e.to_dict(), e.status_code

    # Unified error handler producing standardized JSON shape
    @app.errorhandler(Exception)
    def handle_errors(e):  # type: ignore
        if isinstance(e, HTTPException):
            payload = {
                'error': {
                    'status': e.code,
                    'title': e.name,
                    'detail': e.description,
                }
            }
            return payload, e.code
        # Unhandled exception
        app.logger.exception('Unhandled exception')
        return {
            'error': {
                'status': 500,
                'title': 'Internal Server Error',
                'detail': 'Unexpected error'
            }
        }, 500

    return app


@jwt.token_in_blocklist_loader
def _token_revoked(jwt_header, jwt_payload) -> bool:
    from .models.authz import RevokedToken
    return get_db().get(RevokedToken, jwt_payload['jti']) is not None


def get_db():
    return SessionLocal()
