import logging

from flask import Flask, jsonify, session
from flask_talisman import Talisman

from .config import Config
from .extensions import csrf, db, login_manager, migrate
from .models import Customer, User
from .services import build_engine
from .services.errors import BusinessRuleError, IntegrityViolation, StorefrontError


def create_app(config_class=Config, gateway=None, broadcaster=None, geocoder=None, notifier=None):
    """Application factory.

    Payment gateway, stock broadcaster, geocoder and notifier default to the
    ones the config describes; pass instances to replace them.
    """
    app = Flask(__name__)
    app.config.from_object(config_class)
    _configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    csrf.init_app(app)

    login_manager.init_app(app)
    login_manager.login_view = 'auth.login'
    login_manager.session_protection = app.config['SESSION_PROTECTION']

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'login_required'}), 401

    @login_manager.user_loader
    def load_user(user_id):
        auth_type = session.get('auth_type')
        if auth_type == 'admin':
            return db.session.get(User, int(user_id))
        if auth_type == 'customer':
            return db.session.get(Customer, int(user_id))
        # Без auth_type никого не аутентифицируем, чтобы не путать роли
        return None

    csp = {
        'default-src': "'self'",
        'script-src': ["'self'", 'https://js.stripe.com', 'https://js.pusher.com'],
        'frame-src': ['https://js.stripe.com', 'https://hooks.stripe.com'],
        'connect-src': ["'self'", 'https://api.stripe.com', 'wss://*.pusher.com'],
        'img-src': ["'self'", 'data:'],
        'object-src': "'none'",
        'base-uri': "'self'",
        'form-action': "'self'",
    }
    Talisman(
        app,
        content_security_policy=csp,
        force_https=app.config['TALISMAN_FORCE_HTTPS'],
        session_cookie_secure=app.config['TALISMAN_FORCE_HTTPS'],
    )

    build_engine(app, gateway=gateway, broadcaster=broadcaster,
                 geocoder=geocoder, notifier=notifier)

    from .views.main import main_bp
    from .views.auth import auth_bp
    from .views.webhooks import webhooks_bp
    from .admin import admin_bp
    app.register_blueprint(main_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(webhooks_bp)
    app.register_blueprint(admin_bp, url_prefix='/admin')

    from .cli_commands import register_commands
    register_commands(app)

    _register_error_handlers(app)

    with app.app_context():
        db.create_all()
    return app


def _configure_logging(app):
    level = getattr(logging, str(app.config.get('LOG_LEVEL', 'INFO')).upper(), logging.INFO)
    logging.basicConfig(level=level, format='%(asctime)s %(levelname)s %(name)s: %(message)s')
    logging.getLogger('storefront').setLevel(level)
    app.logger.setLevel(level)


def _register_error_handlers(app):
    @app.errorhandler(StorefrontError)
    def handle_storefront_error(error):
        if isinstance(error, IntegrityViolation):
            app.logger.critical('[Integrity] %s %s', error.message, error.details)
        elif isinstance(error, BusinessRuleError):
            app.logger.info('[Rejected] %s: %s', error.code, error.message)
        else:
            app.logger.warning('[Error] %s: %s', error.code, error.message)
        return jsonify(error.to_dict()), error.status_code
