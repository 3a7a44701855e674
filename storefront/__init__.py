from flask import Flask, jsonify
from flask_migrate import Migrate
from flask_login import LoginManager
from storefront.extensions import db, sock
from storefront.config import Config
from storefront.errors import register_error_handlers, InvalidToken
from storefront.middleware import setup_auth_middleware
import logging
import os
import time

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler(os.environ.get('LOG_FILE', 'app.log')),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

# Log timestamps in Brasília time on Linux. Storage in DB remains UTC.
if hasattr(time, 'tzset'):
    os.environ.setdefault('TZ', 'America/Sao_Paulo')
    time.tzset()

migrate = Migrate()
login_manager = LoginManager()


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    sock.init_app(app)

    from storefront.models import User
    from storefront.services.auth_service import verify_token

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    # API clients authenticate with "Authorization: Bearer <token>".
    @login_manager.request_loader
    def load_user_from_request(req):
        scheme, _, token = req.headers.get('Authorization', '').partition(' ')
        if scheme.lower() != 'bearer' or not token:
            return None
        try:
            principal = verify_token(token.strip())
        except InvalidToken:
            return None
        return db.session.get(User, principal.id)

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Not logged in', 'login_required': True}), 401

    from storefront.services.payment_gateway import init_payment_gateway
    from storefront.services.chat_router import init_chat_router
    from storefront.services.webhook_service import init_webhook_dispatcher

    init_payment_gateway(app)
    init_chat_router(app)
    init_webhook_dispatcher(app)

    # Register blueprints
    from storefront.blueprints import (
        auth,
        chat,
        orders,
        products,
        reviews,
        webhooks,
    )

    app.register_blueprint(auth.bp, url_prefix='/')
    app.register_blueprint(products.bp, url_prefix='/')
    app.register_blueprint(reviews.bp, url_prefix='/')
    app.register_blueprint(orders.bp, url_prefix='/')
    app.register_blueprint(chat.bp, url_prefix='/')
    app.register_blueprint(webhooks.bp, url_prefix='/')

    register_error_handlers(app)

    # Setup authentication middleware (API-wide login protection)
    setup_auth_middleware(app)

    # Note: Database tables are managed via Flask-Migrate
    # Use 'flask db upgrade' to create/update tables

    logger.info("Flask application initialized (PIX gateway: %s)",
                app.config.get('PIX_GATEWAY'))
    return app
