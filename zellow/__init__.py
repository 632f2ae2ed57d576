from flask import Flask, jsonify
from zellow.extensions import db, migrate, login_manager, mail
from zellow.config import Config
from zellow.errors import ZellowError
from zellow.middleware import setup_auth_middleware
import logging

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.FileHandler('app.log'),
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


def create_app(config_class=Config):
    app = Flask(__name__)
    app.config.from_object(config_class)

    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)
    mail.init_app(app)

    from zellow.models import User

    @login_manager.user_loader
    def load_user(user_id):
        return db.session.get(User, int(user_id))

    @login_manager.unauthorized_handler
    def unauthorized():
        return jsonify({'error': 'Not logged in', 'login_required': True}), 401

    @app.errorhandler(ZellowError)
    def handle_zellow_error(error):
        if error.status_code >= 500:
            logger.error("Unhandled service error: %s", error.message)
        return jsonify(error.to_dict()), error.status_code

    # Register blueprints
    from zellow.blueprints import (
        admin,
        approvals,
        auth,
        bulk_orders,
        cart,
        checkout,
        feedback,
        notifications,
        orders,
        push,
        stock,
        tracking,
    )

    # Blueprints declare absolute /api/... routes
    for blueprint in (auth, cart, checkout, orders, tracking, notifications,
                      push, approvals, bulk_orders, stock, feedback, admin):
        app.register_blueprint(blueprint.bp, url_prefix='/')

    # Every /api/ route needs a session unless whitelisted
    setup_auth_middleware(app)

    logger.info("Flask application initialized")
    return app
