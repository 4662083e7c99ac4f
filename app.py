import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

import config
from admin import admin_bp
from admin_orders import admin_orders_bp
from auth import admin_auth_bp, auth_bp
from bookings import bookings_bp
from cart import cart_bp
from catalog import catalog_bp
from checkout import razorpay_bp
from db import init_db
from errors import ApiError
from mailer import mail
from orders import orders_bp
from shipping import shipping_bp

logger = logging.getLogger(__name__)

BLUEPRINTS = (
    auth_bp,
    admin_auth_bp,
    catalog_bp,
    cart_bp,
    orders_bp,
    razorpay_bp,
    shipping_bp,
    bookings_bp,
    admin_bp,
    admin_orders_bp,
)


def configure_logging(level):
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def register_error_handlers(app):
    @app.errorhandler(ApiError)
    def handle_api_error(e):
        return jsonify(e.to_dict()), e.status

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description, "code": e.name.upper().replace(" ", "_")}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.exception("Unhandled error")
        return jsonify({"error": f"Internal server error: {e}", "code": "INTERNAL_ERROR"}), 500


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.update(config.app_settings())
    if test_config:
        app.config.update(test_config)

    configure_logging(app.config["LOG_LEVEL"])
    init_db(app)
    mail.init_app(app)
    for bp in BLUEPRINTS:
        app.register_blueprint(bp)
    register_error_handlers(app)
    return app


if __name__ == "__main__":
    create_app().run(port=4242, debug=True)
