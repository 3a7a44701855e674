from flask import jsonify
import logging

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base for errors surfaced to API callers as ``{'error': message}``."""

    status_code = 400
    default_message = 'Request failed'

    def __init__(self, message=None, status_code=None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {'error': self.message}


class ValidationError(StoreError):
    status_code = 400
    default_message = 'Invalid request'


class InvalidQuantity(ValidationError):
    default_message = 'Quantity must be a positive integer'


class EmptyMessage(ValidationError):
    default_message = 'Message content is required'


class InvalidRating(ValidationError):
    default_message = 'Rating must be an integer between 1 and 5'


class NotFound(StoreError):
    status_code = 404
    default_message = 'Not found'


class ProductNotFound(NotFound):
    default_message = 'Product not found'


class OrderNotFound(NotFound):
    default_message = 'Order not found'


class UserNotFound(NotFound):
    default_message = 'User not found'


class Unauthorized(StoreError):
    status_code = 401
    default_message = 'Not logged in'


class InvalidToken(Unauthorized):
    default_message = 'Invalid or expired token'


class Forbidden(StoreError):
    status_code = 403
    default_message = 'Insufficient permissions'


class Conflict(StoreError):
    status_code = 409
    default_message = 'Conflict'


class InvalidTransition(StoreError):
    status_code = 409
    default_message = 'Order status does not allow this operation'


class PaymentGatewayError(StoreError):
    status_code = 502
    default_message = 'Payment provider failure'


class PersistenceError(StoreError):
    status_code = 500
    default_message = 'An unexpected error occurred'

    def to_dict(self):
        # Callers only ever see the generic message.
        return {'error': self.default_message}


def register_error_handlers(app):

    @app.errorhandler(StoreError)
    def handle_store_error(error):
        if error.status_code >= 500:
            logger.error(
                "%s: %s", type(error).__name__, error.message,
                exc_info=error)
        return jsonify(error.to_dict()), error.status_code
