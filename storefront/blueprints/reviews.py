import logging

from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from storefront.errors import (
    Conflict,
    Forbidden,
    InvalidRating,
    PersistenceError,
    ProductNotFound,
)
from storefront.extensions import db
from storefront.models import Review, Product
from storefront.services.audit_service import log_audit
from storefront.services.order_service import has_purchased
from storefront.utils import json_body

logger = logging.getLogger(__name__)
bp = Blueprint('reviews', __name__)


def _parse_rating(value) -> int:
    if isinstance(value, bool):
        raise InvalidRating()
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or not (1 <= value <= 5):
        raise InvalidRating()
    return value


def _serialize_review(review):
    return {
        'id': review.id,
        'product_id': review.product_id,
        'user_id': review.user_id,
        'username': review.user.username if review.user else None,
        'rating': review.rating,
        'comment': review.comment,
        'created_at': review.created_at.isoformat(),
    }


@bp.route('/api/products/<int:product_id>/reviews', methods=['POST'])
@login_required
def create_review(product_id):
    data = json_body()
    rating = _parse_rating(data.get('rating'))
    comment = (data.get('comment') or '').strip() or None

    if db.session.get(Product, product_id) is None:
        raise ProductNotFound()

    # Only allow review if the user has purchased this product.
    if not has_purchased(current_user.id, product_id):
        raise Forbidden('You can only review products you have purchased')

    existing = Review.query.filter_by(
        product_id=product_id,
        user_id=current_user.id
    ).first()
    if existing:
        raise Conflict('You have already reviewed this product')

    review = Review(
        product_id=product_id,
        user_id=current_user.id,
        rating=rating,
        comment=comment
    )
    db.session.add(review)
    try:
        db.session.commit()
    except IntegrityError as e:
        db.session.rollback()
        raise Conflict('You have already reviewed this product') from e
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(e)) from e

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='REVIEW_CREATE',
        target_type='REVIEW',
        target_id=review.id,
        payload={
            'product_id': product_id,
            'rating': rating,
        },
    )

    return jsonify(_serialize_review(review)), 201


@bp.route('/api/products/<int:product_id>/reviews', methods=['GET'])
def list_reviews(product_id):
    if db.session.get(Product, product_id) is None:
        raise ProductNotFound()

    reviews = Review.query.filter_by(product_id=product_id).order_by(
        Review.created_at.desc(), Review.id.desc()).all()
    return jsonify({'items': [_serialize_review(r) for r in reviews]})
