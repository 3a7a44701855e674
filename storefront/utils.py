from decimal import Decimal, InvalidOperation
from flask import request
from sqlalchemy import func
from storefront.errors import ValidationError
from storefront.extensions import db
from storefront.models import Review
import logging

logger = logging.getLogger(__name__)


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def parse_price(value) -> Decimal:
    if isinstance(value, bool) or value is None or value == '':
        raise ValidationError('Price is required')
    try:
        price = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError('Price must be a number')
    if not price.is_finite() or price < 0:
        raise ValidationError('Price must be a non-negative number')
    return price.quantize(Decimal('0.01'))


def get_product_rating_summary(product_ids):
    if not product_ids:
        return {}

    rows = db.session.query(
        Review.product_id,
        func.count(Review.id),
        func.sum(Review.rating)
    ).filter(
        Review.product_id.in_(product_ids)
    ).group_by(Review.product_id).all()

    summary = {}
    for product_id, count, total in rows:
        summary[product_id] = {
            'avg': round(float(total) / count, 2) if count else 0.0,
            'count': count,
        }
    return summary
