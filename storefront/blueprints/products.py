from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from sqlalchemy.exc import SQLAlchemyError
from storefront.errors import (
    Conflict,
    PersistenceError,
    ProductNotFound,
    ValidationError,
)
from storefront.extensions import db
from storefront.middleware import role_required
from storefront.models import Product, OrderItem
from storefront.services.audit_service import log_audit
from storefront.utils import (
    get_product_rating_summary,
    json_body,
    parse_price,
)
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('products', __name__)

EDITABLE_FIELDS = ('name', 'description', 'image_url', 'category')
REQUIRED_FIELDS = ('name', 'category')


def _text_field(data, field):
    value = data.get(field)
    if value is not None and not isinstance(value, str):
        raise ValidationError(f'{field} must be a string')
    value = (value or '').strip()
    if field in REQUIRED_FIELDS and not value:
        raise ValidationError(f'{field} cannot be empty')
    return value or None


def _serialize_product(p, rating=None):
    rating = rating or {'avg': 0.0, 'count': 0}
    return {
        'id': p.id,
        'name': p.name,
        'description': p.description,
        'price': float(p.price),
        'image_url': p.image_url,
        'category': p.category,
        'seller_id': p.seller_id,
        'rating_avg': rating['avg'],
        'rating_count': rating['count'],
        'created_at': p.created_at.isoformat(),
    }


def _get_product_or_404(product_id) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound()
    return product


def _commit():
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(e)) from e


@bp.route('/api/products', methods=['GET'])
def product_list():
    products = Product.query.order_by(
        Product.created_at.desc(), Product.id.desc()).all()
    summary = get_product_rating_summary([p.id for p in products])
    return jsonify({
        'items': [_serialize_product(p, summary.get(p.id)) for p in products]
    })


@bp.route('/api/products/<int:product_id>', methods=['GET'])
def product_detail(product_id):
    product = _get_product_or_404(product_id)
    summary = get_product_rating_summary([product.id])
    return jsonify(_serialize_product(product, summary.get(product.id)))


@bp.route('/api/products', methods=['POST'])
@login_required
@role_required('ADMIN')
def create_product():
    data = json_body()
    product = Product(
        name=_text_field(data, 'name'),
        description=_text_field(data, 'description'),
        price=parse_price(data.get('price')),
        image_url=_text_field(data, 'image_url'),
        category=_text_field(data, 'category'),
        # The seller is the admin creating the product.
        seller_id=current_user.id)
    db.session.add(product)
    _commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='PRODUCT_CREATE',
        target_type='PRODUCT',
        target_id=product.id,
        payload={'name': product.name, 'price': str(product.price)})

    return jsonify(_serialize_product(product)), 201


@bp.route('/api/products/<int:product_id>', methods=['PUT'])
@login_required
@role_required('ADMIN')
def update_product(product_id):
    product = _get_product_or_404(product_id)
    data = json_body()

    for field in EDITABLE_FIELDS:
        if field not in data:
            continue
        setattr(product, field, _text_field(data, field))
    if 'price' in data:
        product.price = parse_price(data['price'])
    _commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='PRODUCT_UPDATE',
        target_type='PRODUCT',
        target_id=product.id,
        payload={k: data[k] for k in data if k in EDITABLE_FIELDS + (
            'price',)})

    return jsonify(_serialize_product(product))


@bp.route('/api/products/<int:product_id>', methods=['DELETE'])
@login_required
@role_required('ADMIN')
def delete_product(product_id):
    product = _get_product_or_404(product_id)

    # Orders keep referencing their products.
    ordered = db.session.query(OrderItem.id).filter_by(
        product_id=product.id).first()
    if ordered:
        raise Conflict('Product has orders and cannot be deleted')

    db.session.delete(product)
    _commit()

    log_audit(
        actor_id=current_user.id,
        actor_role=current_user.role.value,
        action='PRODUCT_DELETE',
        target_type='PRODUCT',
        target_id=product_id)

    return '', 204
