"""Order lifecycle: PENDING --payment--> PAID --delivery--> DELIVERED.

Transitions are conditional UPDATEs on the current status, so duplicate
or concurrent confirmations cannot move an order backwards or twice.
"""
from decimal import Decimal
import logging

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from storefront.errors import (
    InvalidQuantity,
    InvalidTransition,
    OrderNotFound,
    PaymentGatewayError,
    PersistenceError,
    ProductNotFound,
)
from storefront.extensions import db
from storefront.models import (
    Order,
    OrderItem,
    OrderStatus,
    Product,
    PURCHASED_STATUSES,
    UserRole,
)
from storefront.services.audit_service import log_audit
from storefront.services.auth_service import ensure_order_access, require_role

logger = logging.getLogger(__name__)


def _parse_quantity(quantity) -> int:
    if isinstance(quantity, bool):
        raise InvalidQuantity()
    if isinstance(quantity, str) and quantity.strip().isdigit():
        quantity = int(quantity.strip())
    if not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantity()
    return quantity


def _gateway():
    return current_app.extensions['payment_gateway']


def create_order(user, product_id, quantity, gateway=None):
    """Issue a PIX charge and persist a PENDING order for one product.

    The charge is requested before anything is written, so a gateway
    failure leaves no order behind. Returns ``(order, charge)``.
    """
    quantity = _parse_quantity(quantity)
    product = db.session.get(Product, product_id) if product_id else None
    if product is None:
        raise ProductNotFound()

    total = (Decimal(product.price) * quantity).quantize(Decimal('0.01'))

    gateway = gateway or _gateway()
    try:
        charge = gateway.create_charge(
            total, current_app.config['PIX_EXPIRATION_SECONDS'])
    except PaymentGatewayError:
        logger.error(
            "Charge failed for user %s product %s", user.id, product.id)
        raise
    except Exception as e:
        logger.error("Charge failed: %s", e, exc_info=True)
        raise PaymentGatewayError(str(e) or None) from e

    order = Order(
        user_id=user.id,
        total=total,
        status=OrderStatus.PENDING,
        txid=charge.txid,
        items=[OrderItem(product_id=product.id, quantity=quantity)])
    db.session.add(order)
    try:
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.error(
            "Failed to persist order for txid %s", charge.txid, exc_info=True)
        raise PersistenceError(str(e)) from e

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='ORDER_CREATE',
        target_type='ORDER',
        target_id=order.id,
        payload={
            'total': str(total),
            'product_id': product.id,
            'quantity': quantity,
            'txid': charge.txid,
        })
    return order, charge


def confirm_payment(txid) -> bool:
    """Mark the order for ``txid`` as PAID.

    Returns True only when this call moved the order out of PENDING.
    Unknown txids and already-paid orders are no-ops.
    """
    try:
        updated = Order.query.filter_by(
            txid=txid, status=OrderStatus.PENDING
        ).update(
            {'status': OrderStatus.PAID},
            synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(e)) from e

    if not updated:
        order = Order.query.filter_by(txid=txid).first()
        if order is None:
            logger.warning("Payment for unknown txid %s ignored", txid)
        else:
            logger.info(
                "Duplicate payment confirmation for order %s (status %s)",
                order.id, order.status.value)
        return False

    order = Order.query.filter_by(txid=txid).first()
    logger.info("Order %s paid (txid: %s)", order.id, txid)
    log_audit(
        actor_id=None,
        actor_role='SYSTEM',
        action='PAYMENT_CONFIRMED',
        target_type='ORDER',
        target_id=order.id,
        payload={'txid': txid, 'total': str(order.total)})
    return True


def get_order(order_id) -> Order:
    order = db.session.get(Order, order_id)
    if order is None:
        raise OrderNotFound()
    return order


def get_status(order_id, principal) -> str:
    order = get_order(order_id)
    ensure_order_access(order, principal)
    return order.status.value


def mark_delivered(order_id, principal) -> Order:
    require_role(principal, UserRole.ADMIN)
    try:
        updated = Order.query.filter_by(
            id=order_id, status=OrderStatus.PAID
        ).update(
            {'status': OrderStatus.DELIVERED},
            synchronize_session=False)
        db.session.commit()
    except SQLAlchemyError as e:
        db.session.rollback()
        raise PersistenceError(str(e)) from e

    order = get_order(order_id)
    if not updated:
        raise InvalidTransition(
            f'Order status {order.status.value} cannot be marked delivered')
    log_audit(
        actor_id=principal.id,
        actor_role=principal.role.value,
        action='ORDER_DELIVERED',
        target_type='ORDER',
        target_id=order.id)
    return order


def has_purchased(user_id, product_id) -> bool:
    return db.session.query(OrderItem.id).join(
        Order, OrderItem.order_id == Order.id
    ).filter(
        Order.user_id == user_id,
        OrderItem.product_id == product_id,
        Order.status.in_(PURCHASED_STATUSES)
    ).first() is not None


def serialize_order(order, include_user=False):
    items = []
    for item in order.items:
        product = item.product
        items.append({
            'product_id': item.product_id,
            'product_name': product.name if product else None,
            'product_image_url': product.image_url if product else None,
            'quantity': item.quantity,
        })
    payload = {
        'id': order.id,
        'user_id': order.user_id,
        'total': float(order.total),
        'status': order.status.value,
        'txid': order.txid,
        'created_at': order.created_at.isoformat(),
        'items': items,
    }
    if include_user:
        payload['user'] = {
            'username': order.user.username,
            'email': order.user.email,
        }
    return payload


def list_orders_for_user(user):
    return Order.query.filter_by(user_id=user.id).order_by(
        Order.created_at.desc(), Order.id.desc()).all()


def list_all_orders(principal):
    require_role(principal, UserRole.ADMIN)
    return Order.query.order_by(
        Order.created_at.desc(), Order.id.desc()).all()
