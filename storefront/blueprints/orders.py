from flask import Blueprint, jsonify
from flask_login import login_required, current_user
from storefront.middleware import role_required
from storefront.services import order_service
from storefront.utils import json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('orders', __name__)


@bp.route('/api/orders', methods=['POST'])
@login_required
def create_order():
    data = json_body()
    order, charge = order_service.create_order(
        current_user,
        data.get('product_id'),
        data.get('quantity'))

    return jsonify({
        'message': 'Order created. Awaiting payment.',
        'order': order_service.serialize_order(order),
        'pix': {
            'txid': charge.txid,
            'qr_code_image': charge.payment_image,
            'qr_code_copy_paste': charge.payment_code,
        },
    }), 201


@bp.route('/api/my-orders', methods=['GET'])
@login_required
def my_orders():
    orders = order_service.list_orders_for_user(current_user)
    return jsonify({
        'items': [order_service.serialize_order(o) for o in orders]
    })


@bp.route('/api/orders/all', methods=['GET'])
@login_required
@role_required('ADMIN')
def all_orders():
    orders = order_service.list_all_orders(current_user)
    return jsonify({
        'items': [
            order_service.serialize_order(o, include_user=True)
            for o in orders
        ]
    })


# Polled by the checkout page while the PIX charge is open.
@bp.route('/api/orders/<int:order_id>/status', methods=['GET'])
@login_required
def order_status(order_id):
    status = order_service.get_status(order_id, current_user)
    return jsonify({'order_id': order_id, 'status': status})


@bp.route('/api/orders/<int:order_id>/deliver', methods=['PATCH'])
@login_required
@role_required('ADMIN')
def deliver_order(order_id):
    order = order_service.mark_delivered(order_id, current_user)
    return jsonify({
        'message': 'Order marked as delivered',
        'order': order_service.serialize_order(order),
    })
