from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required, current_user
from simple_websocket import ConnectionClosed

from storefront.extensions import sock
from storefront.models import Message
from storefront.services.auth_service import ensure_order_access
from storefront.services.order_service import get_order
from storefront.utils import json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('chat', __name__)

# Seconds between liveness checks while waiting on a chat socket.
RECEIVE_TIMEOUT = 30


def _router():
    return current_app.extensions['chat_router']


@bp.route('/api/orders/<int:order_id>/messages', methods=['GET'])
@login_required
def get_messages(order_id):
    order = get_order(order_id)
    ensure_order_access(order, current_user)

    msgs = Message.query.filter_by(order_id=order.id).order_by(
        Message.created_at.asc(), Message.id.asc()).all()
    return jsonify({'items': [m.to_dict() for m in msgs]})


@bp.route('/api/orders/<int:order_id>/messages', methods=['POST'])
@login_required
def send_message(order_id):
    order = get_order(order_id)
    ensure_order_access(order, current_user)

    data = json_body()
    message = _router().post_message(
        order.id, current_user.id, data.get('content'))
    return jsonify(message), 201


@sock.route('/ws/chat', bp=bp)
def chat_socket(ws):
    order_id = request.args.get('orderId', type=int)
    if order_id is None:
        order_id = request.args.get('order_id', type=int)
    token = request.args.get('token')

    router = _router()
    if router.register_connection(order_id, token, ws) is None:
        return

    try:
        # Inbound frames are not part of the protocol; messages are
        # posted over HTTP. Block until the peer goes away.
        while ws.connected:
            ws.receive(timeout=RECEIVE_TIMEOUT)
    except ConnectionClosed:
        pass
    finally:
        router.unregister_connection(order_id, ws)
