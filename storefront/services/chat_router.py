"""Live per-order chat fan-out.

A channel is anything with a ``connected`` flag, ``send(text)`` and
``close(reason, message)``; in production it is the flask-sock websocket.
"""
from contextlib import contextmanager
import json
import logging
import threading

from simple_websocket import ConnectionClosed
from sqlalchemy.exc import SQLAlchemyError

from storefront.errors import (
    EmptyMessage,
    Forbidden,
    InvalidToken,
    PersistenceError,
)
from storefront.extensions import db
from storefront.models import Message, Order
from storefront.services.auth_service import ensure_order_access, verify_token

logger = logging.getLogger(__name__)

# Websocket close codes
POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011


class ChatRouter:
    """Routes persisted order messages to the channels open for that order.

    The registry lock guards every read and write of the order -> channels
    map. A broadcast copies the order's set under that lock and sends
    outside it, so it never sees a set in the middle of a register or
    unregister, and a slow peer only delays its own order. Posts to the
    same order are serialized from persist to broadcast so live delivery
    follows commit order.
    """

    def __init__(self):
        self._channels = {}
        self._lock = threading.RLock()
        # order_id -> [lock, posts holding or waiting on it]
        self._post_locks = {}

    def _reject(self, channel, code, reason):
        logger.info("Chat connection refused: %s", reason)
        try:
            channel.close(reason=code, message=reason)
        except (ConnectionClosed, OSError) as e:
            logger.warning("Error closing refused chat channel: %s", e)

    def register_connection(self, order_id, token, channel):
        """Authorize ``channel`` for ``order_id`` and start routing to it.

        Returns the principal on success. On refusal the channel is closed
        with a policy-violation code and None is returned.
        """
        if not order_id or not token:
            self._reject(channel, POLICY_VIOLATION,
                         'Order id or token not provided')
            return None

        try:
            principal = verify_token(token)
        except InvalidToken:
            self._reject(channel, POLICY_VIOLATION, 'Invalid token')
            return None

        try:
            order = db.session.get(Order, order_id)
            if order is not None:
                ensure_order_access(order, principal)
        except SQLAlchemyError:
            logger.error(
                "Chat permission lookup failed for order %s", order_id,
                exc_info=True)
            self._reject(channel, INTERNAL_ERROR, 'Internal server error')
            return None
        except Forbidden:
            order = None
        finally:
            # The socket outlives this lookup; give the connection back
            # to the pool now instead of when the peer disconnects.
            db.session.remove()

        if order is None:
            self._reject(channel, POLICY_VIOLATION,
                         'Access denied to this chat')
            return None

        with self._lock:
            clients = self._channels.setdefault(order_id, set())
            clients.add(channel)
            count = len(clients)
        logger.info(
            "Client connected to chat of order %s. Total clients: %s",
            order_id, count)
        return principal

    def unregister_connection(self, order_id, channel):
        with self._lock:
            clients = self._channels.get(order_id)
            if not clients:
                return
            clients.discard(channel)
            remaining = len(clients)
            if not clients:
                del self._channels[order_id]
        logger.info(
            "Client disconnected from chat of order %s. Remaining: %s",
            order_id, remaining)

    def broadcast(self, order_id, payload) -> int:
        """Send ``payload`` to every open channel of ``order_id``.

        Closed channels are skipped. Returns how many channels got it.
        """
        data = json.dumps(payload, ensure_ascii=False)
        with self._lock:
            channels = list(self._channels.get(order_id, ()))

        delivered = 0
        for channel in channels:
            if not getattr(channel, 'connected', False):
                continue
            try:
                channel.send(data)
            except (ConnectionClosed, OSError) as e:
                # Peer went away between the check and the send.
                logger.warning(
                    "Chat send to order %s failed: %s", order_id, e)
                continue
            delivered += 1
        return delivered

    @contextmanager
    def _post_lock(self, order_id):
        """Hold the order's post lock; dropped once no post needs it."""
        with self._lock:
            entry = self._post_locks.get(order_id)
            if entry is None:
                entry = self._post_locks[order_id] = [threading.Lock(), 0]
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._post_locks[order_id]

    def post_message(self, order_id, sender_id, content):
        """Persist a message, then publish it to the order's channels."""
        content = content.strip() if isinstance(content, str) else ''
        if not content:
            raise EmptyMessage()

        with self._post_lock(order_id):
            message = Message(
                order_id=order_id,
                sender_id=sender_id,
                content=content)
            db.session.add(message)
            try:
                db.session.commit()
            except SQLAlchemyError as e:
                db.session.rollback()
                logger.error(
                    "Failed to save message for order %s", order_id,
                    exc_info=True)
                raise PersistenceError(str(e)) from e

            payload = message.to_dict()
            self.broadcast(order_id, payload)
        return payload

    def connection_count(self, order_id) -> int:
        with self._lock:
            return len(self._channels.get(order_id, ()))

    def active_orders(self):
        with self._lock:
            return sorted(self._channels)


def init_chat_router(app):
    router = ChatRouter()
    app.extensions['chat_router'] = router
    return router
