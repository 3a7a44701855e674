import json
import threading
import time

import pytest
from simple_websocket import Client, ConnectionClosed
from werkzeug.serving import make_server

from storefront.extensions import db
from storefront.services.chat_router import POLICY_VIOLATION


@pytest.fixture
def live_server(app):
    server = make_server('127.0.0.1', 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield f'ws://127.0.0.1:{server.server_port}'
    server.shutdown()
    thread.join(timeout=5)


@pytest.fixture
def order_id(alice, product_id, place_order):
    return place_order(alice, product_id)['order']['id']


def _wait_until(predicate, timeout=5):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _close(ws):
    if ws.connected:
        ws.close()


def _refusal(ws):
    with pytest.raises(ConnectionClosed) as excinfo:
        ws.receive(timeout=5)
    return excinfo.value


def test_socket_lifecycle_follows_the_connection(app, router, live_server,
                                                 alice, order_id):
    ws = Client.connect(
        f'{live_server}/ws/chat?orderId={order_id}&token={alice.token}')
    try:
        assert _wait_until(lambda: router.connection_count(order_id) == 1)
        with app.app_context():
            assert db.engine.pool.checkedout() == 0
    finally:
        _close(ws)

    assert _wait_until(lambda: router.connection_count(order_id) == 0)
    assert router.active_orders() == []


def test_order_id_alias_is_accepted(router, live_server, alice, order_id):
    ws = Client.connect(
        f'{live_server}/ws/chat?order_id={order_id}&token={alice.token}')
    try:
        assert _wait_until(lambda: router.connection_count(order_id) == 1)
    finally:
        _close(ws)
    assert _wait_until(lambda: router.connection_count(order_id) == 0)


def test_posted_messages_reach_open_sockets(client, router, live_server,
                                            alice, admin, order_id):
    ws = Client.connect(
        f'{live_server}/ws/chat?orderId={order_id}&token={admin.token}')
    try:
        assert _wait_until(lambda: router.connection_count(order_id) == 1)
        resp = client.post(
            f'/api/orders/{order_id}/messages',
            json={'content': 'Paid, thanks!'},
            headers=alice.headers)
        assert resp.status_code == 201

        received = json.loads(ws.receive(timeout=5))
        assert received == resp.get_json()
    finally:
        _close(ws)


def test_foreign_customer_is_closed_with_policy_violation(
        router, live_server, bob, order_id):
    ws = Client.connect(
        f'{live_server}/ws/chat?orderId={order_id}&token={bob.token}')
    try:
        closed = _refusal(ws)
    finally:
        _close(ws)

    assert closed.reason == POLICY_VIOLATION
    assert router.connection_count(order_id) == 0


@pytest.mark.parametrize('query', [
    'token={token}',
    'orderId={order_id}',
    'orderId={order_id}&token=garbage',
])
def test_incomplete_handshake_is_refused(router, live_server, alice,
                                         order_id, query):
    query = query.format(order_id=order_id, token=alice.token)
    ws = Client.connect(f'{live_server}/ws/chat?{query}')
    try:
        closed = _refusal(ws)
    finally:
        _close(ws)

    assert closed.reason == POLICY_VIOLATION
    assert router.active_orders() == []
