from decimal import Decimal
from types import SimpleNamespace
import json

import pytest

from storefront import create_app
from storefront.config import Config
from storefront.extensions import db
from storefront.models import Product, User, UserRole
from storefront.services.auth_service import issue_token
from storefront.services.payment_gateway import Charge


class FakeGateway:
    """Records charges; set ``fail`` to make the next calls raise it."""

    def __init__(self):
        self.calls = []
        self.fail = None
        self.next_txids = []
        self._counter = 0

    def create_charge(self, amount, expiration_seconds):
        self.calls.append((amount, expiration_seconds))
        if self.fail is not None:
            raise self.fail
        self._counter += 1
        if self.next_txids:
            txid = self.next_txids.pop(0)
        else:
            txid = f'FAKETX{self._counter:026d}'
        return Charge(
            txid=txid,
            payment_code=f'pix-code-{txid}',
            payment_image='data:image/png;base64,AAAA')


class FakeChannel:
    """Stands in for a flask-sock websocket."""

    def __init__(self, connected=True):
        self.connected = connected
        self.sent = []
        self.closed_with = None

    def send(self, data):
        self.sent.append(json.loads(data))

    def close(self, reason=None, message=None):
        self.connected = False
        self.closed_with = (reason, message)


@pytest.fixture
def app(tmp_path):
    class TestConfig(Config):
        TESTING = True
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'test.db'}"
        JWT_SECRET = 'test-jwt-secret'
        PIX_GATEWAY = 'mock'
        INTERNAL_API_SECRET = 'internal-secret'
        ADMIN_EMAIL = ''
        ADMIN_USERNAME = ''
        ADMIN_PASSWORD = ''
        WEBHOOK_WORKERS = 1

    app = create_app(TestConfig)
    app.extensions['payment_gateway'] = FakeGateway()
    with app.app_context():
        db.create_all()

    yield app

    app.extensions['webhook_dispatcher'].join(timeout=5)
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions['payment_gateway']


@pytest.fixture
def router(app):
    return app.extensions['chat_router']


@pytest.fixture
def create_user(app):
    def _create(username, role=UserRole.CUSTOMER, password='secret123'):
        with app.app_context():
            user = User(
                username=username,
                email=f'{username}@example.com',
                role=role)
            user.set_password(password)
            db.session.add(user)
            db.session.commit()
            token = issue_token(user.id, role)
            return SimpleNamespace(
                id=user.id,
                username=username,
                email=user.email,
                password=password,
                role=role,
                token=token,
                headers={'Authorization': f'Bearer {token}'})
    return _create


@pytest.fixture
def alice(create_user):
    return create_user('alice')


@pytest.fixture
def bob(create_user):
    return create_user('bob')


@pytest.fixture
def admin(create_user):
    return create_user('admin', role=UserRole.ADMIN)


@pytest.fixture
def product_id(app, admin):
    with app.app_context():
        product = Product(
            name='Wireless Controller',
            description='Bluetooth gamepad',
            price=Decimal('49.99'),
            category='Gamepads',
            image_url='https://example.com/controller.png',
            seller_id=admin.id)
        db.session.add(product)
        db.session.commit()
        return product.id


@pytest.fixture
def place_order(client, gateway):
    def _place(user, product_id, quantity=1, txid=None):
        if txid:
            gateway.next_txids.append(txid)
        resp = client.post(
            '/api/orders',
            json={'product_id': product_id, 'quantity': quantity},
            headers=user.headers)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()
    return _place


@pytest.fixture
def paid_order(app, alice, product_id, place_order):
    from storefront.services.order_service import confirm_payment

    body = place_order(alice, product_id, txid='PAIDTX1')
    with app.app_context():
        confirm_payment('PAIDTX1')
    return body['order']
