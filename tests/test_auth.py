from datetime import timedelta

import pytest
from jose import jwt

from storefront.errors import Forbidden, InvalidToken, Unauthorized
from storefront.extensions import db
from storefront.models import AuditLog, User, UserRole
from storefront.services.auth_service import (
    Principal,
    issue_token,
    require_role,
    seed_admin_user,
    verify_token,
)


def _register(client, **overrides):
    data = {
        'username': 'carol',
        'email': 'Carol@Example.com',
        'password': 'hunter22',
    }
    data.update(overrides)
    return client.post('/api/auth/register', json=data)


def test_register_and_login(app, client):
    resp = _register(client)
    assert resp.status_code == 201
    user = resp.get_json()['user']
    assert user['email'] == 'carol@example.com'
    assert user['role'] == 'CUSTOMER'
    assert 'password_hash' not in user

    login = client.post(
        '/api/auth/login',
        json={'email': 'carol@example.com', 'password': 'hunter22'})
    assert login.status_code == 200
    token = login.get_json()['token']

    with app.app_context():
        principal = verify_token(token)
    assert principal == Principal(user['id'], UserRole.CUSTOMER)

    orders = client.get(
        '/api/my-orders', headers={'Authorization': f'Bearer {token}'})
    assert orders.status_code == 200
    assert orders.get_json() == {'items': []}


def test_register_rejects_duplicates(client):
    assert _register(client).status_code == 201
    assert _register(client, username='other').status_code == 409
    assert _register(
        client, email='someone@example.com').status_code == 409


@pytest.mark.parametrize('missing', ['username', 'email', 'password'])
def test_register_requires_all_fields(client, missing):
    resp = _register(client, **{missing: ''})
    assert resp.status_code == 400


def test_login_failures(app, client, alice):
    wrong = client.post(
        '/api/auth/login',
        json={'email': alice.email, 'password': 'nope'})
    assert wrong.status_code == 401

    unknown = client.post(
        '/api/auth/login',
        json={'email': 'ghost@example.com', 'password': 'whatever'})
    assert unknown.status_code == 404

    empty = client.post('/api/auth/login', json={})
    assert empty.status_code == 400

    with app.app_context():
        assert AuditLog.query.filter_by(
            action='LOGIN_FAILED').count() == 3


@pytest.mark.parametrize('header', [
    'Bearer not-a-token',
    'Basic dXNlcjpwYXNz',
    'Bearer',
])
def test_bad_authorization_header_is_unauthenticated(client, header):
    resp = client.get('/api/my-orders', headers={'Authorization': header})
    assert resp.status_code == 401
    assert resp.get_json()['login_required'] is True


def test_expired_token_is_rejected(app, client, alice):
    with app.app_context():
        token = issue_token(
            alice.id, alice.role, expires_delta=timedelta(minutes=-1))
        with pytest.raises(InvalidToken):
            verify_token(token)

    resp = client.get(
        '/api/my-orders', headers={'Authorization': f'Bearer {token}'})
    assert resp.status_code == 401


def test_token_signed_with_another_secret_is_rejected(app, alice):
    forged = jwt.encode(
        {'sub': str(alice.id), 'role': 'ADMIN'}, 'other-secret',
        algorithm='HS256')
    with app.app_context():
        with pytest.raises(InvalidToken):
            verify_token(forged)


def test_token_with_unknown_role_is_rejected(app):
    token = jwt.encode(
        {'sub': '1', 'role': 'ROOT'}, 'test-jwt-secret', algorithm='HS256')
    with app.app_context():
        with pytest.raises(InvalidToken):
            verify_token(token)


def test_require_role():
    admin = Principal(1, UserRole.ADMIN)
    customer = Principal(2, UserRole.CUSTOMER)

    require_role(admin, UserRole.ADMIN)
    require_role(customer, UserRole.CUSTOMER, UserRole.ADMIN)
    with pytest.raises(Forbidden):
        require_role(customer, UserRole.ADMIN)
    with pytest.raises(Unauthorized):
        require_role(None, UserRole.ADMIN)


def _provision(client, secret='internal-secret', **overrides):
    data = {
        'secret': secret,
        'username': 'root',
        'email': 'root@example.com',
        'password': 'changeme',
    }
    data.update(overrides)
    return client.post('/api/internal/create-super-user', json=data)


def test_provision_admin_outcomes(app, client, alice):
    created = _provision(client)
    assert created.status_code == 201
    assert created.get_json()['outcome'] == 'created'
    assert created.get_json()['user']['role'] == 'ADMIN'

    again = _provision(client)
    assert again.status_code == 200
    assert again.get_json()['outcome'] == 'exists'

    promoted = _provision(
        client, username=alice.username, email=alice.email)
    assert promoted.status_code == 200
    assert promoted.get_json()['outcome'] == 'promoted'

    with app.app_context():
        assert db.session.get(User, alice.id).role == UserRole.ADMIN


def test_provision_admin_rejects_bad_secret(app, client):
    assert _provision(client, secret='guess').status_code == 403
    assert _provision(client, secret=None).status_code == 403

    app.config['INTERNAL_API_SECRET'] = ''
    assert _provision(client, secret='').status_code == 403

    with app.app_context():
        assert User.query.count() == 0


def test_seed_admin_user(app):
    with app.app_context():
        assert seed_admin_user() is None

        app.config.update(
            ADMIN_EMAIL='owner@example.com',
            ADMIN_USERNAME='owner',
            ADMIN_PASSWORD='s3cret!')
        user = seed_admin_user()
        assert user.role == UserRole.ADMIN
        assert user.check_password('s3cret!')

        # Only seeds while no admin exists.
        assert seed_admin_user() is None
        assert User.query.filter_by(role=UserRole.ADMIN).count() == 1
