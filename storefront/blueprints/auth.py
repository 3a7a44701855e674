from flask import Blueprint, jsonify
from storefront.errors import Forbidden, StoreError
from storefront.services.audit_service import log_audit
from storefront.services.auth_service import (
    authenticate,
    internal_secret_matches,
    issue_token,
    provision_admin,
    register_user,
)
from storefront.utils import json_body
import logging

logger = logging.getLogger(__name__)

bp = Blueprint('auth', __name__)


@bp.route('/api/auth/register', methods=['POST'])
def register():
    data = json_body()
    user = register_user(
        data.get('username'),
        data.get('email'),
        data.get('password'))

    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='REGISTER',
        target_type='USER',
        target_id=user.id)

    return jsonify({
        'message': 'Registration complete. You can now log in.',
        'user': user.to_dict(),
    }), 201


@bp.route('/api/auth/login', methods=['POST'])
def login():
    data = json_body()
    try:
        user = authenticate(data.get('email'), data.get('password'))
    except StoreError as e:
        log_audit(
            actor_id=None,
            actor_role='ANONYMOUS',
            action='LOGIN_FAILED',
            target_type='USER',
            target_id=None,
            payload={'reason': type(e).__name__})
        raise

    token = issue_token(user.id, user.role)
    log_audit(
        actor_id=user.id,
        actor_role=user.role.value,
        action='LOGIN_SUCCESS',
        target_type='USER',
        target_id=user.id)

    return jsonify({
        'message': 'Login successful',
        'user': user.to_dict(),
        'token': token,
    })


@bp.route('/api/internal/create-super-user', methods=['POST'])
def create_super_user():
    data = json_body()
    if not internal_secret_matches(data.get('secret')):
        logger.warning("Rejected admin provisioning attempt")
        raise Forbidden('Access denied')

    user, outcome = provision_admin(
        data.get('username'),
        data.get('email'),
        data.get('password'))

    log_audit(
        actor_id=user.id,
        actor_role='SYSTEM',
        action='ADMIN_PROVISION',
        target_type='USER',
        target_id=user.id,
        payload={'outcome': outcome})

    messages = {
        'created': f"Admin user '{user.username}' created",
        'promoted': f"User '{user.username}' already existed and was "
                    "promoted to ADMIN",
        'exists': f"Admin user '{user.username}' already exists",
    }
    status = 201 if outcome == 'created' else 200
    return jsonify({
        'message': messages[outcome],
        'outcome': outcome,
        'user': user.to_dict(),
    }), status
