from flask import Blueprint, current_app, jsonify, request, session
from flask_login import current_user, login_required, login_user, logout_user

from ..extensions import csrf
from ..models import Customer, User
from ..services.errors import ValidationError

auth_bp = Blueprint('auth', __name__)
csrf.exempt(auth_bp)


@auth_bp.route('/login', methods=['POST'])
def login():
    """Staff (kind=admin) or customer login. Sets auth_type for the user loader."""
    data = request.get_json(silent=True) or request.form
    kind = data.get('kind', 'customer')
    identifier = data.get('username') or data.get('email')
    password = data.get('password')
    if not identifier or not password:
        raise ValidationError('Login and password are required')

    if kind == 'admin':
        account = User.query.filter_by(username=identifier).first()
    elif kind == 'customer':
        account = Customer.query.filter_by(email=identifier).first()
    else:
        raise ValidationError('Unknown account kind', kind=kind)

    if account is None or not account.check_password(password):
        current_app.logger.info('[Auth] failed %s login for %s', kind, identifier)
        return jsonify({'error': 'invalid_credentials'}), 401

    login_user(account)
    # Отмечаем тип авторизации для user_loader
    session['auth_type'] = kind
    current_app.logger.info('[Auth] %s %s logged in', kind, account.id)
    return jsonify({'id': account.id, 'kind': kind})


@auth_bp.route('/logout', methods=['POST'])
@login_required
def logout():
    current_app.logger.info('[Auth] %s logged out', current_user.id)
    session.pop('auth_type', None)
    logout_user()
    return jsonify({'logged_out': True})
