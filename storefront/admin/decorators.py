from functools import wraps
import logging

from flask import jsonify
from flask_login import current_user, login_required

from ..models import User


def admin_required(f):
    """Only staff accounts (User) may call the wrapped view."""
    @wraps(f)
    @login_required
    def decorated_function(*args, **kwargs):
        if not isinstance(current_user, User):
            logging.debug("Admin route refused for %s", current_user.__class__.__name__)
            return jsonify({'error': 'admin_required'}), 403
        return f(*args, **kwargs)
    return decorated_function
