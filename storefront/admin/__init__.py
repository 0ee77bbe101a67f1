from flask import Blueprint

# Blueprint админки: заказы, возвраты, скидки и остатки
admin_bp = Blueprint('admin', __name__, url_prefix='/admin')


from .views import *  # noqa: E402,F401,F403
