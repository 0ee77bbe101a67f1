from flask import Blueprint, current_app, jsonify, request

from ..extensions import csrf, db
from ..services import get_engine
from ..services.errors import SignatureError

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


@webhooks_bp.route('/stripe', methods=['POST'])
@csrf.exempt
def stripe_webhook():
    payload = request.get_data()
    signature = request.headers.get('Stripe-Signature', '')
    try:
        outcome = get_engine().webhooks.handle(payload, signature)
    except SignatureError as exc:
        current_app.logger.warning('[Webhook] rejected: %s', exc.message)
        return jsonify({'error': exc.code}), 400
    except Exception:
        # Non-2xx makes the gateway deliver the event again
        db.session.rollback()
        current_app.logger.exception('[Webhook] processing failed')
        return jsonify({'error': 'processing_failed'}), 500
    return jsonify({'received': True, 'outcome': outcome.value}), 200
