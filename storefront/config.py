import os
from dotenv import load_dotenv

load_dotenv()

BASE_DIR = os.path.abspath(os.path.dirname(__file__))


def _database_uri():
    url = os.environ.get('DATABASE_URL')
    if url:
        return url
    if os.environ.get('DB_HOST'):
        return (
            f"mysql+pymysql://{os.environ.get('DB_USER')}:{os.environ.get('DB_PASSWORD')}"
            f"@{os.environ.get('DB_HOST')}:{os.environ.get('DB_PORT', '3306')}/{os.environ.get('DB_NAME')}?charset=utf8mb4"
        )
    return 'sqlite:///' + os.path.join(BASE_DIR, 'storefront.db')


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev")
    WTF_CSRF_SECRET_KEY = SECRET_KEY
    SQLALCHEMY_DATABASE_URI = _database_uri()
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO')
    SESSION_PROTECTION = 'strong'
    TALISMAN_FORCE_HTTPS = os.environ.get('TALISMAN_FORCE_HTTPS', '1') == '1'

    # Payments (amounts are integer cents)
    CURRENCY = os.environ.get('CURRENCY', 'aud')
    STRIPE_SECRET_KEY = os.environ.get('STRIPE_SECRET_KEY', '')
    STRIPE_WEBHOOK_SECRET = os.environ.get('STRIPE_WEBHOOK_SECRET', '')
    MINIMUM_CHARGE_CENTS = int(os.environ.get('MINIMUM_CHARGE_CENTS', 50))
    GATEWAY_MAX_ATTEMPTS = int(os.environ.get('GATEWAY_MAX_ATTEMPTS', 3))
    GATEWAY_RETRY_DELAY = float(os.environ.get('GATEWAY_RETRY_DELAY', 0.5))

    # Stock holds
    RESERVATION_HOLD_MINUTES = int(os.environ.get('RESERVATION_HOLD_MINUTES', 5))
    PENDING_ORDER_TTL_MINUTES = int(os.environ.get('PENDING_ORDER_TTL_MINUTES', 60))
    SWEEP_BATCH_SIZE = int(os.environ.get('SWEEP_BATCH_SIZE', 500))

    # Delivery zones are measured from the warehouse (Canning Vale, Perth)
    WAREHOUSE_LAT = float(os.environ.get('WAREHOUSE_LAT', -32.0546))
    WAREHOUSE_LNG = float(os.environ.get('WAREHOUSE_LNG', 115.9123))

    # Real-time stock events: 'signal' (in-process) or 'pusher'
    BROADCAST_BACKEND = os.environ.get('BROADCAST_BACKEND', 'signal')
    PUSHER_APP_ID = os.environ.get('PUSHER_APP_ID', '')
    PUSHER_KEY = os.environ.get('PUSHER_KEY', '')
    PUSHER_SECRET = os.environ.get('PUSHER_SECRET', '')
    PUSHER_CLUSTER = os.environ.get('PUSHER_CLUSTER', 'ap4')


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    WTF_CSRF_ENABLED = False
    SESSION_PROTECTION = None
    TALISMAN_FORCE_HTTPS = False
    STRIPE_SECRET_KEY = 'sk_test_storefront'
    STRIPE_WEBHOOK_SECRET = 'whsec_storefront_test'
    GATEWAY_RETRY_DELAY = 0
    BROADCAST_BACKEND = 'signal'
