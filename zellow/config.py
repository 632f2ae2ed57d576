import os
from dotenv import load_dotenv

load_dotenv()


def _env_flag(name, default='false'):
    return os.environ.get(name, default).lower() == 'true'


def _env_list(name, default):
    raw = os.environ.get(name, default)
    return tuple(
        item.strip().upper() for item in raw.split(',') if item.strip())


class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or (
        'dev-secret-key-change-in-production'
    )
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or (
        'sqlite:///zellow.db'
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Public base URL used to build tracking links in notifications.
    SITE_URL = os.environ.get('SITE_URL', 'http://localhost:9002')
    CURRENCY = os.environ.get('CURRENCY', 'KES')

    # Mail transport (Flask-Mail).
    MAIL_SERVER = os.environ.get('MAIL_SERVER', 'localhost')
    MAIL_PORT = int(os.environ.get('MAIL_PORT', '587'))
    MAIL_USE_TLS = _env_flag('MAIL_USE_TLS', 'true')
    MAIL_USE_SSL = _env_flag('MAIL_USE_SSL')
    MAIL_USERNAME = os.environ.get('MAIL_USERNAME')
    MAIL_PASSWORD = os.environ.get('MAIL_PASSWORD')
    MAIL_FROM_NAME = os.environ.get('MAIL_FROM_NAME', 'Zellow Enterprises')
    MAIL_DEFAULT_SENDER = (
        MAIL_FROM_NAME,
        os.environ.get('MAIL_DEFAULT_SENDER')
        or MAIL_USERNAME
        or 'no-reply@zellow.local',
    )

    # Web push. Notifications are skipped when either key is empty.
    VAPID_PUBLIC_KEY = os.environ.get('VAPID_PUBLIC_KEY', '')
    VAPID_PRIVATE_KEY = os.environ.get('VAPID_PRIVATE_KEY', '')
    VAPID_CLAIM_EMAIL = os.environ.get(
        'VAPID_CLAIM_EMAIL', 'support@zellow.com')

    # Bearer identity tokens (seconds).
    AUTH_TOKEN_MAX_AGE = int(os.environ.get('AUTH_TOKEN_MAX_AGE', '3600'))

    # Payment methods that settle at checkout; everything else is
    # collected later (e.g. pay on delivery).
    SYNC_PAYMENT_METHODS = _env_list('SYNC_PAYMENT_METHODS', 'MPESA,CARD')

    # Upper bound for the order history long-poll (seconds)
    HISTORY_LONG_POLL_SECONDS = int(
        os.environ.get('HISTORY_LONG_POLL_SECONDS', '25'))

    # Pagination configuration
    ITEMS_PER_PAGE = int(os.environ.get('ITEMS_PER_PAGE', '20'))
