"""
Sentry Integration для Django и Celery.

Включается только при наличии SENTRY_DSN в окружении:
    SENTRY_DSN=https://xxx@xxx.ingest.sentry.io/xxx
"""
import logging
import os

import sentry_sdk
from sentry_sdk.integrations.celery import CeleryIntegration
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

# Бизнес-ошибки расписания (конфликты, дедлайны) не являются сбоями
IGNORED_EXCEPTIONS = (
    'ScheduleConflict',
    'CapacityExceeded',
    'SlotUnavailable',
    'BookingDeadlinePassed',
    'BookingsClosed',
)


def init_sentry():
    """
    Инициализирует Sentry SDK. Вызывается в конце settings.py.

    Returns:
        bool: True если Sentry включён
    """
    sentry_dsn = os.environ.get('SENTRY_DSN', '')
    if not sentry_dsn:
        return False

    environment = os.environ.get('DJANGO_ENV', 'production')
    if os.environ.get('DEBUG', 'False').lower() in ('true', '1', 'yes'):
        environment = 'development'

    sentry_sdk.init(
        dsn=sentry_dsn,
        integrations=[
            DjangoIntegration(transaction_style='url'),
            CeleryIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        environment=environment,
        release=os.environ.get('APP_VERSION', 'unknown'),
        traces_sample_rate=float(os.environ.get('SENTRY_TRACES_SAMPLE_RATE', '0.1')),
        send_default_pii=False,
        before_send=before_send_callback,
    )

    logger.info(f"Sentry: initialized for {environment} environment")
    return True


def before_send_callback(event, hint):
    """Отбрасывает ожидаемые бизнес-ошибки и маскирует Authorization."""
    if 'exc_info' in hint:
        exc_type = hint['exc_info'][0]
        if exc_type.__name__ in IGNORED_EXCEPTIONS:
            return None

    headers = event.get('request', {}).get('headers')
    if isinstance(headers, dict) and 'Authorization' in headers:
        headers['Authorization'] = '[FILTERED]'

    return event
