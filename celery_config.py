"""
Shared Celery configuration for both the Flask app and Celery workers
"""
import os
import ssl
from celery import Celery

from logging_config import get_logger

logger = get_logger(__name__)

_celery_app = None


def _add_ssl_params(url):
    """Append ssl_cert_reqs to rediss:// URLs that lack it"""
    if not url.startswith('rediss://'):
        return url
    from urllib.parse import urlparse, parse_qs
    parsed = urlparse(url)
    query_params = parse_qs(parsed.query)
    if 'ssl_cert_reqs' not in query_params:
        separator = '&' if parsed.query else '?'
        return url + f"{separator}ssl_cert_reqs=CERT_NONE"
    return url


def create_celery_app(app_name=__name__):
    """Create a Celery app with proper SSL Redis configuration"""
    broker_url = os.environ.get('CELERY_BROKER_URL') or os.environ.get('REDIS_URL') or 'redis://redis:6379/0'
    result_backend_url = os.environ.get('CELERY_RESULT_BACKEND') or broker_url

    broker_uses_ssl = broker_url.startswith('rediss://')
    backend_uses_ssl = result_backend_url.startswith('rediss://')
    ssl_options = {
        'ssl_cert_reqs': ssl.CERT_NONE,
        'ssl_ca_certs': None,
        'ssl_certfile': None,
        'ssl_keyfile': None,
    }

    if broker_uses_ssl or backend_uses_ssl:
        celery = Celery(
            app_name,
            broker=_add_ssl_params(broker_url),
            backend=_add_ssl_params(result_backend_url),
            broker_use_ssl=ssl_options if broker_uses_ssl else None,
            redis_backend_use_ssl=ssl_options if backend_uses_ssl else None,
            broker_connection_retry_on_startup=True,
            broker_connection_retry=True,
            broker_connection_max_retries=3,
            broker_transport_options={
                'socket_connect_timeout': 30,
                'socket_timeout': 30,
            }
        )
    else:
        celery = Celery(
            app_name,
            broker=broker_url,
            backend=result_backend_url
        )

    celery.conf.update(
        timezone='UTC',
        task_serializer='json',
        result_serializer='json',
        accept_content=['json'],
        # Ack after the task body runs
        task_acks_late=True,
    )

    logger.debug("Celery app created", broker_uses_ssl=broker_uses_ssl, backend_uses_ssl=backend_uses_ssl)
    return celery


def get_celery_app():
    """Process-wide Celery app shared by the web process and the worker"""
    global _celery_app
    if _celery_app is None:
        _celery_app = create_celery_app('conversion_engine')
    return _celery_app
