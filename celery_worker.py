# celery_worker.py
from app import create_app
from celery_config import get_celery_app
from logging_config import get_logger

logger = get_logger(__name__)

# Same Celery instance the Flask app uses for .delay()
celery = get_celery_app()

# The Flask app provides the service registry and db session for tasks.
flask_app = create_app()

# Set the custom Task class to ensure tasks run within the Flask app context.
class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)

celery.Task = ContextTask

# --- Celery Beat Schedule ---
from celery.schedules import crontab

celery.conf.beat_schedule = {
    'tracking-basic-health-check': {
        'task': 'tasks.monitoring_tasks.run_basic_health_check',
        'schedule': float(flask_app.config['HEALTH_CHECK_INTERVAL']),  # 5 minutes
    },
    'tracking-deep-health-check': {
        'task': 'tasks.monitoring_tasks.run_deep_health_check',
        'schedule': float(flask_app.config['DEEP_HEALTH_CHECK_INTERVAL']),  # 30 minutes
    },
    'conversion-reconciliation': {
        'task': 'tasks.reconciliation_tasks.run_daily_reconciliation',
        # Daily at 2 AM UTC, reconciling the previous UTC day
        'schedule': crontab(hour=2, minute=0),
    },
    'cleanup-expired-alerts': {
        'task': 'tasks.monitoring_tasks.cleanup_expired_alerts',
        'schedule': crontab(hour=3, minute=0),
    },
    'cleanup-attempt-log': {
        'task': 'tasks.monitoring_tasks.cleanup_attempt_log',
        # Weekly on Sunday at 4 AM UTC
        'schedule': crontab(hour=4, minute=0, day_of_week=0),
    },
}
celery.conf.timezone = 'UTC'

# Import tasks to ensure they're registered with Celery
with flask_app.app_context():
    import tasks.conversion_tasks
    import tasks.monitoring_tasks
    import tasks.reconciliation_tasks
    logger.info("Registered tasks", tasks=sorted(name for name in celery.tasks if name.startswith('tasks.')))
