# celery_worker.py
from app import create_app
from celery_config import create_celery_app
from logging_config import get_logger

logger = get_logger(__name__)

# Create Celery instance with shared configuration
celery = create_celery_app(__name__)

# Flask app providing context for tasks when they run
flask_app = create_app()


# Tasks run within the Flask app context
class ContextTask(celery.Task):
    def __call__(self, *args, **kwargs):
        with flask_app.app_context():
            return self.run(*args, **kwargs)


celery.Task = ContextTask

# --- Celery Beat Schedule ---
# Time-based lifecycle triggers and the notification outbox flush.
from celery.schedules import crontab

celery.conf.beat_schedule = {
    'mark-overdue-invoices': {
        'task': 'tasks.billing_tasks.mark_overdue_invoices',
        # Hourly so an invoice turns overdue shortly after its due time
        'schedule': crontab(minute=5),
    },
    'expire-stale-quotes': {
        'task': 'tasks.billing_tasks.expire_stale_quotes',
        # Daily at 3 AM UTC
        'schedule': crontab(hour=3, minute=0),
    },
    'flush-pending-notifications': {
        'task': 'tasks.notification_tasks.flush_pending_notifications',
        'schedule': 300.0,  # 5 minutes
        'kwargs': {'limit': 100}
    },
}
celery.conf.timezone = 'UTC'

# Import tasks to ensure they're registered with Celery
import tasks.billing_tasks  # noqa: E402,F401
import tasks.notification_tasks  # noqa: E402,F401

logger.info("Celery tasks registered", tasks=sorted(name for name in celery.tasks if name.startswith('tasks.')))
