# app/celery_worker.py
from celery import Celery

from app.utils.settings import (
    CELERY_BROKER_URL,
    CELERY_RESULT_BACKEND,
    CELERY_TASK_ALWAYS_EAGER,
)

celery_app = Celery(
    "grocery",
    broker=CELERY_BROKER_URL,
    backend=CELERY_RESULT_BACKEND,
)

# WAŻNE: Explicite importuj taski, żeby Celery je zarejestrował
celery_app.conf.imports = (
    "app.tasks.expire",
    "app.tasks.payments",
    "app.services.notification_service",
)

# Konfiguracja beat schedule
celery_app.conf.beat_schedule = {
    "check-payment-timeouts-every-minute": {
        "task": "app.tasks.payments.check_payment_timeouts_task",
        "schedule": 60.0,  # co 60 sekund
    },
    "purge-anonymous-carts-hourly": {
        "task": "app.tasks.expire.purge_anonymous_carts_task",
        "schedule": 3600.0,
    },
}

celery_app.conf.timezone = "UTC"
# webhook musi przetrwac restart workera
celery_app.conf.task_acks_late = True
celery_app.conf.task_always_eager = CELERY_TASK_ALWAYS_EAGER
