"""
Celery Beat Schedule Configuration

Defines periodic tasks that run on a schedule.
"""

from core.config import settings

# Schedule configuration
beat_schedule = {
    # Abandoned gym setups: enqueue a reap for every owner with more than
    # one gym. Setup start triggers the same reap per owner; this catches
    # owners who never come back.
    'sweep-incomplete-gyms': {
        'task': 'tasks.sweep_incomplete_gyms',
        'schedule': float(settings.REAP_SWEEP_INTERVAL_S),
    },
}
