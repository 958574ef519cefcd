# Celery Tasks
from app.tasks import lifecycle_tasks
from app.tasks import planning_tasks

__all__ = [
    "lifecycle_tasks",
    "planning_tasks",
]
