# app/background/tasks.py
from typing import Callable, Any

from fastapi import BackgroundTasks


def enqueue_task(
    background_tasks: BackgroundTasks,
    func: Callable[..., Any],
    *args: Any,
    **kwargs: Any,
) -> None:
    """
    Helper to add a background task in a consistent way.

    Usage in endpoints:
        from fastapi import BackgroundTasks
        from app.background.tasks import enqueue_task
        from app.background.workers import sync_provider_job

        @router.post("/providers/{provider_id}/sync")
        def handler(..., background_tasks: BackgroundTasks):
            enqueue_task(background_tasks, sync_provider_job, provider_id)
    """
    background_tasks.add_task(func, *args, **kwargs)
