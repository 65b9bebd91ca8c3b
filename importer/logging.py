import logging

import structlog
from celery import current_task


class CeleryTaskIDFilter(logging.Filter):
    def filter(self, record):
        task = current_task
        if task and task.request.id:
            record.task_id = f"/[{task.request.id}]"
        else:
            record.task_id = ""

        # Import tasks bind the session they are working on
        session_id = structlog.contextvars.get_contextvars().get("session_id")
        if session_id:
            record.task_id = f"{record.task_id}/[{session_id}]"
        record.session_id = session_id or ""

        # This just tells the logger to not discard this record
        return True
