"""
Notification background tasks.

Task-assigned emails, sent through Resend.
"""

from __future__ import annotations

import logging

from tasktrail.core.config import settings
from tasktrail.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(
    name="tasktrail.workers.notification_tasks.send_task_assigned_email",
    bind=True,
    max_retries=settings.NOTIFICATION_MAX_ATTEMPTS - 1,
    default_retry_delay=settings.NOTIFICATION_BACKOFF_MS / 1000,
)
def send_task_assigned_email(
    self,  # type: ignore[no-untyped-def]
    assignee_email: str,
    task_title: str,
) -> dict[str, str]:
    """
    Tell an assignee a task was assigned to them.

    Retries with a fixed delay; once the last attempt fails the error is
    logged and re-raised so the result backend records the failure.

    Args:
        assignee_email: Recipient email address.
        task_title: Title of the task at assignment time.

    Returns:
        Dict with status and message_id.
    """
    try:
        import resend

        resend.api_key = settings.RESEND_API_KEY

        params: resend.Emails.SendParams = {
            "from": settings.EMAIL_FROM,
            "to": [assignee_email],
            "subject": f"New task assigned: {task_title}",
            "html": f"""
                <h2>You have a new task</h2>
                <p>The task <strong>{task_title}</strong> was assigned to you.</p>
            """,
        }

        response = resend.Emails.send(params)
        logger.info("Task-assigned email sent to %s", assignee_email)
        return {"status": "sent", "message_id": response["id"]}

    except Exception as exc:
        if self.request.retries >= self.max_retries:
            logger.error(
                "Giving up on task-assigned email to %s after %d attempts: %s",
                assignee_email,
                self.request.retries + 1,
                exc,
            )
            raise
        logger.warning("Task-assigned email to %s failed, retrying: %s", assignee_email, exc)
        raise self.retry(exc=exc)
