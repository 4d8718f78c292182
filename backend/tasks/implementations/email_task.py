"""Email task implementation.

Messages go out over SMTP when SMTP_HOST is configured. Without it the
message is written to the log only, which is how development and test
environments run.
"""

import asyncio
import smtplib
from email.mime.text import MIMEText
from typing import Any, Mapping

import structlog

from app.config import Settings, get_settings
from tasks.base_task import BaseTask, TaskResult
from workflow.placeholders import resolve_placeholders
from workflow.step_configs import EmailConfig

logger = structlog.get_logger(__name__)


def _send_smtp(settings: Settings, to: str, subject: str, body: str) -> None:
    """Blocking SMTP delivery; run in an executor."""
    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = to

    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USER:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.sendmail(settings.EMAIL_FROM, [to], msg.as_string())


class EmailTask(BaseTask):
    """Send an email.

    Config:
        to: Recipient address (placeholders allowed)
        subject: Subject line (placeholders allowed)
        body: Plain-text body (placeholders allowed)
    """

    task_type = "email"
    display_name = "Email"
    description = "Send an email message"

    async def execute(self, config: EmailConfig, outputs: Mapping[str, Any]) -> TaskResult:
        to = resolve_placeholders(config.to, outputs)
        subject = resolve_placeholders(config.subject, outputs)
        body = resolve_placeholders(config.body, outputs)

        settings = get_settings()
        if settings.smtp_enabled:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, _send_smtp, settings, to, subject, body)
            logger.info("Email sent", to=to, subject=subject)
        else:
            logger.info("Email delivery not configured, message logged", to=to, subject=subject, body=body)

        return TaskResult(
            success=True,
            output={"message": "Email sent successfully", "to": to},
        )


MESSAGING_TASK_TYPES = {
    "email": EmailTask,
}
