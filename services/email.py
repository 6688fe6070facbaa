import os
from typing import Dict, Any

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape

from core.config import settings
from tasks.email_tasks import send_email_task

logger = structlog.get_logger(__name__)

# Jinja2 environment for email and invoice templates
_templates_env = Environment(
    loader=FileSystemLoader(searchpath=os.path.join(os.path.dirname(os.path.dirname(__file__)), "templates")),
    autoescape=select_autoescape(["html", "xml"]),
)


def send_email(to_email: str, subject: str, body: str) -> None:
    """
    Queue email on Celery when EMAIL_USE_CELERY is on, otherwise send directly.
    A queue that cannot be reached falls back to a direct send.
    """
    if settings.EMAIL_USE_CELERY:
        try:
            send_email_task.delay(to_email, subject, body)
            logger.info("email_queued", to=to_email, subject=subject)
            return
        except Exception as e:
            logger.warning("email_queue_unavailable", to=to_email, error=str(e))

    # Fallback: send email directly (synchronously)
    _send_email_direct(to_email, subject, body)


def render_template(template_path: str, context: Dict[str, Any]) -> str:
    """Render a text template from templates/ directory with provided context."""
    template = _templates_env.get_template(template_path)
    return template.render(**context)


def send_templated_email(to_email: str, subject: str, template_path: str, context: Dict[str, Any]) -> None:
    """Render a template and send email via existing send_email path."""
    body = render_template(template_path, context)
    send_email(to_email, subject, body)


def _send_email_direct(to_email: str, subject: str, body: str) -> None:
    """Direct email sending fallback"""
    import smtplib
    from email.message import EmailMessage

    if settings.TESTING or not settings.SMTP_PASSWORD:
        logger.info("email_skipped", to=to_email, subject=subject)
        return

    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.SMTP_FROM or settings.SMTP_USERNAME
        msg["To"] = to_email
        msg.set_content(body)

        with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT) as server:
            server.starttls()
            if settings.SMTP_USERNAME and settings.SMTP_PASSWORD:
                server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
            server.send_message(msg)

        logger.info("email_sent", to=to_email, subject=subject)
    except Exception as e:
        logger.error("email_send_failed", to=to_email, subject=subject, error=str(e))
