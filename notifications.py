import os
import smtplib
import ssl
import logging
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Optional, Tuple

import requests
from jinja2 import Environment, FileSystemLoader, select_autoescape

from models import Job, LighthouseScores

logger = logging.getLogger(__name__)

template_dir = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")
env = Environment(loader=FileSystemLoader(template_dir), autoescape=select_autoescape(["html"]))

SCORE_ROWS = [
    ("Performance", "performance"),
    ("Accessibility", "accessibility"),
    ("Best Practices", "best_practices"),
    ("SEO", "seo"),
]


@dataclass
class NotificationResult:
    success: bool
    error: Optional[str] = None


def improvement_delta(before: Optional[LighthouseScores], after: Optional[LighthouseScores]) -> Optional[int]:
    """Performance gain in points, or None unless both scores are known."""
    if before is None or after is None:
        return None
    if before.performance is None or after.performance is None:
        return None
    return round(after.performance - before.performance)


def render_completion_email(job: Job) -> Tuple[str, str]:
    """Return (subject, html body) for a completed job."""
    before = job.lighthouse_before or LighthouseScores()
    after = job.lighthouse_after or LighthouseScores()
    rows = [(label, getattr(before, field), getattr(after, field)) for label, field in SCORE_ROWS]
    html = env.get_template("completion_email.html").render(
        job=job,
        rows=rows,
        improvement=improvement_delta(job.lighthouse_before, job.lighthouse_after),
    )
    subject = f"Your website optimization is ready - {job.url}"
    return subject, html


class EmailNotifier:
    """Sends the completion email over an HTTP relay, or SMTP when no relay is set."""

    def __init__(self, settings):
        self.settings = settings

    def send_completion(self, job: Job) -> NotificationResult:
        subject, html = render_completion_email(job)
        try:
            if self.settings.email_relay_url and self.settings.email_relay_api_key:
                self._send_via_relay(job.email, subject, html)
            else:
                self._send_via_smtp(job.email, subject, html)
        except Exception as e:
            logger.error(f"Completion email for job {job.id} failed: {e}")
            return NotificationResult(success=False, error=str(e))
        logger.info(f"Completion email sent to {job.email} for job {job.id}")
        return NotificationResult(success=True)

    def _send_via_relay(self, to_email: str, subject: str, body: str):
        payload = {
            "to_email": to_email,
            "subject": subject,
            "body": body,
            "from_address": self.settings.mail_from_address,
        }
        headers = {
            "X-API-Key": self.settings.email_relay_api_key,
            "Content-Type": "application/json",
        }
        response = requests.post(
            self.settings.email_relay_url,
            json=payload,
            headers=headers,
            timeout=self.settings.email_relay_timeout,
        )
        response.raise_for_status()

    def _send_via_smtp(self, to_email: str, subject: str, body: str):
        s = self.settings
        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = formataddr((s.mail_from_name, s.mail_from_address))
        msg["To"] = to_email
        msg.attach(MIMEText(body, "html"))

        if s.mail_port == 465:
            context = ssl.create_default_context()
            with smtplib.SMTP_SSL(s.mail_host, s.mail_port, context=context) as server:
                server.login(s.mail_username, s.mail_password)
                server.sendmail(s.mail_from_address, to_email, msg.as_string())
        else:
            with smtplib.SMTP(s.mail_host, s.mail_port) as server:
                server.ehlo()
                if str(s.mail_encryption).upper() in ["TLS", "TRUE"]:
                    server.starttls()
                    server.ehlo()
                server.login(s.mail_username, s.mail_password)
                server.sendmail(s.mail_from_address, to_email, msg.as_string())


def build_notifier(settings) -> Optional[EmailNotifier]:
    """None when email is left to the external worker or no sender is configured."""
    if settings.email_delivery.lower() == "worker":
        logger.info("Completion emails are delegated to the worker")
        return None
    relay = settings.email_relay_url and settings.email_relay_api_key
    smtp = settings.mail_username and settings.mail_password and settings.mail_from_address
    if not (relay or smtp):
        logger.warning("No email sender configured, completion emails will not be sent")
        return None
    return EmailNotifier(settings)
