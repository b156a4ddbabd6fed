"""Job lifecycle: submitted -> processing -> completed.

The controller only checks that a job exists before a transition. Ordering is
the external worker's job, so e.g. completing a job that never went through
``processing`` is accepted.
"""
from dataclasses import dataclass
from typing import List, Optional
from urllib.parse import urlparse
import logging
import re

from errors import BackendError, NotFoundError, ValidationError
from models import Job, JobStatus, LighthouseScores
from monitoring import email_count, job_count

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
WHITESPACE_RE = re.compile(r"\s")


def validate_url(url: Optional[str]) -> str:
    if not url or not url.strip():
        raise ValidationError("URL and email required")
    url = url.strip()
    # urlparse drops tabs and newlines silently
    if WHITESPACE_RE.search(url):
        raise ValidationError("Invalid URL")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid URL")
    return url


def validate_email(email: Optional[str]) -> str:
    if not email or not email.strip():
        raise ValidationError("URL and email required")
    email = email.strip()
    if not EMAIL_RE.match(email):
        raise ValidationError("Invalid email")
    return email


@dataclass
class CompletionResult:
    job: Job
    email_sent: Optional[bool] = None  # None when email is left to the worker
    email_error: Optional[str] = None


class JobLifecycle:
    def __init__(self, store, notifier=None, auditor=None, deployer=None):
        self.store = store
        self.notifier = notifier
        self.auditor = auditor
        self.deployer = deployer

    def submit(self, url: Optional[str], email: Optional[str]) -> Job:
        if not url or not email:
            raise ValidationError("URL and email required")
        url = validate_url(url)
        email = validate_email(email)
        job = self.store.create(url, email)
        job_count.labels(status=JobStatus.SUBMITTED.value).inc()
        logger.info(f"Job {job.id} submitted for {url}")
        return job

    def get(self, job_id: str) -> Job:
        job = self.store.get(job_id)
        if job is None:
            raise NotFoundError()
        return job

    def list_pending(self) -> List[Job]:
        return self.store.list_pending()

    def list_all(self) -> List[Job]:
        return self.store.list_all()

    def record_before(self, job_id: str, scores: Optional[LighthouseScores] = None) -> LighthouseScores:
        job = self.get(job_id)
        if scores is None:
            if self.auditor is None:
                raise ValidationError("scores required")
            scores = self.auditor.run(job.url)
        self.store.set_status(job_id, JobStatus.PROCESSING)
        self.store.set_lighthouse_before(job_id, scores)
        job_count.labels(status=JobStatus.PROCESSING.value).inc()
        logger.info(f"Job {job_id} processing, before-scores recorded")
        return scores

    def record_after(self, job_id: str, scores: Optional[LighthouseScores] = None,
                     netlify_url: Optional[str] = None) -> LighthouseScores:
        if scores is None and not netlify_url:
            raise ValidationError("scores or netlifyUrl required")
        self.get(job_id)
        if scores is None:
            if self.auditor is None:
                raise ValidationError("scores required, server-side audits are disabled")
            scores = self.auditor.run(validate_url(netlify_url))
        self.store.set_lighthouse_after(job_id, scores)
        logger.info(f"Job {job_id} after-scores recorded")
        return scores

    def complete(self, job_id: str, netlify_url: Optional[str], notes: Optional[str] = None,
                 html_content: Optional[str] = None) -> CompletionResult:
        if not netlify_url:
            raise ValidationError("netlifyUrl required")
        previous = self.get(job_id)
        self.store.complete(job_id, netlify_url, notes, html_content)
        job = self.get(job_id)
        result = CompletionResult(job=job)
        if previous.status == JobStatus.COMPLETED:
            logger.info(f"Job {job_id} was already completed, completion email not resent")
            return result

        job_count.labels(status=JobStatus.COMPLETED.value).inc()
        logger.info(f"Job {job_id} completed, deployed at {job.netlify_url}")
        if self.notifier is not None:
            sent = self.notifier.send_completion(job)
            result.email_sent = sent.success
            result.email_error = sent.error
            email_count.labels(status="sent" if sent.success else "failed").inc()
        return result

    def deploy(self, job_id: str, html_content: Optional[str], site_name: Optional[str]) -> str:
        if not html_content or not site_name:
            raise ValidationError("htmlContent and siteName required")
        self.get(job_id)
        if self.deployer is None:
            raise BackendError("Netlify deployment is not configured on this server")
        deploy_url = self.deployer.deploy(site_name, html_content)
        logger.info(f"Job {job_id} deployed to {deploy_url}")
        return deploy_url
