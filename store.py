"""Job persistence.

``JobStore`` is the interface every backend implements. Backends:

* ``MemoryJobStore``: a dict keyed by job id. Given a ``path`` it loads that
  JSON file on ``init()`` and rewrites it after every mutation, which makes it
  the file-backed variant.
* ``SqlJobStore``: a SQLAlchemy ``jobs`` table.
* ``SheetsJobStore`` (in ``sheets_store``): rows of a Google Sheet.

``build_store()`` picks one from the settings at startup.
"""
from abc import ABC, abstractmethod
from datetime import timezone
from typing import Dict, List, Optional
import json
import logging
import os
import tempfile
import threading
import uuid

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from database import JobRecord, create_tables, make_engine, make_session_factory
from errors import StoreError
from models import Job, JobStatus, LighthouseScores, utcnow

logger = logging.getLogger(__name__)

# Written by the first completion only, later completions leave them alone
SET_ONCE_FIELDS = ("completed_at", "netlify_url")


def _newest_first(jobs: List[Job]) -> List[Job]:
    return sorted(jobs, key=lambda job: job.created_at, reverse=True)


class JobStore(ABC):

    def init(self) -> None:
        """Prepare the backend. Called once at startup."""

    def close(self) -> None:
        """Release the backend. Called once at shutdown."""

    def ping(self) -> bool:
        return True

    @abstractmethod
    def create(self, url: str, email: str) -> Job:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def list_all(self) -> List[Job]:
        ...

    def list_pending(self) -> List[Job]:
        return [job for job in self.list_all() if job.status == JobStatus.SUBMITTED]

    @abstractmethod
    def set_status(self, job_id: str, status: JobStatus) -> bool:
        ...

    @abstractmethod
    def set_lighthouse_before(self, job_id: str, scores: LighthouseScores) -> bool:
        ...

    @abstractmethod
    def set_lighthouse_after(self, job_id: str, scores: LighthouseScores) -> bool:
        ...

    @abstractmethod
    def complete(self, job_id: str, netlify_url: str, notes: Optional[str] = None,
                 html_content: Optional[str] = None) -> bool:
        """Mark the job completed. ``completed_at`` and ``netlify_url`` keep
        their first values when the job is completed again."""

    @staticmethod
    def new_job(url: str, email: str) -> Job:
        return Job(id=str(uuid.uuid4()), url=url, email=email,
                   status=JobStatus.SUBMITTED, created_at=utcnow())


class MemoryJobStore(JobStore):
    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def init(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
            self._jobs = {item["id"]: Job.model_validate(item) for item in raw}
        except (OSError, ValueError, KeyError) as e:
            raise StoreError(f"Could not load jobs file {self.path}: {e}") from e
        logger.info(f"Loaded {len(self._jobs)} jobs from {self.path}")

    def close(self) -> None:
        with self._lock:
            self._flush(self._jobs)

    def ping(self) -> bool:
        if not self.path:
            return True
        directory = os.path.dirname(os.path.abspath(self.path))
        return os.access(directory, os.W_OK)

    def _flush(self, jobs: Dict[str, Job]):
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        tmp_path = None
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump([job.to_dict() for job in jobs.values()], f, indent=2)
            os.replace(tmp_path, self.path)
            tmp_path = None
        except OSError as e:
            raise StoreError(f"Could not write jobs file {self.path}: {e}") from e
        finally:
            if tmp_path and os.path.exists(tmp_path):
                os.remove(tmp_path)

    def _commit(self, jobs: Dict[str, Job]):
        # Written to disk first so a failed flush leaves memory untouched
        self._flush(jobs)
        self._jobs = jobs

    def _update(self, job_id: str, keep_existing=(), **changes) -> bool:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning(f"Job {job_id} not found for update")
                return False
            changes = {
                key: value for key, value in changes.items()
                if key not in keep_existing or getattr(job, key) is None
            }
            jobs = dict(self._jobs)
            jobs[job_id] = job.model_copy(update=changes)
            self._commit(jobs)
            return True

    def create(self, url: str, email: str) -> Job:
        job = self.new_job(url, email)
        with self._lock:
            jobs = dict(self._jobs)
            jobs[job.id] = job
            self._commit(jobs)
        return job

    def get(self, job_id: str) -> Optional[Job]:
        return self._jobs.get(job_id)

    def list_all(self) -> List[Job]:
        return _newest_first(list(self._jobs.values()))

    def set_status(self, job_id: str, status: JobStatus) -> bool:
        return self._update(job_id, status=status)

    def set_lighthouse_before(self, job_id: str, scores: LighthouseScores) -> bool:
        return self._update(job_id, lighthouse_before=scores)

    def set_lighthouse_after(self, job_id: str, scores: LighthouseScores) -> bool:
        return self._update(job_id, lighthouse_after=scores)

    def complete(self, job_id: str, netlify_url: str, notes: Optional[str] = None,
                 html_content: Optional[str] = None) -> bool:
        return self._update(
            job_id,
            keep_existing=SET_ONCE_FIELDS,
            status=JobStatus.COMPLETED,
            completed_at=utcnow(),
            netlify_url=netlify_url,
            notes=notes,
            html_content=html_content,
        )


class SqlJobStore(JobStore):
    def __init__(self, database_url: str):
        self.database_url = database_url
        self.engine = make_engine(database_url)
        self.SessionLocal = make_session_factory(self.engine)

    def init(self) -> None:
        try:
            create_tables(self.engine)
        except SQLAlchemyError as e:
            raise StoreError(f"Database init failed: {e}") from e

    def close(self) -> None:
        self.engine.dispose()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database ping failed: {e}")
            return False

    @staticmethod
    def _to_job(record: JobRecord) -> Job:
        created_at = record.created_at
        completed_at = record.completed_at
        # SQLite hands back naive datetimes
        if created_at is not None and created_at.tzinfo is None:
            created_at = created_at.replace(tzinfo=timezone.utc)
        if completed_at is not None and completed_at.tzinfo is None:
            completed_at = completed_at.replace(tzinfo=timezone.utc)
        return Job(
            id=record.id,
            url=record.url,
            email=record.email,
            status=JobStatus(record.status),
            created_at=created_at,
            completed_at=completed_at,
            lighthouse_before=record.lighthouse_before,
            lighthouse_after=record.lighthouse_after,
            netlify_url=record.netlify_url,
            notes=record.notes,
            html_content=record.html_content,
        )

    def _update(self, job_id: str, keep_existing=(), **changes) -> bool:
        db = self.SessionLocal()
        try:
            record = db.query(JobRecord).filter(JobRecord.id == job_id).first()
            if not record:
                logger.warning(f"Job {job_id} not found for update")
                return False
            for key, value in changes.items():
                if key in keep_existing and getattr(record, key) is not None:
                    continue
                setattr(record, key, value)
            db.commit()
            return True
        except SQLAlchemyError as e:
            logger.error(f"Error updating job {job_id}: {e}")
            db.rollback()
            raise StoreError(f"Database error: {e}") from e
        finally:
            db.close()

    def create(self, url: str, email: str) -> Job:
        job = self.new_job(url, email)
        db = self.SessionLocal()
        try:
            db.add(JobRecord(
                id=job.id,
                url=job.url,
                email=job.email,
                status=job.status.value,
                created_at=job.created_at,
            ))
            db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Error creating job: {e}")
            db.rollback()
            raise StoreError(f"Database error: {e}") from e
        finally:
            db.close()
        return job

    def get(self, job_id: str) -> Optional[Job]:
        db = self.SessionLocal()
        try:
            record = db.query(JobRecord).filter(JobRecord.id == job_id).first()
            return self._to_job(record) if record else None
        except SQLAlchemyError as e:
            raise StoreError(f"Database error: {e}") from e
        finally:
            db.close()

    def _query(self, status: Optional[JobStatus] = None) -> List[Job]:
        db = self.SessionLocal()
        try:
            query = db.query(JobRecord)
            if status:
                query = query.filter(JobRecord.status == status.value)
            return [self._to_job(r) for r in query.order_by(JobRecord.created_at.desc()).all()]
        except SQLAlchemyError as e:
            raise StoreError(f"Database error: {e}") from e
        finally:
            db.close()

    def list_all(self) -> List[Job]:
        return self._query()

    def list_pending(self) -> List[Job]:
        return self._query(JobStatus.SUBMITTED)

    def set_status(self, job_id: str, status: JobStatus) -> bool:
        return self._update(job_id, status=status.value)

    def set_lighthouse_before(self, job_id: str, scores: LighthouseScores) -> bool:
        return self._update(job_id, lighthouse_before=scores.to_dict())

    def set_lighthouse_after(self, job_id: str, scores: LighthouseScores) -> bool:
        return self._update(job_id, lighthouse_after=scores.to_dict())

    def complete(self, job_id: str, netlify_url: str, notes: Optional[str] = None,
                 html_content: Optional[str] = None) -> bool:
        return self._update(
            job_id,
            keep_existing=SET_ONCE_FIELDS,
            status=JobStatus.COMPLETED.value,
            completed_at=utcnow(),
            netlify_url=netlify_url,
            notes=notes,
            html_content=html_content,
        )


def build_store(settings) -> JobStore:
    """Pick the storage backend once, at startup.

    A durable backend that is selected but not configured degrades to a plain
    in-memory store with a warning.
    """
    backend = settings.storage_backend.lower()
    if backend == "auto":
        if settings.database_url:
            backend = "database"
        elif settings.google_sheets_id:
            backend = "sheets"
        elif settings.jobs_file:
            backend = "file"
        else:
            backend = "memory"

    if backend == "database" and settings.database_url:
        logger.info("Using database job store")
        return SqlJobStore(settings.database_url)

    if backend == "sheets" and settings.google_sheets_id:
        from sheets_store import SheetsJobStore
        logger.info("Using Google Sheets job store")
        return SheetsJobStore(
            spreadsheet_id=settings.google_sheets_id,
            sheet_range=settings.google_sheets_range,
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            refresh_token=settings.google_refresh_token,
            timeout=settings.google_request_timeout,
        )

    if backend == "file" and settings.jobs_file:
        logger.info(f"Using file job store at {settings.jobs_file}")
        return MemoryJobStore(path=settings.jobs_file)

    if backend not in ("memory", "database", "sheets", "file"):
        raise ValueError(f"Unknown storage backend: {settings.storage_backend}")

    if backend != "memory":
        logger.warning(f"Storage backend '{backend}' is not configured, falling back to in-memory store")
    else:
        logger.warning("Using in-memory job store, jobs are lost on restart")
    return MemoryJobStore()
