"""Job store backed by a Google Sheet, one row per job.

Rows live under a header row in columns A:J. Score records are stored as JSON
strings. The store keeps an id -> row number cache, built by one scan at
``init()``, so updates write straight to the right cells.
"""
from datetime import datetime
from typing import Dict, List, Optional
from urllib.parse import quote
import json
import logging
import re
import threading

import requests
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import AuthorizedSession
from google.oauth2.credentials import Credentials

from errors import StoreError
from models import Job, JobStatus, LighthouseScores, utcnow
from store import SET_ONCE_FIELDS, JobStore, _newest_first

logger = logging.getLogger(__name__)

SHEETS_API = "https://sheets.googleapis.com/v4/spreadsheets"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]

COLUMNS = [
    "id", "url", "email", "status", "created_at", "completed_at",
    "lighthouse_before", "lighthouse_after", "netlify_url", "notes",
]
LAST_COLUMN = chr(ord("A") + len(COLUMNS) - 1)
ROW_RE = re.compile(r"[A-Z]+(\d+)")


def _column(field: str) -> str:
    return chr(ord("A") + COLUMNS.index(field))


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, LighthouseScores):
        return json.dumps(value.to_dict())
    if isinstance(value, JobStatus):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def row_to_job(row: List[str]) -> Job:
    row = list(row) + [""] * (len(COLUMNS) - len(row))
    data = {name: (row[i] or None) for i, name in enumerate(COLUMNS)}
    for field in ("lighthouse_before", "lighthouse_after"):
        if data[field]:
            data[field] = json.loads(data[field])
    return Job.model_validate(data)


def job_to_row(job: Job) -> List[str]:
    return [_cell(getattr(job, name)) for name in COLUMNS]


def authorized_session(client_id: Optional[str], client_secret: Optional[str],
                       refresh_token: Optional[str]) -> Optional[AuthorizedSession]:
    """Session that refreshes its access token from the OAuth2 refresh token."""
    if not (client_id and client_secret and refresh_token):
        return None
    credentials = Credentials(
        token=None,
        refresh_token=refresh_token,
        client_id=client_id,
        client_secret=client_secret,
        token_uri=TOKEN_URL,
        scopes=SCOPES,
    )
    return AuthorizedSession(credentials)


class SheetsJobStore(JobStore):
    def __init__(self, spreadsheet_id: str, sheet_range: str = "Jobs",
                 client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 refresh_token: Optional[str] = None, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.spreadsheet_id = spreadsheet_id
        self.sheet = sheet_range
        self.timeout = timeout
        self.session = session or authorized_session(client_id, client_secret, refresh_token)
        self._rows: Dict[str, int] = {}
        self._lock = threading.RLock()

    # -- HTTP plumbing --

    def _request(self, method: str, url: str, **kwargs) -> dict:
        if self.session is None:
            raise StoreError("Google API credentials are not configured")
        try:
            response = getattr(self.session, method)(url, timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response.json()
        except (requests.exceptions.RequestException, GoogleAuthError) as e:
            logger.error(f"Google API request failed: {e}")
            raise StoreError(f"Google Sheets error: {e}") from e
        except ValueError as e:
            raise StoreError(f"Google Sheets returned invalid JSON: {e}") from e

    def _values_url(self, a1_range: str, suffix: str = "") -> str:
        return f"{SHEETS_API}/{self.spreadsheet_id}/values/{quote(a1_range, safe='!:')}{suffix}"

    def _range(self, start: str, end: str = LAST_COLUMN) -> str:
        return f"{self.sheet}!{start}:{end}"

    # -- row cache --

    def _scan(self) -> List[Job]:
        data = self._request("get", self._values_url(self._range("A", LAST_COLUMN)))
        values = data.get("values", [])
        if not values:
            self._write_header()
            values = [COLUMNS]
        jobs = []
        rows = {}
        for offset, row in enumerate(values[1:], start=2):
            if not row or not row[0]:
                continue
            try:
                jobs.append(row_to_job(row))
            except ValueError as e:
                raise StoreError(f"Unreadable row {offset} in sheet: {e}") from e
            rows[row[0]] = offset
        self._rows = rows
        return jobs

    def _write_header(self):
        self._request(
            "put",
            self._values_url(self._range("A1", f"{LAST_COLUMN}1")),
            params={"valueInputOption": "RAW"},
            json={"values": [COLUMNS]},
        )

    def _row_for(self, job_id: str) -> Optional[int]:
        if job_id not in self._rows:
            self._scan()
        return self._rows.get(job_id)

    def _read(self, job_id: str) -> Optional[Job]:
        # A cached row can point at another job once the sheet is edited by
        # hand, so a mismatch drops the entry and rescans once.
        for _ in range(2):
            row_number = self._row_for(job_id)
            if row_number is None:
                return None
            data = self._request(
                "get", self._values_url(self._range(f"A{row_number}", f"{LAST_COLUMN}{row_number}"))
            )
            values = data.get("values", [])
            if values and values[0] and values[0][0] == job_id:
                try:
                    return row_to_job(values[0])
                except ValueError as e:
                    raise StoreError(f"Unreadable row {row_number} in sheet: {e}") from e
            self._rows.pop(job_id, None)
        raise StoreError(f"Row for job {job_id} keeps moving in the sheet")

    def _write(self, row_number: int, changes: dict):
        data = [
            {"range": f"{self.sheet}!{_column(field)}{row_number}", "values": [[_cell(value)]]}
            for field, value in changes.items()
        ]
        self._request(
            "post",
            f"{SHEETS_API}/{self.spreadsheet_id}/values:batchUpdate",
            json={"valueInputOption": "RAW", "data": data},
        )

    # -- JobStore --

    def init(self) -> None:
        with self._lock:
            jobs = self._scan()
        logger.info(f"Indexed {len(jobs)} jobs in sheet {self.sheet}")

    def ping(self) -> bool:
        try:
            self._request("get", f"{SHEETS_API}/{self.spreadsheet_id}",
                          params={"fields": "spreadsheetId"})
            return True
        except StoreError:
            return False

    def create(self, url: str, email: str) -> Job:
        job = self.new_job(url, email)
        with self._lock:
            data = self._request(
                "post",
                self._values_url(self._range("A", LAST_COLUMN), ":append"),
                params={"valueInputOption": "RAW", "insertDataOption": "INSERT_ROWS"},
                json={"values": [job_to_row(job)]},
            )
            try:
                updated_range = data["updates"]["updatedRange"]
                self._rows[job.id] = int(ROW_RE.search(updated_range.split("!")[-1]).group(1))
            except (KeyError, AttributeError) as e:
                raise StoreError(f"Unexpected append response from Google Sheets: {data}") from e
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._read(job_id)

    def list_all(self) -> List[Job]:
        with self._lock:
            return _newest_first(self._scan())

    def _update(self, job_id: str, **changes) -> bool:
        with self._lock:
            row_number = self._row_for(job_id)
            if row_number is None:
                logger.warning(f"Job {job_id} not found for update")
                return False
            self._write(row_number, changes)
            return True

    def set_status(self, job_id: str, status: JobStatus) -> bool:
        return self._update(job_id, status=status)

    def set_lighthouse_before(self, job_id: str, scores: LighthouseScores) -> bool:
        return self._update(job_id, lighthouse_before=scores)

    def set_lighthouse_after(self, job_id: str, scores: LighthouseScores) -> bool:
        return self._update(job_id, lighthouse_after=scores)

    def complete(self, job_id: str, netlify_url: str, notes: Optional[str] = None,
                 html_content: Optional[str] = None) -> bool:
        # HTML is not kept in the sheet, cells cap at 50k characters
        with self._lock:
            current = self._read(job_id)
            if current is None:
                logger.warning(f"Job {job_id} not found for update")
                return False
            changes = {
                "status": JobStatus.COMPLETED,
                "completed_at": utcnow(),
                "netlify_url": netlify_url,
                "notes": notes,
            }
            for field in SET_ONCE_FIELDS:
                if getattr(current, field) is not None:
                    changes.pop(field)
            self._write(self._rows[job_id], changes)
            return True
