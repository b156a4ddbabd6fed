import pytest
from fastapi.testclient import TestClient

from main import app, get_lifecycle
from config import settings
from errors import DeployError
from lifecycle import JobLifecycle
from models import JobStatus, LighthouseScores
from notifications import NotificationResult
from rate_limiter import limiter
from store import MemoryJobStore

ADMIN_HEADERS = {"X-API-Key": "test-admin-key"}
BEFORE = {"performance": 50, "accessibility": 80, "bestPractices": 75, "seo": 60}
AFTER = {"performance": 90, "accessibility": 95, "bestPractices": 92, "seo": 88}


class FakeNotifier:
    def __init__(self, success=True):
        self.success = success
        self.sent = []

    def send_completion(self, job):
        self.sent.append(job)
        if self.success:
            return NotificationResult(success=True)
        return NotificationResult(success=False, error="SMTP connection refused")


class FakeAuditor:
    def __init__(self):
        self.urls = []

    def run(self, url):
        self.urls.append(url)
        return LighthouseScores(performance=42, accessibility=70, best_practices=80, seo=65, url=url)


class FakeDeployer:
    def __init__(self, fail=False):
        self.fail = fail
        self.deploys = []

    def deploy(self, site_name, html_content):
        if self.fail:
            raise DeployError("Netlify deploy failed: bad token")
        self.deploys.append((site_name, html_content))
        return f"https://{site_name}.netlify.app"


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def store():
    return MemoryJobStore()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def lifecycle(store):
    lc = JobLifecycle(store)
    app.dependency_overrides[get_lifecycle] = lambda: lc
    yield lc
    app.dependency_overrides.pop(get_lifecycle, None)


def submit(client, url="https://example.com", email="owner@example.com"):
    response = client.post("/api/jobs", json={"url": url, "email": email})
    assert response.status_code == 200
    return response.json()["jobId"]


def test_health_check(client):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ok"
    assert "timestamp" in data


def test_api_health_check(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_detailed_health_check(client):
    response = client.get("/health/detailed")
    assert response.status_code == 200
    assert response.json()["checks"]["store"]["status"] == "healthy"


def test_health_and_metrics_skip_default_rate_limit(client):
    for name in (
        "health.health_check",
        "health.detailed_health_check",
        "health.readiness_check",
        "health.liveness_check",
        "monitoring.get_metrics",
    ):
        assert name in limiter._exempt_routes
    assert "main.submit_job" not in limiter._exempt_routes

    response = client.get("/metrics")
    assert response.status_code == 200
    assert "jobs_total" in response.text


def test_submit_job(client, lifecycle, store):
    response = client.post("/api/jobs", json={"url": "https://example.com", "email": "owner@example.com"})
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["message"]

    job = store.get(data["jobId"])
    assert job.status == JobStatus.SUBMITTED
    assert job.url == "https://example.com"
    assert job.completed_at is None
    assert job.lighthouse_before is None
    assert job.lighthouse_after is None
    assert job.netlify_url is None
    assert job.notes is None


@pytest.mark.parametrize("payload", [
    {"url": "https://example.com", "email": "not-an-email"},
    {"url": "not a url", "email": "owner@example.com"},
    {"url": "ftp://example.com", "email": "owner@example.com"},
    {"url": "https://example.com"},
    {"email": "owner@example.com"},
    {"url": "", "email": ""},
])
def test_submit_job_invalid_input(client, lifecycle, store, payload):
    response = client.post("/api/jobs", json=payload)
    assert response.status_code == 400
    assert store.list_all() == []


def test_job_status_found(client, lifecycle):
    job_id = submit(client)
    response = client.get(f"/api/jobs/{job_id}")
    assert response.status_code == 200
    data = response.json()
    assert data["id"] == job_id
    assert data["status"] == "submitted"
    assert data["email"] == "owner@example.com"
    assert data["completed_at"] is None
    assert data["netlify_url"] is None


def test_job_status_not_found(client, lifecycle):
    response = client.get("/api/jobs/non-existent-job")
    assert response.status_code == 404
    assert response.json()["detail"] == "Job not found"


ADMIN_ENDPOINTS = [
    ("get", "/api/jobs/pending", None),
    ("get", "/api/jobs/all", None),
    ("post", "/api/jobs/some-id/lighthouse-before", {"scores": BEFORE}),
    ("post", "/api/jobs/some-id/lighthouse-after", {"scores": AFTER}),
    ("post", "/api/jobs/some-id/complete", {"netlifyUrl": "https://x.netlify.app"}),
    ("post", "/api/jobs/some-id/deploy", {"htmlContent": "<h1>hi</h1>", "siteName": "site"}),
]


@pytest.mark.parametrize("method,path,body", ADMIN_ENDPOINTS)
@pytest.mark.parametrize("headers", [{}, {"X-API-Key": "wrong-key"}])
def test_admin_endpoints_require_key(client, lifecycle, method, path, body, headers):
    kwargs = {"headers": headers}
    if body is not None:
        kwargs["json"] = body
    response = getattr(client, method)(path, **kwargs)
    assert response.status_code == 401


def test_list_pending_only_returns_submitted(client, lifecycle):
    waiting = submit(client, url="https://waiting.example.com")
    processing = submit(client, url="https://processing.example.com")
    done = submit(client, url="https://done.example.com")
    client.post(f"/api/jobs/{processing}/lighthouse-before", json={"scores": BEFORE}, headers=ADMIN_HEADERS)
    client.post(f"/api/jobs/{done}/complete", json={"netlifyUrl": "https://done.netlify.app"}, headers=ADMIN_HEADERS)

    response = client.get("/api/jobs/pending", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    jobs = response.json()
    assert [job["id"] for job in jobs] == [waiting]
    assert all(job["status"] == "submitted" for job in jobs)


def test_list_all_jobs(client, lifecycle):
    ids = {submit(client), submit(client)}
    response = client.get("/api/jobs/all", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert {job["id"] for job in response.json()} == ids


def test_lighthouse_before_marks_processing(client, lifecycle, store):
    job_id = submit(client)
    response = client.post(f"/api/jobs/{job_id}/lighthouse-before", json={"scores": BEFORE}, headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert response.json()["success"] is True

    job = store.get(job_id)
    assert job.status == JobStatus.PROCESSING
    assert job.lighthouse_before.performance == 50
    assert job.lighthouse_before.best_practices == 75


def test_lighthouse_before_unknown_job(client, lifecycle):
    response = client.post("/api/jobs/missing/lighthouse-before", json={"scores": BEFORE}, headers=ADMIN_HEADERS)
    assert response.status_code == 404


def test_lighthouse_before_rejects_out_of_range_scores(client, lifecycle):
    job_id = submit(client)
    response = client.post(
        f"/api/jobs/{job_id}/lighthouse-before",
        json={"scores": {"performance": 140}},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 400


def test_lighthouse_before_without_scores_needs_auditor(client, lifecycle):
    job_id = submit(client)
    response = client.post(f"/api/jobs/{job_id}/lighthouse-before", headers=ADMIN_HEADERS)
    assert response.status_code == 400


def test_lighthouse_before_runs_server_audit(client, lifecycle, store):
    auditor = FakeAuditor()
    lifecycle.auditor = auditor
    job_id = submit(client, url="https://audit-me.example.com")

    response = client.post(f"/api/jobs/{job_id}/lighthouse-before", headers=ADMIN_HEADERS)
    assert response.status_code == 200
    assert response.json()["scores"]["performance"] == 42
    assert response.json()["scores"]["bestPractices"] == 80
    assert auditor.urls == ["https://audit-me.example.com"]
    assert store.get(job_id).status == JobStatus.PROCESSING


def test_lighthouse_after_last_write_wins(client, lifecycle, store):
    job_id = submit(client)
    client.post(f"/api/jobs/{job_id}/lighthouse-after", json={"scores": BEFORE}, headers=ADMIN_HEADERS)
    response = client.post(
        f"/api/jobs/{job_id}/lighthouse-after",
        json={"scores": {"performance": 91}},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200

    after = store.get(job_id).lighthouse_after
    assert after.performance == 91
    # Overwritten, not merged
    assert after.accessibility is None
    assert store.get(job_id).status == JobStatus.SUBMITTED


def test_lighthouse_after_audits_netlify_url(client, lifecycle, store):
    auditor = FakeAuditor()
    lifecycle.auditor = auditor
    job_id = submit(client)

    response = client.post(
        f"/api/jobs/{job_id}/lighthouse-after",
        json={"netlifyUrl": "https://optimized.netlify.app"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    assert auditor.urls == ["https://optimized.netlify.app"]
    assert store.get(job_id).lighthouse_after.url == "https://optimized.netlify.app"


def test_lighthouse_after_requires_scores_or_url(client, lifecycle):
    job_id = submit(client)
    response = client.post(f"/api/jobs/{job_id}/lighthouse-after", json={}, headers=ADMIN_HEADERS)
    assert response.status_code == 400


def test_before_then_complete(client, lifecycle, store):
    job_id = submit(client)
    client.post(f"/api/jobs/{job_id}/lighthouse-before", json={"scores": BEFORE}, headers=ADMIN_HEADERS)
    before = store.get(job_id).lighthouse_before

    response = client.post(
        f"/api/jobs/{job_id}/complete",
        json={"netlifyUrl": "https://fast-site.netlify.app", "notes": "Compressed images"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["job"]["status"] == "completed"
    # Email delegated to the worker
    assert "emailSent" not in data

    job = store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.completed_at is not None
    assert job.netlify_url == "https://fast-site.netlify.app"
    assert job.notes == "Compressed images"
    assert job.lighthouse_before == before


def test_complete_straight_from_submitted(client, lifecycle, store):
    job_id = submit(client)
    response = client.post(
        f"/api/jobs/{job_id}/complete",
        json={"netlifyUrl": "https://skip.netlify.app", "htmlContent": "<html></html>"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    job = store.get(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.html_content == "<html></html>"


def test_complete_sends_email(client, lifecycle, notifier):
    lifecycle.notifier = notifier
    job_id = submit(client)
    response = client.post(
        f"/api/jobs/{job_id}/complete",
        json={"netlifyUrl": "https://fast-site.netlify.app"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["emailSent"] is True
    assert [job.id for job in notifier.sent] == [job_id]
    assert notifier.sent[0].status == JobStatus.COMPLETED


def test_repeated_complete_keeps_first_deploy_and_skips_email(client, lifecycle, notifier):
    lifecycle.notifier = notifier
    job_id = submit(client)
    first = client.post(
        f"/api/jobs/{job_id}/complete",
        json={"netlifyUrl": "https://first.netlify.app"},
        headers=ADMIN_HEADERS,
    ).json()
    again = client.post(
        f"/api/jobs/{job_id}/complete",
        json={"netlifyUrl": "https://second.netlify.app"},
        headers=ADMIN_HEADERS,
    ).json()

    assert again["success"] is True
    assert "emailSent" not in again
    assert again["job"]["netlify_url"] == "https://first.netlify.app"
    assert again["job"]["completed_at"] == first["job"]["completed_at"]
    assert len(notifier.sent) == 1


def test_complete_email_failure_keeps_job_completed(client, lifecycle, store):
    lifecycle.notifier = FakeNotifier(success=False)
    job_id = submit(client)
    response = client.post(
        f"/api/jobs/{job_id}/complete",
        json={"netlifyUrl": "https://fast-site.netlify.app"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["emailSent"] is False
    assert data["emailError"] == "SMTP connection refused"
    assert store.get(job_id).status == JobStatus.COMPLETED


def test_complete_requires_netlify_url(client, lifecycle):
    job_id = submit(client)
    response = client.post(f"/api/jobs/{job_id}/complete", json={"notes": "x"}, headers=ADMIN_HEADERS)
    assert response.status_code == 400


def test_complete_unknown_job(client, lifecycle):
    response = client.post(
        "/api/jobs/missing/complete",
        json={"netlifyUrl": "https://x.netlify.app"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 404


def test_deploy(client, lifecycle):
    deployer = FakeDeployer()
    lifecycle.deployer = deployer
    job_id = submit(client)
    response = client.post(
        f"/api/jobs/{job_id}/deploy",
        json={"htmlContent": "<h1>fast</h1>", "siteName": "fast-site"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 200
    assert response.json() == {"success": True, "deployUrl": "https://fast-site.netlify.app"}
    assert deployer.deploys == [("fast-site", "<h1>fast</h1>")]


def test_deploy_requires_fields(client, lifecycle):
    lifecycle.deployer = FakeDeployer()
    job_id = submit(client)
    response = client.post(f"/api/jobs/{job_id}/deploy", json={"siteName": "fast-site"}, headers=ADMIN_HEADERS)
    assert response.status_code == 400


def test_deploy_failure_is_backend_error(client, lifecycle):
    lifecycle.deployer = FakeDeployer(fail=True)
    job_id = submit(client)
    response = client.post(
        f"/api/jobs/{job_id}/deploy",
        json={"htmlContent": "<h1>fast</h1>", "siteName": "fast-site"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 500
    assert "bad token" in response.json()["detail"]


def test_deploy_not_configured(client, lifecycle):
    job_id = submit(client)
    response = client.post(
        f"/api/jobs/{job_id}/deploy",
        json={"htmlContent": "<h1>fast</h1>", "siteName": "fast-site"},
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 500


def test_job_creation_rate_limited(client, lifecycle, monkeypatch):
    monkeypatch.setattr(settings, "rate_limit_jobs", "2/hour")
    limiter.reset()
    try:
        codes = [
            client.post("/api/jobs", json={"url": "https://example.com", "email": "a@b.co"}).status_code
            for _ in range(3)
        ]
    finally:
        limiter.reset()
    assert codes == [200, 200, 429]
