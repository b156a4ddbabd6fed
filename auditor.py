import json
import shlex
import subprocess
import time
from datetime import datetime, timezone

from loguru import logger

from errors import AuditError
from models import LighthouseScores

CATEGORIES = ["performance", "accessibility", "best-practices", "seo"]


def parse_lighthouse_report(report: dict, url: str) -> LighthouseScores:
    """Turn a Lighthouse JSON report into 0-100 category scores."""
    categories = report.get("categories", {})

    def score(name):
        category = categories.get(name) or {}
        value = category.get("score")
        return round(value * 100) if value is not None else None

    return LighthouseScores(
        performance=score("performance"),
        accessibility=score("accessibility"),
        best_practices=score("best-practices"),
        seo=score("seo"),
        url=url,
        timestamp=datetime.now(timezone.utc),
    )


class LighthouseAuditor:
    def __init__(self, command: str = "npx lighthouse", timeout: int = 180):
        self.command = shlex.split(command)
        self.timeout = timeout

    def run(self, url: str) -> LighthouseScores:
        args = self.command + [
            url,
            "--output=json",
            "--quiet",
            f"--only-categories={','.join(CATEGORIES)}",
            "--chrome-flags=--headless=new --no-sandbox --disable-setuid-sandbox",
        ]
        start = time.time()
        logger.info(f"Lighthouse audit started for {url}")
        try:
            result = subprocess.run(args, capture_output=True, text=True,
                                    timeout=self.timeout, check=True)
            report = json.loads(result.stdout)
        except subprocess.TimeoutExpired as e:
            logger.error(f"Lighthouse timed out after {self.timeout}s for {url}")
            raise AuditError(f"Lighthouse timed out for {url}") from e
        except subprocess.CalledProcessError as e:
            logger.error(f"Lighthouse failed for {url}: {e.stderr}")
            raise AuditError(f"Lighthouse failed for {url}: {(e.stderr or '').strip()}") from e
        except (OSError, ValueError) as e:
            logger.error(f"Lighthouse could not run for {url}: {e}")
            raise AuditError(f"Lighthouse could not run for {url}: {e}") from e

        scores = parse_lighthouse_report(report, url)
        logger.info(f"Lighthouse audit for {url} took {time.time() - start:.2f} seconds")
        return scores


def build_auditor(settings):
    if not settings.lighthouse_enabled:
        return None
    return LighthouseAuditor(settings.lighthouse_command, settings.lighthouse_timeout)
