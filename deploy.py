import json
import os
import re
import shlex
import subprocess
import tempfile
import time

from loguru import logger

from errors import DeployError, ValidationError

SITE_NAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9-]*$")


class NetlifyDeployer:
    """Publish a single index.html to a Netlify site through the Netlify CLI."""

    def __init__(self, token: str, command: str = "npx netlify", timeout: int = 120):
        self.token = token
        self.command = shlex.split(command)
        self.timeout = timeout

    def deploy(self, site_name: str, html_content: str) -> str:
        if not SITE_NAME_RE.match(site_name):
            raise ValidationError("Invalid site name")

        start = time.time()
        with tempfile.TemporaryDirectory(prefix="netlify-deploy-") as temp_dir:
            with open(os.path.join(temp_dir, "index.html"), "w", encoding="utf-8") as f:
                f.write(html_content)

            args = self.command + [
                "deploy", "--prod", f"--dir={temp_dir}", f"--site={site_name}", "--json",
            ]
            env = dict(os.environ, NETLIFY_AUTH_TOKEN=self.token)
            try:
                result = subprocess.run(args, capture_output=True, text=True, env=env,
                                        timeout=self.timeout, check=True)
                deploy_url = json.loads(result.stdout)["deploy_url"]
            except subprocess.TimeoutExpired as e:
                logger.error(f"Netlify deploy of {site_name} timed out")
                raise DeployError(f"Netlify deploy timed out for {site_name}") from e
            except subprocess.CalledProcessError as e:
                logger.error(f"Netlify deploy of {site_name} failed: {e.stderr}")
                raise DeployError(f"Netlify deploy failed: {(e.stderr or '').strip()}") from e
            except (OSError, ValueError, KeyError) as e:
                logger.error(f"Netlify deploy of {site_name} failed: {e}")
                raise DeployError(f"Netlify deploy failed: {e}") from e

        logger.info(f"Deployed {site_name} to {deploy_url} in {time.time() - start:.2f} seconds")
        return deploy_url


def build_deployer(settings):
    if not settings.netlify_token:
        return None
    return NetlifyDeployer(settings.netlify_token, settings.netlify_command, settings.netlify_timeout)
