"""
GitHub REST client for the remote Terraform pipeline and repository credentials.
"""

import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

import requests

from .errors import GitHubError, PreconditionError

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"

# GitHub run statuses that have not started executing yet
PENDING_STATUSES = ("queued", "requested", "waiting", "pending")


class RunStatus(Enum):
    """Normalized workflow run states."""
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    UNKNOWN = "unknown"

    @property
    def terminal(self) -> bool:
        return self in (RunStatus.SUCCEEDED, RunStatus.FAILED)

    @classmethod
    def from_api(cls, status: Optional[str], conclusion: Optional[str]) -> "RunStatus":
        if status in PENDING_STATUSES:
            return cls.QUEUED
        if status == "in_progress":
            return cls.IN_PROGRESS
        if status == "completed":
            return cls.SUCCEEDED if conclusion == "success" else cls.FAILED
        return cls.UNKNOWN


@dataclass
class RemoteRun:
    """A single workflow run."""
    id: int
    status: RunStatus
    conclusion: Optional[str] = None
    created_at: Optional[datetime] = None
    event: Optional[str] = None
    html_url: Optional[str] = None

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "RemoteRun":
        created_at = data.get("created_at")
        return cls(
            id=int(data["id"]),
            status=RunStatus.from_api(data.get("status"), data.get("conclusion")),
            conclusion=data.get("conclusion"),
            created_at=_parse_timestamp(created_at) if created_at else None,
            event=data.get("event"),
            html_url=data.get("html_url"),
        )


@dataclass(frozen=True)
class Completed:
    """The run reached a terminal state while we were watching."""
    run: RemoteRun


@dataclass(frozen=True)
class Cancelled:
    """The operator stopped watching; the run itself keeps executing."""
    run_id: int


WaitResult = Union[Completed, Cancelled]


@dataclass
class DeployKey:
    id: int
    title: str
    key: str = ""
    read_only: bool = True


def _parse_timestamp(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def resolve_token(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Find a GitHub token from the environment or an authenticated gh CLI.

    Returns:
        Token string or None when nothing is available
    """
    environ = os.environ if environ is None else environ
    for key in ("GITHUB_TOKEN", "GH_TOKEN"):
        if environ.get(key):
            return environ[key]

    if shutil.which("gh") is None:
        return None
    proc = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, check=False)
    token = proc.stdout.strip()
    return token if proc.returncode == 0 and token else None


class GitHubClient:
    """Thin wrapper over the endpoints the orchestrator needs."""

    def __init__(
        self,
        repo: str,
        token: str,
        base_url: str = API_URL,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.repo = repo
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        })

    @classmethod
    def from_environment(cls, repo: str, environ: Optional[Mapping[str, str]] = None) -> "GitHubClient":
        token = resolve_token(environ)
        if not token:
            raise PreconditionError(
                "GitHub credentials not found. Set GITHUB_TOKEN or run 'gh auth login'."
            )
        return cls(repo, token)

    def _request(self, method: str, path: str, expected: Iterable[int] = (200,), **kwargs) -> requests.Response:
        url = f"{self.base_url}/repos/{self.repo}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise GitHubError(f"{method} {path} failed: {e}") from e

        if response.status_code not in tuple(expected):
            raise GitHubError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    # Workflow runs

    def list_runs(
        self,
        workflow: str,
        status: Optional[str] = None,
        event: Optional[str] = None,
        per_page: int = 20,
    ) -> List[RemoteRun]:
        """
        List recent runs of a workflow, newest first.

        Args:
            workflow: Workflow file name, e.g. terraform-destroy.yml
            status: GitHub status filter (queued, in_progress, ...)
            event: Triggering event filter (workflow_dispatch, ...)
            per_page: Page size
        """
        params: Dict[str, Any] = {"per_page": per_page}
        if status:
            params["status"] = status
        if event:
            params["event"] = event
        response = self._request("GET", f"/actions/workflows/{workflow}/runs", params=params)
        return [RemoteRun.from_api(run) for run in response.json().get("workflow_runs", [])]

    def default_branch(self) -> str:
        response = self._request("GET", "")
        return response.json().get("default_branch", "main")

    def dispatch_workflow(self, workflow: str, ref: str, inputs: Dict[str, str]) -> None:
        self._request(
            "POST",
            f"/actions/workflows/{workflow}/dispatches",
            expected=(204,),
            json={"ref": ref, "inputs": inputs},
        )

    def get_run(self, run_id: int) -> RemoteRun:
        response = self._request("GET", f"/actions/runs/{run_id}")
        return RemoteRun.from_api(response.json())

    def wait_for_run(
        self,
        run_id: int,
        poll_interval: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> WaitResult:
        """
        Block until the run is terminal or the operator interrupts.

        An interrupt during the wait returns ``Cancelled`` rather than raising,
        so callers can tell it apart from a failed run.
        """
        last_status = None
        try:
            while True:
                run = self.get_run(run_id)
                if run.status != last_status:
                    logger.info(f"Run {run_id}: {run.status.value}")
                    last_status = run.status
                if run.status.terminal:
                    return Completed(run)
                sleep(poll_interval)
        except KeyboardInterrupt:
            return Cancelled(run_id)

    # Deploy keys

    def list_deploy_keys(self) -> List[DeployKey]:
        response = self._request("GET", "/keys", params={"per_page": 100})
        return [
            DeployKey(id=int(k["id"]), title=k.get("title", ""), key=k.get("key", ""),
                      read_only=k.get("read_only", True))
            for k in response.json()
        ]

    def add_deploy_key(self, title: str, key: str, read_only: bool = True) -> DeployKey:
        response = self._request(
            "POST", "/keys", expected=(201,),
            json={"title": title, "key": key, "read_only": read_only},
        )
        data = response.json()
        return DeployKey(id=int(data["id"]), title=data.get("title", title), key=data.get("key", key),
                         read_only=data.get("read_only", read_only))

    def delete_deploy_key(self, key_id: int) -> bool:
        """Delete a deploy key. Returns False if it was already gone."""
        response = self._request("DELETE", f"/keys/{key_id}", expected=(204, 404))
        return response.status_code == 204

    # Actions variables and secrets

    def get_variable(self, name: str) -> Optional[str]:
        response = self._request("GET", f"/actions/variables/{name}", expected=(200, 404))
        if response.status_code == 404:
            return None
        return response.json().get("value")

    def create_variable(self, name: str, value: str) -> None:
        self._request("POST", "/actions/variables", expected=(201,), json={"name": name, "value": value})

    def delete_variable(self, name: str) -> bool:
        response = self._request("DELETE", f"/actions/variables/{name}", expected=(204, 404))
        return response.status_code == 204

    def delete_secret(self, name: str) -> bool:
        response = self._request("DELETE", f"/actions/secrets/{name}", expected=(204, 404))
        return response.status_code == 204
