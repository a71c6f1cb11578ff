"""
Exception hierarchy for fatal orchestration failures.
"""

from typing import List, Optional


class HydratorError(Exception):
    """Base class for every aborting failure. Carries the process exit code."""

    exit_code = 1


class PreconditionError(HydratorError):
    """Required tooling or credentials are missing."""


class ConfirmationDeclined(HydratorError):
    """The operator did not confirm a destructive action."""


class ProvisionError(HydratorError):
    """A bootstrap resource could not be created."""


class GitHubError(HydratorError):
    """The GitHub API returned an unexpected response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteRunFailed(HydratorError):
    """The remote destroy workflow finished without success."""

    def __init__(self, run_id: int, repo: str):
        super().__init__(
            f"Terraform destroy workflow failed (run {run_id}). "
            f"Check the logs: gh run view {run_id} --repo {repo} --log"
        )
        self.run_id = run_id
        self.repo = repo


class RunInterrupted(HydratorError):
    """The operator stopped watching a remote run that is still executing."""

    exit_code = 130

    def __init__(self, run_id: int, repo: str):
        super().__init__(
            "Stopped watching. The terraform destroy workflow continues in the background.\n"
            f"To check status later: gh run view {run_id} --repo {repo}\n"
            "Cleanup aborted so secrets are not deleted while infrastructure still exists. "
            "Run teardown again after the destroy workflow completes."
        )
        self.run_id = run_id
        self.repo = repo


class ValidationFailed(HydratorError):
    """Infrastructure is still present after the remote destroy reported success."""

    def __init__(self, remaining: List[str]):
        super().__init__(
            "Some resources were not destroyed: " + ", ".join(remaining)
            + ". Check the GitHub Actions workflow logs."
        )
        self.remaining = remaining


class SharedStateConflict(HydratorError):
    """Other projects still keep Terraform state in the shared bucket."""

    def __init__(self, bucket: str, keys: List[str]):
        listing = "\n".join(f"  - s3://{bucket}/{key}" for key in keys)
        super().__init__(
            "Other Terraform state files found in shared bucket. These projects must be "
            f"destroyed before deleting the state bucket:\n{listing}"
        )
        self.bucket = bucket
        self.keys = keys


class CredentialSweepError(HydratorError):
    """Deploy keys are still present after the bounded delete loop."""

    def __init__(self, remaining: List[int]):
        super().__init__(
            "Failed to delete all ArgoCD deploy keys. Remaining: "
            + ", ".join(str(key_id) for key_id in remaining)
        )
        self.remaining = remaining
