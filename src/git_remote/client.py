"""Git repository state queries, backed by the git command line."""

import subprocess
from pathlib import Path

import structlog

from src.gate.config import Settings
from src.gate.errors import InfrastructureError

logger = structlog.get_logger()


class GitRepository:
    """Answers ancestry and reference questions about a local clone."""
    
    def __init__(self, settings: Settings, cwd: Path | None = None):
        self.settings = settings
        self.cwd = cwd
    
    def _run(self, *args: str) -> subprocess.CompletedProcess:
        """Run git, turning launch failures and timeouts into infrastructure errors."""
        cmd = [self.settings.git_executable, *args]
        try:
            return subprocess.run(
                cmd,
                cwd=self.cwd,
                capture_output=True,
                text=True,
                timeout=self.settings.git_timeout_seconds,
            )
        except subprocess.TimeoutExpired as e:
            raise InfrastructureError(
                f"git {args[0]} timed out after {self.settings.git_timeout_seconds}s"
            ) from e
        except OSError as e:
            raise InfrastructureError(f"Cannot run {self.settings.git_executable}: {e}") from e
    
    def refresh(self, remote: str) -> None:
        """Fetch so that remote commits can be inspected locally."""
        result = self._run("fetch", "--quiet", remote)
        if result.returncode != 0:
            raise InfrastructureError(
                f"git fetch {remote} failed: {result.stderr.strip() or result.returncode}"
            )
        logger.debug("Fetched remote", remote=remote)
    
    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        result = self._run("merge-base", "--is-ancestor", ancestor, descendant)
        
        match result.returncode:
            case 0:
                return True
            case 1:
                return False
            case _:
                raise InfrastructureError(
                    f"Ancestry check {ancestor}..{descendant} failed: "
                    f"{result.stderr.strip() or result.returncode}"
                )
    
    def resolve_reference(self, name: str) -> str | None:
        """Commit id a reference or object name points at, None if absent."""
        result = self._run("rev-parse", "--verify", "--quiet", f"{name}^{{commit}}")
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None
