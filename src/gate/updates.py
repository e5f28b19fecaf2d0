"""Reference update tuples as supplied by the push pipeline."""

import re
from collections.abc import Iterable

import structlog
from pydantic import BaseModel

from .errors import MalformedInput

logger = structlog.get_logger()

COMMIT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{4,64}$")


def is_zero_commit(commit_id: str) -> bool:
    """True for the all-zeros id git uses for an absent object."""
    return bool(commit_id) and set(commit_id) == {"0"}


class UpdateTuple(BaseModel):
    """One reference the caller wants to move."""
    local_ref: str
    local_commit: str
    remote_ref: str
    remote_commit: str
    
    class Config:
        frozen = True
    
    @property
    def is_new(self) -> bool:
        """Remote reference does not exist yet."""
        return is_zero_commit(self.remote_commit)
    
    @property
    def is_delete(self) -> bool:
        """Update removes the remote reference."""
        return is_zero_commit(self.local_commit)
    
    def __str__(self) -> str:
        return f"{self.local_ref} {self.local_commit} {self.remote_ref} {self.remote_commit}"


def parse_update_line(line: str) -> UpdateTuple:
    """Parse ``<local ref> <local sha> <remote ref> <remote sha>``."""
    fields = line.split()
    if len(fields) != 4:
        raise MalformedInput(f"Expected 4 fields, got {len(fields)}", line)
    
    local_ref, local_commit, remote_ref, remote_commit = fields
    for commit_id in (local_commit, remote_commit):
        if not COMMIT_ID_PATTERN.match(commit_id):
            raise MalformedInput(f"Invalid commit id: {commit_id}", line)
    
    return UpdateTuple(
        local_ref=local_ref,
        local_commit=local_commit.lower(),
        remote_ref=remote_ref,
        remote_commit=remote_commit.lower(),
    )


def parse_updates(lines: Iterable[str]) -> list[UpdateTuple]:
    """Parse every line, skipping malformed ones with a warning."""
    updates = []
    for lineno, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            updates.append(parse_update_line(line))
        except MalformedInput as e:
            logger.warning("Skipping malformed update line", line_number=lineno, line=e.line.rstrip("\n"), error=str(e))
    return updates
