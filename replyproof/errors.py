"""
Error taxonomy.

PreconditionError  -> shown to the requester, job never enters the pipeline.
CollaboratorError  -> social API / vision / chain call failed; recorded as FAILED.
RecordConflict     -> second, different record for one job_id; first write wins.
StageError         -> illegal stage transition.
"""

from typing import Optional


class ReplyProofError(RuntimeError):
    """Base class for replyproof errors."""


class PreconditionError(ReplyProofError):
    """Request cannot start a job (no reply, not self-authored, ...)."""


class CollaboratorError(ReplyProofError):
    """An external call (social API, vision model, chain RPC) failed or timed out."""

    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
        self.reason = message


class RecordConflict(ReplyProofError):
    def __init__(self, table: str, job_id: str, detail: Optional[str] = None):
        msg = f"Conflicting {table} record for job {job_id}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)
        self.table = table
        self.job_id = job_id


class StageError(ReplyProofError):
    """Raised when a job would move backwards (other than an explicit reset)."""
