"""
replyproof — reply-image attestations for Farcaster frames.

A user replies to a cast with an image. The frame server picks up the reply,
a vision model checks the image, the user pays a small fee on-chain, and the
worker mints an EAS attestation plus a token reward. Clients poll for
progress; every poll is a pure read.
"""

__version__ = "0.1.0"

from replyproof.bus import EventBus, RESET, START_MINTING, START_VALIDATING
from replyproof.config import Settings
from replyproof.errors import (
    CollaboratorError,
    PreconditionError,
    RecordConflict,
    ReplyProofError,
    StageError,
)
from replyproof.pipeline import PipelineWorker
from replyproof.schema import (
    AttestationRecord,
    JobDescriptor,
    Stage,
    ValidationRecord,
    new_job_id,
)
from replyproof.stages import JobTracker
from replyproof.status import JobStatus, StatusQuery
from replyproof.store import JobStore

__all__ = [
    "__version__",
    "EventBus",
    "RESET",
    "START_MINTING",
    "START_VALIDATING",
    "Settings",
    "CollaboratorError",
    "PreconditionError",
    "RecordConflict",
    "ReplyProofError",
    "StageError",
    "PipelineWorker",
    "AttestationRecord",
    "JobDescriptor",
    "Stage",
    "ValidationRecord",
    "new_job_id",
    "JobTracker",
    "JobStatus",
    "StatusQuery",
    "JobStore",
]
